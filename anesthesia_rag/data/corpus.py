"""Case corpus: ingestion, lookup, filtering and summary statistics."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..models.case import Case, Technique

logger = logging.getLogger(__name__)

CONTENT_CHARS = 1000


def _validate_case(record: Any, index: int) -> Case:
    if isinstance(record, Case):
        case = record
    else:
        try:
            case = Case.model_validate(record)
        except PydanticValidationError as e:
            raise ValidationError(f"cases[{index}] is not a valid case record: {e}") from e
    if not case.id:
        case = case.model_copy(update={"id": f"case-{index}"})
    return case


def case_metadata(case: Case) -> Dict[str, Any]:
    """
    Build the metadata stored next to a case embedding.

    Carries enough of the case to render it without re-fetching the record.
    """
    return {
        "id": case.id,
        "type": "case",
        "title": case.title,
        "date": case.case_date,
        "procedure": case.procedure.name,
        "procedures": [case.procedure.name],
        "specialty": case.procedure.specialty,
        "patientAge": case.age_display,
        "asa": case.patient.asa,
        "technique": case.anesthetic.technique.value,
        "complications": [c.model_dump(include={"event", "timing", "management", "outcome"}) for c in case.complications],
        "clinicalPearls": list(case.clinical_pearls),
        "keyTakeaways": list(case.key_takeaways),
        "criticalIncident": case.outcome.critical_incident,
        "medications": case.medication_names,
        "content": case.searchable_text[:CONTENT_CHARS],
    }


class CaseCorpus:
    """Ordered, read-only collection of validated cases."""

    def __init__(self, cases: Iterable[Case] = ()):
        """Raises ValidationError when two cases share an id (the vector index keys entries by id)."""
        self._cases: Tuple[Case, ...] = tuple(cases)
        self._by_id: Dict[str, Case] = {}
        for i, case in enumerate(self._cases):
            if not case.id:
                continue
            if case.id in self._by_id:
                raise ValidationError(f"cases[{i}] has duplicate id {case.id!r}")
            self._by_id[case.id] = case

    @classmethod
    def from_records(cls, records: Any) -> "CaseCorpus":
        """
        Validate raw case records.

        Args:
            records: List of case dicts (or Case objects)

        Returns:
            CaseCorpus in input order

        Raises:
            ValidationError: input is not a list, or a record is malformed
        """
        if not isinstance(records, (list, tuple)):
            raise ValidationError(
                f"Expected an array of case objects, got {type(records).__name__}"
            )
        return cls(_validate_case(record, i) for i, record in enumerate(records))

    @classmethod
    def from_json_file(cls, path: str) -> "CaseCorpus":
        """Load cases from a JSON array file."""
        with open(Path(path), "r", encoding="utf-8") as f:
            records = json.load(f)
        corpus = cls.from_records(records)
        logger.info("Loaded %d cases from %s", len(corpus), path)
        return corpus

    @property
    def cases(self) -> Tuple[Case, ...]:
        return self._cases

    def get(self, case_id: str) -> Optional[Case]:
        return self._by_id.get(case_id)

    def search(
        self,
        text: Optional[str] = None,
        asa: Optional[Sequence[int]] = None,
        technique: Optional[str] = None,
        has_complications: Optional[bool] = None,
        age_range: Optional[Tuple[float, float]] = None,
    ) -> List[Case]:
        """
        Filter cases by structured criteria.

        Args:
            text: Substring matched against procedure, specialty, keywords, pearls and comorbidities
            asa: Accepted ASA classes
            technique: Anesthetic technique
            has_complications: Keep only cases with (True) or without (False) complications
            age_range: Inclusive (min, max) age in years

        Returns:
            Matching cases in corpus order
        """
        results = list(self._cases)

        if asa:
            results = [c for c in results if c.patient.asa in asa]

        if technique:
            try:
                wanted = Technique.parse(technique)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            results = [c for c in results if c.anesthetic.technique is wanted]

        if has_complications is not None:
            results = [c for c in results if c.has_complications == has_complications]

        if text:
            needle = text.lower()
            results = [
                c for c in results
                if needle in c.procedure.name.lower()
                or needle in c.procedure.specialty.lower()
                or any(needle in k for k in c.keywords)
                or any(needle in p.lower() for p in c.clinical_pearls)
                or any(needle in co.lower() for co in c.patient.comorbidities)
            ]

        if age_range:
            low, high = age_range
            results = [c for c in results if low <= c.age_in_years <= high]

        return results

    def find_similar(self, reference: Case, limit: int = 5) -> List[Case]:
        """
        Rank cases by patient/procedure similarity to a reference case.

        Args:
            reference: Case to compare against
            limit: Maximum number of cases

        Returns:
            Most similar cases, ties in corpus order
        """
        scored = [(similarity(reference, c), c) for c in self._cases]
        scored.sort(key=lambda sc: sc[0], reverse=True)
        return [c for _, c in scored[:limit]]

    def to_frame(self) -> pd.DataFrame:
        """One row per case with the fields used for statistics."""
        rows = [
            {
                "id": c.id,
                "procedure": c.procedure.name,
                "specialty": c.procedure.specialty,
                "technique": c.anesthetic.technique.value,
                "asa": c.patient.asa,
                "age_years": c.age_in_years,
                "complication_count": len(c.complications),
                "critical_incident": c.outcome.critical_incident,
                "quality_score": c.outcome.quality_score,
            }
            for c in self._cases
        ]
        columns = ["id", "procedure", "specialty", "technique", "asa", "age_years",
                   "complication_count", "critical_incident", "quality_score"]
        return pd.DataFrame(rows, columns=columns)

    def statistics(self) -> Dict[str, Any]:
        """Corpus summary: distributions, complication rate and quality."""
        df = self.to_frame()
        total = len(df)
        if total == 0:
            return {
                "total_cases": 0,
                "by_technique": {},
                "by_asa": {},
                "by_specialty": {},
                "complication_rate": 0.0,
                "critical_incidents": 0,
                "average_quality_score": 0.0,
            }

        quality = df["quality_score"].dropna()
        return {
            "total_cases": total,
            "by_technique": {str(k): int(v) for k, v in df["technique"].value_counts().sort_index().items()},
            "by_asa": {int(k): int(v) for k, v in df["asa"].value_counts().sort_index().items()},
            "by_specialty": {str(k): int(v) for k, v in df["specialty"].value_counts().sort_index().items()},
            "complication_rate": float((df["complication_count"] > 0).mean() * 100),
            "critical_incidents": int(df["critical_incident"].sum()),
            "average_quality_score": float(quality.mean()) if len(quality) else 0.0,
        }

    def __iter__(self) -> Iterator[Case]:
        return iter(self._cases)

    def __getitem__(self, index: int) -> Case:
        return self._cases[index]

    def __len__(self) -> int:
        return len(self._cases)


def similarity(reference: Case, other: Case) -> float:
    """Case-to-case similarity: age, ASA, procedure, technique and comorbidity overlap."""
    score = 0.0

    age_diff = abs(reference.age_in_years - other.age_in_years)
    score += max(0.0, 20 - age_diff * 2)

    if reference.patient.asa == other.patient.asa:
        score += 20

    if reference.procedure.name.lower() in other.procedure.name.lower():
        score += 30
    elif reference.procedure.specialty and reference.procedure.specialty == other.procedure.specialty:
        score += 15

    if reference.anesthetic.technique is other.anesthetic.technique:
        score += 20

    overlap = len(set(reference.patient.comorbidities) & set(other.patient.comorbidities))
    score += min(10, overlap * 3)

    return score
