from typing import List, Sequence

import numpy as np
import pytest

from anesthesia_rag.data.corpus import CaseCorpus
from anesthesia_rag.retrieval.embeddings import Embedder


def make_record(
    procedure: str = "Appendectomy",
    specialty: str = "General surgery",
    technique: str = "general",
    age: float = 40,
    age_unit: str = "years",
    asa: int = 2,
    sex: str = "F",
    comorbidities: Sequence[str] = (),
    complications: Sequence[dict] = (),
    block_type: str = None,
    induction: Sequence[dict] = (),
    pearls: Sequence[str] = (),
    takeaways: Sequence[str] = (),
    critical: bool = False,
    case_date: str = None,
    **extra,
) -> dict:
    record = {
        "patient": {
            "age": age,
            "ageUnit": age_unit,
            "weight": 70,
            "sex": sex,
            "asa": asa,
            "comorbidities": list(comorbidities),
        },
        "procedure": {"name": procedure, "specialty": specialty, "urgency": "elective", "bloodLoss": 50},
        "anesthetic": {"technique": technique, "induction": list(induction)},
        "complications": list(complications),
        "clinicalPearls": list(pearls),
        "keyTakeaways": list(takeaways),
        "outcome": {"criticalIncident": critical, "qualityScore": 8},
    }
    if block_type:
        record["anesthetic"]["regionalDetails"] = {"blockType": block_type}
    if case_date:
        record["caseDate"] = case_date
    record.update(extra)
    return record


@pytest.fixture
def osa_record():
    """Critical incident, OSA comorbidity, regional technique, no block details."""
    return make_record(
        procedure="Knee arthroscopy",
        specialty="Orthopedics",
        technique="regional",
        age=58,
        asa=3,
        comorbidities=["OSA"],
        complications=[{
            "event": "Respiratory depression",
            "timing": "pacu",
            "management": "Naloxone and CPAP",
            "outcome": "Recovered",
        }],
        pearls=["Monitor OSA patients after neuraxial opioids"],
        takeaways=["Continuous oximetry overnight"],
        critical=True,
        case_date="2024-01-10",
    )


@pytest.fixture
def sample_records(osa_record) -> List[dict]:
    return [
        make_record(
            procedure="Laparoscopic cholecystectomy",
            induction=[{"drug": "Propofol", "dose": 150, "unit": "mg"},
                       {"drug": "Rocuronium", "dose": 40, "unit": "mg"}],
            pearls=["Multimodal PONV prophylaxis"],
            case_date="2024-02-01",
        ),
        osa_record,
        make_record(
            procedure="Pyloromyotomy",
            specialty="Pediatric surgery",
            age=6,
            age_unit="months",
            asa=2,
            induction=[{"drug": "Propofol", "dose": 3, "unit": "mg/kg"}],
            pearls=["Correct alkalosis before induction"],
            case_date="2024-03-01",
        ),
        make_record(
            procedure="Hip hemiarthroplasty",
            specialty="Orthopedics",
            age=82,
            asa=3,
            complications=[{
                "event": "Cardiac arrest after cementing",
                "timing": "maintenance",
                "management": "CPR and epinephrine",
                "outcome": "ROSC after 4 minutes",
            }],
            case_date="2024-04-01",
        ),
        make_record(
            procedure="Cesarean section",
            specialty="Obstetrics",
            technique="regional",
            age=31,
            block_type="Spinal",
            case_date="2024-05-01",
        ),
    ]


@pytest.fixture
def corpus(sample_records) -> CaseCorpus:
    return CaseCorpus.from_records(sample_records)


class AxisEmbedder(Embedder):
    """Test embedder: one axis per term, 1.0 when the term occurs in the text."""

    def __init__(self, terms: Sequence[str]):
        self.terms = [t.lower() for t in terms]
        self.dimension = len(self.terms)
        self.calls = 0

    def embed_batch(self, texts):
        self.calls += 1
        return np.array(
            [[1.0 if term in text.lower() else 0.0 for term in self.terms] for text in texts],
            dtype=np.float64,
        )


class FailingEmbedder(Embedder):
    dimension = 4

    def __init__(self, error: Exception):
        self.error = error

    def embed_batch(self, texts):
        raise self.error


@pytest.fixture
def axis_embedder():
    return AxisEmbedder(["osa", "propofol", "arrest", "spinal", "pyloromyotomy"])
