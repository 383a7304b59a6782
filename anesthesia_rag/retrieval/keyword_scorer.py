"""Rule-based relevance scoring of cases against a raw query."""

import time
from typing import Iterable, List, Optional, Tuple

from ..errors import DeadlineExceeded
from ..models.case import Case
from ..models.types import ScoredCase

CRITICAL_INCIDENT_BONUS = 10
OSA_BONUS = 15
OSA_SPINAL_BONUS = 20       # stacks on OSA_BONUS
CARDIAC_ARREST_BONUS = 15
NEURAXIAL_BONUS = 5
DRUG_BONUS = 3              # per drug
PROCEDURE_BONUS = 4
AGE_GROUP_BONUS = 3

OSA_TERMS = ("osa", "sleep apnea", "obstructive sleep")
ARREST_TERMS = ("arrest", "code")
NEURAXIAL_TERMS = ("spinal", "epidural")
TRACKED_DRUGS = ("propofol", "midazolam", "fentanyl", "rocuronium", "sevoflurane")

# Highest score any case can reach; maps keyword points onto [0, 1].
MAX_KEYWORD_SCORE = (
    CRITICAL_INCIDENT_BONUS + OSA_BONUS + OSA_SPINAL_BONUS + CARDIAC_ARREST_BONUS
    + NEURAXIAL_BONUS + DRUG_BONUS * len(TRACKED_DRUGS) + PROCEDURE_BONUS + AGE_GROUP_BONUS
)

DEFAULT_LIMIT = 3


def _mentions(text: str, terms: Iterable[str]) -> bool:
    return any(term in text for term in terms)


def explain_score(query: str, case: Case) -> List[Tuple[str, int]]:
    """
    List the signals a case matches for a query.

    Args:
        query: Raw user query
        case: Case to score

    Returns:
        (signal, points) pairs in rule order; the case score is their sum
    """
    q = query.lower()
    case_text = case.serialized_text
    signals: List[Tuple[str, int]] = []

    if case.outcome.critical_incident:
        signals.append(("critical_incident", CRITICAL_INCIDENT_BONUS))

    if _mentions(q, OSA_TERMS) and "osa" in case_text:
        signals.append(("osa", OSA_BONUS))
        if "spinal" in q and "regional" in case.anesthetic.technique.value.lower():
            signals.append(("osa_spinal", OSA_SPINAL_BONUS))

    if _mentions(q, ARREST_TERMS) and any("arrest" in c.event.lower() for c in case.complications):
        signals.append(("cardiac_arrest", CARDIAC_ARREST_BONUS))

    details = case.anesthetic.regional_details
    if _mentions(q, NEURAXIAL_TERMS) and details and "spinal" in details.block_type.lower():
        signals.append(("neuraxial", NEURAXIAL_BONUS))

    for drug in TRACKED_DRUGS:
        if drug in q and drug in case_text:
            signals.append((f"drug:{drug}", DRUG_BONUS))

    procedure = case.procedure.name.strip().lower()
    if procedure and procedure in q:
        signals.append(("procedure", PROCEDURE_BONUS))

    if "pediatric" in q and case.age_in_years < 18:
        signals.append(("pediatric", AGE_GROUP_BONUS))
    if "elderly" in q and case.age_in_years > 65:
        signals.append(("elderly", AGE_GROUP_BONUS))

    return signals


def score_case(query: str, case: Case) -> int:
    """Additive keyword relevance score of a case for a query."""
    return sum(points for _, points in explain_score(query, case))


def rank_cases(
    query: str,
    cases: Iterable[Case],
    limit: int = DEFAULT_LIMIT,
    deadline: Optional[float] = None,
) -> List[ScoredCase]:
    """
    Score every case and keep the best ones.

    Args:
        query: Raw user query
        cases: Cases in corpus order
        limit: Maximum number of results
        deadline: Optional time.monotonic() value after which scoring stops

    Returns:
        Cases with score > 0, highest first, ties in corpus order
    """
    scored = []
    for position, case in enumerate(cases):
        if deadline is not None and time.monotonic() > deadline:
            raise DeadlineExceeded(f"Keyword scoring stopped after {position} cases")
        score = score_case(query, case)
        if score > 0:
            scored.append(ScoredCase(case=case, score=score, position=position))

    # sort() is stable, so equal scores keep corpus order
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]
