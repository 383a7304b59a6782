"""Data models and types for case retrieval."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from .case import Case


@dataclass
class IndexEntry:
    """
    Represents one embedded case in the vector index.
    """
    id: str
    vector: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)   # title, complications, content, ...


@dataclass
class ScoredResult:
    """
    Represents a nearest-neighbour hit from the vector index.
    """
    id: str
    score: float
    metadata: Dict[str, Any]
    position: int = 0       # insertion order in the index, used for tie-breaks


@dataclass
class ScoredCase:
    """
    Represents a case scored by the keyword relevance scorer.
    """
    case: Case
    score: int
    position: int = 0       # order in the corpus


@dataclass
class RankedCase:
    """
    Case summary handed to the prompt builder.
    """
    case_id: str
    title: str
    procedure: str
    specialty: str
    patient_age: str                            # display string, e.g. "45 years"
    asa: Optional[int]
    technique: str
    complications: List[Dict[str, str]]
    clinical_pearls: List[str]
    key_takeaways: List[str]
    critical_incident: bool
    relevance_score: float                      # in [0, 1]
    raw_score: float                            # cosine similarity or keyword points
    source: str                                 # "vector" | "keyword"


@dataclass
class CaseSearchResult:
    """
    Result of the plain-text case search.
    """
    query: str
    response: str
    relevant_cases: List[Any]
    total_cases: int


@dataclass
class QueryResult:
    """
    Represents the complete result of a retrieval query including the prompt context.
    """
    query: str
    cases: List[RankedCase]
    prompt_context: str
    source: str
    retrieval_time: float
