"""Case retrieval: vector search with keyword-scoring fallback."""

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from ..data.corpus import CaseCorpus, case_metadata
from ..errors import DeadlineExceeded, NotReady, ValidationError
from ..models.case import Case
from ..models.types import CaseSearchResult, IndexEntry, RankedCase, ScoredCase, ScoredResult
from .embeddings import Embedder
from .formatting import format_case_search_response
from .keyword_scorer import DEFAULT_LIMIT, MAX_KEYWORD_SCORE, rank_cases
from .vector_store import InMemoryVectorIndex, VectorIndex

logger = logging.getLogger(__name__)

# Cosine similarity and keyword points are different scales; each path keeps its own cutoff.
VECTOR_SCORE_THRESHOLD = 0.3
KEYWORD_SCORE_THRESHOLD = 0

DEFAULT_TOP_K = 5
MAX_QUERY_CHARS = 2000


class RetrieverState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


def _validate_query(query: Any):
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Query must be a non-empty string")
    if len(query) > MAX_QUERY_CHARS:
        raise ValidationError(f"Query is {len(query)} characters, limit is {MAX_QUERY_CHARS}")


def _validate_limit(value: Any, name: str):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")


def _complication_dict(complication: Any) -> Dict[str, str]:
    if isinstance(complication, dict):
        return {k: str(complication.get(k) or "") for k in ("event", "timing", "management", "outcome")}
    return {"event": str(complication), "timing": "", "management": "", "outcome": ""}


def _ranked_from_hit(hit: ScoredResult) -> RankedCase:
    meta = hit.metadata
    return RankedCase(
        case_id=hit.id,
        title=meta.get("title") or meta.get("procedure", ""),
        procedure=meta.get("procedure", ""),
        specialty=meta.get("specialty", ""),
        patient_age=meta.get("patientAge", ""),
        asa=meta.get("asa"),
        technique=meta.get("technique", ""),
        complications=[_complication_dict(c) for c in meta.get("complications") or []],
        clinical_pearls=list(meta.get("clinicalPearls") or []),
        key_takeaways=list(meta.get("keyTakeaways") or []),
        critical_incident=bool(meta.get("criticalIncident", False)),
        relevance_score=min(1.0, max(0.0, hit.score)),
        raw_score=hit.score,
        source="vector",
    )


def _ranked_from_scored_case(scored: ScoredCase) -> RankedCase:
    case = scored.case
    return RankedCase(
        case_id=case.id,
        title=case.title,
        procedure=case.procedure.name,
        specialty=case.procedure.specialty,
        patient_age=case.age_display,
        asa=case.patient.asa,
        technique=case.anesthetic.technique.value,
        complications=[_complication_dict(c.model_dump()) for c in case.complications],
        clinical_pearls=list(case.clinical_pearls),
        key_takeaways=list(case.key_takeaways),
        critical_incident=case.outcome.critical_incident,
        relevance_score=min(1.0, scored.score / MAX_KEYWORD_SCORE),
        raw_score=float(scored.score),
        source="keyword",
    )


class CaseRetriever:
    """
    Single entry point for grounding a chat query in clinical cases.

    Uses the vector index when it holds entries, otherwise the keyword
    scorer over the corpus. Lifecycle: UNINITIALIZED -> LOADING -> READY.
    Queries outside READY raise NotReady instead of blocking.
    """

    def __init__(self, embedder: Embedder, vector_index: Optional[VectorIndex] = None):
        """
        Initialize case retriever.

        Args:
            embedder: Embedder for cases and queries
            vector_index: Vector index backend (in-memory if omitted)
        """
        self.embedder = embedder
        self.vector_index = vector_index if vector_index is not None else InMemoryVectorIndex()
        self.corpus = CaseCorpus()
        self._state = RetrieverState.UNINITIALIZED
        self._lock = threading.Lock()

    @property
    def state(self) -> RetrieverState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is RetrieverState.READY

    @contextmanager
    def _loading(self):
        with self._lock:
            previous = self._state
            self._state = RetrieverState.LOADING
            try:
                yield
            except Exception:
                self._state = previous
                raise
            self._state = RetrieverState.READY

    def load_corpus(self, cases: Union[CaseCorpus, Iterable[Case], List[Dict[str, Any]]]):
        """
        Replace the case corpus.

        The vector index describes the previous corpus, so it is emptied;
        retrieval uses keyword scoring until build_index or load_index runs.

        Args:
            cases: CaseCorpus, or a list of Case objects / raw case records

        Raises:
            ValidationError: input is not a list of valid cases; the previous corpus and index are kept
        """
        corpus = cases if isinstance(cases, CaseCorpus) else CaseCorpus.from_records(cases)
        with self._loading():
            self.corpus = corpus
            self.vector_index.clear()
        logger.info("Case corpus loaded: %d cases", len(corpus))

    def build_index(self) -> int:
        """
        Embed every corpus case and swap the result into the vector index.

        Returns:
            Number of indexed cases

        Raises:
            EmbeddingUnavailable: embedding failed; the previous index is kept
        """
        with self._loading():
            cases = list(self.corpus)
            logger.info("Indexing %d clinical cases", len(cases))
            vectors = self.embedder.embed_batch([c.searchable_text for c in cases]) if cases else []
            entries = [
                IndexEntry(id=case.id, vector=vector, metadata=case_metadata(case))
                for case, vector in zip(cases, vectors)
            ]
            self.vector_index.replace(entries)
        logger.info("Vector index stats: %s", self.vector_index.stats())
        return len(entries)

    def load_index(self, path: str) -> bool:
        """
        Load a persisted vector index.

        Returns:
            True if loaded; False if missing, corrupt, or built from a different
            corpus (keyword scoring is used instead)
        """
        with self._loading():
            loaded = self.vector_index.load(path)
            if loaded and len(self.corpus) and set(self.vector_index.ids) != {c.id for c in self.corpus}:
                logger.warning("Vector store %s does not match the loaded cases, discarding it", path)
                self.vector_index.clear()
                loaded = False
        if not loaded:
            logger.warning("No usable vector store at %s, using keyword search", path)
        return loaded

    def save_index(self, path: str):
        self.vector_index.save(path)
        logger.info("Saved vector index to %s", path)

    def clear(self):
        """Empty the vector index; the retriever is LOADING until the next load or build."""
        with self._lock:
            self.vector_index.clear()
            self._state = RetrieverState.LOADING

    def _check_ready(self):
        if self._state is not RetrieverState.READY:
            raise NotReady(f"Case retriever is {self._state.value}")

    def _retrieve_vector(self, query: str, top_k: int, deadline: Optional[float]) -> Optional[List[RankedCase]]:
        try:
            vector = self.embedder.embed(query)
        except Exception as e:
            logger.warning("Query embedding failed, falling back to keyword scoring: %s", e)
            return None
        if deadline is not None and time.monotonic() > deadline:
            raise DeadlineExceeded("Deadline passed while embedding the query")
        try:
            hits = self.vector_index.query(vector, top_k)
        except ValueError as e:
            # DimensionMismatch: index built with a different embedder
            logger.warning("Vector query failed, falling back to keyword scoring: %s", e)
            return None

        ranked = [_ranked_from_hit(h) for h in hits if h.score > VECTOR_SCORE_THRESHOLD]
        logger.info("Found %d relevant cases via vector search", len(ranked))
        return ranked[:top_k]

    def _retrieve_keyword(self, query: str, top_k: int, deadline: Optional[float]) -> List[RankedCase]:
        scored = rank_cases(query, self.corpus, limit=top_k, deadline=deadline)
        ranked = [_ranked_from_scored_case(s) for s in scored if s.score > KEYWORD_SCORE_THRESHOLD]
        logger.info("Found %d relevant cases via keyword scoring", len(ranked))
        return ranked[:top_k]

    def retrieve_relevant_cases(
        self,
        query: str,
        top_k: int = DEFAULT_TOP_K,
        deadline: Optional[float] = None,
    ) -> List[RankedCase]:
        """
        Retrieve the cases most relevant to a clinical query.

        Args:
            query: Free-text query (at most MAX_QUERY_CHARS characters)
            top_k: Maximum number of cases
            deadline: Optional time.monotonic() value; scoring stops once it passes

        Returns:
            RankedCase list, highest relevance first; empty when nothing clears the cutoff

        Raises:
            ValidationError: malformed query or top_k
            NotReady: corpus/index still loading
            DeadlineExceeded: deadline passed before scoring finished
        """
        _validate_query(query)
        _validate_limit(top_k, "top_k")
        self._check_ready()

        if deadline is not None and time.monotonic() > deadline:
            raise DeadlineExceeded("Deadline passed before retrieval started")

        if len(self.vector_index):
            ranked = self._retrieve_vector(query, top_k, deadline)
            if ranked is not None:
                return ranked

        if not len(self.corpus):
            logger.info("No cases loaded, returning no case context")
            return []
        return self._retrieve_keyword(query, top_k, deadline)

    def search_cases(self, query: str, limit: int = DEFAULT_LIMIT, include_details: bool = False) -> CaseSearchResult:
        """
        Plain-text case search over the corpus with keyword scoring.

        Args:
            query: Free-text query
            limit: Maximum number of cases
            include_details: Return full case records instead of short summaries

        Returns:
            CaseSearchResult with the narrative response and matched cases
        """
        _validate_query(query)
        _validate_limit(limit, "limit")
        self._check_ready()

        corpus = self.corpus
        results = rank_cases(query, corpus, limit=limit)
        if include_details:
            relevant = [
                {**r.case.model_dump(mode="json", by_alias=True), "relevanceScore": r.score}
                for r in results
            ]
        else:
            relevant = [
                {
                    "procedure": r.case.procedure.name,
                    "patient": " ".join(p for p in (r.case.age_short, r.case.patient.sex) if p),
                    "complications": len(r.case.complications),
                }
                for r in results
            ]
        return CaseSearchResult(
            query=query,
            response=format_case_search_response(query, results, corpus),
            relevant_cases=relevant,
            total_cases=len(corpus),
        )
