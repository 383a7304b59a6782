"""Vector index for case embeddings: in-memory numpy and FAISS backends."""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import faiss
import numpy as np

from ..errors import DimensionMismatch, ValidationError
from ..models.types import IndexEntry, ScoredResult

logger = logging.getLogger(__name__)


def _as_vector(vector: Any) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim == 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim != 1 or arr.size == 0:
        raise ValidationError(f"Expected a non-empty 1-D vector, got shape {arr.shape}")
    return arr


def cosine_similarity(a: Any, b: Any) -> float:
    """
    Cosine similarity dot(a, b) / (|a| |b|).

    Returns exactly 0.0 when either vector has zero norm.
    """
    a = _as_vector(a)
    b = _as_vector(b)
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class _Snapshot(NamedTuple):
    ids: Tuple[str, ...]
    vectors: np.ndarray
    metadata: Tuple[Dict[str, Any], ...]
    dimension: Optional[int]
    state: Any              # backend search structure


class VectorIndex(ABC):
    """
    Stores (id, vector, metadata) entries and answers top-k cosine queries.

    Writers build a complete new snapshot under a lock and swap it in, so a
    query never sees a half-applied batch. Querying an empty index returns
    an empty list.
    """

    backend = "abstract"

    def __init__(self, dimension: Optional[int] = None):
        """
        Initialize vector index.

        Args:
            dimension: Fixed embedding dimension, or None to take it from the first upsert
        """
        self._configured_dimension = dimension
        self._lock = threading.Lock()
        self._snapshot = self._build_snapshot([], [], [], dimension)

    @abstractmethod
    def _prepare(self, vectors: np.ndarray, dimension: Optional[int]) -> Any:
        """Build the backend search structure for a snapshot."""

    @abstractmethod
    def _search(self, snapshot: _Snapshot, query: np.ndarray, top_k: int) -> List[Tuple[int, float]]:
        """Return (position, score) pairs, best first, stable on ties."""

    def _build_snapshot(self, ids: Sequence[str], rows: Sequence[np.ndarray],
                        metadata: Sequence[Dict[str, Any]], dimension: Optional[int]) -> _Snapshot:
        if rows:
            vectors = np.vstack(rows)
        else:
            vectors = np.zeros((0, dimension or 0), dtype=np.float64)
        return _Snapshot(
            ids=tuple(ids),
            vectors=vectors,
            metadata=tuple(metadata),
            dimension=dimension,
            state=self._prepare(vectors, dimension),
        )

    @staticmethod
    def _check_vectors(entries: Sequence[IndexEntry], dimension: Optional[int]) -> Tuple[List[np.ndarray], Optional[int]]:
        vectors = []
        for entry in entries:
            vector = _as_vector(entry.vector)
            if dimension is None:
                dimension = len(vector)
            elif len(vector) != dimension:
                raise DimensionMismatch(dimension, len(vector))
            vectors.append(vector)
        return vectors, dimension

    @property
    def dimension(self) -> Optional[int]:
        return self._snapshot.dimension

    @property
    def ids(self) -> Tuple[str, ...]:
        """Entry ids in insertion order."""
        return self._snapshot.ids

    def upsert(self, entries: Iterable[IndexEntry]):
        """
        Insert or replace entries by id. A replaced entry keeps its position.

        Raises:
            DimensionMismatch: a vector length disagrees with the index; nothing is written
        """
        entries = list(entries)
        if not entries:
            return
        with self._lock:
            current = self._snapshot
            vectors, dimension = self._check_vectors(entries, current.dimension)

            ids = list(current.ids)
            rows = list(current.vectors)
            metadata = list(current.metadata)
            positions = {entry_id: i for i, entry_id in enumerate(ids)}
            for entry, vector in zip(entries, vectors):
                meta = copy.deepcopy(entry.metadata)
                if entry.id in positions:
                    rows[positions[entry.id]] = vector
                    metadata[positions[entry.id]] = meta
                else:
                    positions[entry.id] = len(ids)
                    ids.append(entry.id)
                    rows.append(vector)
                    metadata.append(meta)

            self._snapshot = self._build_snapshot(ids, rows, metadata, dimension)

    def replace(self, entries: Iterable[IndexEntry]):
        """Swap in a whole new set of entries at once (used for re-indexing)."""
        entries = list(entries)
        vectors, dimension = self._check_vectors(entries, self._configured_dimension)
        ids: List[str] = []
        rows: List[np.ndarray] = []
        metadata: List[Dict[str, Any]] = []
        positions: Dict[str, int] = {}
        for entry, vector in zip(entries, vectors):
            if entry.id in positions:
                rows[positions[entry.id]] = vector
                metadata[positions[entry.id]] = copy.deepcopy(entry.metadata)
                continue
            positions[entry.id] = len(ids)
            ids.append(entry.id)
            rows.append(vector)
            metadata.append(copy.deepcopy(entry.metadata))
        snapshot = self._build_snapshot(ids, rows, metadata, dimension)
        with self._lock:
            self._snapshot = snapshot

    def query(self, vector: Any, top_k: int) -> List[ScoredResult]:
        """
        Find the entries most similar to a vector.

        Args:
            vector: Query embedding
            top_k: Number of results to return (> 0)

        Returns:
            Up to top_k ScoredResult objects, highest cosine similarity first;
            an empty list when the index is empty
        """
        if isinstance(top_k, bool) or not isinstance(top_k, (int, np.integer)) or top_k <= 0:
            raise ValidationError(f"top_k must be a positive integer, got {top_k!r}")
        snapshot = self._snapshot
        if not snapshot.ids:
            return []
        query = _as_vector(vector)
        if len(query) != snapshot.dimension:
            raise DimensionMismatch(snapshot.dimension, len(query))

        return [
            ScoredResult(
                id=snapshot.ids[position],
                score=float(score),
                metadata=copy.deepcopy(snapshot.metadata[position]),
                position=position,
            )
            for position, score in self._search(snapshot, query, int(top_k))
        ]

    def delete(self, ids: Iterable[str]):
        """Remove entries by id; unknown ids are ignored."""
        doomed = set(ids)
        with self._lock:
            current = self._snapshot
            keep = [i for i, entry_id in enumerate(current.ids) if entry_id not in doomed]
            if len(keep) == len(current.ids):
                return
            dimension = current.dimension if keep else self._configured_dimension
            self._snapshot = self._build_snapshot(
                [current.ids[i] for i in keep],
                [current.vectors[i] for i in keep],
                [current.metadata[i] for i in keep],
                dimension,
            )

    def clear(self):
        """Remove every entry."""
        with self._lock:
            self._snapshot = self._build_snapshot([], [], [], self._configured_dimension)

    def save(self, path: str):
        """
        Save index to a JSON file as {"vectors": [...], "metadata": [...]}.

        Args:
            path: File path to write
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = self._snapshot
        payload = {
            "vectors": snapshot.vectors.tolist(),
            "metadata": [{**meta, "id": entry_id} for entry_id, meta in zip(snapshot.ids, snapshot.metadata)],
        }
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(tmp_path, path)

    def load(self, path: str) -> bool:
        """
        Load index from a JSON file written by save().

        Args:
            path: File path to read

        Returns:
            True if loaded; False if the file is missing or unreadable, in
            which case the index is left unchanged
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            vectors = data["vectors"]
            metadata = data["metadata"]
            if not isinstance(vectors, list) or not isinstance(metadata, list):
                raise ValueError("vectors and metadata must be lists")
            if len(vectors) != len(metadata):
                raise ValueError(f"{len(vectors)} vectors but {len(metadata)} metadata records")
            entries = []
            for i, (vector, meta) in enumerate(zip(vectors, metadata)):
                if not isinstance(meta, dict):
                    raise ValueError(f"metadata[{i}] is not an object")
                entries.append(IndexEntry(id=str(meta.get("id", i)), vector=np.asarray(vector, dtype=np.float64), metadata=meta))
            self.replace(entries)
        except FileNotFoundError:
            logger.info("No existing vector store at %s, starting fresh", path)
            return False
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable vector store %s: %s", path, e)
            return False

        logger.info("Loaded %d vectors from %s", len(self), path)
        return True

    def stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return {
            "total_vectors": len(snapshot.ids),
            "dimensions": snapshot.dimension or 0,
            "backend": self.backend,
        }

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._snapshot.ids

    def __len__(self) -> int:
        """Return number of entries in the index."""
        return len(self._snapshot.ids)


class InMemoryVectorIndex(VectorIndex):
    """Exact linear-scan index over a numpy matrix."""

    backend = "memory"

    def _prepare(self, vectors: np.ndarray, dimension: Optional[int]) -> np.ndarray:
        return np.linalg.norm(vectors, axis=1)

    def _search(self, snapshot: _Snapshot, query: np.ndarray, top_k: int) -> List[Tuple[int, float]]:
        norms = snapshot.state
        query_norm = np.linalg.norm(query)
        scores = np.zeros(len(snapshot.ids), dtype=np.float64)
        if query_norm > 0:
            dots = snapshot.vectors @ query
            nonzero = norms > 0
            scores[nonzero] = dots[nonzero] / (norms[nonzero] * query_norm)
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [(int(i), float(scores[i])) for i in order]


class FaissVectorIndex(VectorIndex):
    """FAISS inner-product index over L2-normalized vectors."""

    backend = "faiss"

    def _prepare(self, vectors: np.ndarray, dimension: Optional[int]) -> Optional[faiss.Index]:
        if not len(vectors):
            return None
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        # Zero vectors stay zero so their similarity is 0, not NaN.
        unit = np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > 0)
        index = faiss.IndexFlatIP(vectors.shape[1])  # Inner product for cosine similarity
        index.add(np.ascontiguousarray(unit, dtype=np.float32))
        return index

    def _search(self, snapshot: _Snapshot, query: np.ndarray, top_k: int) -> List[Tuple[int, float]]:
        index = snapshot.state
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return [(i, 0.0) for i in range(min(top_k, len(snapshot.ids)))]

        unit = np.ascontiguousarray((query / query_norm).reshape(1, -1), dtype=np.float32)
        scores, indices = index.search(unit, index.ntotal)
        pairs = [(int(i), float(s)) for i, s in zip(indices[0], scores[0]) if i >= 0]
        # FAISS does not order ties by insertion; re-sort so results are deterministic.
        pairs.sort(key=lambda p: (-p[1], p[0]))
        return pairs[:top_k]


def create_vector_index(backend: str = "memory", dimension: Optional[int] = None) -> VectorIndex:
    """
    Build a vector index for the given backend.

    Args:
        backend: "memory" | "faiss"
        dimension: Optional fixed embedding dimension

    Returns:
        Empty VectorIndex
    """
    backend = (backend or "memory").lower()
    if backend == "memory":
        return InMemoryVectorIndex(dimension)
    if backend == "faiss":
        return FaissVectorIndex(dimension)
    raise ValueError(f"Unknown vector backend: {backend}")
