"""Text embedders: Mistral/OpenAI API clients and a local keyword-hash fallback."""

import hashlib
import logging
from collections import OrderedDict
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np
from mistralai import Mistral
from openai import OpenAI

from ..errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)

# Anesthesia terms the local embedder counts, one vector slot each.
MEDICAL_TERMS = (
    "intubation", "extubation", "hypotension", "hypertension", "bradycardia",
    "tachycardia", "bronchospasm", "laryngospasm", "aspiration", "difficult airway",
    "propofol", "sevoflurane", "fentanyl", "rocuronium", "sugammadex",
    "succinylcholine", "midazolam", "ketamine", "dexmedetomidine", "remifentanil",
    "spinal", "epidural", "general", "regional", "MAC", "RSI", "awake",
    "pediatric", "obstetric", "cardiac", "neurosurgery", "trauma", "emergency",
    "complication", "hemorrhage", "transfusion", "anaphylaxis", "malignant hyperthermia",
    "PONV", "pain", "opioid", "nerve block", "catheter", "arterial line", "central line",
)

TERM_WEIGHT = 0.1
PADDING_SCALE = 0.01
CACHE_SIZE = 1024            # embeddings kept per hosted embedder


class Embedder(ABC):
    """Maps text to fixed-length vectors."""

    dimension: int

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Embed several texts; returns an array of shape (len(texts), dimension)."""

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


class KeywordHashEmbedder(Embedder):
    """
    Offline embedder used when no embedding service is configured.

    This is a degraded mode: vectors only capture how often each vocabulary
    term occurs. Slots past the vocabulary hold small pseudo-random values
    seeded from the text itself, so output depends only on the text, the
    vocabulary and the seed.
    """

    def __init__(self, dimension: int = 384, vocabulary: Sequence[str] = MEDICAL_TERMS, seed: int = 0):
        """
        Initialize keyword-hash embedder.

        Args:
            dimension: Output vector length (must cover the vocabulary)
            vocabulary: Ordered terms, one slot each
            seed: Seed mixed into the padding generator
        """
        if dimension < len(vocabulary):
            raise ValueError(
                f"dimension {dimension} is smaller than the vocabulary ({len(vocabulary)} terms)"
            )
        self.dimension = dimension
        self.vocabulary = tuple(term.lower() for term in vocabulary)
        self.seed = seed

    def _padding(self, text: str) -> np.ndarray:
        digest = hashlib.sha256(f"{self.seed}:{text}".encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        return rng.random(self.dimension - len(self.vocabulary)) * PADDING_SCALE

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        vectors = np.zeros((len(texts), self.dimension), dtype=np.float64)
        for row, text in enumerate(texts):
            lowered = text.lower()
            for slot, term in enumerate(self.vocabulary):
                vectors[row, slot] = lowered.count(term) * TERM_WEIGHT
            vectors[row, len(self.vocabulary):] = self._padding(text)
        return vectors


class _APIEmbedder(Embedder):
    """Shared batching and caching for hosted embedding services."""

    def __init__(self, model: str, dimension: int, batch_size: int = 64, cache_size: int = CACHE_SIZE):
        self.model = model
        self.dimension = dimension
        self.batch_size = batch_size
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, np.ndarray]" = OrderedDict()

    def _remember(self, text: str, vector: np.ndarray):
        self._cache[text] = vector
        self._cache.move_to_end(text)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    @abstractmethod
    def _request(self, batch: List[str]) -> List[List[float]]:
        """Call the service for one batch."""

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed

        Returns:
            NumPy array of embeddings

        Raises:
            EmbeddingUnavailable: the service failed or timed out
        """
        found: Dict[str, np.ndarray] = {}
        for text in texts:
            if text in self._cache and text not in found:
                found[text] = self._cache[text]
                self._cache.move_to_end(text)
        missing = list(dict.fromkeys(t for t in texts if t not in found))
        for i in range(0, len(missing), self.batch_size):
            batch = missing[i:i + self.batch_size]
            try:
                vectors = self._request(batch)
            except Exception as e:
                logger.warning("Embedding request to %s failed: %s", self.model, e)
                raise EmbeddingUnavailable(f"{self.model} embedding error: {e}") from e
            for text, vector in zip(batch, vectors):
                found[text] = np.asarray(vector, dtype=np.float64)
                self._remember(text, found[text])
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float64)
        return np.vstack([found[t] for t in texts])


class MistralEmbedder(_APIEmbedder):
    """Generates embeddings using Mistral API."""

    def __init__(self, api_key: str, model: str = "mistral-embed", timeout: float = 10.0,
                 dimension: int = 1024):
        """
        Initialize Mistral embedder.

        Args:
            api_key: Mistral API key
            model: Embedding model name
            timeout: Request timeout in seconds
            dimension: Vector length produced by the model
        """
        super().__init__(model=model, dimension=dimension)
        self.client = Mistral(api_key=api_key, timeout_ms=int(timeout * 1000))

    def _request(self, batch: List[str]) -> List[List[float]]:
        resp = self.client.embeddings.create(model=self.model, inputs=batch)
        return [d.embedding for d in resp.data]


class OpenAIEmbedder(_APIEmbedder):
    """Generates embeddings using OpenAI API."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", timeout: float = 10.0,
                 dimension: int = 1536):
        super().__init__(model=model, dimension=dimension)
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def _request(self, batch: List[str]) -> List[List[float]]:
        resp = self.client.embeddings.create(model=self.model, input=batch)
        return [d.embedding for d in resp.data]


def create_embedder(
    provider: str = "local",
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    timeout: float = 10.0,
    dimension: int = 384,
) -> Embedder:
    """
    Build an embedder for the given provider.

    Args:
        provider: "local" | "mistral" | "openai"
        api_key: API key for hosted providers
        model: Optional model override
        timeout: Request timeout in seconds for hosted providers
        dimension: Vector length for the local embedder

    Returns:
        Embedder instance; the local embedder when a hosted provider has no key
    """
    provider = (provider or "local").lower()
    if provider == "local":
        return KeywordHashEmbedder(dimension=dimension)
    if provider not in ("mistral", "openai"):
        raise ValueError(f"Unknown embedding provider: {provider}")
    if not api_key:
        logger.warning("No API key for %s embeddings, using local keyword embedder", provider)
        return KeywordHashEmbedder(dimension=dimension)
    if provider == "mistral":
        return MistralEmbedder(api_key, model=model or "mistral-embed", timeout=timeout)
    return OpenAIEmbedder(api_key, model=model or "text-embedding-3-small", timeout=timeout)
