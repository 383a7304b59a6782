"""Error types raised by the case retrieval subsystem."""


class RetrievalError(Exception):
    """Base class for case retrieval errors."""


class ValidationError(RetrievalError, ValueError):
    """Malformed case record or query input, rejected at the boundary."""


class DimensionMismatch(RetrievalError, ValueError):
    """Vector length disagrees with the vectors already in the index."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")


class EmbeddingUnavailable(RetrievalError):
    """External embedding service failed or timed out."""


class NotReady(RetrievalError):
    """Query issued before the corpus/index finished loading. Retryable."""


class DeadlineExceeded(RetrievalError, TimeoutError):
    """Caller deadline passed before scoring finished."""
