"""folio_rag.common.errors

Exception hierarchy for the Folio RAG system.

Every error raised on purpose by the retrieval engine derives from
:class:`FolioError`, so entrypoints (the API, scripts) can map error kinds to
distinguishable user-visible signals without string matching.

Classes
-------
FolioError
    Base class for all Folio errors.
InputValidationError
    A question was rejected before any external call.
EmbeddingError
    The embedding provider could not produce a usable vector.
EmbeddingDimensionError
    The provider returned a vector of unexpected dimensionality.
StoreUnavailableError
    The vector store backing file or remote index cannot be reached.
GenerationError
    The generative-model collaborator failed.

Notes
-----
Finding no relevant content is *not* an error. It is modelled as an empty
:class:`~folio_rag.retrieval.retriever.RetrievalResult` with confidence ``0``.
"""


class FolioError(Exception):
    """Base class for all Folio errors."""


class InputValidationError(FolioError, ValueError):
    """Raised when a question is empty, whitespace-only, or too long."""


class EmbeddingError(FolioError):
    """Raised when the embedding provider fails in a way the caller must see.

    Parameters
    ----------
    message : str
        Human readable description.
    transient : bool, optional
        Whether the underlying failure was classified as transient (rate limit,
        network, timeout). Defaults to ``False``.
    """

    def __init__(self, message: str, *, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class EmbeddingDimensionError(EmbeddingError):
    """Raised when an embedding's dimensionality differs from the expected ``D``."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimensionality mismatch: expected {expected}, got {actual}. "
            "Check that the embedder configuration matches the stored corpus."
        )
        self.expected = expected
        self.actual = actual


class StoreUnavailableError(FolioError):
    """Raised when the vector store cannot be read or reached.

    A store that is reachable but holds no chunks is not unavailable; searching
    it returns an empty result.
    """


class GenerationError(FolioError):
    """Raised when the generative-model collaborator fails to answer."""


__all__ = [
    "FolioError",
    "InputValidationError",
    "EmbeddingError",
    "EmbeddingDimensionError",
    "StoreUnavailableError",
    "GenerationError",
]
