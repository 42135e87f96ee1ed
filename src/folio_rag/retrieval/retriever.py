"""folio_rag.retrieval.retriever

Progressive-relaxation retrieval for the Folio RAG system.

A question is embedded once and searched against the vector store with a
sequence of increasingly permissive ``(threshold, limit)`` steps. The first
step that yields any match wins; its results are de-duplicated, truncated and
scored for confidence.

Classes
-------
RelaxationStep
    One ``(threshold, limit)`` search attempt.
RetrievalResult
    Final, ranked results of a retrieval together with a confidence score.
ProgressiveRetriever
    Retriever applying progressive threshold relaxation.

Functions
---------
validate_question
    Reject empty or oversized questions before any external call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from folio_rag.common.errors import InputValidationError
from folio_rag.common.schemas import SearchResult
from folio_rag.retrieval.embedder import BaseEmbedder
from folio_rag.retrieval.vector_store import BaseVectorStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUESTION_LENGTH = 1000
DEFAULT_FINAL_TOP_K = 5


@dataclass(frozen=True)
class RelaxationStep:
    """One search attempt of a progressive retrieval.

    Attributes
    ----------
    threshold : float
        Minimum cosine similarity in ``[-1, 1]``.
    limit : int
        Maximum number of results requested from the store.
    """
    threshold: float
    limit: int

    def __post_init__(self):
        if not -1.0 <= float(self.threshold) <= 1.0:
            raise ValueError(f"Relaxation threshold must lie in [-1, 1], got {self.threshold}.")
        if int(self.limit) <= 0:
            raise ValueError(f"Relaxation limit must be positive, got {self.limit}.")


DEFAULT_RELAXATION_STEPS: tuple[RelaxationStep, ...] = (
    RelaxationStep(0.30, 10),
    RelaxationStep(0.20, 15),
    RelaxationStep(0.10, 20),
)


@dataclass
class RetrievalResult:
    """Final results of a retrieval.

    Attributes
    ----------
    results : list[SearchResult]
        De-duplicated results, similarity descending.
    confidence : float
        Mean similarity of ``results`` times 100; ``0`` when empty.
    threshold_used : float or None
        Threshold of the step that produced the results, ``None`` when nothing
        matched.
    """
    results: list[SearchResult] = field(default_factory=list)
    confidence: float = 0.0
    threshold_used: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.results


def validate_question(question: Any, max_length: int = DEFAULT_MAX_QUESTION_LENGTH) -> str:
    """Validate and trim a question.

    Raises
    ------
    InputValidationError
        If the question is not a string, is empty after trimming, or is longer
        than ``max_length`` characters.
    """
    if not isinstance(question, str):
        raise InputValidationError("Question must be a string.")
    trimmed = question.strip()
    if not trimmed:
        raise InputValidationError("Question must not be empty.")
    if len(trimmed) > max_length:
        raise InputValidationError(
            f"Question is too long ({len(trimmed)} characters, maximum {max_length})."
        )
    return trimmed


def _dedupe(results: Sequence[SearchResult]) -> list[SearchResult]:
    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result in results:
        if result.chunk.id in seen:
            continue
        seen.add(result.chunk.id)
        unique.append(result)
    return unique


class ProgressiveRetriever:
    """Retriever applying progressive threshold relaxation.

    Parameters
    ----------
    embedder : BaseEmbedder
        Embedder used for the question.
    vector_store : BaseVectorStore
        Store searched at each step.
    steps : Sequence[RelaxationStep] or None, optional
        Relaxation table, tried in order. Defaults to
        ``(0.30, 10), (0.20, 15), (0.10, 20)``.
    final_top_k : int, optional
        Maximum number of results returned. Defaults to ``5``.
    max_question_length : int, optional
        Maximum accepted question length in characters. Defaults to ``1000``.
    """

    def __init__(
            self,
            *,
            embedder: BaseEmbedder,
            vector_store: BaseVectorStore,
            steps: Optional[Sequence[RelaxationStep]] = None,
            final_top_k: int = DEFAULT_FINAL_TOP_K,
            max_question_length: int = DEFAULT_MAX_QUESTION_LENGTH,
        ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.steps = tuple(steps) if steps is not None else DEFAULT_RELAXATION_STEPS
        if not self.steps:
            raise ValueError("At least one relaxation step is required.")
        if int(final_top_k) <= 0:
            raise ValueError(f"'final_top_k' must be positive, got {final_top_k}.")
        self.final_top_k = int(final_top_k)
        self.max_question_length = int(max_question_length)

    @classmethod
    def from_config_dict(
            cls,
            config: Mapping[str, Any],
            *,
            embedder: BaseEmbedder,
            vector_store: BaseVectorStore,
        ) -> "ProgressiveRetriever":
        """Create a retriever from the ``retrieval`` configuration section.

        ``steps`` is a list of ``{threshold, limit}`` mappings or
        ``[threshold, limit]`` pairs.

        Raises
        ------
        KeyError
            If a step mapping lacks ``threshold`` or ``limit``.
        """
        raw_steps = config.get("steps")
        steps = None
        if raw_steps:
            steps = []
            for raw in raw_steps:
                if isinstance(raw, Mapping):
                    steps.append(RelaxationStep(float(raw["threshold"]), int(raw["limit"])))
                else:
                    threshold, limit = raw
                    steps.append(RelaxationStep(float(threshold), int(limit)))
        return cls(
            embedder=embedder,
            vector_store=vector_store,
            steps=steps,
            final_top_k=int(config.get("final_top_k", DEFAULT_FINAL_TOP_K)),
            max_question_length=int(config.get("max_question_length", DEFAULT_MAX_QUESTION_LENGTH)),
        )

    def retrieve(self, question: str) -> RetrievalResult:
        """Retrieve the chunks most relevant to ``question``.

        Parameters
        ----------
        question : str
            Natural-language question.

        Returns
        -------
        RetrievalResult
            Ranked results and confidence. Empty with confidence ``0`` when no
            step matched anything.

        Raises
        ------
        InputValidationError
            If the question is empty or too long. Raised before any embedding
            or store call.
        EmbeddingError
            If the question cannot be embedded.
        StoreUnavailableError
            If the store cannot be reached.
        """
        question = validate_question(question, self.max_question_length)
        query_vector = self.embedder.embed_query(question)

        for step in self.steps:
            matches = self.vector_store.search(query_vector, step.threshold, step.limit)
            logger.debug("Threshold %.2f (limit %d) matched %d chunks", step.threshold, step.limit, len(matches))
            if not matches:
                continue

            results = _dedupe(matches)[:self.final_top_k]
            confidence = sum(r.similarity for r in results) / len(results) * 100
            logger.info(
                "Retrieved %d chunks at threshold %.2f (confidence %.1f)",
                len(results), step.threshold, confidence,
            )
            return RetrievalResult(results=results, confidence=confidence, threshold_used=step.threshold)

        logger.info("No relevant chunks found after %d relaxation steps", len(self.steps))
        return RetrievalResult()


__all__ = [
    "DEFAULT_RELAXATION_STEPS",
    "ProgressiveRetriever",
    "RelaxationStep",
    "RetrievalResult",
    "validate_question",
]
