"""folio_rag.retrieval.types

Shared type definitions for the retrieval layer.

This module defines lightweight protocol abstractions used to decouple the
generation pipeline from concrete retriever classes.

Classes
-------
Retriever
    Protocol defining the minimal retriever interface.
"""

from typing import Protocol

from folio_rag.retrieval.retriever import RetrievalResult


class Retriever(Protocol):
    """Protocol defining the retriever interface.

    A retriever takes a natural-language question and returns ranked chunks
    with a confidence score. :class:`~folio_rag.retrieval.retriever.ProgressiveRetriever`
    is the production implementation; tests substitute small stubs.

    Methods
    -------
    retrieve
        Retrieve chunks relevant to a question.
    """
    def retrieve(self, question: str) -> RetrievalResult:
        """Retrieve chunks for a question.

        Parameters
        ----------
        question : str
            Natural-language question.

        Returns
        -------
        RetrievalResult
            Ranked results with a confidence score.
        """
        ...
