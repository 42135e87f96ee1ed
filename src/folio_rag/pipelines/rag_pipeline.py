"""folio_rag.pipelines.rag_pipeline

End-to-end Retrieval-Augmented Generation (RAG) pipeline orchestration.

This module defines the :class:`RAGPipeline`, which coordinates query-time
retrieval, prompt construction, LLM invocation and citation building.

Classes
-------
Citation
    A source passage cited by an answer.
AnswerResult
    Generated answer with its citations and confidence.
RAGPipeline
    Orchestrates retrieval → prompt building → generation → citations.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from folio_rag.common.schemas import SearchResult
from folio_rag.generation.llm_interface import BaseLLM
from folio_rag.generation.prompt_builder import PromptBuilder
from folio_rag.retrieval.types import Retriever

logger = logging.getLogger(__name__)

NO_CONTENT_ANSWER = (
    "I cannot find any relevant information in the uploaded books to answer your question. "
    "Please try rephrasing your question or asking about topics covered in the books."
)
PREVIEW_CHARS = 200


@dataclass
class Citation:
    """A source passage cited by an answer.

    Attributes
    ----------
    title : str
        Source title.
    chunk_index : int
        Position of the passage within its source.
    similarity_percent : int
        Rounded similarity to the question, in percent.
    preview : str
        First 200 characters of the passage followed by ``"..."``.
    """
    title: str
    chunk_index: int
    similarity_percent: int
    preview: str

    @classmethod
    def from_search_result(cls, result: SearchResult) -> "Citation":
        content = result.chunk.content
        return cls(
            title=result.chunk.source_title,
            chunk_index=result.chunk.chunk_index,
            similarity_percent=result.similarity_percent,
            preview=content[:PREVIEW_CHARS] + "...",
        )


@dataclass
class AnswerResult:
    """Generated answer with its citations and confidence."""
    answer: str
    sources: List[Citation] = field(default_factory=list)
    confidence: int = 0
    chunks_found: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [vars(c).copy() for c in self.sources],
            "confidence": self.confidence,
            "chunks_found": self.chunks_found,
        }


class RAGPipeline:
    """Retrieval-Augmented Generation (RAG) orchestrator.

    This class wires together:
    - a retriever to fetch relevant chunks
    - a prompt builder to assemble the chat messages
    - an LLM interface for text generation

    The pipeline is stateless beyond its configured components, making it
    safe to reuse across requests.

    Parameters
    ----------
    retriever : Retriever
        Component that embeds the question and fetches relevant chunks.
    prompt_builder : PromptBuilder
        Component that renders the prompt from the question and chunks.
    prompt_name : str
        Name of the prompt template to use.
    llm : BaseLLM
        Language model interface used for text generation.
    llm_generate_defaults : dict or None, optional
        Default keyword arguments forwarded to ``llm.generate``.
    """

    def __init__(self,
                 retriever: Retriever,
                 prompt_builder: PromptBuilder,
                 prompt_name: str,
                 llm: BaseLLM,
                 llm_generate_defaults: dict | None = None,
        ):
        self.retriever = retriever
        self.prompt_builder = prompt_builder
        self.prompt_name = prompt_name
        self.llm = llm
        self.llm_generate_defaults = llm_generate_defaults or {}

    def run(self, question: str, **llm_overrides) -> AnswerResult:
        """Answer a single question.

        The execution order is:
        1. Retrieve relevant chunks (validating the question first).
        2. If nothing matched, return a fixed answer without calling the LLM.
        3. Render the prompt with numbered, source-labelled passages.
        4. Generate the answer and attach citations.

        Parameters
        ----------
        question : str
            User's natural-language question.
        **llm_overrides : Any
            Generation parameters overriding ``llm_generate_defaults`` for this
            call only.

        Returns
        -------
        AnswerResult
            Answer, citations, rounded confidence and number of chunks used.

        Raises
        ------
        InputValidationError
            If the question is empty or too long.
        EmbeddingError, StoreUnavailableError
            If retrieval fails.
        GenerationError
            If the LLM call fails.
        """
        retrieval = self.retriever.retrieve(question)
        if retrieval.is_empty:
            return AnswerResult(answer=NO_CONTENT_ANSWER, sources=[], confidence=0, chunks_found=0)

        messages = self.prompt_builder.build_messages(
            name=self.prompt_name,
            question=question.strip(),
            docs=retrieval.results,
        )
        gen_kwargs = {**self.llm_generate_defaults, **llm_overrides}
        answer = self.llm.generate(messages, **gen_kwargs)

        logger.info(
            "Answered question with %d chunks (confidence %.1f)",
            len(retrieval.results), retrieval.confidence,
        )
        return AnswerResult(
            answer=answer,
            sources=[Citation.from_search_result(r) for r in retrieval.results],
            confidence=int(round(retrieval.confidence)),
            chunks_found=len(retrieval.results),
        )

    def __call__(self, question: str, **kwargs) -> AnswerResult:
        """Execute the pipeline as a callable. See :meth:`run`."""
        return self.run(question, **kwargs)


__all__ = ['AnswerResult', 'Citation', 'RAGPipeline']
