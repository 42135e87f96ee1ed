"""folio_rag.pipelines.ingestion_pipeline

Offline ingestion of source documents into a vector store.

This module defines the :class:`IngestionPipeline`, which turns raw source
documents into embedded, stored chunks:

normalise → split → embed (batched) → assemble chunks → write

Sources are processed one at a time. Failures of one source are recorded in
the run report and do not stop the run, except for configuration errors
(embedding dimensionality mismatch, rejected credentials) which abort it.

Classes
-------
SourceIngestionReport
    Outcome of ingesting one source.
IngestionReport
    Outcome of an ingestion run.
IngestionPipeline
    Orchestrates chunking, embedding and storage of source documents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from folio_rag.common.errors import StoreUnavailableError
from folio_rag.common.schemas import Chunk, ChunkMetadata, SourceDocument, make_chunk_id
from folio_rag.common.tokenisation import TokenCounter
from folio_rag.retrieval.embedder import BaseEmbedder
from folio_rag.retrieval.text_splitter import (
    DEFAULT_OVERLAP,
    DEFAULT_TARGET_SIZE,
    SentenceChunker,
    normalize_text,
)
from folio_rag.retrieval.vector_store import BaseVectorStore

logger = logging.getLogger(__name__)

DEFAULT_MIN_SOURCE_CHARS = 100


@dataclass
class SourceIngestionReport:
    """Outcome of ingesting one source.

    Attributes
    ----------
    title : str
        Source title.
    chunks_planned : int
        Number of chunks produced by the chunker.
    chunks_written : int
        Number of chunks written to the store.
    failed_chunks : int
        Number of chunks that could not be embedded.
    skipped : bool
        ``True`` if the source was too short to ingest.
    error : str or None
        Reason the source was not written, if any.
    """
    title: str
    chunks_planned: int = 0
    chunks_written: int = 0
    failed_chunks: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "chunks_planned": self.chunks_planned,
            "chunks_written": self.chunks_written,
            "failed_chunks": self.failed_chunks,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class IngestionReport:
    """Outcome of an ingestion run."""
    sources: list[SourceIngestionReport] = field(default_factory=list)

    @property
    def total_chunks_written(self) -> int:
        return sum(s.chunks_written for s in self.sources)

    @property
    def failed_sources(self) -> list[str]:
        return [s.title for s in self.sources if s.error is not None]

    @property
    def skipped_sources(self) -> list[str]:
        return [s.title for s in self.sources if s.skipped]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": [s.to_dict() for s in self.sources],
            "total_chunks_written": self.total_chunks_written,
            "failed_sources": self.failed_sources,
            "skipped_sources": self.skipped_sources,
        }


class IngestionPipeline:
    """Chunk, embed and store source documents.

    Parameters
    ----------
    embedder : BaseEmbedder
        Embedder used for chunk contents.
    vector_store : BaseVectorStore
        Destination store.
    chunker : SentenceChunker or None, optional
        Chunker. Defaults to a :class:`SentenceChunker` with default settings.
    target_size : int, optional
        Target chunk size in estimated tokens. Defaults to ``400``.
    overlap : int, optional
        Overlap in words between consecutive chunks. Defaults to ``50``.
    min_source_chars : int, optional
        Sources whose normalised text is shorter are skipped. Defaults to ``100``.
    """

    def __init__(
            self,
            *,
            embedder: BaseEmbedder,
            vector_store: BaseVectorStore,
            chunker: Optional[SentenceChunker] = None,
            target_size: int = DEFAULT_TARGET_SIZE,
            overlap: int = DEFAULT_OVERLAP,
            min_source_chars: int = DEFAULT_MIN_SOURCE_CHARS,
        ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or SentenceChunker()
        self.target_size = int(target_size)
        self.overlap = int(overlap)
        self.min_source_chars = int(min_source_chars)

    @property
    def token_counter(self) -> TokenCounter:
        return self.chunker.token_counter

    def ingest(self, sources: Iterable[SourceDocument], replace_existing: bool = True) -> IngestionReport:
        """Ingest ``sources`` sequentially.

        Parameters
        ----------
        sources : Iterable[SourceDocument]
            Documents to ingest.
        replace_existing : bool, optional
            If ``True`` (default) each source's stored chunks are atomically
            replaced; otherwise chunks are upserted by id.

        Returns
        -------
        IngestionReport
            Per-source outcomes.

        Raises
        ------
        EmbeddingDimensionError
            If vectors of different dimensionality are produced or stored.
        EmbeddingError
            If the embedding provider rejects the credentials.
        """
        report = IngestionReport()
        sources = list(sources)
        for position, source in enumerate(sources, start=1):
            logger.info("Ingesting source %d/%d: %r", position, len(sources), source.title)
            report.sources.append(self.ingest_source(source, replace_existing=replace_existing))

        logger.info(
            "Ingestion finished: %d chunks written, %d sources failed, %d skipped",
            report.total_chunks_written, len(report.failed_sources), len(report.skipped_sources),
        )
        return report

    def ingest_source(self, source: SourceDocument, replace_existing: bool = True) -> SourceIngestionReport:
        """Ingest a single source. See :meth:`ingest`."""
        entry = SourceIngestionReport(title=source.title)

        text = normalize_text(source.raw_text)
        if len(text) < self.min_source_chars:
            logger.warning(
                "Skipping %r: only %d characters of content (minimum %d)",
                source.title, len(text), self.min_source_chars,
            )
            entry.skipped = True
            return entry

        texts = self.chunker.split(text, self.target_size, self.overlap)
        entry.chunks_planned = len(texts)
        if not texts:
            logger.warning("Skipping %r: no chunks produced", source.title)
            entry.skipped = True
            return entry

        result = self.embedder.embed(texts)
        entry.failed_chunks = len(result.failures)
        if result.produced_count == 0:
            entry.error = f"none of {len(texts)} chunks could be embedded"
            logger.error("Source %r not written: %s", source.title, entry.error)
            return entry

        chunks = self._assemble(source, texts, result.pairs())

        try:
            if replace_existing:
                self.vector_store.replace_source(source.title, chunks)
            else:
                self.vector_store.upsert_batch(chunks)
        except StoreUnavailableError as exc:
            entry.error = f"{type(exc).__name__}: {exc}"
            logger.error("Source %r not written: %s", source.title, exc)
            return entry

        entry.chunks_written = len(chunks)
        logger.info(
            "Stored %d/%d chunks for %r", entry.chunks_written, entry.chunks_planned, source.title,
        )
        return entry

    def _assemble(self, source: SourceDocument, texts: list[str], pairs) -> list[Chunk]:
        chunks: list[Chunk] = []
        for chunk_index, (text_index, vector) in enumerate(pairs):
            content = texts[text_index]
            extra = dict(source.metadata)
            extra["chunk_length"] = len(content)
            chunks.append(
                Chunk(
                    id=make_chunk_id(source.title, chunk_index),
                    content=content,
                    embedding=tuple(vector),
                    metadata=ChunkMetadata(
                        source_title=source.title,
                        chunk_index=chunk_index,
                        estimated_token_count=max(1, self.token_counter.count(content)),
                        extra=extra,
                    ),
                )
            )
        return chunks


__all__ = [
    "IngestionPipeline",
    "IngestionReport",
    "SourceIngestionReport",
]
