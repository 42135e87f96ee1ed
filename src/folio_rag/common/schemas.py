"""folio_rag.common.schemas

Core data schemas shared across the RAG pipeline.

These lightweight dataclasses describe the canonical shapes for source
documents, their chunked and embedded derivatives, and the derived results
returned by search and retrieval. They are passed between ingestion,
chunking, embedding, storage, retrieval, and generation components.

Classes
-------
SourceDocument
    A raw, un-split source document identified by its title.
ChunkMetadata
    Required provenance fields of a chunk plus a typed extension map.
Chunk
    An immutable passage of a source document together with its embedding.
SearchResult
    A chunk paired with its similarity to a query vector.
SourceStats
    Per-source aggregate counts reported by a vector store.
StoreStats
    Corpus-wide aggregate counts reported by a vector store.

Functions
---------
make_chunk_id
    Derive the deterministic identifier of a chunk.

Notes
-----
Chunk identifiers are UUIDv5 values derived from ``(source_title, chunk_index)``
so that re-ingesting the same document reproduces the same identifiers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Union
from uuid import NAMESPACE_URL, uuid5

MetadataValue = Union[str, int, float, bool]

CHUNK_ID_NAMESPACE = uuid5(NAMESPACE_URL, "folio-rag/chunk")


def make_chunk_id(source_title: str, chunk_index: int) -> str:
    """Derive the deterministic identifier of a chunk.

    Parameters
    ----------
    source_title : str
        Title of the source document that owns the chunk.
    chunk_index : int
        Zero-based position of the chunk within its source.

    Returns
    -------
    str
        UUIDv5 string, stable across ingestion runs.
    """
    return str(uuid5(CHUNK_ID_NAMESPACE, f"{source_title}\x1f{int(chunk_index)}"))


@dataclass
class SourceDocument:
    """Container for a raw source document.

    Attributes
    ----------
    title : str
        Title identifying the source. All chunks derived from the document carry
        it as ``source_title``.
    raw_text : str
        Full, un-normalised text of the document (markup allowed).
    metadata : Dict[str, MetadataValue]
        Optional extension values copied into every chunk's ``extra`` map
        (e.g., ``{"file_path": "books/alpha.txt", "file_type": ".txt"}``).
    """
    title: str
    raw_text: str
    metadata: Dict[str, MetadataValue] = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkMetadata:
    """Provenance metadata of a :class:`Chunk`.

    Attributes
    ----------
    source_title : str
        Title of the source document.
    chunk_index : int
        Non-negative position of the chunk, unique per ``source_title``.
    estimated_token_count : int
        Positive, approximate token count of the chunk content.
    extra : Dict[str, MetadataValue]
        Typed extension map for provider-specific or future fields.
    """
    source_title: str
    chunk_index: int
    estimated_token_count: int
    extra: Dict[str, MetadataValue] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.source_title, str) or not self.source_title:
            raise ValueError("'source_title' must be a non-empty string.")
        if int(self.chunk_index) < 0:
            raise ValueError(f"'chunk_index' must be non-negative, got {self.chunk_index}.")
        if int(self.estimated_token_count) <= 0:
            raise ValueError(
                f"'estimated_token_count' must be positive, got {self.estimated_token_count}."
            )
        for key, value in self.extra.items():
            if not isinstance(value, (str, int, float, bool)):
                raise TypeError(
                    f"Metadata extension {key!r} must be a str, int, float or bool, got {type(value)!r}."
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_title": self.source_title,
            "chunk_index": int(self.chunk_index),
            "estimated_token_count": int(self.estimated_token_count),
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        return cls(
            source_title=data["source_title"],
            chunk_index=int(data["chunk_index"]),
            estimated_token_count=int(data["estimated_token_count"]),
            extra=dict(data.get("extra") or {}),
        )


@dataclass(frozen=True)
class Chunk:
    """An immutable, embedded passage of a source document.

    Attributes
    ----------
    id : str
        Deterministic identifier, see :func:`make_chunk_id`.
    content : str
        Chunk text.
    embedding : tuple[float, ...]
        Embedding vector of fixed dimensionality ``D``.
    metadata : ChunkMetadata
        Provenance metadata.
    """
    id: str
    content: str
    embedding: tuple
    metadata: ChunkMetadata

    def __post_init__(self):
        if not isinstance(self.embedding, tuple):
            object.__setattr__(self, "embedding", tuple(float(x) for x in self.embedding))

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    @property
    def source_title(self) -> str:
        return self.metadata.source_title

    @property
    def chunk_index(self) -> int:
        return self.metadata.chunk_index

    def to_dict(self) -> Dict[str, Any]:
        """Return the flat, JSON-serialisable record of this chunk."""
        return {
            "id": self.id,
            "content": self.content,
            "embedding": list(self.embedding),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        """Rebuild a chunk from a record produced by :meth:`to_dict`.

        Raises
        ------
        KeyError
            If a required field is missing.
        """
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            embedding=tuple(float(x) for x in data["embedding"]),
            metadata=ChunkMetadata.from_dict(data["metadata"]),
        )


@dataclass(frozen=True)
class SearchResult:
    """A chunk paired with its cosine similarity to a query vector.

    Attributes
    ----------
    chunk : Chunk
        Matching chunk.
    similarity : float
        Cosine similarity in ``[-1, 1]``; results returned by a store always
        satisfy the requested threshold.
    """
    chunk: Chunk
    similarity: float

    @property
    def similarity_percent(self) -> int:
        return int(round(self.similarity * 100))


@dataclass
class SourceStats:
    """Aggregate counts for one source title."""
    chunk_count: int = 0
    total_tokens: int = 0


@dataclass
class StoreStats:
    """Aggregate counts over a whole corpus.

    Attributes
    ----------
    total_chunks : int
        Number of stored chunks.
    total_sources : int
        Number of distinct ``source_title`` values.
    per_source : Dict[str, SourceStats]
        Breakdown keyed by source title.
    """
    total_chunks: int = 0
    total_sources: int = 0
    per_source: Dict[str, SourceStats] = field(default_factory=dict)

    @classmethod
    def from_metadata(cls, metadata_items) -> "StoreStats":
        """Aggregate stats from an iterable of :class:`ChunkMetadata`."""
        per_source: Dict[str, SourceStats] = {}
        total = 0
        for meta in metadata_items:
            entry = per_source.setdefault(meta.source_title, SourceStats())
            entry.chunk_count += 1
            entry.total_tokens += int(meta.estimated_token_count)
            total += 1
        return cls(total_chunks=total, total_sources=len(per_source), per_source=per_source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "total_sources": self.total_sources,
            "per_source": {
                title: {"chunk_count": s.chunk_count, "total_tokens": s.total_tokens}
                for title, s in self.per_source.items()
            },
        }
