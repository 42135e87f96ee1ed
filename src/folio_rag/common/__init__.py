"""
Common building blocks shared across the RAG stack.

This package provides small, widely-used primitives (chunk schemas, ID
aliases, errors, token counting, locks) intended to be imported by multiple
layers of the system.

Classes
-------
SourceDocument
    Raw document container identified by title.
Chunk
    Embedded passage of a document with provenance metadata.
ChunkMetadata
    Required provenance fields plus a typed extension map.
SearchResult
    Chunk paired with a similarity score.
StoreStats
    Corpus-wide aggregate counts.

Attributes
----------
ChunkId : TypeAlias
    Type alias for chunk identifiers.
SourceTitle : TypeAlias
    Type alias for source titles.

See Also
--------
folio_rag.common.schemas
    Defines the dataclasses re-exported here.
folio_rag.common.errors
    Defines the error hierarchy.
"""
from __future__ import annotations
from typing import TypeAlias

from .schemas import (
    Chunk,
    ChunkMetadata,
    SearchResult,
    SourceDocument,
    SourceStats,
    StoreStats,
    make_chunk_id,
)

ChunkId: TypeAlias = str
SourceTitle: TypeAlias = str

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "SearchResult",
    "SourceDocument",
    "SourceStats",
    "StoreStats",
    "make_chunk_id",
    "ChunkId",
    "SourceTitle",
]
