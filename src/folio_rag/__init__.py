"""folio_rag

Folio RAG system package.

This package contains the building blocks of a question-answering assistant
over a collection of books: configuration, a retrieval engine (chunking,
embedding, vector stores, progressive retrieval), ingestion, prompt/generation
utilities, and end-to-end pipeline orchestration.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and cached accessors.
app
    Application container and HTTP API.
pipelines
    Ingestion and answer-generation pipelines.
retrieval
    Document loading, chunking, embedding, vector stores, and retrieval.
generation
    LLM and prompt-building interfaces and factories.
common
    Shared schemas, errors and utilities.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
FolioContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured :class:`~folio_rag.app.container.FolioContainer`.
IngestionPipeline
    Chunk, embed and store source documents.
RAGPipeline
    End-to-end Retrieval-Augmented Generation pipeline.
SourceDocument
    Raw document container.
Chunk
    Embedded passage of a source document.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("folio-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import FolioContainer, build_container
from .pipelines.ingestion_pipeline import IngestionPipeline
from .pipelines.rag_pipeline import RAGPipeline
from .common import Chunk, SourceDocument

__all__ = [
    "__version__",
    "GlobalConfig",
    "FolioContainer",
    "build_container",
    "IngestionPipeline",
    "RAGPipeline",
    "SourceDocument",
    "Chunk",
]
