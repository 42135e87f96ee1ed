"""folio_rag.app.container

Composition root for the Folio RAG system.

This module is the single place where concrete implementations are wired
together from configuration (LLM client, embedder, vector store, chunker,
ingestion pipeline, retriever, and the end-to-end RAG pipeline). Components are
constructed lazily and cached on first access to avoid repeated expensive
initialisation; first access is serialised so concurrent requests share one
instance of each component.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not perform network calls at import time
  - do not read files at import time
  - construct expensive objects lazily (cached on first access)

- Components are created via the existing factories (embedder, vector store,
  LLM interface). This module centralises those calls so that a process holds
  exactly one client/model per component.

Examples
--------
>>> from folio_rag.config import GlobalConfig
>>> from folio_rag.app.container import build_container
>>> cfg = GlobalConfig.load("config/config.yaml")
>>> c = build_container(cfg)
>>> answer = c.pipeline.run("Who is the narrator?")
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Mapping

from folio_rag.common.tokenisation import WordHeuristicTokenCounter


class _component(cached_property):
    """``cached_property`` whose first computation runs under the owner's ``_lock``.

    Concurrent first accesses from request threads build a single
    instance of each component.
    """

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        cache = instance.__dict__
        if self.attrname in cache:
            return cache[self.attrname]
        with instance._lock:
            if self.attrname not in cache:
                cache[self.attrname] = self.func(instance)
            return cache[self.attrname]


@dataclass(frozen=True)
class FolioContainer:
    """Holds the configured, cached runtime components for the application.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`folio_rag.config.GlobalConfig`).
    """

    config: Any
    # Reentrant: building one component touches the components it depends on.
    _lock: Any = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    def warm_up(self) -> None:
        """Build the retrieval and ingestion components ahead of the first request."""
        self.vector_store
        self.embedder
        self.retriever
        self.ingestion_pipeline

    @_component
    def generator_llm(self) -> Any:
        """Return the LLM used to generate final answers."""
        from folio_rag.generation.llm_interface import create_llm

        section = _as_mapping(self.config.generator_llm)
        return create_llm(dict(section))

    @_component
    def prompt_builder(self) -> Any:
        """Return the prompt builder initialised from ``config.prompts``.

        Relative prompt file sources are resolved against the loaded config
        file's directory, not the current working directory.
        """
        from folio_rag.generation.prompt_builder import PromptBuilder

        prompts = self.config.prompts
        builder = PromptBuilder()

        if isinstance(prompts, str):
            sources = [prompts]
        elif isinstance(prompts, (list, tuple)):
            sources = [str(p) for p in prompts]
        else:
            raise TypeError(f"config.prompts must be a str or list[str], got {type(prompts)!r}")

        base_dir = getattr(self.config, "base_dir", None)
        for src in sources:
            builder.register_from_source(src, base_dir=base_dir)

        return builder

    @_component
    def prompt_name(self) -> str:
        """Return the configured prompt name.

        Raises
        ------
        ValueError
            If the configured prompt name is not registered.
        """
        prompt_name = self.config.prompt_name
        if not self.prompt_builder.has_prompt(prompt_name):
            available = ", ".join(self.prompt_builder.list_prompts())
            raise ValueError(
                f"Configured prompt_name {prompt_name!r} was not found in loaded prompts. "
                f"Available: [{available}]"
            )
        return str(prompt_name)

    @_component
    def token_counter(self) -> WordHeuristicTokenCounter:
        """Return the token estimator used for chunk sizing."""
        return WordHeuristicTokenCounter()

    @_component
    def chunker(self) -> Any:
        """Return the sentence chunker."""
        from folio_rag.retrieval.text_splitter import SentenceChunker

        return SentenceChunker(
            token_counter=self.token_counter,
            min_chunk_chars=self.config.chunking["min_chunk_chars"],
        )

    @_component
    def embedder(self) -> Any:
        """Return the embedder used for chunks and questions."""
        from folio_rag.retrieval.embedder import create_embedder

        return create_embedder(_as_mapping(self.config.embedder))

    @_component
    def vector_store(self) -> Any:
        """Return the vector store selected by ``config.vector_store``."""
        from folio_rag.retrieval.vector_store import create_vector_store

        return create_vector_store(dict(_as_mapping(self.config.vector_store)))

    @_component
    def ingestion_pipeline(self) -> Any:
        """Return the ingestion pipeline writing into :attr:`vector_store`."""
        from folio_rag.pipelines.ingestion_pipeline import IngestionPipeline

        chunking = self.config.chunking
        return IngestionPipeline(
            embedder=self.embedder,
            vector_store=self.vector_store,
            chunker=self.chunker,
            target_size=chunking["target_size"],
            overlap=chunking["overlap"],
            min_source_chars=self.config.ingestion["min_source_chars"],
        )

    @_component
    def retriever(self) -> Any:
        """Return the progressive-relaxation retriever."""
        from folio_rag.retrieval.retriever import ProgressiveRetriever

        return ProgressiveRetriever.from_config_dict(
            _as_mapping(self.config.retrieval),
            embedder=self.embedder,
            vector_store=self.vector_store,
        )

    @_component
    def pipeline(self) -> Any:
        """Return the fully wired RAG pipeline."""
        from folio_rag.pipelines.rag_pipeline import RAGPipeline

        return RAGPipeline(
            retriever=self.retriever,
            prompt_builder=self.prompt_builder,
            prompt_name=self.prompt_name,
            llm=self.generator_llm,
        )


def build_container(config: Any) -> FolioContainer:
    """Create a :class:`~folio_rag.app.container.FolioContainer`.

    Single entry point for the FastAPI startup hook, CLI scripts, and tests.
    """
    return FolioContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce an object into a mapping.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["FolioContainer", "build_container"]
