import threading

import pytest

from folio_rag.common.schemas import Chunk, ChunkMetadata, make_chunk_id
from folio_rag.retrieval.embedder import BaseEmbedder
from folio_rag.retrieval.vector_store import LocalVectorStore


def _default_vector(text: str) -> list[float]:
    """Deterministic, non-zero 3-d vector derived from the text."""
    return [float(len(text) % 7 + 1), float(text.count("a") + 1), 1.0]


class StubEmbedder(BaseEmbedder):
    """
    Embedder whose provider call is a plain Python function.

    ``vector_fn`` may raise to simulate provider failures. Every call is
    recorded in ``calls`` (thread-safe).
    """

    def __init__(self, vector_fn=None, **kwargs):
        kwargs.setdefault("batch_delay", 0)
        kwargs.setdefault("retry_delay", 0)
        kwargs.setdefault("timeout", 5)
        super().__init__(**kwargs)
        self.vector_fn = vector_fn or _default_vector
        self.calls: list[str] = []
        self._calls_lock = threading.Lock()

    def _embed_one(self, text):
        with self._calls_lock:
            self.calls.append(text)
        return self.vector_fn(text)

    @classmethod
    def from_config_dict(cls, config):
        return cls(**config)


@pytest.fixture
def stub_embedder():
    """Factory fixture building :class:`StubEmbedder` instances."""
    created = []

    def _make(vector_fn=None, **kwargs):
        embedder = StubEmbedder(vector_fn, **kwargs)
        created.append(embedder)
        return embedder

    yield _make

    for embedder in created:
        embedder.close()


@pytest.fixture
def make_chunk():
    """Factory fixture building chunks with deterministic ids."""

    def _make(title, index, vector, content=None, tokens=10, **extra):
        return Chunk(
            id=make_chunk_id(title, index),
            content=content if content is not None else f"{title} passage number {index}.",
            embedding=tuple(vector),
            metadata=ChunkMetadata(
                source_title=title,
                chunk_index=index,
                estimated_token_count=tokens,
                extra=extra,
            ),
        )

    return _make


@pytest.fixture
def local_store(tmp_path):
    """Empty linear-scan store backed by a temporary file."""
    return LocalVectorStore(tmp_path / "store.json")
