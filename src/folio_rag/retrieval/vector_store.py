"""folio_rag.retrieval.vector_store

Vector store interfaces and factories for the retrieval layer.

This module defines a small interface around vector-store backends and two
interchangeable implementations:

- an exact linear-scan store held in memory and persisted to a flat JSON file
- a remote-index store delegating nearest-neighbour search to Qdrant

Both store immutable :class:`~folio_rag.common.schemas.Chunk` objects and
answer cosine-similarity queries with a threshold and a result limit.

Classes
-------
BaseVectorStore
    Abstract interface for vector stores.
LocalVectorStore
    Linear-scan store persisted atomically to a JSON file.
QdrantVectorStore
    Qdrant-backed store with generation-tagged source replacement.

Functions
---------
cosine_similarity
    Cosine similarity of two vectors, ``0`` when either has zero norm.
create_vector_store
    Create a vector store implementation from a configuration mapping.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

import numpy as np
import yaml
from qdrant_client import QdrantClient
from qdrant_client.http import models as qm
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from folio_rag.common.errors import EmbeddingDimensionError, StoreUnavailableError
from folio_rag.common.locks import ReadWriteLock
from folio_rag.common.schemas import Chunk, ChunkMetadata, SearchResult, StoreStats

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of ``a`` and ``b``.

    Parameters
    ----------
    a, b : Sequence[float]
        Vectors of equal length.

    Returns
    -------
    float
        Similarity in ``[-1, 1]``; ``0.0`` if either vector has zero norm.

    Raises
    ------
    ValueError
        If the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors differ in length: {va.shape[0]} vs {vb.shape[0]}.")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


class BaseVectorStore(ABC):
    """Abstract interface for vector stores.

    Implementations must be safe to query concurrently with writes, and
    :meth:`replace_source` must never expose a mixture of a source's old and
    new chunks as its final state.
    """

    @classmethod
    def from_config(cls, config_path: str) -> "BaseVectorStore":
        """Create a vector store instance from a YAML configuration file.

        Raises
        ------
        FileNotFoundError
            If ``config_path`` does not exist.
        """
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg)

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: dict) -> "BaseVectorStore":
        """Create a vector store instance from a configuration mapping."""

    @abstractmethod
    def upsert_batch(self, chunks: Sequence[Chunk]) -> None:
        """Insert or replace ``chunks`` by id."""

    @abstractmethod
    def delete_by_source(self, source_title: str) -> int:
        """Delete every chunk of ``source_title``; return the number removed."""

    @abstractmethod
    def replace_source(self, source_title: str, chunks: Sequence[Chunk]) -> None:
        """Atomically replace every chunk of ``source_title`` with ``chunks``."""

    @abstractmethod
    def search(self, query_vector: Sequence[float], threshold: float, limit: int) -> list[SearchResult]:
        """Return at most ``limit`` chunks with similarity ``>= threshold``.

        Results are ordered by similarity descending; ties keep insertion order.
        A non-positive ``limit`` returns an empty list.
        """

    @abstractmethod
    def stats(self) -> StoreStats:
        """Return corpus-wide aggregate counts."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of stored chunks."""


def _check_uniform_dimension(chunks: Sequence[Chunk], expected: Optional[int]) -> Optional[int]:
    dimension = expected
    for chunk in chunks:
        if dimension is None:
            dimension = chunk.dimension
        elif chunk.dimension != dimension:
            raise EmbeddingDimensionError(dimension, chunk.dimension)
    return dimension


def _build_cache(chunks: Sequence[Chunk]) -> tuple[np.ndarray, np.ndarray]:
    """Stack chunk embeddings into a matrix and compute its row norms."""
    if not chunks:
        return np.zeros((0, 0), dtype=np.float64), np.zeros(0, dtype=np.float64)
    matrix = np.asarray([c.embedding for c in chunks], dtype=np.float64)
    return matrix, np.linalg.norm(matrix, axis=1)


class LocalVectorStore(BaseVectorStore):
    """Linear-scan vector store persisted to a JSON file.

    Every query scores all stored chunks (O(N·D)), which is exact and simple
    and comfortably fast up to tens of thousands of chunks. Writes rewrite the
    whole file through a temporary file and :func:`os.replace`, so a crash
    never leaves a truncated store behind.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file.
    create_if_missing : bool, optional
        If ``True`` (default) a missing file is created empty. Otherwise a
        missing file raises :class:`StoreUnavailableError`.

    Raises
    ------
    StoreUnavailableError
        If the file is missing (and ``create_if_missing`` is ``False``),
        unreadable or corrupt.
    """

    def __init__(self, path, *, create_if_missing: bool = True):
        self.path = Path(path)
        self.create_if_missing = create_if_missing
        self._lock = ReadWriteLock()
        self._chunks: list[Chunk] = []
        # (matrix, norms) for self._chunks, replaced as one object on every commit.
        self._cache: tuple[np.ndarray, np.ndarray] = _build_cache([])
        self._load()

    @classmethod
    def from_config_dict(cls, config: dict) -> "LocalVectorStore":
        """Create a linear-scan store from a configuration mapping.

        Expected keys are ``path`` (default ``"data/vector_store.json"``) and
        ``create_if_missing`` (default ``True``).
        """
        return cls(
            config.get("path", "data/vector_store.json"),
            create_if_missing=bool(config.get("create_if_missing", True)),
        )

    # ----------------- persistence -----------------

    def _load(self) -> None:
        if not self.path.exists():
            if not self.create_if_missing:
                raise StoreUnavailableError(f"Vector store file not found: {self.path}")
            logger.info("Creating empty vector store at %s", self.path)
            self._persist([])
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            records = data["chunks"] if isinstance(data, dict) else data
            chunks = [Chunk.from_dict(record) for record in records]
            _check_uniform_dimension(chunks, None)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise StoreUnavailableError(f"Vector store file {self.path} is unreadable: {exc}") from exc

        cache = _build_cache(chunks)
        with self._lock.write_locked():
            self._chunks = chunks
            self._cache = cache
        logger.info("Loaded %d chunks from %s", len(chunks), self.path)

    def _persist(self, chunks: Sequence[Chunk]) -> None:
        payload = {
            "version": STORE_FORMAT_VERSION,
            "chunks": [chunk.to_dict() for chunk in chunks],
        }
        directory = self.path.parent if str(self.path.parent) else Path(".")
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise StoreUnavailableError(f"Could not write vector store file {self.path}: {exc}") from exc

    def _commit(self, chunks: list[Chunk]) -> None:
        """Persist ``chunks`` and swap them in. Caller holds the write lock."""
        cache = _build_cache(chunks)
        self._persist(chunks)
        self._chunks = chunks
        self._cache = cache

    @property
    def dimension(self) -> Optional[int]:
        return self._chunks[0].dimension if self._chunks else None

    # ----------------- writes -----------------

    def upsert_batch(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        with self._lock.write_locked():
            _check_uniform_dimension(chunks, self.dimension)
            updated = list(self._chunks)
            positions = {chunk.id: i for i, chunk in enumerate(updated)}
            for chunk in chunks:
                pos = positions.get(chunk.id)
                if pos is None:
                    positions[chunk.id] = len(updated)
                    updated.append(chunk)
                else:
                    updated[pos] = chunk
            self._commit(updated)
        logger.debug("Upserted %d chunks into %s", len(chunks), self.path)

    def delete_by_source(self, source_title: str) -> int:
        with self._lock.write_locked():
            kept = [c for c in self._chunks if c.source_title != source_title]
            removed = len(self._chunks) - len(kept)
            if removed:
                self._commit(kept)
        return removed

    def replace_source(self, source_title: str, chunks: Sequence[Chunk]) -> None:
        foreign = [c.source_title for c in chunks if c.source_title != source_title]
        if foreign:
            raise ValueError(f"Chunks for {foreign[0]!r} passed to replace_source({source_title!r}).")

        with self._lock.write_locked():
            kept = [c for c in self._chunks if c.source_title != source_title]
            expected = kept[0].dimension if kept else None
            _check_uniform_dimension(chunks, expected)
            self._commit(kept + list(chunks))
        logger.info("Replaced source %r with %d chunks", source_title, len(chunks))

    # ----------------- reads -----------------

    def search(self, query_vector: Sequence[float], threshold: float, limit: int) -> list[SearchResult]:
        if limit <= 0:
            return []

        with self._lock.read_locked():
            chunks = self._chunks
            matrix, norms = self._cache
            if not chunks:
                return []

            query = np.asarray(query_vector, dtype=np.float64)
            if query.shape[0] != matrix.shape[1]:
                raise EmbeddingDimensionError(matrix.shape[1], query.shape[0])

            denom = norms * np.linalg.norm(query)
            with np.errstate(divide="ignore", invalid="ignore"):
                scores = np.where(denom > 0, (matrix @ query) / denom, 0.0)
            scores = np.clip(scores, -1.0, 1.0)

            candidates = np.flatnonzero(scores >= threshold)
            order = candidates[np.argsort(-scores[candidates], kind="stable")][:limit]
            return [SearchResult(chunk=chunks[i], similarity=float(scores[i])) for i in order]

    def stats(self) -> StoreStats:
        with self._lock.read_locked():
            return StoreStats.from_metadata(c.metadata for c in self._chunks)

    def count(self) -> int:
        with self._lock.read_locked():
            return len(self._chunks)

    def chunks(self) -> list[Chunk]:
        """Return a snapshot of every stored chunk in insertion order."""
        with self._lock.read_locked():
            return list(self._chunks)


# ----------------- Qdrant -----------------

POINT_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "folio-rag/qdrant-point")

_QDRANT_ERRORS = (ResponseHandlingException, UnexpectedResponse, ConnectionError, TimeoutError, OSError)

# Extra points requested beyond ``limit`` so ties at the cut-off can be ordered locally.
TIE_SLACK = 16


def _point_id(chunk_id: str, generation: str = "") -> str:
    return str(uuid.uuid5(POINT_ID_NAMESPACE, f"{chunk_id}:{generation}" if generation else chunk_id))


class QdrantVectorStore(BaseVectorStore):
    """Qdrant-backed vector store.

    Chunks are stored as points whose payload carries the chunk content and
    metadata. Search is delegated to ``query_points`` with a
    ``score_threshold``; the collection uses cosine distance so scores are
    cosine similarities.

    :meth:`replace_source` writes a new *generation* of points for the source
    and deletes the previous generation only after the upsert has fully
    succeeded. If the upsert fails, the partial new generation is removed and
    the prior state is left untouched.

    Parameters
    ----------
    client : QdrantClient or None, optional
        Pre-built client. If omitted, one is created from ``url`` or
        ``host``/``port``.
    host : str, optional
        Qdrant host. Defaults to ``"localhost"``.
    port : int, optional
        Qdrant port. Defaults to ``6333``.
    url : str or None, optional
        Full Qdrant URL; takes precedence over ``host``/``port``.
    api_key : str or None, optional
        Qdrant API key.
    collection_name : str, optional
        Collection name. Defaults to ``"folio_chunks"``.
    timeout : float, optional
        Request timeout in seconds. Defaults to ``10``.
    """

    def __init__(
        self,
        *,
        client: Optional[QdrantClient] = None,
        host: str = "localhost",
        port: int = 6333,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        collection_name: str = "folio_chunks",
        timeout: float = 10,
    ):
        if client is None:
            if url:
                client = QdrantClient(url=url, api_key=api_key, timeout=int(timeout))
            else:
                client = QdrantClient(host=host, port=port, api_key=api_key, timeout=int(timeout))
        self.client = client
        self.collection_name = collection_name
        self._dimension: Optional[int] = None

    @classmethod
    def from_config_dict(cls, config: dict) -> "QdrantVectorStore":
        """Create a Qdrant store from a configuration mapping.

        Expected keys include ``host``, ``port``, ``url``, ``api_key``,
        ``collection_name`` and ``timeout``, all optional.
        """
        return cls(
            host=config.get("host", "localhost"),
            port=int(config.get("port", 6333)),
            url=config.get("url"),
            api_key=config.get("api_key"),
            collection_name=config.get("collection_name", "folio_chunks"),
            timeout=float(config.get("timeout", 10)),
        )

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except _QDRANT_ERRORS as exc:
            raise StoreUnavailableError(
                f"Qdrant {action} failed for collection {self.collection_name!r}: {exc}"
            ) from exc

    def _collection_exists(self) -> bool:
        with self._guard("collection lookup"):
            return bool(self.client.collection_exists(self.collection_name))

    def _ensure_collection(self, dimension: int) -> None:
        if self._dimension is None:
            if self._collection_exists():
                with self._guard("collection info"):
                    info = self.client.get_collection(self.collection_name)
                self._dimension = int(info.config.params.vectors.size)
            else:
                logger.info("Creating Qdrant collection %r (D=%d)", self.collection_name, dimension)
                with self._guard("collection creation"):
                    self.client.create_collection(
                        collection_name=self.collection_name,
                        vectors_config=qm.VectorParams(size=dimension, distance=qm.Distance.COSINE),
                    )
                    self.client.create_payload_index(
                        collection_name=self.collection_name,
                        field_name="source_title",
                        field_schema=qm.PayloadSchemaType.KEYWORD,
                    )
                self._dimension = dimension

        if dimension != self._dimension:
            raise EmbeddingDimensionError(self._dimension, dimension)

    def _existing_insert_orders(self, chunk_ids: Sequence[str]) -> dict[str, int]:
        """Map already stored chunk ids to the earliest ``insert_order`` recorded for them."""
        flt = qm.Filter(must=[qm.FieldCondition(key="chunk_id", match=qm.MatchAny(any=list(chunk_ids)))])
        orders: dict[str, int] = {}
        for payload in self._iter_payloads(["chunk_id", "insert_order"], flt):
            if "insert_order" not in payload:
                continue
            chunk_id = str(payload["chunk_id"])
            order = int(payload["insert_order"])
            orders[chunk_id] = min(order, orders.get(chunk_id, order))
        return orders

    def _build_points(
        self,
        chunks: Sequence[Chunk],
        generation: str = "",
        orders: Optional[Mapping[str, int]] = None,
    ) -> list[qm.PointStruct]:
        base_order = time.time_ns()
        orders = orders or {}
        points: list[qm.PointStruct] = []
        for offset, chunk in enumerate(chunks):
            meta = chunk.metadata
            payload = {
                "chunk_id": chunk.id,
                "content": chunk.content,
                "source_title": meta.source_title,
                "chunk_index": int(meta.chunk_index),
                "estimated_token_count": int(meta.estimated_token_count),
                "extra": dict(meta.extra),
                "generation": generation,
                "insert_order": orders.get(chunk.id, base_order + offset),
            }
            points.append(
                qm.PointStruct(id=_point_id(chunk.id, generation), vector=list(chunk.embedding), payload=payload)
            )
        return points

    @staticmethod
    def _source_filter(source_title: str) -> qm.Filter:
        return qm.Filter(
            must=[qm.FieldCondition(key="source_title", match=qm.MatchValue(value=source_title))]
        )

    def upsert_batch(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        dimension = _check_uniform_dimension(chunks, None)
        self._ensure_collection(dimension)

        # Updating a chunk in place keeps its original position among ties.
        points = self._build_points(chunks, orders=self._existing_insert_orders([c.id for c in chunks]))
        with self._guard("upsert"):
            self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
            # Drop generation-tagged copies of the same chunk ids.
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=qm.FilterSelector(
                    filter=qm.Filter(
                        must=[qm.FieldCondition(key="chunk_id", match=qm.MatchAny(any=[c.id for c in chunks]))],
                        must_not=[qm.HasIdCondition(has_id=[p.id for p in points])],
                    )
                ),
                wait=True,
            )

    def delete_by_source(self, source_title: str) -> int:
        if not self._collection_exists():
            return 0
        flt = self._source_filter(source_title)
        with self._guard("delete"):
            removed = self.client.count(collection_name=self.collection_name, count_filter=flt, exact=True).count
            if removed:
                self.client.delete(
                    collection_name=self.collection_name,
                    points_selector=qm.FilterSelector(filter=flt),
                    wait=True,
                )
        return int(removed)

    def replace_source(self, source_title: str, chunks: Sequence[Chunk]) -> None:
        foreign = [c.source_title for c in chunks if c.source_title != source_title]
        if foreign:
            raise ValueError(f"Chunks for {foreign[0]!r} passed to replace_source({source_title!r}).")
        if not chunks:
            self.delete_by_source(source_title)
            return

        dimension = _check_uniform_dimension(chunks, None)
        self._ensure_collection(dimension)

        generation = uuid.uuid4().hex
        points = self._build_points(chunks, generation)
        generation_condition = qm.FieldCondition(key="generation", match=qm.MatchValue(value=generation))
        source_condition = qm.FieldCondition(key="source_title", match=qm.MatchValue(value=source_title))

        try:
            with self._guard("upsert"):
                self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
        except StoreUnavailableError:
            logger.warning("Upsert of %r failed; rolling back generation %s", source_title, generation)
            with self._guard("rollback"):
                self.client.delete(
                    collection_name=self.collection_name,
                    points_selector=qm.FilterSelector(
                        filter=qm.Filter(must=[source_condition, generation_condition])
                    ),
                    wait=True,
                )
            raise

        with self._guard("delete of previous generation"):
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=qm.FilterSelector(
                    filter=qm.Filter(must=[source_condition], must_not=[generation_condition])
                ),
                wait=True,
            )
        logger.info("Replaced source %r with %d chunks (generation %s)", source_title, len(chunks), generation)

    def search(self, query_vector: Sequence[float], threshold: float, limit: int) -> list[SearchResult]:
        if limit <= 0:
            return []
        if not self._collection_exists():
            return []

        query = [float(x) for x in query_vector]
        # Server tie order is arbitrary: widen the request until every point
        # tied with the limit-th score is present, then order locally.
        fetch = int(limit) + TIE_SLACK
        while True:
            with self._guard("query"):
                response = self.client.query_points(
                    collection_name=self.collection_name,
                    query=query,
                    limit=fetch,
                    score_threshold=float(threshold),
                    with_payload=True,
                    with_vectors=True,
                )
            points = list(response.points)
            if len(points) < fetch:
                break
            boundary = points[min(limit, len(points)) - 1].score
            if points[-1].score < boundary:
                break
            fetch *= 2

        results: list[tuple[int, SearchResult]] = []
        for point in points:
            if point.score < threshold:
                continue
            chunk = self._point_to_chunk(point)
            order = int((point.payload or {}).get("insert_order", 0))
            results.append((order, SearchResult(chunk=chunk, similarity=float(point.score))))

        results.sort(key=lambda item: (-item[1].similarity, item[0]))
        return [result for _, result in results[:limit]]

    @staticmethod
    def _point_to_chunk(point: Any) -> Chunk:
        payload = point.payload or {}
        vector = point.vector or []
        if isinstance(vector, Mapping):
            vector = next(iter(vector.values()), [])
        return Chunk(
            id=str(payload["chunk_id"]),
            content=str(payload.get("content", "")),
            embedding=tuple(float(x) for x in vector),
            metadata=ChunkMetadata(
                source_title=payload["source_title"],
                chunk_index=int(payload["chunk_index"]),
                estimated_token_count=int(payload["estimated_token_count"]),
                extra=dict(payload.get("extra") or {}),
            ),
        )

    def _iter_payloads(self, fields: list[str], flt: Optional[qm.Filter] = None) -> Iterable[dict]:
        offset = None
        while True:
            with self._guard("scroll"):
                points, offset = self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=flt,
                    limit=256,
                    offset=offset,
                    with_payload=fields,
                    with_vectors=False,
                )
            for point in points:
                yield point.payload or {}
            if offset is None:
                break

    def stats(self) -> StoreStats:
        if not self._collection_exists():
            return StoreStats()
        metadata = (
            ChunkMetadata(
                source_title=payload["source_title"],
                chunk_index=int(payload.get("chunk_index", 0)),
                estimated_token_count=int(payload.get("estimated_token_count", 1)),
            )
            for payload in self._iter_payloads(["source_title", "chunk_index", "estimated_token_count"])
        )
        return StoreStats.from_metadata(metadata)

    def count(self) -> int:
        if not self._collection_exists():
            return 0
        with self._guard("count"):
            return int(self.client.count(collection_name=self.collection_name, exact=True).count)


# ----------------- Factory helpers -----------------

def _get_vector_store_kind(cfg):
    """Extract the vector store kind/type/provider discriminator from a config mapping."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if val is not None:
            return val
    return None


def _normalize_vector_store_kind(kind):
    """Normalise a vector store kind/type string to a stable registry key.

    Defaults to ``"local"`` when ``kind`` is falsy.
    """
    if not kind:
        return "local"
    k = str(kind).strip().lower().replace("-", "_")
    if k in {"local", "linear_scan", "linearscan", "json", "localvectorstore", "local_vector_store"}:
        return "local"
    if k in {"qdrant", "remote", "remote_index", "qdrantvectorstore", "qdrant_vector_store"}:
        return "qdrant"
    return k


def create_vector_store(config: dict) -> BaseVectorStore:
    """Create a vector store implementation from a configuration mapping.

    Parameters
    ----------
    config : dict
        Configuration mapping used to construct the vector store.

    Returns
    -------
    BaseVectorStore
        Initialised vector store implementation.

    Raises
    ------
    ValueError
        If the requested backend kind is not supported.

    Notes
    -----
    The backend kind is selected using one of the discriminator keys:
    ``kind``, ``type``, ``provider``, ``backend``, or ``impl``. If none are
    provided, the linear-scan :class:`LocalVectorStore` is used.
    """
    kind = _normalize_vector_store_kind(_get_vector_store_kind(config))
    if kind == "local":
        return LocalVectorStore.from_config_dict(config)
    if kind == "qdrant":
        return QdrantVectorStore.from_config_dict(config)
    raise ValueError(f"Unknown vector store kind: {kind!r}")


__all__ = [
    "BaseVectorStore",
    "LocalVectorStore",
    "QdrantVectorStore",
    "cosine_similarity",
    "create_vector_store",
]
