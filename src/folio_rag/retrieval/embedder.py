"""folio_rag.retrieval.embedder

Embedding interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing vector
embeddings from text, along with concrete implementations backed by
LlamaIndex embedding wrappers. The base class owns everything that is not
provider specific:

- batching inputs into fixed-size groups
- running the calls of one batch concurrently
- cooling down between batches to respect provider rate limits
- bounding every provider call by a timeout
- retrying transient failures with a linear backoff
- enforcing a uniform dimensionality ``D``

A factory function is provided to construct an embedder implementation from
configuration.

Classes
-------
EmbeddingFailure
    A single input that could not be embedded.
EmbeddingResult
    Vectors produced for a batch of inputs, plus the failures.
BaseEmbedder
    Abstract interface specifying the API used by the retrieval pipeline.
HuggingFaceEmbedder
    Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.

Functions
---------
classify_provider_error
    Classify a provider exception as transient, permanent, or fatal.
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

import openai
import yaml

from folio_rag.common.errors import EmbeddingDimensionError, EmbeddingError

logger = logging.getLogger(__name__)

TRANSIENT = "transient"
PERMANENT = "permanent"
FATAL = "fatal"

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY = 1.5
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_TIMEOUT = 30.0
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


@dataclass(frozen=True)
class EmbeddingFailure:
    """A single input that could not be embedded.

    Attributes
    ----------
    index : int
        Position of the input in the request.
    error : str
        ``"<ExceptionType>: <message>"`` of the final failure.
    attempts : int
        Number of provider calls made for this input.
    """
    index: int
    error: str
    attempts: int


@dataclass
class EmbeddingResult:
    """Vectors produced for a batch of inputs.

    Successful vectors are kept in request order; failed inputs are excluded
    from ``vectors`` and reported in ``failures``.

    Attributes
    ----------
    vectors : list[list[float]]
        One vector per successfully embedded input, in request order.
    indices : list[int]
        Request positions of the entries of ``vectors``.
    failures : list[EmbeddingFailure]
        Inputs that could not be embedded.
    requested_count : int
        Number of inputs in the request.
    """
    vectors: list[list[float]] = field(default_factory=list)
    indices: list[int] = field(default_factory=list)
    failures: list[EmbeddingFailure] = field(default_factory=list)
    requested_count: int = 0

    @property
    def produced_count(self) -> int:
        return len(self.vectors)

    @property
    def is_complete(self) -> bool:
        return self.produced_count == self.requested_count

    def vector_for(self, index: int) -> Optional[list[float]]:
        """Return the vector of request position ``index``, or ``None`` if it failed."""
        try:
            return self.vectors[self.indices.index(index)]
        except ValueError:
            return None

    def pairs(self):
        """Iterate ``(request_index, vector)`` pairs in request order."""
        return zip(self.indices, self.vectors)


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify_provider_error(exc: BaseException) -> str:
    """Classify a provider exception.

    Parameters
    ----------
    exc : BaseException
        Exception raised by a provider call.

    Returns
    -------
    str
        ``"transient"`` for failures worth retrying (rate limits, network
        errors, timeouts, server errors), ``"fatal"`` for failures that affect
        every call (authentication, permission), and ``"permanent"`` for
        failures specific to one input (malformed input, bad request).
    """
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return FATAL
    if isinstance(exc, (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)):
        return TRANSIENT
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return TRANSIENT

    status = _status_code(exc)
    if status is not None:
        if status in (401, 403):
            return FATAL
        if status in (408, 409, 429) or status >= 500:
            return TRANSIENT
    return PERMANENT


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations only provide :meth:`_embed_one`, a single blocking
    provider call. Everything else (batching, concurrency, cooldown, retries,
    timeouts and dimensionality checks) is shared.

    Parameters
    ----------
    batch_size : int, optional
        Number of inputs embedded concurrently per batch. Defaults to ``3``.
    batch_delay : float, optional
        Seconds to wait between batches. Defaults to ``1.5``.
    max_retries : int, optional
        Retries for transient failures of one input. Defaults to ``3``.
    retry_delay : float, optional
        Base backoff in seconds; attempt ``n`` waits ``retry_delay * n``.
        Defaults to ``1.0``.
    timeout : float or None, optional
        Maximum seconds to wait for one provider call. ``None`` disables the
        bound. Defaults to ``30.0``.
    dimensions : int or None, optional
        Expected dimensionality ``D``. If ``None`` it is fixed by the first
        vector produced.
    sleep : Callable[[float], Awaitable[None]], optional
        Coroutine function used for cooldowns and backoff. Defaults to
        :func:`asyncio.sleep`.
    """

    def __init__(
            self,
            *,
            batch_size: int = DEFAULT_BATCH_SIZE,
            batch_delay: float = DEFAULT_BATCH_DELAY,
            max_retries: int = DEFAULT_MAX_RETRIES,
            retry_delay: float = DEFAULT_RETRY_DELAY,
            timeout: Optional[float] = DEFAULT_TIMEOUT,
            dimensions: Optional[int] = None,
            sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        ):
        self.batch_size = max(1, int(batch_size))
        self.batch_delay = max(0.0, float(batch_delay))
        self.max_retries = max(0, int(max_retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.timeout = float(timeout) if timeout is not None else None
        self._dimension = int(dimensions) if dimensions else None
        self._sleep = sleep or asyncio.sleep
        self._executor: Optional[ThreadPoolExecutor] = None

    @abstractmethod
    def _embed_one(self, text: str) -> Sequence[float]:
        """Make one blocking provider call for ``text``.

        Returns
        -------
        Sequence[float]
            Embedding vector.
        """

    @classmethod
    def from_config(cls, config_path: str) -> "BaseEmbedder":
        """Create an embedder from a YAML configuration file.

        Parameters
        ----------
        config_path : str
            Path to the YAML configuration file.

        Returns
        -------
        BaseEmbedder
            An initialised embedder implementation.
        """
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg)

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """

    @property
    def dimension(self) -> Optional[int]:
        """Dimensionality ``D`` of produced vectors, once known."""
        return self._dimension

    def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        """Embed ``texts`` in batches.

        Parameters
        ----------
        texts : Sequence[str]
            Inputs to embed.

        Returns
        -------
        EmbeddingResult
            Vectors for the successful inputs, in request order, plus failures.

        Raises
        ------
        EmbeddingError
            On a fatal provider failure (e.g., authentication).
        EmbeddingDimensionError
            If a vector of unexpected dimensionality is returned.
        RuntimeError
            If called from inside a running event loop; use :meth:`aembed`.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.aembed(texts))
        raise RuntimeError(
            "embed() cannot run inside an active event loop; use `await aembed(...)` instead."
        )

    def embed_query(self, text: str) -> list[float]:
        """Embed a single text as a batch of size one.

        Raises
        ------
        EmbeddingError
            If the text could not be embedded. A zero vector is never returned.
        """
        result = self.embed([text])
        if not result.vectors:
            reason = result.failures[0].error if result.failures else "no vector returned"
            raise EmbeddingError(f"Failed to embed query: {reason}")
        return result.vectors[0]

    async def aembed(self, texts: Sequence[str]) -> EmbeddingResult:
        """Asynchronously embed ``texts`` in batches.

        Calls within a batch run concurrently in a thread pool; batches run
        sequentially with ``batch_delay`` seconds between them.
        """
        items = list(texts)
        result = EmbeddingResult(requested_count=len(items))
        if not items:
            return result

        total_batches = math.ceil(len(items) / self.batch_size)
        for batch_no, start in enumerate(range(0, len(items), self.batch_size), start=1):
            batch = items[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._aembed_item(start + offset, text) for offset, text in enumerate(batch))
            )

            for index, vector, failure in outcomes:
                if vector is not None:
                    result.indices.append(index)
                    result.vectors.append(vector)
                else:
                    result.failures.append(failure)
                    logger.warning("Embedding failed for input %d: %s", index, failure.error)

            logger.debug(
                "Embedded batch %d/%d (%d/%d inputs so far)",
                batch_no, total_batches, result.produced_count, len(items),
            )

            if start + self.batch_size < len(items) and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

        return result

    async def _aembed_item(self, index: int, text: str):
        loop = asyncio.get_running_loop()
        attempt = 0
        while True:
            attempt += 1
            try:
                call = loop.run_in_executor(self._get_executor(), self._embed_one, text)
                raw = await asyncio.wait_for(call, timeout=self.timeout)
            except Exception as exc:
                kind = classify_provider_error(exc)
                if kind == FATAL:
                    raise EmbeddingError(
                        f"Embedding provider rejected the request: {type(exc).__name__}: {exc}"
                    ) from exc
                if kind == TRANSIENT and attempt <= self.max_retries:
                    wait_seconds = self.retry_delay * attempt
                    logger.info(
                        "Transient embedding failure for input %d (%s). Retry %d/%d in %.1fs...",
                        index, type(exc).__name__, attempt, self.max_retries, wait_seconds,
                    )
                    if wait_seconds > 0:
                        await self._sleep(wait_seconds)
                    continue
                return index, None, EmbeddingFailure(index, f"{type(exc).__name__}: {exc}", attempt)

            vector = self._coerce_vector(raw)
            if vector is None:
                return index, None, EmbeddingFailure(index, "MalformedResponse: empty or non-numeric vector", attempt)
            self._check_dimension(vector)
            return index, vector, None

    def _coerce_vector(self, raw: Any) -> Optional[list[float]]:
        if raw is None:
            return None
        try:
            vector = [float(x) for x in raw]
        except (TypeError, ValueError):
            return None
        if not vector or not all(math.isfinite(x) for x in vector):
            return None
        return vector

    def _check_dimension(self, vector: list[float]) -> None:
        if self._dimension is None:
            self._dimension = len(vector)
        elif len(vector) != self._dimension:
            raise EmbeddingDimensionError(self._dimension, len(vector))

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.batch_size, thread_name_prefix="folio-embed"
            )
        return self._executor

    def close(self) -> None:
        """Release the worker threads without waiting for abandoned calls."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


def _batching_kwargs(config: Mapping[str, Any]) -> Dict[str, Any]:
    timeout = config.get("timeout", config.get("request_timeout", DEFAULT_TIMEOUT))
    return {
        "batch_size": int(config.get("batch_size", DEFAULT_BATCH_SIZE)),
        "batch_delay": float(config.get("batch_delay", DEFAULT_BATCH_DELAY)),
        "max_retries": int(config.get("max_retries", DEFAULT_MAX_RETRIES)),
        "retry_delay": float(config.get("retry_delay", DEFAULT_RETRY_DELAY)),
        "timeout": float(timeout) if timeout is not None else None,
        "dimensions": config.get("dimensions"),
    }


class HuggingFaceEmbedder(BaseEmbedder):
    """Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.huggingface.HuggingFaceEmbedding`.

    Parameters
    ----------
    model_name : str
        Name or path of the embedding model.
    device : str or None, optional
        Device identifier (e.g., ``"cuda"``, ``"cpu"``, ``"mps"``).
    trust_remote_code : bool, optional
        Whether to allow custom model code from the Hugging Face Hub.
    model_kwargs : dict[str, Any] or None, optional
        Additional keyword arguments forwarded to the underlying embedder.
    **batching : Any
        Batching, retry and timeout options forwarded to :class:`BaseEmbedder`.
    """

    def __init__(
            self,
            model_name: str,
            *,
            device: Optional[str] = None,
            trust_remote_code: bool = False,
            model_kwargs: Optional[dict[str, Any]] = None,
            **batching: Any,
        ):
        super().__init__(**batching)
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self.model_name = model_name
        self.embedder = HuggingFaceEmbedding(
            model_name=model_name,
            trust_remote_code=trust_remote_code,
            device=device,
            model_kwargs=model_kwargs or {},
        )

    def _embed_one(self, text: str) -> Sequence[float]:
        return self.embedder.get_text_embedding(text)

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "HuggingFaceEmbedder":
        """Create a Hugging Face embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If ``model_name`` is missing.
        """
        return cls(
            model_name=config["model_name"],
            device=config.get("device"),
            trust_remote_code=bool(config.get("trust_remote_code", False)),
            model_kwargs=config.get("model_kwargs", {}),
            **_batching_kwargs(config),
        )


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.
    The client's own retry loop is disabled so that retries, backoff and
    timeouts follow the policy of :class:`BaseEmbedder`.

    Parameters
    ----------
    model_name : str, optional
        Model identifier for the embedding endpoint. Defaults to
        ``"text-embedding-3-small"``.
    api_base : str, optional
        Base URL for the OpenAI-compatible embedding API endpoint.
    api_key : str or None, optional
        API key for the endpoint.
    model_kwargs : dict[str, Any] or None, optional
        Additional keyword arguments forwarded to the underlying embedder.
    **batching : Any
        Batching, retry and timeout options forwarded to :class:`BaseEmbedder`.
    """

    def __init__(
            self,
            model_name: str = DEFAULT_OPENAI_MODEL,
            *,
            api_base: str = "https://api.openai.com/v1",
            api_key: Optional[str] = None,
            model_kwargs: Optional[dict[str, Any]] = None,
            **batching: Any,
        ):
        super().__init__(**batching)
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.model_name = model_name
        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            api_key=api_key,
            additional_kwargs=model_kwargs or {},
            timeout=self.timeout if self.timeout is not None else 60.0,
            max_retries=0,
            embed_batch_size=1,
        )

    def _embed_one(self, text: str) -> Sequence[float]:
        return self.embedder.get_text_embedding(text)

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "OpenAILikeEmbedder":
        """Create an OpenAI-compatible embedder from a configuration mapping.

        ``model_name`` defaults to ``"text-embedding-3-small"``.
        """
        return cls(
            model_name=config.get("model_name", DEFAULT_OPENAI_MODEL),
            api_base=config.get("api_base", "https://api.openai.com/v1"),
            api_key=config.get("api_key"),
            model_kwargs=config.get("model_kwargs", {}),
            **_batching_kwargs(config),
        )


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Extract the embedder kind/type/provider discriminator from a config mapping."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind string to a registry key.

    CamelCase becomes snake_case, hyphens and spaces become underscores, and
    ``openailike`` spellings collapse to ``openai_like``.
    """
    out: list[str] = []
    prev = ""
    for ch in kind.strip():
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k = "".join(out).replace("-", "_").replace(" ", "_").lower()
    while "__" in k:
        k = k.replace("__", "_")
    compact = k.replace("_", "")
    if compact in {"openailike", "openailikeembedding", "openailikeembedder"}:
        return "openai_like"
    if compact in {"huggingface", "huggingfaceembedding", "huggingfaceembedder"}:
        return "huggingface"
    return k


def create_embedder(config: Mapping[str, Any]) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    The concrete implementation is selected by a discriminator field in the
    configuration (one of: ``kind``, ``type``, ``provider``, ``backend``, or
    ``impl``). If none is given, :class:`OpenAILikeEmbedder` is used.

    Parameters
    ----------
    config : Mapping[str, Any]
        Configuration mapping used to construct the embedder.

    Returns
    -------
    BaseEmbedder
        An initialised embedder implementation.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw)

    registry = {
        "huggingface": HuggingFaceEmbedder,
        "hf": HuggingFaceEmbedder,
        "openai_like": OpenAILikeEmbedder,
        "openai": OpenAILikeEmbedder,
    }

    cls = registry.get(kind) if kind else OpenAILikeEmbedder
    if cls is None:
        raise ValueError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(registry.keys())}."
        )
    return cls.from_config_dict(dict(config))


__all__ = [
    "BaseEmbedder",
    "EmbeddingFailure",
    "EmbeddingResult",
    "HuggingFaceEmbedder",
    "OpenAILikeEmbedder",
    "classify_provider_error",
    "create_embedder",
]
