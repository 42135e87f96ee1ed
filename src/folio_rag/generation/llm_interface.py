"""folio_rag.generation.llm_interface

Unified interface and factory for large language model (LLM) backends.

This module defines a small, provider-agnostic abstraction for answer
generation and a concrete implementation backed by LangChain's
``ChatOpenAI`` wrapper. A factory function is provided to instantiate the
appropriate LLM implementation from a configuration mapping.

Provider failures are re-raised as
:class:`~folio_rag.common.errors.GenerationError` so the API can report them
without inspecting provider-specific exception types.

Classes
-------
BaseLLM
    Abstract interface specifying the API used by the Folio RAG pipeline.
OpenAIChatLikeLLM
    Chat completions using an OpenAI-compatible HTTP API via LangChain.

Functions
---------
create_llm
    Construct an LLM implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence, Union

import openai
import yaml
from langchain_core.callbacks import BaseCallbackHandler
from langchain_openai import ChatOpenAI

from folio_rag.common.errors import GenerationError

logger = logging.getLogger(__name__)

Prompt = Union[str, Sequence[tuple[str, str]]]


class BaseLLM(ABC):
    """Abstract interface for LLM text generation.

    Concrete implementations wrap provider-specific clients and expose a
    small, consistent API used by the Folio RAG pipeline.
    """

    @classmethod
    def from_config(
            cls,
            config_path: str,
            callback_manager: BaseCallbackHandler = None
        ) -> "BaseLLM":
        """Create an LLM instance from a YAML configuration file.

        Parameters
        ----------
        config_path : str
            Path to the YAML configuration file.
        callback_manager : BaseCallbackHandler, optional
            Optional callback handler for logging/telemetry/streaming.

        Returns
        -------
        BaseLLM
            An initialised LLM implementation.

        Raises
        ------
        FileNotFoundError
            If ``config_path`` does not exist.
        """
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg, callback_manager)

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: dict,
            callback_manager: BaseCallbackHandler = None
        ) -> "BaseLLM":
        """Create an LLM instance from a configuration mapping.

        Raises
        ------
        ValueError
            If required configuration keys are missing or invalid.
        """

    @abstractmethod
    def get_llm(self) -> Any:
        """Return the underlying LangChain model object."""

    @abstractmethod
    def generate(self, prompt: Prompt, **kwargs) -> str:
        """Generate text for a single prompt.

        Parameters
        ----------
        prompt : str or Sequence[tuple[str, str]]
            Prompt text, or ``(role, content)`` message pairs.
        **kwargs
            Additional keyword arguments forwarded to the underlying model.

        Returns
        -------
        str
            Generated text.

        Raises
        ------
        GenerationError
            If the provider call fails.
        """


class OpenAIChatLikeLLM(BaseLLM):
    """LLM interface using an OpenAI-compatible Chat Completions API via LangChain.

    This implementation wraps :class:`langchain_openai.ChatOpenAI`.

    Parameters
    ----------
    model_name : str
        Model identifier (e.g., ``"gpt-4o"``).
    api_base : str or None, optional
        Base URL for the OpenAI-compatible API endpoint. ``None`` uses the
        client default.
    api_key : str or None, optional
        API key value.
    temperature : float, optional
        Sampling temperature. Defaults to ``0.1``.
    max_tokens : int, optional
        Maximum number of generated tokens. Defaults to ``1500``.
    timeout : float, optional
        Request timeout in seconds. Defaults to ``60``.
    max_retries : int, optional
        Client-side retries. Defaults to ``2``.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler for logging/telemetry/streaming.
    **model_kwargs : Any
        Additional keyword arguments forwarded to ``ChatOpenAI``.
    """

    def __init__(
        self,
        model_name: str,
        api_base: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        temperature: float = 0.1,
        max_tokens: int = 1500,
        timeout: float = 60,
        max_retries: int = 2,
        callback_manager: BaseCallbackHandler = None,
        **model_kwargs: Any,
    ):
        if not model_name:
            raise ValueError("OpenAIChatLikeLLM requires a 'model_name'.")

        self.model_name = model_name
        self.api_base = api_base
        init_kwargs: dict[str, Any] = dict(model_kwargs)
        init_kwargs.update(
            model=model_name,
            temperature=float(temperature),
            max_tokens=int(max_tokens),
            timeout=float(timeout),
            max_retries=int(max_retries),
        )
        if api_base:
            init_kwargs["base_url"] = api_base
        if api_key is not None:
            init_kwargs["api_key"] = api_key
        if callback_manager is not None:
            init_kwargs["callbacks"] = [callback_manager]

        self.llm = ChatOpenAI(**init_kwargs)

    @classmethod
    def from_config_dict(
        cls,
        config: dict,
        callback_manager: BaseCallbackHandler = None,
    ) -> "OpenAIChatLikeLLM":
        """Create an OpenAI-compatible chat LLM from a mapping."""
        model_kwargs = dict(config.get("model_kwargs") or {})
        for key in ("temperature", "max_tokens", "timeout", "max_retries"):
            if key in config:
                model_kwargs[key] = config[key]
        return cls(
            model_name=config.get("model_name", "gpt-4o"),
            api_base=config.get("api_base"),
            api_key=config.get("api_key"),
            callback_manager=callback_manager,
            **model_kwargs,
        )

    def get_llm(self) -> Any:
        """Return the underlying LangChain chat model object."""
        return self.llm

    def generate(self, prompt: Prompt, **kwargs) -> str:
        """Generate text for a single prompt or message list."""
        messages = prompt if isinstance(prompt, str) else list(prompt)
        try:
            response = self.llm.invoke(messages, **kwargs)
        except (openai.OpenAIError, ConnectionError, TimeoutError) as exc:
            logger.error("Generation with %s failed: %s", self.model_name, exc)
            raise GenerationError(f"Language model call failed: {type(exc).__name__}: {exc}") from exc

        content = response.content if hasattr(response, "content") else response
        if not isinstance(content, str):
            content = str(content)
        return content


# ----------------- Factory helpers -----------------

def _get_llm_kind(cfg: Mapping[str, Any]) -> str:
    """Extract the LLM kind/type/provider discriminator from a config mapping.

    Returns
    -------
    str
        The first non-empty discriminator value found, or an empty string if none
        is present.
    """
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_llm_kind(kind: str) -> str:
    """Normalise an LLM kind/type string to a stable registry key.

    Notes
    -----
    The normalisation process:
    - converts CamelCase to snake_case
    - replaces whitespace and hyphens with underscores
    - collapses repeated underscores
    - maps spellings of the OpenAI chat wrapper to ``"openai_chat"``
    """
    k = kind.strip()
    if not k:
        return ""

    out: list[str] = []
    prev = ""
    for ch in k:
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k2 = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k2:
        k2 = k2.replace("__", "_")
    k2 = k2.lower()

    compact = k2.replace("_", "")
    if compact in {"openaichat", "openaichatlike", "openaichatlikellm", "chatopenai"}:
        return "openai_chat"
    if compact == "openailike":
        return "openai_like"
    return k2


def create_llm(config: dict, callback_manager: Optional[BaseCallbackHandler] = None) -> BaseLLM:
    """Create an LLM implementation from a configuration mapping.

    This is the preferred entry point for wiring LLMs (used by the application
    container). The concrete implementation is selected by a discriminator field
    in the configuration (one of: ``kind``, ``type``, ``provider``, ``backend``,
    or ``impl``). If none is given, :class:`OpenAIChatLikeLLM` is used.

    Parameters
    ----------
    config : dict
        Configuration mapping used to construct the LLM.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler for logging/telemetry/streaming.

    Returns
    -------
    BaseLLM
        An initialised LLM implementation.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_llm expected a mapping/dict, got {type(config)}")

    kind_raw = _get_llm_kind(config)
    kind = _normalize_llm_kind(kind_raw)

    registry: dict[str, type[BaseLLM]] = {
        "openai_chat": OpenAIChatLikeLLM,
        "openai": OpenAIChatLikeLLM,
        "openai_like": OpenAIChatLikeLLM,
    }

    cls = registry.get(kind) if kind else OpenAIChatLikeLLM
    if cls is None:
        raise ValueError(
            f"Unknown LLM kind '{kind_raw}' (normalized to '{kind}'). Supported kinds: {sorted(registry.keys())}."
        )

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


__all__ = [
    "BaseLLM",
    "OpenAIChatLikeLLM",
    "create_llm",
]
