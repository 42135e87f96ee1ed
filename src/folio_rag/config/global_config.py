"""folio_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used across the RAG pipeline.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.

Functions
---------
configure_logging
    Configure the root logger from the ``logging`` section.
"""

import logging
import os
import yaml
from pathlib import Path
from functools import cached_property

from folio_rag.generation.prompt_builder import DEFAULT_PROMPTS_SOURCE

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    This function walks nested dictionaries and lists and applies
    :func:`os.path.expandvars` to any string values, expanding patterns of the
    form ``${VAR}`` using the current process environment.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _section(raw: dict, name: str, *, required: bool = False) -> dict:
    value = raw.get(name)
    if value is None:
        if required:
            raise KeyError(f"Missing '{name}' in configuration.")
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(value)}.")
    return value


def _positive_int(section: dict, key: str, default: int, *, allow_zero: bool = False, prefix: str = "") -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{prefix}{key}' must be an integer, got {value!r}.")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"'{prefix}{key}' must be {'non-negative' if allow_zero else 'positive'}, got {value}.")
    return value


class GlobalConfig:
    """Loader and accessor for global project configuration.

    This class wraps a raw configuration dictionary (typically loaded from YAML)
    and exposes validated, cached accessors for the configuration sections.

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, used to resolve relative paths.
    """

    def __init__(
            self,
            raw: dict,
            config_path: Path | None = None,
        ):
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise TypeError(f"Configuration root must be a mapping, got {type(raw)}.")
        self.raw = raw
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f)
        data = _expand_env(data or {})
        return cls(data, config_path=cfg_path)

    @property
    def base_dir(self) -> Path:
        """Directory relative paths are resolved against."""
        return self.config_path.parent if self.config_path else Path.cwd()

    def resolve_path(self, value: str | Path) -> Path:
        """Resolve ``value`` relative to the configuration file's directory."""
        p = Path(value).expanduser()
        return p if p.is_absolute() else (self.base_dir / p)

    @cached_property
    def generator_llm(self) -> dict:
        """Return the ``generator_llm`` section.

        Raises
        ------
        KeyError
            If the section is missing.
        """
        return _section(self.raw, "generator_llm", required=True)

    @cached_property
    def embedder(self) -> dict:
        """Return the ``embedder`` section.

        Raises
        ------
        KeyError
            If the section is missing.
        """
        return _section(self.raw, "embedder", required=True)

    @cached_property
    def vector_store(self) -> dict:
        """Return the ``vector_store`` section.

        A relative ``path`` of the linear-scan store is resolved against the
        configuration file's directory.
        """
        section = dict(_section(self.raw, "vector_store"))
        if section.get("path"):
            section["path"] = str(self.resolve_path(section["path"]))
        return section

    @cached_property
    def chunking(self) -> dict:
        """Return chunking settings with defaults applied.

        Returns
        -------
        dict
            ``target_size`` (default ``400``), ``overlap`` (default ``50``) and
            ``min_chunk_chars`` (default ``50``).
        """
        section = _section(self.raw, "chunking")
        return {
            "target_size": _positive_int(section, "target_size", 400, prefix="chunking."),
            "overlap": _positive_int(section, "overlap", 50, allow_zero=True, prefix="chunking."),
            "min_chunk_chars": _positive_int(section, "min_chunk_chars", 50, allow_zero=True, prefix="chunking."),
        }

    @cached_property
    def ingestion(self) -> dict:
        """Return ingestion settings with defaults applied.

        Returns
        -------
        dict
            ``min_source_chars`` (default ``100``), ``replace_existing``
            (default ``True``) and ``books_dir`` (default ``"books"``, resolved).
        """
        section = _section(self.raw, "ingestion")
        return {
            "min_source_chars": _positive_int(section, "min_source_chars", 100, allow_zero=True, prefix="ingestion."),
            "replace_existing": bool(section.get("replace_existing", True)),
            "books_dir": str(self.resolve_path(section.get("books_dir", "books"))),
        }

    @cached_property
    def retrieval(self) -> dict:
        """Return the ``retrieval`` section.

        Raises
        ------
        TypeError
            If ``steps`` is present but not a list.
        """
        section = dict(_section(self.raw, "retrieval"))
        steps = section.get("steps")
        if steps is not None and not isinstance(steps, list):
            raise TypeError(f"'retrieval.steps' must be a list, got {type(steps)}.")
        return section

    @cached_property
    def prompts(self):
        """Return the prompts configuration entry.

        Returns
        -------
        str or list[str]
            The ``prompts`` entry (a single source or a list of sources).
            Defaults to the packaged templates.
        """
        return self.raw.get("prompts", DEFAULT_PROMPTS_SOURCE)

    @cached_property
    def prompt_name(self) -> str:
        """Return the configured prompt name (default ``"book_assistant"``)."""
        prompt_name = self.raw.get("prompt_name", "book_assistant")
        if not isinstance(prompt_name, str) or not prompt_name.strip():
            raise ValueError("'prompt_name' must be a non-empty string.")
        return prompt_name

    @cached_property
    def logging(self) -> dict:
        """Return the ``logging`` section (``level``, ``format``)."""
        section = _section(self.raw, "logging")
        return {
            "level": str(section.get("level", "INFO")).upper(),
            "format": section.get("format", DEFAULT_LOG_FORMAT),
        }


def configure_logging(cfg: GlobalConfig | None = None, level: str | None = None) -> None:
    """Configure the root logger from the ``logging`` section.

    Parameters
    ----------
    cfg : GlobalConfig or None, optional
        Loaded configuration. If ``None``, defaults are used.
    level : str or None, optional
        Level overriding the configured one (e.g., from a ``--log-level`` flag).
    """
    section = cfg.logging if cfg is not None else {"level": "INFO", "format": DEFAULT_LOG_FORMAT}
    logging.basicConfig(
        level=getattr(logging, (level or section["level"]).upper(), logging.INFO),
        format=section["format"],
    )
