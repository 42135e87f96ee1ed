"""folio_rag.generation.prompt_builder

Prompt template definitions and rendering utilities.

This module provides lightweight abstractions for defining, registering,
and rendering named prompt templates used by LLM interfaces. Templates
carry an optional system message, few-shot examples, and a user message, and
are rendered using Jinja2 either as a single string or as chat messages.

Classes
-------
PromptTemplate
    Represents a single named prompt template.
PromptBuilder
    Registry and factory for prompt templates.
"""
from typing import Optional, List, Dict, Any, Union
from pathlib import Path
import json
import logging
from jinja2 import Template
from importlib import resources

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_SOURCE = "pkg:folio_rag.generation:prompts/default.json"


class PromptTemplate:
    """Represents a single named prompt template.

    Parameters
    ----------
    name : str
        Name of the template.
    system : str or None, optional
        System-level instructions for the template.
    few_shot : list[dict[str, str]] or None, optional
        Few-shot examples. Each entry is expected to contain a ``"content"``
        key and may carry a ``"role"`` (default ``"human"``).
    user : str, optional
        User message part of the template.
    """

    def __init__(self,
                 name: str,
                 system: Optional[str] = None,
                 few_shot: Optional[List[Dict[str, str]]] = None,
                 user: Optional[str] = ''
        ):
        self.name = name
        self.system = system
        self.few_shot = few_shot or []
        self.user = user

    def render(self, **kwargs) -> str:
        """Render the full prompt as a single string.

        The system message, few-shot examples (in order), and user message
        are joined with newlines before Jinja2 rendering.
        """
        parts = []
        if self.system:
            parts.append(self.system)
        for example in self.few_shot:
            parts.append(example.get('content', ''))
        if self.user:
            parts.append(self.user)
        return Template("\n".join(parts)).render(**kwargs)

    def render_messages(self, **kwargs) -> List[tuple]:
        """Render the prompt as ``(role, content)`` chat messages.

        Returns
        -------
        list[tuple[str, str]]
            Messages accepted by LangChain chat models.
        """
        messages = []
        if self.system:
            messages.append(("system", Template(self.system).render(**kwargs)))
        for example in self.few_shot:
            messages.append((example.get("role", "human"), Template(example.get("content", "")).render(**kwargs)))
        if self.user:
            messages.append(("human", Template(self.user).render(**kwargs)))
        return messages


class PromptBuilder:
    """Registry and factory for prompt templates.

    This class manages a collection of named :class:`PromptTemplate` instances
    and provides methods to register templates from dictionaries, files or
    package resources and to render prompts by name.
    """

    def __init__(self):
        self.templates: Dict[str, PromptTemplate] = {}

    @classmethod
    def with_defaults(cls) -> "PromptBuilder":
        """Return a builder holding the packaged default templates."""
        builder = cls()
        builder.register_from_source(DEFAULT_PROMPTS_SOURCE)
        return builder

    def register_from_dict(self, data: Dict[str, Any]):
        """Register a new template from a dictionary.

        Parameters
        ----------
        data : dict[str, Any]
            Mapping containing the template definition. Expected keys are
            ``"name"``, ``"system"``, ``"few_shot"``, and ``"user"``.

        Raises
        ------
        KeyError
            If ``"name"`` is missing from ``data``.
        TypeError
            If fields are of invalid types.
        ValueError
            If ``"name"`` is empty.
        """
        if "name" not in data:
            raise KeyError("Template definition missing required key: 'name'")
        name = data["name"]
        if not isinstance(name, str):
            raise TypeError(f"Template 'name' must be a str, got {type(name)!r}")
        if not name.strip():
            raise ValueError("Template 'name' must be a non-empty string")

        few_shot = data.get("few_shot")
        if few_shot is not None and not isinstance(few_shot, list):
            raise TypeError(f"Template 'few_shot' must be a list or None, got {type(few_shot)!r}")

        template = PromptTemplate(
            name=name,
            system=data.get("system"),
            few_shot=few_shot,
            user=data.get("user") or "",
        )
        if name in self.templates:
            logger.warning("Overwriting existing prompt template: %s", name)
        self.templates[name] = template

    def _register_payload(self, data: Any, origin: str) -> List[str]:
        if isinstance(data, dict):
            self.register_from_dict(data)
            return [data["name"]]
        if isinstance(data, list):
            registered: List[str] = []
            for item in data:
                if not isinstance(item, dict):
                    raise TypeError(f"Template list items must be dicts, got {type(item)!r}")
                self.register_from_dict(item)
                registered.append(item["name"])
            return registered
        raise TypeError(f"{origin} must contain an object or list of objects, got {type(data)!r}")

    def register_from_file(self, path: Union[Path, str], base_dir: Optional[Path] = None) -> List[str]:
        """Load and register templates from a JSON file.

        Parameters
        ----------
        path : Path | str
            Path to a JSON file containing one or more template definitions.
        base_dir : Path | None, optional
            If provided and ``path`` is relative, resolve it relative to this directory.

        Returns
        -------
        list[str]
            Names of templates registered from this file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        ValueError
            If the file extension is not supported.
        """
        p = Path(path)
        if not p.is_absolute() and base_dir is not None:
            p = base_dir / p
        p = p.resolve()
        if not p.exists():
            raise FileNotFoundError(f"Prompt file not found: {p}")
        if p.suffix.lower() != ".json":
            raise ValueError(f"Unsupported file type: {p.suffix}")

        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return self._register_payload(data, f"Prompt file {p}")

    def register_from_package(self, package: str, resource_path: str) -> List[str]:
        """Load and register templates from a JSON file bundled as a package resource.

        Raises
        ------
        FileNotFoundError
            If the resource does not exist.
        ValueError
            If the resource extension is not supported.
        """
        if not resource_path.lower().endswith(".json"):
            raise ValueError(f"Unsupported resource type: {resource_path}")

        try:
            res = resources.files(package).joinpath(resource_path)
        except ModuleNotFoundError as e:
            raise FileNotFoundError(f"Could not locate resource '{resource_path}' in package '{package}'") from e

        if not res.is_file():
            raise FileNotFoundError(f"Prompt resource not found: pkg:{package}:{resource_path}")

        data = json.loads(res.read_text(encoding="utf-8"))
        return self._register_payload(data, f"Prompt resource pkg:{package}:{resource_path}")

    def register_from_source(self, source: str, base_dir: Optional[Path] = None) -> List[str]:
        """Register templates from a source spec.

        Supported formats
        -----------------
        - ``pkg:<package>:<resource_path>``
        - ``file:<path>``
        - ``<path>`` (plain filesystem path)
        """
        if not isinstance(source, str):
            raise TypeError(f"source must be a str, got {type(source)!r}")

        if source.startswith("pkg:"):
            rest = source[len("pkg:"):]
            if ":" not in rest:
                raise ValueError("pkg: sources must be of the form 'pkg:<package>:<resource_path>'")
            package, resource_path = rest.split(":", 1)
            return self.register_from_package(package.strip(), resource_path.strip())

        if source.startswith("file:"):
            return self.register_from_file(Path(source[len("file:"):].strip()), base_dir=base_dir)

        return self.register_from_file(Path(source), base_dir=base_dir)

    def list_prompts(self) -> List[str]:
        """Return a sorted list of registered prompt template names."""
        return sorted(self.templates.keys())

    def has_prompt(self, name: str) -> bool:
        return name in self.templates

    def get_template(self, name: str) -> PromptTemplate:
        """Get a registered PromptTemplate by name.

        Raises
        ------
        KeyError
            If no template is registered under ``name``.
        """
        if name not in self.templates:
            available = ", ".join(self.list_prompts())
            raise KeyError(f"No template registered under name: {name}. Available: [{available}]")
        return self.templates[name]

    def build(self, name: str, **kwargs) -> str:
        """Render the template ``name`` as a single string."""
        return self.get_template(name).render(**kwargs)

    def build_messages(self, name: str, **kwargs) -> List[tuple]:
        """Render the template ``name`` as ``(role, content)`` chat messages."""
        return self.get_template(name).render_messages(**kwargs)
