"""folio_rag.generation

Answer generation components for the Folio RAG system.

Modules
-------
llm_interface
    Provider-agnostic LLM wrappers and factory.
prompt_builder
    Jinja2 prompt templates and the template registry.

Package data
------------
prompts/default.json
    Packaged default templates, including ``book_assistant``.
"""
