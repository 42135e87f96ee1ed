"""folio_rag.common.tokenisation

Token counting utilities.

This module provides a small abstraction used by the chunker to size chunks
by *token count* without coupling it to any particular model provider or
tokenizer library.

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
WordHeuristicTokenCounter
    Dependency-free approximate token counter based on word counts.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Protocol

_WHITESPACE = re.compile(r"\s+")


class TokenCounter(Protocol):
    """A minimal interface for token-based sizing.

    Implementations provide a consistent way to estimate the number of tokens
    in a string, and to extract the trailing portion of text by word count.
    """

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""

    def tail_words(self, text: str, n_words: int) -> list[str]:
        """Return the last ``n_words`` whitespace-separated words of ``text``."""


def split_words(text: str) -> list[str]:
    """Split ``text`` on whitespace, dropping empty fragments."""
    if not text:
        return []
    return [w for w in _WHITESPACE.split(text.strip()) if w]


@dataclass(frozen=True)
class WordHeuristicTokenCounter:
    """Dependency-free, approximate token counter.

    Estimates tokens as ``ceil(word_count / words_per_token)``. With the default
    ratio of ``0.75`` words per token this matches the usual rule of thumb for
    English text. The estimate is approximate by design: it is only used to
    bound chunk sizes, never to enforce a model's context limit.

    Attributes
    ----------
    words_per_token : float
        Approximate number of words per token. Defaults to ``0.75``.
    """

    words_per_token: float = 0.75

    def count(self, text: str) -> int:
        words = split_words(text)
        if not words:
            return 0
        ratio = self.words_per_token if self.words_per_token > 0 else 0.75
        return math.ceil(len(words) / ratio)

    def tail_words(self, text: str, n_words: int) -> list[str]:
        if n_words <= 0:
            return []
        return split_words(text)[-n_words:]


__all__ = [
    "TokenCounter",
    "WordHeuristicTokenCounter",
    "split_words",
]
