"""folio_rag.retrieval.text_splitter

Text normalisation and chunking utilities for the retrieval layer.

This module converts raw document text into overlapping, token-bounded
passages suitable for embedding. It includes:
- normalisation (markup stripping, entity decoding, whitespace collapsing)
- sentence segmentation on ``.``, ``!`` and ``?``
- a greedy sentence accumulator that seeds each new chunk with the trailing
  words of the previous one

Classes
-------
SentenceChunker
    Split normalised text into sentence-aligned, overlap-seeded chunks.

Functions
---------
normalize_text
    Strip markup and collapse whitespace.
split_sentences
    Segment normalised text into sentences.
"""

from __future__ import annotations

import html
import re
from typing import Iterator, Optional

from folio_rag.common.tokenisation import TokenCounter, WordHeuristicTokenCounter

DEFAULT_TARGET_SIZE = 400
DEFAULT_OVERLAP = 50
DEFAULT_MIN_CHUNK_CHARS = 50

_TAG_PATTERN = re.compile(r"<[^>]*>")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]*|[.!?]+")


def normalize_text(text: str) -> str:
    """Strip markup and collapse whitespace.

    Tags are replaced by a space so that adjacent block elements do not fuse
    their words, HTML entities are decoded, and every run of whitespace
    (including newlines) becomes a single space.

    Parameters
    ----------
    text : str
        Raw document text, possibly containing HTML/XML markup.

    Returns
    -------
    str
        Normalised single-line text, stripped at both ends.
    """
    if not text:
        return ""
    without_tags = _TAG_PATTERN.sub(" ", text)
    decoded = html.unescape(without_tags)
    return _WHITESPACE_PATTERN.sub(" ", decoded).strip()


def split_sentences(text: str) -> list[str]:
    """Segment normalised text into sentences.

    A sentence ends after a run of ``.``, ``!`` or ``?``. The terminator is kept;
    a trailing fragment without one is terminated with ``.``. Fragments with no
    word characters (e.g., a stray ``"..."``) are dropped.

    Parameters
    ----------
    text : str
        Normalised text.

    Returns
    -------
    list[str]
        Sentences in document order.
    """
    sentences: list[str] = []
    for match in _SENTENCE_PATTERN.finditer(text or ""):
        fragment = match.group(0).strip()
        body = fragment.rstrip(".!?").strip()
        if not body:
            continue
        terminator = fragment[len(fragment.rstrip(".!?")):]
        sentences.append(body + (terminator or "."))
    return sentences


class SentenceChunker:
    """Split text into sentence-aligned, overlap-seeded chunks.

    Sentences are accumulated greedily until adding the next one would push
    the running token estimate over ``target_size``. The chunk is then
    finalised and the next chunk is seeded with the last ``overlap`` *words*
    of the finalised chunk. A single sentence larger than ``target_size`` is
    emitted as its own oversized chunk rather than truncated.

    Parameters
    ----------
    token_counter : TokenCounter, optional
        Token estimator. Defaults to :class:`WordHeuristicTokenCounter`.
    min_chunk_chars : int, optional
        Chunks shorter than this many characters (after trimming) are
        discarded. Defaults to ``50``.
    """

    def __init__(
            self,
            *,
            token_counter: Optional[TokenCounter] = None,
            min_chunk_chars: int = DEFAULT_MIN_CHUNK_CHARS,
        ):
        self.token_counter = token_counter or WordHeuristicTokenCounter()
        self.min_chunk_chars = max(0, int(min_chunk_chars))

    def split(
            self,
            text: str,
            target_size: int = DEFAULT_TARGET_SIZE,
            overlap: int = DEFAULT_OVERLAP,
        ) -> list[str]:
        """Split ``text`` into chunks.

        Parameters
        ----------
        text : str
            Raw text. It is normalised with :func:`normalize_text` first.
        target_size : int, optional
            Target chunk size in estimated tokens. Defaults to ``400``.
        overlap : int, optional
            Number of trailing words of a finalised chunk used to seed the next
            one. Defaults to ``50``.

        Returns
        -------
        list[str]
            Chunks in document order. Empty input gives an empty list.

        Raises
        ------
        ValueError
            If ``target_size`` is not positive or ``overlap`` is negative.
        """
        return list(self.iter_split(text, target_size, overlap))

    def iter_split(
            self,
            text: str,
            target_size: int = DEFAULT_TARGET_SIZE,
            overlap: int = DEFAULT_OVERLAP,
        ) -> Iterator[str]:
        """Lazily yield the chunks :meth:`split` would return.

        Calling the method again restarts the sequence from the beginning.
        """
        target_size = int(target_size)
        overlap = int(overlap)
        if target_size <= 0:
            raise ValueError(f"'target_size' must be positive, got {target_size}.")
        if overlap < 0:
            raise ValueError(f"'overlap' must be non-negative, got {overlap}.")

        return self._generate(normalize_text(text), target_size, overlap)

    def _generate(self, text: str, target_size: int, overlap: int) -> Iterator[str]:
        current = ""
        current_tokens = 0

        for sentence in split_sentences(text):
            sentence_tokens = self.token_counter.count(sentence)

            if current and current_tokens + sentence_tokens > target_size:
                finalised = current.strip()
                if self._keep(finalised):
                    yield finalised

                seed = self.token_counter.tail_words(finalised, overlap)
                current = " ".join(seed + [sentence])
                current_tokens = self.token_counter.count(current)
            else:
                current = f"{current} {sentence}" if current else sentence
                current_tokens += sentence_tokens

        finalised = current.strip()
        if finalised and self._keep(finalised):
            yield finalised

    def _keep(self, chunk: str) -> bool:
        return len(chunk) >= self.min_chunk_chars


__all__ = [
    "SentenceChunker",
    "normalize_text",
    "split_sentences",
    "DEFAULT_TARGET_SIZE",
    "DEFAULT_OVERLAP",
    "DEFAULT_MIN_CHUNK_CHARS",
]
