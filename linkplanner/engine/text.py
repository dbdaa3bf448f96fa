"""Shared text utilities for the engine."""

from __future__ import annotations

import bisect
import re
from typing import Iterable, List, Sequence, Tuple

_TOKEN_RE = re.compile(r"[\w']+")
_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)")

STOPWORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "how",
        "in",
        "is",
        "it",
        "of",
        "on",
        "or",
        "that",
        "the",
        "this",
        "to",
        "what",
        "why",
        "with",
        "your",
    }
)


def tokenize(text: str) -> List[str]:
    """Return lower-cased word tokens from the provided text."""

    return [token.lower() for token in _TOKEN_RE.findall(text or "")]


def content_tokens(text: str) -> List[str]:
    """Tokens with stopwords removed."""

    return [token for token in tokenize(text) if token not in STOPWORDS]


def word_starts(text: str) -> List[int]:
    """Character offsets at which each word of ``text`` starts."""

    return [match.start() for match in _TOKEN_RE.finditer(text or "")]


def word_index_at(starts: Sequence[int], char_offset: int) -> int:
    """Index of the word containing (or following) ``char_offset``."""

    return max(0, bisect.bisect_right(starts, char_offset) - 1)


def word_count(text: str) -> int:
    return len(_TOKEN_RE.findall(text or ""))


def split_sentences(text: str) -> List[Tuple[int, str]]:
    """Split text into ``(char_offset, sentence)`` pairs, dropping blanks."""

    sentences: List[Tuple[int, str]] = []
    for match in _SENTENCE_RE.finditer(text or ""):
        raw = match.group(0)
        stripped = raw.strip()
        if not stripped:
            continue
        sentences.append((match.start() + raw.index(stripped[0]), stripped))
    return sentences


def phrase_pattern(phrase: str) -> re.Pattern[str]:
    """Case-insensitive word-boundary pattern tolerant of whitespace runs."""

    words = [re.escape(word) for word in phrase.split()]
    body = r"\s+".join(words)
    return re.compile(rf"(?<![\w]){body}(?![\w])", flags=re.IGNORECASE)


def ngrams(tokens: Sequence[str], min_len: int, max_len: int) -> List[Tuple[str, ...]]:
    """All contiguous n-grams, longest first, preserving left-to-right order."""

    grams: List[Tuple[str, ...]] = []
    upper = min(max_len, len(tokens))
    for size in range(upper, min_len - 1, -1):
        for start in range(0, len(tokens) - size + 1):
            grams.append(tuple(tokens[start:start + size]))
    return grams


def jaccard(set_a: Iterable[str], set_b: Iterable[str]) -> float:
    """Return Jaccard similarity for two iterables."""

    set_a = set(set_a)
    set_b = set(set_b)
    if not set_a and not set_b:
        return 0.0
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)
