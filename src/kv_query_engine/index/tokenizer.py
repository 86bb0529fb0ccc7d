"""Search tokenization for inverted-index maintenance and query parsing.

The analyzer is a small composable pipeline (tokenizer + filters). Indexing and
querying must run the exact same pipeline for a type, otherwise query tokens
would never meet the keys written at index time.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
import re
from typing import Any, Protocol

from kv_query_engine.registry import DEFAULT_STOPWORDS


DEFAULT_MIN_TOKEN_LENGTH = 2
DEFAULT_MAX_TOKEN_LENGTH = 50


@dataclass(slots=True)
class Token:
    """Represents a token emitted by the tokenizer."""

    text: str
    position: int


class Tokenizer(Protocol):
    def __call__(self, text: str) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class TokenFilter(Protocol):
    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class LowercaseSplitTokenizer:
    """Lowercase the text, then emit runs of ``[a-z0-9]`` as tokens.

    Lowercasing happens before splitting so that every other character,
    punctuation and non-ASCII letters included, acts as a separator.
    """

    _PATTERN = re.compile(r"[a-z0-9]+")

    def __call__(self, text: str) -> Iterator[Token]:
        for position, match in enumerate(self._PATTERN.finditer(text.lower())):
            yield Token(text=match.group(0), position=position)


class LengthFilter:
    """Drops tokens outside ``[min_length, max_length]``."""

    def __init__(self, min_length: int = DEFAULT_MIN_TOKEN_LENGTH, max_length: int = DEFAULT_MAX_TOKEN_LENGTH) -> None:
        self.min_length = min_length
        self.max_length = max_length

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if self.min_length <= len(token.text) <= self.max_length:
                yield token


class StopFilter:
    """Removes stopwords from the stream."""

    def __init__(self, stopwords: Collection[str] | None = None) -> None:
        vocab = stopwords if stopwords is not None else DEFAULT_STOPWORDS
        self.stopwords = frozenset(word.lower() for word in vocab)

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if token.text not in self.stopwords:
                yield token


class AnalyzerPipeline:
    """Composable analyzer pipeline (tokenizer + filters)."""

    def __init__(self, tokenizer: Tokenizer, filters: Sequence[TokenFilter] | None = None) -> None:
        self.tokenizer = tokenizer
        self.filters = list(filters or [])

    def __call__(self, text: str) -> list[Token]:
        stream: Iterable[Token] = self.tokenizer(text)
        for token_filter in self.filters:
            stream = token_filter(stream)
        return list(stream)


def build_search_analyzer(
    stopwords: Collection[str] | None = None,
    min_length: int = DEFAULT_MIN_TOKEN_LENGTH,
    max_length: int = DEFAULT_MAX_TOKEN_LENGTH,
) -> AnalyzerPipeline:
    return AnalyzerPipeline(
        LowercaseSplitTokenizer(),
        [LengthFilter(min_length, max_length), StopFilter(stopwords)],
    )


def tokenize(
    text: str | None,
    stopwords: Collection[str] | None = None,
    min_length: int = DEFAULT_MIN_TOKEN_LENGTH,
    max_length: int = DEFAULT_MAX_TOKEN_LENGTH,
) -> frozenset[str]:
    """Return the deduplicated set of search tokens in ``text``.

    ``stopwords=None`` applies the default stopword list; pass an empty
    collection to disable stopword removal.
    """
    if not text:
        return frozenset()
    analyzer = build_search_analyzer(stopwords, min_length, max_length)
    return frozenset(token.text for token in analyzer(text))


def tokenize_fields(
    record: Mapping[str, Any],
    fields: Iterable[str],
    stopwords: Collection[str] | None = None,
) -> dict[str, frozenset[str]]:
    """Tokenize each configured field that holds a string.

    Non-string values are skipped and fields with no surviving tokens are
    omitted from the result.
    """
    result: dict[str, frozenset[str]] = {}
    for field in fields:
        value = record.get(field)
        if isinstance(value, str):
            tokens = tokenize(value, stopwords)
            if tokens:
                result[field] = tokens
    return result


@dataclass(slots=True, frozen=True)
class TokenDiff:
    added: frozenset[str]
    removed: frozenset[str]

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def diff_token_sets(old_tokens: Collection[str], new_tokens: Collection[str]) -> TokenDiff:
    """Partition the change between two token sets for incremental indexing."""
    old_set = frozenset(old_tokens)
    new_set = frozenset(new_tokens)
    return TokenDiff(added=new_set - old_set, removed=old_set - new_set)
