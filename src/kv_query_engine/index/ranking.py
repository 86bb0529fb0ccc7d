"""Optional relevance ranking and match previews for search results.

Base query resolution returns matches in key order; callers opt into ranking
explicitly. Scores combine how many query tokens matched in each field, scaled
by a per-field weight, with an exponential recency bonus.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
import logging

from kv_query_engine.domain.model import Record, parse_timestamp, utc_now


logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS: Mapping[str, float] = {
    "title": 3.0,
    "name": 3.0,
    "description": 2.0,
    "content": 1.0,
}
DEFAULT_HALF_LIFE_DAYS = 30.0
_SECONDS_PER_DAY = 86400.0


@dataclass(slots=True, frozen=True)
class SearchHit:
    """Tokens of the query that matched one field of one record."""

    id: str
    field: str
    tokens: frozenset[str]


@dataclass(slots=True, frozen=True)
class RankedHit:
    id: str
    score: float
    matched_tokens: int


def recency_bonus(timestamp: str, now: datetime, half_life_days: float) -> float:
    """Return a bonus in ``(0, 1]`` that halves every ``half_life_days``."""
    age_days = max((now - parse_timestamp(timestamp)).total_seconds() / _SECONDS_PER_DAY, 0.0)
    return 0.5 ** (age_days / half_life_days)


def rank_search_results(
    hits: Iterable[SearchHit],
    query_tokens: Collection[str],
    records: Iterable[Record] | None = None,
    field_weights: Mapping[str, float] | None = None,
    *,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    timestamp_field: str = "createdAt",
    now: datetime | None = None,
) -> list[RankedHit]:
    """Score hits and return them best-first.

    Args:
        hits: Per-field matches collected during search resolution
        query_tokens: Tokens of the analyzed query
        records: Hydrated records used for the recency bonus; omit to skip it
        field_weights: Weight per field name; unknown fields weigh 1
        half_life_days: Age at which the recency bonus halves
        timestamp_field: Record field the recency bonus reads
        now: Reference time for ages (defaults to the current UTC time)

    Returns:
        Ranked hits sorted by score descending, ties broken by id.
    """
    weights = DEFAULT_FIELD_WEIGHTS if field_weights is None else field_weights
    wanted = frozenset(query_tokens)
    scores: dict[str, float] = {}
    matched: dict[str, int] = {}

    for hit in hits:
        matches = len(hit.tokens & wanted)
        scores[hit.id] = scores.get(hit.id, 0.0) + matches * weights.get(hit.field, 1.0)
        matched[hit.id] = matched.get(hit.id, 0) + matches

    if records is not None:
        reference = now or utc_now()
        for record in records:
            if record.id not in scores:
                continue
            timestamp = record.get(timestamp_field)
            if not isinstance(timestamp, str) or not timestamp:
                continue
            try:
                scores[record.id] += recency_bonus(timestamp, reference, half_life_days)
            except ValueError:
                logger.debug("Skipping recency bonus for %s: unparseable %s", record.id, timestamp_field)

    ranked = [RankedHit(id=record_id, score=score, matched_tokens=matched[record_id]) for record_id, score in scores.items()]
    ranked.sort(key=lambda item: (-item.score, item.id))
    return ranked


def highlight_matches(text: str, tokens: Collection[str], max_length: int = 200) -> str:
    """Return a preview of ``text`` centred on the first matched token."""
    if not text:
        return ""

    lower_text = text.lower()
    first_match = -1
    for token in tokens:
        position = lower_text.find(token)
        if position != -1 and (first_match == -1 or position < first_match):
            first_match = position

    if len(text) <= max_length:
        return text
    if first_match == -1:
        return text[:max_length] + "..."

    start = max(0, first_match - max_length // 2)
    end = min(len(text), start + max_length)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return f"{prefix}{text[start:end]}{suffix}"
