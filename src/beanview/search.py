"""Weighted free-text relevance ranking."""

from __future__ import annotations

from typing import Sequence

from .model import BeanRecord
from .sorting import DEFAULT_SORT_MODE, sort_key, sort_records

# -- Tier weights --
IDENTITY_EXACT = 1000
IDENTITY_PREFIX = 500
IDENTITY_SUBSTRING = 300
TITLE_EXACT = 200
TITLE_PREFIX = 150
TITLE_SUBSTRING = 100
BODY_MATCH = 20
TAG_MATCH = 15
METADATA_MATCH = 10


def normalize_query(query: str | None) -> str:
    return (query or "").strip().lower()


def _tier(values: Sequence[str], needle: str, exact: int, prefix: int, substring: int) -> int:
    if any(value == needle for value in values):
        return exact
    if any(value.startswith(needle) for value in values):
        return prefix
    if any(needle in value for value in values):
        return substring
    return 0


def score_relevance(record: BeanRecord, query: str) -> int:
    """Additive score across identity, title, content and metadata tiers.

    Each tier contributes its best match only; tiers are summed.
    """
    needle = normalize_query(query)
    if not needle:
        return 0

    identity = [value.lower() for value in (record.id, record.code) if value]
    score = _tier(identity, needle, IDENTITY_EXACT, IDENTITY_PREFIX, IDENTITY_SUBSTRING)
    score += _tier(
        [record.title.lower()], needle, TITLE_EXACT, TITLE_PREFIX, TITLE_SUBSTRING
    )

    if needle in record.body.lower():
        score += BODY_MATCH
    if any(needle in tag.lower() for tag in record.tags):
        score += TAG_MATCH
    metadata = (record.status, record.type, record.priority or "")
    if any(needle in value.lower() for value in metadata):
        score += METADATA_MATCH
    return score


def rank(
    records: Sequence[BeanRecord],
    query: str | None,
    sort_mode: str = DEFAULT_SORT_MODE,
) -> list[BeanRecord]:
    """Order by descending score; ties fall back to ``sort_mode``.

    A blank query applies no scoring at all.
    """
    needle = normalize_query(query)
    if not needle:
        return sort_records(records, sort_mode)

    scores = {record.id: score_relevance(record, needle) for record in records}
    key = sort_key(sort_mode)
    if key is None:
        # Python's sort is stable, so unknown modes keep input order on ties.
        return sorted(records, key=lambda r: -scores[r.id])
    return sorted(records, key=lambda r: (-scores[r.id], key(r)))
