"""Deterministic sibling ordering."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from .model import PRIORITY_RANK, STATUS_RANK, TYPE_RANK, BeanRecord

logger = logging.getLogger(__name__)

SortKey = Callable[[BeanRecord], tuple]

DEFAULT_SORT_MODE = "status-priority-type-title"
SORT_MODES = (
    "status-priority-type-title",
    "priority-status-type-title",
    "updated",
    "created",
    "id",
)

_UNKNOWN_RANK = 99


def _status_rank(record: BeanRecord) -> int:
    return STATUS_RANK.get(record.status, _UNKNOWN_RANK)


def _priority_rank(record: BeanRecord) -> int:
    return PRIORITY_RANK.get(record.effective_priority, _UNKNOWN_RANK)


def _type_rank(record: BeanRecord) -> int:
    return TYPE_RANK.get(record.type, _UNKNOWN_RANK)


def _tiebreak(record: BeanRecord) -> tuple[str, str]:
    return (record.title, record.id)


def _status_first(record: BeanRecord) -> tuple:
    return (
        _status_rank(record),
        _priority_rank(record),
        _type_rank(record),
        *_tiebreak(record),
    )


def _priority_first(record: BeanRecord) -> tuple:
    return (
        _priority_rank(record),
        _status_rank(record),
        _type_rank(record),
        *_tiebreak(record),
    )


def _newest_updated(record: BeanRecord) -> tuple:
    return (-record.updated_at.timestamp(), *_tiebreak(record))


def _newest_created(record: BeanRecord) -> tuple:
    return (-record.created_at.timestamp(), *_tiebreak(record))


def _by_id(record: BeanRecord) -> tuple:
    return (record.id,)


_KEYS: dict[str, SortKey] = {
    "status-priority-type-title": _status_first,
    "priority-status-type-title": _priority_first,
    "updated": _newest_updated,
    "created": _newest_created,
    "id": _by_id,
}


def is_sort_mode(mode: str) -> bool:
    return mode in _KEYS


def sort_key(mode: str) -> SortKey | None:
    """Key function for ``mode``; None when the mode is unknown."""
    return _KEYS.get(mode)


def sort_records(records: Sequence[BeanRecord], mode: str) -> list[BeanRecord]:
    """Sort one sibling group. Unknown modes keep the input order."""
    key = sort_key(mode)
    if key is None:
        logger.debug("unknown sort mode %r; keeping input order", mode)
        return list(records)
    return sorted(records, key=key)
