"""Two-stage filtering: store pushdown first, then client-side matching.

Every dimension is OR within itself and AND across dimensions. A pane's fixed
status set is only ever narrowed by a user status filter, never widened.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Iterable, Sequence

from .model import BeanRecord
from .store import ListFilter


def _clean(values: Iterable[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    out: list[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in out:
            out.append(text)
    return tuple(out)


@dataclass(frozen=True)
class FilterState:
    text: str | None = None
    statuses: tuple[str, ...] = ()
    types: tuple[str, ...] = ()
    priorities: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        text = (self.text or "").strip()
        object.__setattr__(self, "text", text or None)
        object.__setattr__(self, "statuses", _clean(self.statuses))
        object.__setattr__(self, "types", _clean(self.types))
        object.__setattr__(self, "priorities", _clean(self.priorities))
        object.__setattr__(self, "tags", _clean(self.tags))

    @property
    def is_empty(self) -> bool:
        return not (self.text or self.statuses or self.types or self.priorities or self.tags)

    @property
    def query(self) -> str:
        return self.text or ""

    def merged(self, **partial: object) -> FilterState:
        """Apply a partial update; keys left out keep their current value."""
        unknown = set(partial) - {"text", "statuses", "types", "priorities", "tags"}
        if unknown:
            raise ValueError(f"unknown filter field(s): {', '.join(sorted(unknown))}")
        return replace(self, **partial)  # type: ignore[arg-type]

    def describe(self) -> str | None:
        parts: list[str] = []
        if self.text:
            parts.append(f'text:"{self.text}"')
        if self.statuses:
            parts.append(f"status:{','.join(self.statuses)}")
        if self.tags:
            parts.append(f"tags:{','.join(self.tags)}")
        if self.types:
            parts.append(f"types:{','.join(self.types)}")
        if self.priorities:
            parts.append(f"priority:{','.join(self.priorities)}")
        return " ".join(parts) if parts else None


EMPTY_FILTER = FilterState()


def effective_statuses(
    fixed: Sequence[str] | None,
    requested: Sequence[str] | None,
) -> tuple[str, ...] | None:
    """Combine a pane's fixed statuses with a user status filter.

    Returns None when nothing constrains status, and an empty tuple when the
    two sets are disjoint (nothing can match).
    """
    fixed_set = _clean(fixed)
    user_set = _clean(requested)
    if not fixed_set and not user_set:
        return None
    if not fixed_set:
        return user_set
    if not user_set:
        return fixed_set
    return tuple(status for status in fixed_set if status in user_set)


def pushdown_filter(
    state: FilterState,
    *,
    fixed_statuses: Sequence[str] | None = None,
    store_search: bool = True,
) -> ListFilter | None:
    """Build the store-side filter. None means the result is provably empty."""
    statuses = effective_statuses(fixed_statuses, state.statuses)
    if statuses is not None and not statuses:
        return None
    return ListFilter(
        status=statuses or (),
        type=state.types,
        search=state.text if store_search else None,
    )


def matches_text(record: BeanRecord, query: str) -> bool:
    """Case-insensitive substring match across every searchable field."""
    needle = query.strip().lower()
    if not needle:
        return True
    fields = [
        record.id,
        record.code,
        record.slug,
        record.title,
        record.body,
        record.status,
        record.type,
        record.priority or "",
        *record.tags,
    ]
    return any(needle in value.lower() for value in fields if value)


def local_filter(
    records: Iterable[BeanRecord],
    state: FilterState,
    *,
    text: bool = False,
    statuses: Sequence[str] | None = None,
) -> list[BeanRecord]:
    """Client-side stage. ``text`` re-applies the query locally.

    ``statuses`` re-checks the effective status set so a store that ignores
    pushdown cannot leak records outside the pane.
    """
    predicates: list[Callable[[BeanRecord], bool]] = []
    if statuses is not None:
        allowed_statuses = set(statuses)
        predicates.append(lambda r: r.status in allowed_statuses)
    if state.types:
        allowed_types = set(state.types)
        predicates.append(lambda r: r.type in allowed_types)
    if state.priorities:
        allowed_priorities = set(state.priorities)
        predicates.append(lambda r: r.effective_priority in allowed_priorities)
    if state.tags:
        wanted_tags = set(state.tags)
        predicates.append(lambda r: any(tag in wanted_tags for tag in r.tags))
    if text and state.text:
        query = state.text
        predicates.append(lambda r: matches_text(r, query))
    return [r for r in records if all(pred(r) for pred in predicates)]


FilterListener = Callable[[str], None]


class FilterRegistry:
    """Per-view filter state with change notification."""

    def __init__(self) -> None:
        self._filters: dict[str, FilterState] = {}
        self._listeners: list[FilterListener] = []

    def get(self, view_id: str) -> FilterState:
        return self._filters.get(view_id, EMPTY_FILTER)

    def set(self, view_id: str, state: FilterState | None) -> None:
        if state is None or state.is_empty:
            self._filters.pop(view_id, None)
        else:
            self._filters[view_id] = state
        self._fire(view_id)

    def clear(self, view_id: str) -> None:
        self._filters.pop(view_id, None)
        self._fire(view_id)

    def clear_all(self) -> None:
        view_ids = list(self._filters)
        self._filters.clear()
        for view_id in view_ids:
            self._fire(view_id)

    def describe(self, view_id: str) -> str | None:
        state = self._filters.get(view_id)
        return state.describe() if state else None

    def on_change(self, listener: FilterListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _fire(self, view_id: str) -> None:
        for listener in list(self._listeners):
            listener(view_id)
