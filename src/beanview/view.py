"""Per-pane refresh pipeline and the registry that ties panes together.

fetch (pushdown) -> post-fetch hook -> augmentation -> local filters ->
relevance -> tree build -> sibling sort -> snapshot -> change listeners
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Mapping, Sequence

from .dedup import ErrorDeduper
from .errors import AugmentationError, FetchError, user_message
from .filters import EMPTY_FILTER, FilterState, effective_statuses, local_filter, pushdown_filter
from .model import BeanRecord
from .mutations import MutationValidator
from .panes import PANES, PaneSpec
from .search import normalize_query, rank
from .sorting import DEFAULT_SORT_MODE, sort_records
from .store import BeanStore
from .tree import EMPTY_SNAPSHOT, TreeNode, TreeSnapshot, build_snapshot

logger = logging.getLogger(__name__)

RecordHook = Callable[[list[BeanRecord]], list[BeanRecord]]
ChangeListener = Callable[["BeanView", TreeSnapshot], None]


class BeanView:
    """One pane over a store. Each refresh produces a brand-new snapshot."""

    def __init__(
        self,
        store: BeanStore,
        pane: PaneSpec,
        *,
        deduper: ErrorDeduper,
        sort_mode: str = DEFAULT_SORT_MODE,
        post_fetch_filter: RecordHook | None = None,
        augment: RecordHook | None = None,
        local_text_search: bool = False,
    ) -> None:
        self.store = store
        self.pane = pane
        self.deduper = deduper
        self.sort_mode = sort_mode
        self.post_fetch_filter = post_fetch_filter
        self.augment = augment
        self.local_text_search = local_text_search
        self.filter: FilterState = EMPTY_FILTER
        self.snapshot: TreeSnapshot = EMPTY_SNAPSHOT
        self.last_error: str | None = None
        self._listeners: list[ChangeListener] = []
        self._generation = 0

    # -- state --------------------------------------------------------------

    def set_sort_mode(self, mode: str) -> None:
        self.sort_mode = mode

    def set_filter(self, state: FilterState | None = None, **partial: object) -> None:
        base = state if state is not None else self.filter
        self.filter = base.merged(**partial) if partial else base

    def clear_filter(self) -> None:
        self.filter = EMPTY_FILTER

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    # -- queries ------------------------------------------------------------

    def get_children(self, node: TreeNode | None = None) -> tuple[TreeNode, ...]:
        return self.snapshot.get_children(node.id if node is not None else None)

    def get_parent(self, node: TreeNode) -> TreeNode | None:
        return self.snapshot.get_parent(node.id)

    @property
    def visible_count(self) -> int:
        return len(self.snapshot)

    def title(self, *, show_counts: bool = True) -> str:
        base = self.pane.title
        description = self.filter.describe()
        if description:
            base = f"{base} [{description}]"
        return f"{base} ({self.visible_count})" if show_counts else base

    # -- pipeline -----------------------------------------------------------

    @property
    def _store_searches(self) -> bool:
        if self.local_text_search or self.pane.local_text:
            return False
        return bool(getattr(self.store, "supports_search", True))

    @staticmethod
    def _order(query: str, mode: str) -> Callable[[Sequence[BeanRecord]], list[BeanRecord]]:
        if normalize_query(query):
            return lambda group: rank(group, query, mode)
        return lambda group: sort_records(group, mode)

    def _augment(self, records: list[BeanRecord]) -> list[BeanRecord]:
        if self.augment is None:
            return records
        try:
            return self.augment(records)
        except Exception as exc:
            if not isinstance(exc, AugmentationError):
                exc = AugmentationError(user_message(exc))
            logger.warning(
                "%s: augmentation failed, using un-augmented beans: %s",
                self.pane.name,
                exc,
            )
            return records

    def build(
        self,
        records: Iterable[BeanRecord],
        *,
        filter: FilterState | None = None,
        sort_mode: str | None = None,
    ) -> TreeSnapshot:
        """Pure part of a refresh: filter, rank, tree, sort.

        ``filter`` and ``sort_mode`` default to the view's current state.
        """
        state = self.filter if filter is None else filter
        mode = self.sort_mode if sort_mode is None else sort_mode
        rows = list(records)
        if self.post_fetch_filter is not None:
            rows = self.post_fetch_filter(rows)
        rows = self._augment(rows)
        statuses = effective_statuses(self.pane.statuses, state.statuses)
        rows = local_filter(
            rows,
            state,
            text=not self._store_searches,
            statuses=statuses,
        )
        return build_snapshot(rows, order=self._order(state.query, mode), flat=self.pane.flat)

    def _publish(self, snapshot: TreeSnapshot) -> TreeSnapshot:
        self.snapshot = snapshot
        for listener in list(self._listeners):
            listener(self, snapshot)
        return snapshot

    async def refresh(self) -> TreeSnapshot:
        """Fetch and publish a new snapshot.

        The filter and sort mode are read once, before the fetch. When a
        newer refresh starts while this one waits on the store, this one
        publishes nothing and returns the current snapshot.
        """
        self._generation += 1
        generation = self._generation
        state = self.filter
        mode = self.sort_mode

        pushdown = pushdown_filter(
            state,
            fixed_statuses=self.pane.statuses,
            store_search=self._store_searches,
        )
        if pushdown is None:
            logger.debug("%s: status filters are disjoint; skipping fetch", self.pane.name)
            self.last_error = None
            return self._publish(EMPTY_SNAPSHOT)

        try:
            records = await asyncio.to_thread(self.store.list, pushdown)
            snapshot = self.build(records, filter=state, sort_mode=mode)
        except Exception as exc:
            if generation != self._generation:
                logger.debug("%s: discarding failed stale refresh: %s", self.pane.name, exc)
                return self.snapshot
            error = FetchError(f"Failed to fetch beans: {user_message(exc)}")
            self.last_error = str(error)
            self.deduper.report(str(error), exc)
            return self._publish(EMPTY_SNAPSHOT)

        if generation != self._generation:
            logger.debug("%s: discarding stale refresh", self.pane.name)
            return self.snapshot
        self.last_error = None
        logger.debug("%s: fetched %d beans, showing %d", self.pane.name, len(records), len(snapshot))
        return self._publish(snapshot)


class ViewRegistry:
    """All panes over one store, sharing a single error deduper."""

    def __init__(
        self,
        store: BeanStore,
        *,
        deduper: ErrorDeduper,
        panes: Iterable[PaneSpec] | None = None,
        sort_mode: str = DEFAULT_SORT_MODE,
        local_text_search: bool = False,
    ) -> None:
        self.store = store
        self.deduper = deduper
        self.views: dict[str, BeanView] = {
            pane.name: BeanView(
                store,
                pane,
                deduper=deduper,
                sort_mode=sort_mode,
                local_text_search=local_text_search,
            )
            for pane in (panes if panes is not None else PANES.values())
        }

    def __getitem__(self, name: str) -> BeanView:
        view = self.views.get(name)
        if view is None:
            raise ValueError(f"unknown pane: {name}")
        return view

    def __iter__(self):
        return iter(self.views.values())

    def detached(self, name: str) -> BeanView:
        """An unfiltered private view of a pane. Changing it leaves the shared view alone."""
        shared = self[name]
        return BeanView(
            self.store,
            shared.pane,
            deduper=self.deduper,
            sort_mode=shared.sort_mode,
            post_fetch_filter=shared.post_fetch_filter,
            augment=shared.augment,
            local_text_search=shared.local_text_search,
        )

    async def refresh_all(self) -> dict[str, TreeSnapshot]:
        names = list(self.views)
        snapshots = await asyncio.gather(*(self.views[name].refresh() for name in names))
        if all(self.views[name].last_error is None for name in names):
            self.deduper.reset()
        return dict(zip(names, snapshots))

    def lookup(self) -> Mapping[str, BeanRecord]:
        merged: dict[str, BeanRecord] = {}
        for view in self.views.values():
            merged.update(view.snapshot.records)
        return merged

    def validator(self) -> MutationValidator:
        return MutationValidator(self.lookup())
