from __future__ import annotations

import asyncio
import threading

import pytest

from beanview.errors import AugmentationError
from beanview.filters import FilterState
from beanview.panes import ACTIVE, COMPLETED, SEARCH
from beanview.view import BeanView, ViewRegistry


def _refresh(view: BeanView):
    return asyncio.run(view.refresh())


def test_refresh_builds_tree_for_pane(bean, fake_store, deduper) -> None:
    store = fake_store(
        [
            bean("b1", status="todo"),
            bean("b2", status="in-progress", parent_id="b1"),
            bean("b3", status="completed"),
        ]
    )
    view = BeanView(store, ACTIVE, deduper=deduper)

    snap = _refresh(view)

    assert [n.id for n in snap.roots] == ["b1"]
    assert [n.id for n in view.get_children(snap.get("b1"))] == ["b2"]
    assert view.get_parent(snap.get("b2")).id == "b1"
    assert store.calls[0].status == ("todo", "in-progress")
    assert view.visible_count == 2
    assert view.title() == "Open Beans (2)"


def test_parent_outside_the_pane_leaves_child_at_root(bean, fake_store, deduper) -> None:
    store = fake_store(
        [
            bean("done", status="completed", type="epic"),
            bean("open", status="todo", parent_id="done"),
        ]
    )

    snap = _refresh(BeanView(store, ACTIVE, deduper=deduper))

    assert [n.id for n in snap.roots] == ["open"]


def test_user_status_filter_intersects_pane_statuses(bean, fake_store, deduper) -> None:
    store = fake_store([bean("t", status="todo"), bean("w", status="in-progress")])
    view = BeanView(store, ACTIVE, deduper=deduper)
    view.set_filter(statuses=("in-progress",))

    snap = _refresh(view)

    assert [n.id for n in snap.roots] == ["w"]
    assert store.calls[-1].status == ("in-progress",)
    assert view.title() == "Open Beans [status:in-progress] (1)"


def test_disjoint_status_filter_skips_store(bean, fake_store, deduper) -> None:
    store = fake_store([bean("t")])
    view = BeanView(store, ACTIVE, deduper=deduper)
    view.set_filter(FilterState(statuses=("completed",)))

    snap = _refresh(view)

    assert len(snap) == 0
    assert store.calls == []


def test_search_pane_ranks_locally(bean, fake_store, deduper) -> None:
    store = fake_store(
        [
            bean("x2", title="Refactor storage", body="uses auth token", status="completed"),
            bean("x1", title="Fix auth bug", status="draft"),
            bean("x3", title="Unrelated"),
        ]
    )
    view = BeanView(store, SEARCH, deduper=deduper)
    view.set_filter(text="auth")

    snap = _refresh(view)

    assert [n.id for n in snap.roots] == ["x1", "x2"]
    assert store.calls[-1].search is None


def test_store_search_is_trusted_unless_local(bean, fake_store, deduper) -> None:
    store = fake_store([bean("a", title="auth")])
    view = BeanView(store, ACTIVE, deduper=deduper)
    view.set_filter(text="auth")
    _refresh(view)
    assert store.calls[-1].search == "auth"

    local = BeanView(store, ACTIVE, deduper=deduper, local_text_search=True)
    local.set_filter(text="auth")
    _refresh(local)
    assert store.calls[-1].search is None


def test_fetch_failure_publishes_empty_snapshot_and_dedups(bean, fake_store, deduper, notices) -> None:
    store = fake_store([bean("t")])
    store.fail_with = OSError("connection refused")
    registry = ViewRegistry(store, deduper=deduper)

    snapshots = asyncio.run(registry.refresh_all())

    assert all(len(snap) == 0 for snap in snapshots.values())
    assert registry["active"].last_error == "Failed to fetch beans: connection refused"
    assert notices == ["Failed to fetch beans: connection refused"]


def test_successful_refresh_resets_deduper(bean, fake_store, deduper, notices) -> None:
    store = fake_store([bean("t")])
    store.fail_with = OSError("offline")
    registry = ViewRegistry(store, deduper=deduper)
    asyncio.run(registry.refresh_all())

    store.fail_with = None
    asyncio.run(registry.refresh_all())
    assert deduper.last_error_message is None
    assert registry["active"].last_error is None

    store.fail_with = OSError("offline")
    asyncio.run(registry.refresh_all())
    assert notices == ["Failed to fetch beans: offline", "Failed to fetch beans: offline"]


def test_augmentation_failure_falls_back(bean, fake_store, deduper) -> None:
    def augment(records):
        raise AugmentationError("enrichment service down")

    view = BeanView(fake_store([bean("t")]), ACTIVE, deduper=deduper, augment=augment)

    snap = _refresh(view)

    assert [n.id for n in snap.roots] == ["t"]
    assert view.last_error is None


def test_post_fetch_hook_runs_before_tree_build(bean, fake_store, deduper) -> None:
    store = fake_store([bean("keep"), bean("drop")])
    view = BeanView(
        store,
        ACTIVE,
        deduper=deduper,
        post_fetch_filter=lambda rows: [r for r in rows if r.id != "drop"],
    )

    assert [n.id for n in _refresh(view).roots] == ["keep"]


def test_sort_mode_applies_to_siblings(bean, fake_store, deduper) -> None:
    store = fake_store([bean("b", minutes=1), bean("a", minutes=2)])
    view = BeanView(store, ACTIVE, deduper=deduper, sort_mode="id")
    assert [n.id for n in _refresh(view).roots] == ["a", "b"]

    view.set_sort_mode("created")
    assert [n.id for n in _refresh(view).roots] == ["a", "b"]

    view.set_sort_mode("bogus")
    assert [n.id for n in _refresh(view).roots] == ["b", "a"]


def test_change_listeners(bean, fake_store, deduper) -> None:
    view = BeanView(fake_store([bean("t")]), ACTIVE, deduper=deduper)
    seen: list[int] = []
    unsubscribe = view.on_change(lambda v, snap: seen.append(len(snap)))

    _refresh(view)
    unsubscribe()
    _refresh(view)

    assert seen == [1]


def test_clear_filter_and_title_without_counts(bean, fake_store, deduper) -> None:
    view = BeanView(fake_store([bean("c", status="completed")]), COMPLETED, deduper=deduper)
    view.set_filter(text="zzz")
    view.clear_filter()
    _refresh(view)

    assert view.title(show_counts=False) == "Completed"
    assert view.visible_count == 1


def test_registry_lookup_and_validator(bean, fake_store, deduper) -> None:
    store = fake_store([bean("t"), bean("c", status="completed")])
    registry = ViewRegistry(store, deduper=deduper)
    asyncio.run(registry.refresh_all())

    lookup = registry.lookup()

    assert set(lookup) == {"t", "c"}
    assert registry.validator().is_descendant("t", "c") is False
    with pytest.raises(ValueError):
        registry["nope"]


def test_store_without_search_gets_local_text_match(bean, fake_store, deduper) -> None:
    store = fake_store([bean("a", title="auth"), bean("b", title="other")])
    store.supports_search = False
    view = BeanView(store, ACTIVE, deduper=deduper)
    view.set_filter(text="auth")

    snap = _refresh(view)

    assert store.calls[-1].search is None
    assert [n.id for n in snap.roots] == ["a"]


def test_post_fetch_hook_failure_publishes_empty_snapshot(bean, fake_store, deduper, notices) -> None:
    view = BeanView(fake_store([bean("a"), bean("b")]), ACTIVE, deduper=deduper)
    assert len(_refresh(view)) == 2

    def broken(rows):
        raise RuntimeError("hook broke")

    view.post_fetch_filter = broken
    snap = _refresh(view)

    assert len(snap) == 0
    assert view.snapshot is snap
    assert view.last_error == "Failed to fetch beans: hook broke"
    assert notices == ["Failed to fetch beans: hook broke"]


def _hold_first_fetch(store):
    """Block the first ``store.list`` call until the returned event is set."""
    entered = threading.Event()
    release = threading.Event()
    inner = store.list
    calls = []

    def held(filter=None):
        calls.append(filter)
        if len(calls) == 1:
            entered.set()
            release.wait(5)
        return inner(filter)

    store.list = held
    return entered, release


def test_filter_change_during_fetch_uses_filter_from_refresh_start(bean, fake_store, deduper) -> None:
    store = fake_store([bean("b", type="bug"), bean("t", type="task")])
    view = BeanView(store, ACTIVE, deduper=deduper)
    view.set_filter(types=("bug",))
    entered, release = _hold_first_fetch(store)

    async def scenario():
        pending = asyncio.create_task(view.refresh())
        await asyncio.to_thread(entered.wait, 5)
        view.set_filter(types=("task",))
        release.set()
        return await pending

    snap = asyncio.run(scenario())

    assert store.calls[-1].type == ("bug",)
    assert [n.id for n in snap.roots] == ["b"]


def test_slow_refresh_never_overwrites_newer_snapshot(bean, fake_store, deduper) -> None:
    store = fake_store([bean("b", type="bug"), bean("t", type="task")])
    view = BeanView(store, ACTIVE, deduper=deduper)
    published: list[list[str]] = []
    view.on_change(lambda v, snap: published.append([n.id for n in snap.roots]))
    view.set_filter(types=("bug",))
    entered, release = _hold_first_fetch(store)

    async def scenario():
        slow = asyncio.create_task(view.refresh())
        await asyncio.to_thread(entered.wait, 5)
        view.set_filter(types=("task",))
        await view.refresh()
        release.set()
        return await slow

    stale = asyncio.run(scenario())

    assert published == [["t"]]
    assert [n.id for n in view.snapshot.roots] == ["t"]
    assert stale is view.snapshot


def test_failed_stale_refresh_is_not_reported(bean, fake_store, deduper, notices) -> None:
    store = fake_store([bean("t")])
    view = BeanView(store, ACTIVE, deduper=deduper)
    entered, release = _hold_first_fetch(store)

    async def scenario():
        slow = asyncio.create_task(view.refresh())
        await asyncio.to_thread(entered.wait, 5)
        await view.refresh()
        store.fail_with = OSError("offline")
        release.set()
        await slow

    asyncio.run(scenario())

    assert notices == []
    assert view.last_error is None
    assert [n.id for n in view.snapshot.roots] == ["t"]


def test_detached_view_does_not_touch_shared_pane(bean, fake_store, deduper) -> None:
    store = fake_store([bean("a", title="auth"), bean("b", title="other")])
    registry = ViewRegistry(store, deduper=deduper, sort_mode="id")
    asyncio.run(registry.refresh_all())

    private = registry.detached("active")
    private.set_filter(text="auth")
    private.set_sort_mode("created")
    asyncio.run(private.refresh())

    shared = registry["active"]
    assert private is not shared
    assert [n.id for n in private.snapshot.roots] == ["a"]
    assert shared.filter.is_empty
    assert shared.sort_mode == "id"
    assert shared.visible_count == 2
