from __future__ import annotations

from pathlib import Path

import pytest

from beanview.errors import BeanConflictError, BeanNotFoundError
from beanview.store import (
    BeanStore,
    ListFilter,
    MarkdownBeanStore,
    UpdatePatch,
    resolve_beans_dir,
    slugify,
)


@pytest.fixture
def store(tmp_path: Path) -> MarkdownBeanStore:
    return MarkdownBeanStore(tmp_path / ".beans")


def test_create_writes_frontmatter_file(store: MarkdownBeanStore) -> None:
    record = store.create("Fix auth bug", type="bug", priority="High", tags=["api", " api "], body="Details\n", bean_id="bean-a1b2")

    path = store.root / "bean-a1b2--fix-auth-bug.md"
    text = path.read_text(encoding="utf-8")
    assert text.startswith("---\n")
    assert "title: Fix auth bug" in text
    assert record.code == "a1b2"
    assert record.slug == "fix-auth-bug"
    assert record.priority == "high"
    assert record.tags == ("api",)
    assert record.body == "Details\n"
    assert record.etag
    assert isinstance(store, BeanStore)


def test_list_applies_status_type_and_search(store: MarkdownBeanStore) -> None:
    store.create("Login flow", status="in-progress", bean_id="bean-0001")
    store.create("Logout", status="todo", type="bug", bean_id="bean-0002")
    store.create("Shipped", status="completed", body="mentions login", bean_id="bean-0003")

    assert {r.id for r in store.list()} == {"bean-0001", "bean-0002", "bean-0003"}
    assert [r.id for r in store.list(ListFilter(status=("todo", "in-progress"), type=("bug",)))] == ["bean-0002"]
    assert {r.id for r in store.list(ListFilter(search="LOGIN"))} == {"bean-0001", "bean-0003"}


def test_missing_directory_lists_nothing(tmp_path: Path) -> None:
    assert MarkdownBeanStore(tmp_path / "nope").list() == []


def test_malformed_files_are_skipped(store: MarkdownBeanStore) -> None:
    store.create("Good", bean_id="bean-good")
    (store.root / "bean-bad--bad.md").write_text("no frontmatter here", encoding="utf-8")
    (store.root / "bean-half--half.md").write_text("---\ntitle: Half\n---\n", encoding="utf-8")

    assert [r.id for r in store.list()] == ["bean-good"]


def test_show_unknown_raises(store: MarkdownBeanStore) -> None:
    with pytest.raises(BeanNotFoundError, match="unknown bean: bean-zzzz"):
        store.show("bean-zzzz")


def test_update_status_and_parent(store: MarkdownBeanStore) -> None:
    epic = store.create("Epic", type="epic", bean_id="bean-e001")
    task = store.create("Task", bean_id="bean-t001")

    moved = store.update(task.id, UpdatePatch(status="in_progress", parent_id=epic.id, if_match=task.etag))

    assert moved.status == "in-progress"
    assert moved.parent_id == epic.id
    assert moved.etag != task.etag

    cleared = store.update(task.id, UpdatePatch(clear_parent=True))
    assert cleared.parent_id is None


def test_update_with_stale_etag_conflicts(store: MarkdownBeanStore) -> None:
    task = store.create("Task", bean_id="bean-t001")
    store.update(task.id, UpdatePatch(status="completed"))

    with pytest.raises(BeanConflictError) as excinfo:
        store.update(task.id, UpdatePatch(status="todo", if_match=task.etag))

    assert excinfo.value.current_etag == store.show(task.id).etag
    assert store.show(task.id).status == "completed"


def test_update_rejects_bad_parents(store: MarkdownBeanStore) -> None:
    task = store.create("Task", bean_id="bean-t001")
    epic = store.create("Epic", type="epic", bean_id="bean-e001")
    feature = store.create("Feature", type="feature", parent_id=epic.id, bean_id="bean-f001")

    with pytest.raises(BeanConflictError, match="own parent"):
        store.update(task.id, UpdatePatch(parent_id=task.id))
    with pytest.raises(BeanConflictError, match="not found"):
        store.update(task.id, UpdatePatch(parent_id="bean-none"))
    with pytest.raises(BeanConflictError, match="cannot have a task"):
        store.update(epic.id, UpdatePatch(parent_id=task.id))
    assert store.update(task.id, UpdatePatch(parent_id=feature.id)).parent_id == feature.id


def test_update_blocking_lists(store: MarkdownBeanStore) -> None:
    task = store.create("Task", bean_id="bean-t001")

    updated = store.update(task.id, UpdatePatch(add_blocking=("bean-x", "bean-y")))
    assert updated.blocking_ids == ("bean-x", "bean-y")

    updated = store.update(task.id, UpdatePatch(remove_blocking=("bean-x",), add_blocked_by=("bean-z",)))
    assert updated.blocking_ids == ("bean-y",)
    assert updated.blocked_by_ids == ("bean-z",)

    with pytest.raises(BeanConflictError):
        store.update(task.id, UpdatePatch(add_blocking=(task.id,)))


def test_update_rejects_unknown_status(store: MarkdownBeanStore) -> None:
    task = store.create("Task", bean_id="bean-t001")

    with pytest.raises(ValueError, match="invalid status"):
        store.update(task.id, UpdatePatch(status="paused"))


def test_resolve_beans_dir_prefers_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("BEANVIEW_BEANS_DIR", str(tmp_path / "elsewhere"))

    assert resolve_beans_dir(tmp_path, configured="ignored") == (tmp_path / "elsewhere").resolve()


def test_resolve_beans_dir_walks_upward(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("BEANVIEW_BEANS_DIR", raising=False)
    (tmp_path / ".beans").mkdir()
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert resolve_beans_dir(nested) == (tmp_path / ".beans").resolve()
    assert resolve_beans_dir(nested, configured="work") == (nested / "work").resolve()


def test_slugify() -> None:
    assert slugify("Fix: the AUTH bug!") == "fix-the-auth-bug"
    assert slugify("!!!") == "bean"
