from __future__ import annotations

import io

import pytest

from beanview.tree import build_snapshot
from beanview.ui import make_console, node_label, render_table, render_tree, resolve_output_mode


def test_resolve_output_mode_auto_follows_tty() -> None:
    assert resolve_output_mode(is_tty=False) == "plain"
    assert resolve_output_mode(is_tty=True) == "rich"
    assert resolve_output_mode("plain", is_tty=True) == "plain"
    assert resolve_output_mode("RICH", is_tty=False) == "rich"


def test_resolve_output_mode_rejects_invalid_value() -> None:
    with pytest.raises(ValueError):
        resolve_output_mode("fancy")


def test_node_label_marks_in_progress_descendants(bean) -> None:
    snap = build_snapshot(
        [
            bean("proj-p001", title="Parent", type="epic"),
            bean("proj-c001", title="Child", status="in-progress", parent_id="proj-p001", tags=("api",)),
        ]
    )

    parent = node_label(snap.get("proj-p001")).plain
    child = node_label(snap.get("proj-c001")).plain

    assert parent.startswith("* Parent")
    assert "p001" in parent
    assert child.startswith("  Child")
    assert "#api" in child


def test_render_tree_nests_children(bean, stdout: io.StringIO) -> None:
    console = make_console("plain", file=stdout)
    snap = build_snapshot(
        [
            bean("b1", title="Root bean", type="epic"),
            bean("b2", title="Child bean", parent_id="b1"),
        ]
    )

    render_tree(console, snap, title="Open Beans (2)")

    lines = stdout.getvalue().splitlines()
    assert lines[0].strip() == "Open Beans (2)"
    assert "Root bean" in lines[1]
    assert "Child bean" in lines[2]
    assert lines[2].index("Child bean") > lines[1].index("Root bean")


def test_render_tree_keeps_sibling_order_below_nested_branches(bean, stdout: io.StringIO) -> None:
    console = make_console("plain", file=stdout)
    snap = build_snapshot(
        [
            bean("r1", title="First root", type="epic", minutes=1),
            bean("c1", title="Nested child", parent_id="r1"),
            bean("c2", title="Second child", parent_id="r1", minutes=1),
            bean("r2", title="Second root", type="epic", minutes=2),
        ]
    )

    render_tree(console, snap, title="Open Beans (4)")

    titles = [
        title
        for line in stdout.getvalue().splitlines()
        for title in ("First root", "Nested child", "Second child", "Second root")
        if title in line
    ]
    assert titles == ["First root", "Nested child", "Second child", "Second root"]


def test_render_tree_empty(stdout: io.StringIO) -> None:
    render_tree(make_console("plain", file=stdout), build_snapshot([]), title="Drafts (0)")

    assert "(no beans)" in stdout.getvalue()


def test_render_table_keeps_zero_values(stdout: io.StringIO) -> None:
    render_table(
        make_console("plain", file=stdout),
        headers=("ID", "Score"),
        rows=[("b1", 0), ("b2", None)],
    )

    text = stdout.getvalue()
    assert "b1" in text
    assert "0" in text
