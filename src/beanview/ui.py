from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from typing import Literal, TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .tree import TreeNode, TreeSnapshot

OUTPUT_CHOICES = ("auto", "plain", "rich")
OutputMode = Literal["plain", "rich"]

_STATUS_STYLES = {
    "in-progress": "cyan",
    "todo": "yellow",
    "draft": "dim",
    "completed": "green",
    "scrapped": "red",
}
_PRIORITY_STYLES = {
    "critical": "bold red",
    "high": "dark_orange",
    "normal": "blue",
    "low": "green",
    "deferred": "magenta",
}


def add_output_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help="Output mode: auto (default), plain, or rich.",
    )


def _stream_is_tty(stream: object) -> bool:
    probe = getattr(stream, "isatty", None)
    if not callable(probe):
        return False
    try:
        return bool(probe())
    except (OSError, ValueError):
        return False


def resolve_output_mode(
    requested: str | None = None,
    *,
    is_tty: bool | None = None,
) -> OutputMode:
    selected = (requested or "auto").strip().lower() or "auto"
    if selected not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid --output value {requested!r}; expected one of: {expected}")
    if selected == "auto":
        tty = _stream_is_tty(sys.stdout) if is_tty is None else bool(is_tty)
        return "rich" if tty else "plain"
    return "rich" if selected == "rich" else "plain"


def make_console(mode: OutputMode, *, stderr: bool = False, file: TextIO | None = None) -> Console:
    return Console(
        file=file or (sys.stderr if stderr else sys.stdout),
        force_terminal=mode == "rich",
        no_color=mode != "rich",
        highlight=False,
        soft_wrap=mode != "rich",
    )


def configure_logging(*, verbose: bool = False, console: Console | None = None) -> None:
    handler = RichHandler(
        console=console or Console(file=sys.stderr),
        show_path=False,
        markup=False,
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )


def node_label(node: TreeNode) -> Text:
    record = node.record
    label = Text()
    marker = "*" if node.has_in_progress_descendant else " "
    label.append(f"{marker} ")
    label.append(record.title, style="bold" if node.highlighted else "")
    label.append(f"  {record.code}", style="dim")
    label.append(f"  {record.type}", style="dim")
    label.append(f"  {record.status}", style=_STATUS_STYLES.get(record.status, "dim"))
    if record.priority:
        label.append(f"  {record.priority}", style=_PRIORITY_STYLES.get(record.priority, ""))
    if record.tags:
        label.append(f"  #{' #'.join(record.tags)}", style="dim")
    return label


def render_tree(console: Console, snapshot: TreeSnapshot, *, title: str) -> None:
    root = Tree(Text(title, style="bold"))
    stack: list[tuple[Tree, TreeNode]] = [(root, node) for node in reversed(snapshot.roots)]
    while stack:
        branch, node = stack.pop()
        child = branch.add(node_label(node))
        stack.extend((child, kid) for kid in reversed(snapshot.get_children(node.id)))
    console.print(root)
    if not snapshot.roots:
        console.print(Text("  (no beans)", style="dim"))


def render_table(
    console: Console,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    title: str | None = None,
    no_wrap_columns: Sequence[int] = (),
) -> None:
    table = Table(title=title)
    no_wrap = set(no_wrap_columns)
    for idx, header in enumerate(headers):
        table.add_column(str(header), no_wrap=idx in no_wrap)
    for row in rows:
        table.add_row(*("" if value is None else str(value) for value in row))
    console.print(table)
