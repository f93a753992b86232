"""CLI entry point for beanview."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Mapping

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text

from . import __version__
from .config import BeanviewConfig, load_config
from .dedup import ErrorDeduper, console_notifier
from .errors import BeanError, user_message
from .filters import FilterState
from .model import BeanRecord
from .mutations import (
    DropChoice,
    MutationValidator,
    NeedsConfirmation,
    ReparentIntent,
    ValidationError,
    intent_to_patch,
)
from .panes import PANES, SEARCH, get_pane
from .search import score_relevance
from .sorting import SORT_MODES
from .store import MarkdownBeanStore
from .ui import (
    add_output_mode_argument,
    configure_logging,
    make_console,
    render_table,
    render_tree,
    resolve_output_mode,
)
from .view import BeanView


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="beanview",
        description="Hierarchical, filtered and ranked views over a beans directory.",
    )
    p.add_argument("--version", action="version", version=f"beanview {__version__}")
    p.add_argument("--root", type=Path, default=None, help="Repository root (default: cwd)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    add_output_mode_argument(p)
    sub = p.add_subparsers(dest="command")

    tree = sub.add_parser("tree", help="Show one pane as a tree")
    tree.add_argument("--pane", default="active", choices=sorted(PANES))
    _add_filter_arguments(tree)
    tree.add_argument("--json", action="store_true")

    search = sub.add_parser("search", help="Relevance-ranked search across all beans")
    search.add_argument("query", nargs="+")
    _add_filter_arguments(search, with_search=False)
    search.add_argument("--json", action="store_true")

    move = sub.add_parser("move", help="Drop a bean onto another bean or a pane")
    move.add_argument("bean")
    move.add_argument("--onto", default=None, help="Target bean (omit for pane background)")
    move.add_argument("--pane", default="active", choices=sorted(PANES))
    move.add_argument(
        "--choice",
        choices=[choice.value for choice in DropChoice],
        default=None,
        help="Answer for cross-pane drops",
    )
    move.add_argument("-y", "--yes", action="store_true", help="Confirm status-only changes")

    serve = sub.add_parser("serve", help="Run the JSON/SSE web interface")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8421)
    serve.add_argument("--reload", action="store_true")
    return p


def _add_filter_arguments(p: argparse.ArgumentParser, *, with_search: bool = True) -> None:
    p.add_argument("--sort", default=None, help=f"One of: {', '.join(SORT_MODES)}")
    if with_search:
        p.add_argument("--search", default=None)
    p.add_argument("--status", action="append", default=[])
    p.add_argument("--type", action="append", default=[])
    p.add_argument("--priority", action="append", default=[])
    p.add_argument("--tag", action="append", default=[])


def _filter_from_args(args: argparse.Namespace, *, text: str | None) -> FilterState:
    return FilterState(
        text=text,
        statuses=tuple(args.status),
        types=tuple(args.type),
        priorities=tuple(args.priority),
        tags=tuple(args.tag),
    )


def _open_store(config: BeanviewConfig) -> MarkdownBeanStore:
    return MarkdownBeanStore.from_workdir(config.repo_root, configured=config.beans_path)


def _resolve_id(lookup: Mapping[str, BeanRecord], raw: str) -> str | None:
    """Exact id, then exact short code, then unique id prefix."""
    if raw in lookup:
        return raw
    by_code = [r.id for r in lookup.values() if r.code == raw]
    if len(by_code) == 1:
        return by_code[0]
    prefixed = [bean_id for bean_id in lookup if bean_id.startswith(raw)]
    if len(prefixed) == 1:
        return prefixed[0]
    return None


def cmd_tree(args: argparse.Namespace, config: BeanviewConfig, console: Console, err: Console) -> int:
    pane = get_pane(args.pane)
    view = BeanView(
        _open_store(config),
        pane,
        deduper=ErrorDeduper(console_notifier(err)),
        sort_mode=args.sort or config.default_sort,
        local_text_search=config.local_text_search,
    )
    view.set_filter(_filter_from_args(args, text=args.search))
    snapshot = asyncio.run(view.refresh())

    if args.json:
        payload = {
            "pane": pane.name,
            "title": view.title(show_counts=config.show_counts),
            "error": view.last_error,
            "roots": snapshot.nested(),
        }
        json.dump(payload, sys.stdout, indent=2)
        print()
    else:
        render_tree(console, snapshot, title=view.title(show_counts=config.show_counts))
    return 1 if view.last_error else 0


def cmd_search(args: argparse.Namespace, config: BeanviewConfig, console: Console, err: Console) -> int:
    query = " ".join(args.query).strip()
    view = BeanView(
        _open_store(config),
        SEARCH,
        deduper=ErrorDeduper(console_notifier(err)),
        sort_mode=args.sort or config.default_sort,
    )
    view.set_filter(_filter_from_args(args, text=query))
    snapshot = asyncio.run(view.refresh())
    ranked = [(node.record, score_relevance(node.record, query)) for node in snapshot.roots]

    if args.json:
        json.dump(
            [{**record.to_dict(), "score": score} for record, score in ranked],
            sys.stdout,
            indent=2,
        )
        print()
    else:
        render_table(
            console,
            title=view.title(show_counts=config.show_counts),
            headers=("#", "ID", "Title", "Status", "Type", "Score"),
            rows=[
                (idx, record.id, record.title, record.status, record.type, score)
                for idx, (record, score) in enumerate(ranked, start=1)
            ],
            no_wrap_columns=(1,),
        )
    return 1 if view.last_error else 0


def _ask_choice(confirmation: NeedsConfirmation, console: Console) -> DropChoice:
    console.print(Panel(confirmation.message, title="Confirm drop", expand=False))
    answer = Prompt.ask(
        "Choose",
        choices=[choice.value for choice in confirmation.choices],
        default=DropChoice.CANCEL.value,
        console=console,
    )
    return DropChoice(answer)


def cmd_move(args: argparse.Namespace, config: BeanviewConfig, console: Console, err: Console) -> int:
    store = _open_store(config)
    try:
        lookup = {record.id: record for record in store.list()}
    except (OSError, BeanError) as exc:
        err.print(Text(f"Failed to fetch beans: {user_message(exc)}", style="red"))
        return 1

    dragged_id = _resolve_id(lookup, args.bean)
    if dragged_id is None:
        err.print(Text(f"Bean not found: {args.bean}", style="red"))
        return 1
    target_id: str | None = None
    if args.onto:
        target_id = _resolve_id(lookup, args.onto)
        if target_id is None:
            err.print(Text(f"Bean not found: {args.onto}", style="red"))
            return 1

    pane = get_pane(args.pane)
    validator = MutationValidator(lookup)
    try:
        result = validator.evaluate_drop(dragged_id, target_id, pane)
    except ValueError as exc:
        err.print(Text(str(exc), style="red"))
        return 1

    if isinstance(result, NeedsConfirmation):
        if args.choice:
            choice = DropChoice(args.choice)
        elif args.yes:
            choice = DropChoice.STATUS_ONLY
        else:
            choice = _ask_choice(result, console)
        if choice not in result.choices:
            err.print(Text(f"Choice '{choice.value}' is not available for this drop", style="red"))
            return 1
        result = validator.resolve(result, choice)
        if result is None:
            console.print(Text("Cancelled; nothing changed.", style="dim"))
            return 0

    if isinstance(result, ValidationError):
        err.print(Text(result.message, style="red"))
        return 1

    dragged = lookup[dragged_id]
    try:
        updated = store.update(dragged_id, intent_to_patch(result, if_match=dragged.etag or None))
    except (BeanError, ValueError) as exc:
        err.print(Text(user_message(exc), style="red"))
        return 1

    if isinstance(result, ReparentIntent):
        parent = lookup[result.new_parent_id].display_name if result.new_parent_id else "root"
        console.print(Text(f"{updated.display_name} moved to {parent}", style="green"))
    else:
        message = f"{updated.display_name} is now {updated.status}"
        if result.new_parent_id:
            message += f" under {lookup[result.new_parent_id].display_name}"
        console.print(Text(message, style="green"))
    return 0


def cmd_serve(args: argparse.Namespace, config: BeanviewConfig, console: Console) -> int:
    import uvicorn

    from .web import ROOT_ENV

    # The factory runs in the server process (and in each reload worker).
    os.environ[ROOT_ENV] = str(config.repo_root)
    console.print(
        Panel(
            f"Starting web server at [bold]http://{args.host}:{args.port}[/bold]",
            title="beanview serve",
            style="cyan",
            expand=False,
        )
    )
    uvicorn.run(
        "beanview.web:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = _parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(0)

    mode = resolve_output_mode(args.output)
    console = make_console(mode)
    err = make_console(mode, stderr=True)
    configure_logging(verbose=args.verbose, console=err)

    root = (args.root or Path.cwd()).resolve()
    config = load_config(root)
    if config.error:
        err.print(Text(f"warning: {config.error}; using defaults", style="yellow"))

    if args.command == "tree":
        sys.exit(cmd_tree(args, config, console, err))
    if args.command == "search":
        sys.exit(cmd_search(args, config, console, err))
    if args.command == "move":
        sys.exit(cmd_move(args, config, console, err))
    if args.command == "serve":
        sys.exit(cmd_serve(args, config, console))
    parser.error(f"unknown command: {args.command}")


if __name__ == "__main__":
    main()
