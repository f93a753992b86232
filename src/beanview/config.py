from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomllib

from .errors import ConfigValidationError
from .sorting import DEFAULT_SORT_MODE, SORT_MODES

CONFIG_FILENAME = ".beanview.toml"


@dataclass(frozen=True)
class BeanviewConfig:
    repo_root: Path
    path: Path
    beans_path: str | None = None
    default_sort: str = DEFAULT_SORT_MODE
    show_counts: bool = True
    refresh_debounce_ms: int = 300
    local_text_search: bool = False
    error: str | None = None


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def _table(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigValidationError(f"[{name}] must be a table")
    return value


def _as_bool(value: object, *, field: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be true or false")
    return value


def _parse(raw: dict[str, Any], *, repo_root: Path, path: Path) -> BeanviewConfig:
    store = _table(raw, "store")
    view = _table(raw, "view")

    beans_path = store.get("path")
    if beans_path is not None and _as_str(beans_path) is None:
        raise ConfigValidationError("[store].path must be a non-empty string")

    default_sort = view.get("default_sort", DEFAULT_SORT_MODE)
    if default_sort not in SORT_MODES:
        expected = ", ".join(SORT_MODES)
        raise ConfigValidationError(
            f"[view].default_sort must be one of: {expected} (got {default_sort!r})"
        )

    debounce = view.get("refresh_debounce_ms", 300)
    if isinstance(debounce, bool) or not isinstance(debounce, int) or debounce < 0:
        raise ConfigValidationError("[view].refresh_debounce_ms must be a non-negative integer")

    return BeanviewConfig(
        repo_root=repo_root,
        path=path,
        beans_path=_as_str(beans_path),
        default_sort=default_sort,
        show_counts=_as_bool(view.get("show_counts"), field="[view].show_counts", default=True),
        refresh_debounce_ms=debounce,
        local_text_search=_as_bool(
            view.get("local_text_search"),
            field="[view].local_text_search",
            default=False,
        ),
    )


def load_config(repo_root: Path) -> BeanviewConfig:
    """Read ``.beanview.toml``; a missing file means defaults.

    Invalid files never raise: the returned config carries defaults plus an
    ``error`` message for the caller to report.
    """
    path = repo_root / CONFIG_FILENAME
    if not path.exists():
        return BeanviewConfig(repo_root=repo_root, path=path)

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        return BeanviewConfig(
            repo_root=repo_root,
            path=path,
            error=f"invalid TOML in {CONFIG_FILENAME}: {exc}",
        )

    try:
        return _parse(raw, repo_root=repo_root, path=path)
    except ConfigValidationError as exc:
        return BeanviewConfig(
            repo_root=repo_root,
            path=path,
            error=f"{CONFIG_FILENAME}: {exc}",
        )
