"""Bean store protocol and a markdown-file reference implementation."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from .errors import BeanConflictError, BeanNotFoundError, BeanParseError
from .model import (
    BeanRecord,
    can_parent,
    normalize_priority,
    normalize_status,
    normalize_type,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListFilter:
    """Pushdown filter forwarded to ``BeanStore.list``."""

    status: tuple[str, ...] = ()
    type: tuple[str, ...] = ()
    search: str | None = None

    @property
    def is_filtered(self) -> bool:
        return bool(self.status or self.type or self.search)


@dataclass(frozen=True)
class UpdatePatch:
    status: str | None = None
    type: str | None = None
    priority: str | None = None
    parent_id: str | None = None
    clear_parent: bool = False
    add_blocking: tuple[str, ...] = ()
    remove_blocking: tuple[str, ...] = ()
    add_blocked_by: tuple[str, ...] = ()
    remove_blocked_by: tuple[str, ...] = ()
    if_match: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.status
            or self.type
            or self.priority
            or self.parent_id
            or self.clear_parent
            or self.add_blocking
            or self.remove_blocking
            or self.add_blocked_by
            or self.remove_blocked_by
        )


@runtime_checkable
class BeanStore(Protocol):
    def list(self, filter: ListFilter | None = None) -> list[BeanRecord]: ...

    def show(self, bean_id: str) -> BeanRecord: ...

    def update(self, bean_id: str, patch: UpdatePatch) -> BeanRecord: ...


def matches_list_filter(record: BeanRecord, filter: ListFilter) -> bool:
    if filter.status and record.status not in filter.status:
        return False
    if filter.type and record.type not in filter.type:
        return False
    if filter.search:
        query = filter.search.strip().lower()
        if query:
            haystack = " ".join(
                part
                for part in (
                    record.id,
                    record.code,
                    record.slug,
                    record.title,
                    record.body,
                    *record.tags,
                )
                if part
            ).lower()
            if query not in haystack:
                return False
    return True


# ---------------------------------------------------------------------------
# Markdown store
# ---------------------------------------------------------------------------


_SLUG_RE = re.compile(r"[^a-z0-9]+")
_FILE_SUFFIX = ".md"


def slugify(title: str) -> str:
    return _SLUG_RE.sub("-", title.lower()).strip("-")[:48] or "bean"


def _split_frontmatter(text: str) -> tuple[dict, str]:
    if not text.startswith("---"):
        raise BeanParseError("bean file has no frontmatter")
    parts = text.split("---", 2)
    if len(parts) < 3:
        raise BeanParseError("bean file has unterminated frontmatter")
    try:
        meta = yaml.safe_load(parts[1]) or {}
    except yaml.YAMLError as exc:
        raise BeanParseError(f"invalid frontmatter: {exc}") from exc
    if not isinstance(meta, dict):
        raise BeanParseError("frontmatter must be a mapping")
    return meta, parts[2].lstrip("\n")


def _etag(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]


def resolve_beans_dir(cwd: Path | None = None, *, configured: str | None = None) -> Path:
    """Return the beans directory.

    Resolution order:
    1. BEANVIEW_BEANS_DIR
    2. ``configured`` (relative to cwd)
    3. nearest existing .beans directory from cwd upward
    4. cwd/.beans
    """
    raw = os.environ.get("BEANVIEW_BEANS_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    start = (cwd or Path.cwd()).resolve()
    if configured:
        return (start / configured).resolve()
    for base in (start, *start.parents):
        candidate = base / ".beans"
        if candidate.is_dir():
            return candidate
    return start / ".beans"


@dataclass
class MarkdownBeanStore:
    """One ``<id>--<slug>.md`` file per bean with YAML frontmatter."""

    root: Path
    prefix: str = "bean"
    supports_search: bool = True

    @classmethod
    def from_workdir(
        cls, cwd: Path | None = None, *, configured: str | None = None
    ) -> MarkdownBeanStore:
        return cls(resolve_beans_dir(cwd, configured=configured))

    # -- file helpers -------------------------------------------------------

    def _files(self) -> list[Path]:
        if not self.root.is_dir():
            return []
        return sorted(p for p in self.root.glob(f"*{_FILE_SUFFIX}") if p.is_file())

    def _path_for(self, bean_id: str) -> Path | None:
        for path in self._files():
            if path.name == f"{bean_id}{_FILE_SUFFIX}" or path.name.startswith(
                f"{bean_id}--"
            ):
                return path
        return None

    def _read(self, path: Path) -> BeanRecord:
        text = path.read_text(encoding="utf-8")
        meta, body = _split_frontmatter(text)
        stem = path.stem
        bean_id = str(meta.get("id") or stem.split("--", 1)[0])
        slug = stem.split("--", 1)[1] if "--" in stem else ""
        payload: dict[str, Any] = {
            **meta,
            "id": bean_id,
            "slug": meta.get("slug") or slug,
            "path": path.name,
            "body": body,
            "etag": _etag(text),
        }
        return BeanRecord.from_dict(payload)

    def _write(self, path: Path, meta: dict[str, Any], body: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        front = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True)
        text = f"---\n{front}---\n{body}"
        tmp = path.with_suffix(".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def _load_all(self) -> list[BeanRecord]:
        out: list[BeanRecord] = []
        for path in self._files():
            try:
                out.append(self._read(path))
            except BeanParseError as exc:
                logger.warning("skipping malformed bean file %s: %s", path.name, exc)
        return out

    # -- BeanStore ----------------------------------------------------------

    def list(self, filter: ListFilter | None = None) -> list[BeanRecord]:
        records = self._load_all()
        if filter is None or not filter.is_filtered:
            return records
        return [r for r in records if matches_list_filter(r, filter)]

    def show(self, bean_id: str) -> BeanRecord:
        key = bean_id.strip()
        path = self._path_for(key) if key else None
        if path is None:
            raise BeanNotFoundError(key)
        return self._read(path)

    def create(
        self,
        title: str,
        *,
        status: str = "todo",
        type: str = "task",
        priority: str | None = None,
        tags: list[str] | None = None,
        parent_id: str | None = None,
        body: str = "",
        bean_id: str | None = None,
    ) -> BeanRecord:
        clean_title = title.strip()
        if not clean_title:
            raise ValueError("title cannot be empty")
        if parent_id is not None:
            self.show(parent_id)
        new_id = bean_id or f"{self.prefix}-{uuid.uuid4().hex[:4]}"
        now = utc_now().isoformat()
        meta: dict[str, Any] = {
            "id": new_id,
            "title": clean_title,
            "status": normalize_status(status),
            "type": normalize_type(type),
        }
        if priority:
            meta["priority"] = normalize_priority(priority)
        meta["tags"] = sorted({t.strip() for t in (tags or []) if t.strip()})
        if parent_id:
            meta["parent"] = parent_id
        meta["created_at"] = now
        meta["updated_at"] = now
        path = self.root / f"{new_id}--{slugify(clean_title)}{_FILE_SUFFIX}"
        self._write(path, meta, body)
        return self._read(path)

    def update(self, bean_id: str, patch: UpdatePatch) -> BeanRecord:
        key = bean_id.strip()
        if not key:
            raise ValueError("bean id cannot be empty")
        path = self._path_for(key)
        if path is None:
            raise BeanNotFoundError(key)

        text = path.read_text(encoding="utf-8")
        current_etag = _etag(text)
        if patch.if_match is not None and patch.if_match != current_etag:
            raise BeanConflictError(
                f"bean {key} was modified by another client",
                current_etag=current_etag,
            )
        if patch.is_empty:
            return self._read(path)

        meta, body = _split_frontmatter(text)
        bean_type = str(meta.get("type") or "")

        if patch.status is not None:
            meta["status"] = normalize_status(patch.status)
        if patch.type is not None:
            bean_type = normalize_type(patch.type)
            meta["type"] = bean_type
        if patch.priority is not None:
            meta["priority"] = normalize_priority(patch.priority)

        if patch.clear_parent:
            meta.pop("parent", None)
        elif patch.parent_id is not None:
            self._check_parent(key, bean_type, patch.parent_id)
            meta["parent"] = patch.parent_id

        for field_name, add, remove in (
            ("blocking", patch.add_blocking, patch.remove_blocking),
            ("blocked_by", patch.add_blocked_by, patch.remove_blocked_by),
        ):
            if not add and not remove:
                continue
            values = [str(v) for v in (meta.get(field_name) or [])]
            for value in add:
                if value == key:
                    raise BeanConflictError(f"bean {key} cannot reference itself")
                if value not in values:
                    values.append(value)
            values = [v for v in values if v not in set(remove)]
            meta[field_name] = values

        meta["updated_at"] = utc_now().isoformat()
        self._write(path, meta, body)
        return self._read(path)

    def _check_parent(self, bean_id: str, bean_type: str, parent_id: str) -> None:
        if parent_id == bean_id:
            raise BeanConflictError(f"bean {bean_id} cannot be its own parent")
        by_id = {r.id: r for r in self._load_all()}
        parent = by_id.get(parent_id)
        if parent is None:
            raise BeanConflictError(f"parent bean not found: {parent_id}")
        if not can_parent(parent.type, bean_type):
            raise BeanConflictError(
                f"a {bean_type} cannot have a {parent.type} as parent"
            )
        seen: set[str] = set()
        current: str | None = parent_id
        while current is not None and current not in seen:
            if current == bean_id:
                raise BeanConflictError(
                    f"cannot create cycle: {parent_id} is a descendant of {bean_id}"
                )
            seen.add(current)
            node = by_id.get(current)
            current = node.parent_id if node else None
