"""Bean records and the fixed status/type/priority vocabulary."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Mapping

from .errors import BeanParseError

logger = logging.getLogger(__name__)


BEAN_STATUSES = (
    "todo",
    "in-progress",
    "completed",
    "scrapped",
    "draft",
)
BEAN_TYPES = (
    "milestone",
    "epic",
    "feature",
    "bug",
    "task",
)
BEAN_PRIORITIES = (
    "critical",
    "high",
    "normal",
    "low",
    "deferred",
)
DEFAULT_PRIORITY = "normal"
IN_PROGRESS = "in-progress"

STATUS_RANK = {
    "in-progress": 0,
    "todo": 1,
    "draft": 2,
    "completed": 3,
    "scrapped": 4,
}
PRIORITY_RANK = {name: idx for idx, name in enumerate(BEAN_PRIORITIES)}
TYPE_RANK = {name: idx for idx, name in enumerate(BEAN_TYPES)}

# Parent type -> child types it may hold. Types missing here are leaves.
CHILD_TYPES: dict[str, frozenset[str]] = {
    "milestone": frozenset({"epic"}),
    "epic": frozenset({"feature", "bug", "task"}),
    "feature": frozenset({"task"}),
}


def can_parent(parent_type: str, child_type: str) -> bool:
    return child_type in CHILD_TYPES.get(parent_type, frozenset())


def allowed_parent_types(child_type: str) -> tuple[str, ...]:
    return tuple(
        parent for parent in BEAN_TYPES if child_type in CHILD_TYPES.get(parent, ())
    )


def normalize_status(status: str) -> str:
    value = status.strip().lower().replace("_", "-")
    if value not in BEAN_STATUSES:
        raise ValueError(f"invalid status: {status}")
    return value


def normalize_type(bean_type: str) -> str:
    value = bean_type.strip().lower()
    if value not in BEAN_TYPES:
        raise ValueError(f"invalid type: {bean_type}")
    return value


def normalize_priority(priority: str) -> str:
    value = priority.strip().lower()
    if value not in BEAN_PRIORITIES:
        raise ValueError(f"invalid priority: {priority}")
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: object, *, field_name: str, bean_id: str) -> datetime:
    """Parse a store timestamp, substituting "now" for garbage."""
    if value is None or value == "":
        return utc_now()
    parsed: datetime | None = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        # Stores disagree on epoch units; anything this large is milliseconds.
        if seconds > 1e11:
            seconds /= 1000.0
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
    if parsed is None:
        logger.warning(
            "invalid %s %r for bean %s; using current time", field_name, value, bean_id
        )
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _str_tuple(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    out: list[str] = []
    for item in value:  # type: ignore[union-attr]
        text = str(item).strip()
        if text and text not in out:
            out.append(text)
    return tuple(out)


def short_code(bean_id: str) -> str:
    return bean_id.rsplit("-", 1)[-1] if bean_id else ""


@dataclass(frozen=True)
class BeanRecord:
    """Read-only snapshot of one bean as returned by a store."""

    id: str
    title: str
    status: str
    type: str
    priority: str | None = None
    tags: tuple[str, ...] = ()
    parent_id: str | None = None
    blocking_ids: tuple[str, ...] = ()
    blocked_by_ids: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    body: str = ""
    code: str = ""
    slug: str = ""
    path: str = ""
    etag: str = ""

    def __post_init__(self) -> None:
        if not self.code:
            object.__setattr__(self, "code", short_code(self.id))

    @property
    def effective_priority(self) -> str:
        return self.priority or DEFAULT_PRIORITY

    @property
    def display_name(self) -> str:
        return self.title or self.code or self.id

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> BeanRecord:
        """Normalize a raw store payload (camelCase or snake_case keys)."""
        bean_id = str(raw.get("id") or "").strip()
        title = str(raw.get("title") or "").strip()
        status = str(raw.get("status") or "").strip()
        bean_type = str(raw.get("type") or "").strip()
        if not bean_id or not title or not status or not bean_type:
            raise BeanParseError(
                "bean missing required fields (id, title, status, or type)",
                payload=dict(raw),
            )

        priority = raw.get("priority")
        parent = str(_first(raw, "parent_id", "parentId", "parent") or "").strip()
        return cls(
            id=bean_id,
            title=title,
            status=status.lower(),
            type=bean_type.lower(),
            priority=str(priority).strip().lower() if priority else None,
            tags=_str_tuple(raw.get("tags")),
            parent_id=parent or None,
            blocking_ids=_str_tuple(_first(raw, "blocking_ids", "blockingIds", "blocking")),
            blocked_by_ids=_str_tuple(
                _first(raw, "blocked_by_ids", "blockedByIds", "blockedBy", "blocked_by")
            ),
            created_at=parse_timestamp(
                _first(raw, "created_at", "createdAt"),
                field_name="created_at",
                bean_id=bean_id,
            ),
            updated_at=parse_timestamp(
                _first(raw, "updated_at", "updatedAt"),
                field_name="updated_at",
                bean_id=bean_id,
            ),
            body=str(raw.get("body") or ""),
            code=str(raw.get("code") or ""),
            slug=str(raw.get("slug") or ""),
            path=str(raw.get("path") or ""),
            etag=str(raw.get("etag") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "slug": self.slug,
            "path": self.path,
            "title": self.title,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "tags": list(self.tags),
            "parent_id": self.parent_id,
            "blocking_ids": list(self.blocking_ids),
            "blocked_by_ids": list(self.blocked_by_ids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "body": self.body,
            "etag": self.etag,
        }
