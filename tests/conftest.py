from __future__ import annotations

import io
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from beanview.dedup import ErrorDeduper
from beanview.errors import BeanConflictError, BeanNotFoundError
from beanview.model import BeanRecord
from beanview.store import ListFilter, UpdatePatch, matches_list_filter

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeStore:
    """In-memory store that records the filters it was asked for."""

    supports_search = True

    def __init__(self, records: list[BeanRecord] | None = None) -> None:
        self.records = list(records or [])
        self.calls: list[ListFilter | None] = []
        self.fail_with: Exception | None = None

    def list(self, filter: ListFilter | None = None) -> list[BeanRecord]:
        self.calls.append(filter)
        if self.fail_with is not None:
            raise self.fail_with
        if filter is None:
            return list(self.records)
        return [r for r in self.records if matches_list_filter(r, filter)]

    def show(self, bean_id: str) -> BeanRecord:
        for record in self.records:
            if record.id == bean_id:
                return record
        raise BeanNotFoundError(bean_id)

    def update(self, bean_id: str, patch: UpdatePatch) -> BeanRecord:
        current = self.show(bean_id)
        if patch.if_match and patch.if_match != current.etag:
            raise BeanConflictError("stale", current_etag=current.etag)
        parent = current.parent_id
        if patch.clear_parent:
            parent = None
        elif patch.parent_id is not None:
            parent = patch.parent_id
        updated = replace(
            current,
            status=patch.status or current.status,
            parent_id=parent,
            etag=f"{current.etag}+",
        )
        self.records = [updated if r.id == bean_id else r for r in self.records]
        return updated


def make_bean(bean_id: str, **fields: object) -> BeanRecord:
    offset = fields.pop("minutes", 0)
    defaults: dict[str, object] = {
        "title": f"Bean {bean_id}",
        "status": "todo",
        "type": "task",
        "created_at": EPOCH + timedelta(minutes=int(offset)),  # type: ignore[arg-type]
        "updated_at": EPOCH + timedelta(minutes=int(offset)),  # type: ignore[arg-type]
        "etag": f"etag-{bean_id}",
    }
    defaults.update(fields)
    return BeanRecord(id=bean_id, **defaults)  # type: ignore[arg-type]


@pytest.fixture
def bean() -> Callable[..., BeanRecord]:
    return make_bean


@pytest.fixture
def fake_store() -> Callable[..., FakeStore]:
    return FakeStore


@pytest.fixture
def notices() -> list[str]:
    return []


@pytest.fixture
def deduper(notices: list[str]) -> ErrorDeduper:
    return ErrorDeduper(notices.append)


@pytest.fixture
def stdout() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def stderr() -> io.StringIO:
    return io.StringIO()


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
