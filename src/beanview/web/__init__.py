"""Beanview web interface: FastAPI app factory."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from ..config import load_config
from ..dedup import ErrorDeduper
from ..store import BeanStore, MarkdownBeanStore
from ..view import ViewRegistry
from .sse import EventBroadcaster


ROOT_ENV = "BEANVIEW_ROOT"


def _find_repo_root() -> Path:
    env = os.environ.get(ROOT_ENV)
    if env:
        return Path(env).expanduser().resolve()
    p = Path.cwd()
    while p != p.parent:
        if (p / ".beans").is_dir() or (p / ".git").exists():
            return p
        p = p.parent
    return Path.cwd()


def create_app(
    repo_root: Path | None = None,
    store: BeanStore | None = None,
    *,
    watch: bool = True,
) -> FastAPI:
    repo_root = repo_root or _find_repo_root()
    config = load_config(repo_root)
    if store is None:
        store = MarkdownBeanStore.from_workdir(repo_root, configured=config.beans_path)
    deduper = ErrorDeduper()
    registry = ViewRegistry(
        store,
        deduper=deduper,
        sort_mode=config.default_sort,
        local_text_search=config.local_text_search,
    )
    broadcaster = EventBroadcaster(
        registry,
        watch_dir=getattr(store, "root", None),
        debounce_ms=config.refresh_debounce_ms,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.refresh_all()
        task = broadcaster.start() if watch else None
        yield
        broadcaster.stop()
        if task is not None:
            await task

    app = FastAPI(title="beanview", lifespan=lifespan)

    app.state.repo_root = repo_root
    app.state.config = config
    app.state.store = store
    app.state.deduper = deduper
    app.state.registry = registry
    app.state.broadcaster = broadcaster

    from .routes import router

    app.include_router(router)

    return app
