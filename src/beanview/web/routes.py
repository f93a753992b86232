"""JSON and SSE routes for the beanview web interface."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .. import __version__
from ..errors import BeanConflictError, BeanError, BeanNotFoundError, user_message
from ..filters import FilterState
from ..model import BeanRecord
from ..mutations import (
    DropChoice,
    MutationIntent,
    MutationValidator,
    NeedsConfirmation,
    ReparentIntent,
    ValidationError,
    intent_to_patch,
)
from ..panes import PaneSpec, get_pane
from ..sorting import SORT_MODES, is_sort_mode
from ..view import BeanView, ViewRegistry
from .sse import pane_summary

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _registry(req: Request) -> ViewRegistry:
    return req.app.state.registry


def _pane(name: str) -> PaneSpec:
    try:
        return get_pane(name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _view(req: Request, name: str) -> BeanView:
    pane = _pane(name)
    try:
        return _registry(req).detached(pane.name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


async def _fresh_lookup(req: Request) -> dict[str, BeanRecord]:
    store = req.app.state.store
    try:
        records = await asyncio.to_thread(store.list)
    except (OSError, BeanError) as exc:
        raise HTTPException(
            status_code=502, detail=f"Failed to fetch beans: {user_message(exc)}"
        ) from exc
    return {record.id: record for record in records}


def _evaluate(lookup: dict[str, BeanRecord], bean_id: str, target_id: str | None, pane: PaneSpec):
    validator = MutationValidator(lookup)
    try:
        return validator, validator.evaluate_drop(bean_id, target_id, pane)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _intent_json(intent: MutationIntent) -> dict[str, Any]:
    if isinstance(intent, ReparentIntent):
        return {
            "type": "reparent",
            "bean_id": intent.bean_id,
            "new_parent_id": intent.new_parent_id,
        }
    return {
        "type": "status_change",
        "bean_id": intent.bean_id,
        "new_status": intent.new_status,
        "new_parent_id": intent.new_parent_id,
    }


def _error_response(error: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "kind": "error",
            "error": error.kind.value,
            "message": error.message,
            "bean_id": error.bean_id,
            "target_id": error.target_id,
        },
    )


def _confirmation_json(confirmation: NeedsConfirmation) -> dict[str, Any]:
    return {
        "kind": "confirm",
        "bean_id": confirmation.bean_id,
        "target_id": confirmation.target_id,
        "pane": confirmation.pane.name,
        "new_status": confirmation.new_status,
        "choices": [choice.value for choice in confirmation.choices],
        "message": confirmation.message,
    }


async def _apply(
    req: Request, lookup: dict[str, BeanRecord], intent: MutationIntent
) -> dict[str, Any]:
    store = req.app.state.store
    current = lookup[intent.bean_id]
    patch = intent_to_patch(intent, if_match=current.etag or None)
    try:
        updated = await asyncio.to_thread(store.update, intent.bean_id, patch)
    except BeanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except BeanConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (OSError, BeanError) as exc:
        raise HTTPException(status_code=502, detail=user_message(exc)) from exc

    await req.app.state.broadcaster.refresh()
    return {"kind": "applied", "intent": _intent_json(intent), "bean": updated.to_dict()}


# ---------------------------------------------------------------------------
# Panes
# ---------------------------------------------------------------------------


@router.get("/api/health")
async def api_health(request: Request):
    config = request.app.state.config
    return {"ok": True, "version": __version__, "config_error": config.error}


@router.get("/api/panes")
async def api_panes(request: Request):
    return [pane_summary(view) for view in _registry(request)]


@router.get("/api/panes/{pane}/tree")
async def api_pane_tree(
    request: Request,
    pane: str,
    sort: str | None = None,
    q: str | None = None,
    status: list[str] = Query(default=[]),
    type: list[str] = Query(default=[]),
    priority: list[str] = Query(default=[]),
    tag: list[str] = Query(default=[]),
):
    view = _view(request, pane)
    if sort is not None:
        if not is_sort_mode(sort):
            raise HTTPException(
                status_code=400,
                detail=f"unknown sort mode {sort!r}; expected one of: {', '.join(SORT_MODES)}",
            )
        view.set_sort_mode(sort)
    view.set_filter(
        FilterState(text=q, statuses=status, types=type, priorities=priority, tags=tag)
    )
    snapshot = await view.refresh()
    config = request.app.state.config
    return {
        **pane_summary(view),
        "title": view.title(show_counts=config.show_counts),
        "roots": snapshot.nested(),
    }


# ---------------------------------------------------------------------------
# Drag and drop
# ---------------------------------------------------------------------------


class DropRequest(BaseModel):
    bean_id: str
    target_id: str | None = None
    pane: str


class DropResolve(BaseModel):
    bean_id: str
    target_id: str | None = None
    pane: str
    choice: DropChoice


@router.post("/api/drop")
async def api_drop(request: Request, body: DropRequest):
    pane = _pane(body.pane)
    lookup = await _fresh_lookup(request)
    _, result = _evaluate(lookup, body.bean_id, body.target_id, pane)

    if isinstance(result, ValidationError):
        return _error_response(result)
    if isinstance(result, NeedsConfirmation):
        return _confirmation_json(result)
    return await _apply(request, lookup, result)


@router.post("/api/drop/resolve")
async def api_drop_resolve(request: Request, body: DropResolve):
    pane = _pane(body.pane)
    lookup = await _fresh_lookup(request)
    validator, result = _evaluate(lookup, body.bean_id, body.target_id, pane)

    if isinstance(result, ValidationError):
        return _error_response(result)
    if not isinstance(result, NeedsConfirmation):
        raise HTTPException(status_code=400, detail="this drop does not need confirmation")
    try:
        outcome = validator.resolve(result, body.choice)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if outcome is None:
        return {"kind": "cancelled", "bean_id": body.bean_id}
    if isinstance(outcome, ValidationError):
        return _error_response(outcome)
    return await _apply(request, lookup, outcome)


# ---------------------------------------------------------------------------
# SSE
# ---------------------------------------------------------------------------


@router.get("/api/events")
async def api_events(request: Request):
    broadcaster = request.app.state.broadcaster

    async def event_stream():
        async for payload in broadcaster.iter_events():
            yield payload

    return StreamingResponse(event_stream(), media_type="text/event-stream")
