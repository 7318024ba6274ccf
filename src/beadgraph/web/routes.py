"""API routes for the beadgraph web interface."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .. import __version__
from ..errors import ErrorKind
from ..graph import graphs_to_json
from ..service import GraphService
from ..tracker import CreateIssueInput, TrackerResult, UpdateIssueInput

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CYCLE: 400,
    ErrorKind.DUPLICATE: 400,
    ErrorKind.VALIDATION: 400,
    ErrorKind.SYNC_FAILURE: 500,
    ErrorKind.UNKNOWN: 500,
}


def _service(req: Request) -> GraphService:
    return req.app.state.service


def _error(result: TrackerResult[Any]) -> JSONResponse:
    error = result.error
    if error is None:
        return JSONResponse({"error": "Unknown error", "kind": ErrorKind.UNKNOWN.value}, 500)
    return JSONResponse(error.to_json(), status_code=_STATUS_BY_KIND[error.kind])


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message, "kind": ErrorKind.VALIDATION.value}, status_code=400)


# ---------------------------------------------------------------------------
# Read API
# ---------------------------------------------------------------------------


@router.get("/api/status")
async def api_status(request: Request):
    return {"version": __version__, "repo_root": str(request.app.state.repo_root)}


@router.get("/api/issues")
async def api_issues(request: Request):
    result = await asyncio.to_thread(_service(request).list_issues)
    if not result.ok:
        return _error(result)
    return [issue.to_json() for issue in result.data or []]


@router.get("/api/issues/{issue_id}")
async def api_issue(request: Request, issue_id: str):
    result = await asyncio.to_thread(_service(request).tracker.get_issue, issue_id)
    if not result.ok:
        return _error(result)
    return result.data.to_json()


@router.get("/api/graph")
async def api_graph(request: Request):
    result = await asyncio.to_thread(_service(request).graphs)
    if not result.ok:
        return _error(result)
    return graphs_to_json(result.data or [])


@router.get("/api/layout")
async def api_layout(request: Request, direction: str | None = None):
    service = _service(request)
    options = service.config.layout
    if direction is not None:
        try:
            options = replace(options, direction=direction.upper())
        except ValueError as exc:
            return _bad_request(str(exc))
    result = await asyncio.to_thread(service.positioned, options)
    if not result.ok:
        return _error(result)
    return result.data.to_json()


# ---------------------------------------------------------------------------
# Mutations (each queues a debounced commit + sync)
# ---------------------------------------------------------------------------


class IssueCreate(BaseModel):
    title: str
    description: str | None = None
    type: str | None = None
    priority: int | None = None


class IssueUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    type: str | None = None
    priority: int | None = None
    status: str | None = None
    assignee: str | None = None


class IssueClose(BaseModel):
    reason: str | None = None


class DependencyBody(BaseModel):
    blocked: str
    blocker: str


class SyncBody(BaseModel):
    message: str | None = None


@router.post("/api/issues", status_code=201)
async def api_create_issue(request: Request, body: IssueCreate):
    data = CreateIssueInput(
        title=body.title,
        description=body.description,
        type=body.type,
        priority=body.priority,
    )
    result = await asyncio.to_thread(_service(request).create_issue, data)
    if not result.ok:
        return _error(result)
    return result.data.to_json()


@router.patch("/api/issues/{issue_id}")
async def api_update_issue(request: Request, issue_id: str, body: IssueUpdate):
    data = UpdateIssueInput(**body.model_dump())
    result = await asyncio.to_thread(_service(request).update_issue, issue_id, data)
    if not result.ok:
        return _error(result)
    return result.data.to_json()


@router.post("/api/issues/{issue_id}/close")
async def api_close_issue(request: Request, issue_id: str, body: IssueClose | None = None):
    reason = body.reason if body else None
    result = await asyncio.to_thread(_service(request).close_issue, issue_id, reason)
    if not result.ok:
        return _error(result)
    return result.data.to_json()


@router.post("/api/dependencies", status_code=201)
async def api_add_dependency(request: Request, body: DependencyBody):
    blocked, blocker = body.blocked.strip(), body.blocker.strip()
    if not blocked:
        return _bad_request("blocked is required and must be a non-empty string")
    if not blocker:
        return _bad_request("blocker is required and must be a non-empty string")
    result = await asyncio.to_thread(_service(request).add_dependency, blocked, blocker)
    if not result.ok:
        return _error(result)
    return result.data.to_json()


@router.delete("/api/dependencies")
async def api_remove_dependency(request: Request, body: DependencyBody):
    result = await asyncio.to_thread(
        _service(request).remove_dependency, body.blocked.strip(), body.blocker.strip()
    )
    if not result.ok:
        return _error(result)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


@router.get("/api/sync/status")
async def api_sync_status(request: Request):
    return _service(request).controller.state.to_json()


@router.post("/api/sync")
async def api_sync(request: Request, body: SyncBody | None = None):
    service = _service(request)
    message = body.message if body else None
    ran = await asyncio.to_thread(service.sync_now, message)
    return {"ran": ran, "state": service.controller.state.to_json()}


@router.get("/api/events")
async def api_events(request: Request):
    broadcaster = request.app.state.broadcaster
    return StreamingResponse(broadcaster.iter_events(), media_type="text/event-stream")
