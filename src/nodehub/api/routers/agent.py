from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Query, Request

from nodehub.api.deps import get_store
from nodehub.api.responses import ok
from nodehub.errors import ValidationError
from nodehub.schemas import AgentEventsRequest
from nodehub.security import node_token
from nodehub.services import reconcile as svc
from nodehub.store import DocumentStore

router = APIRouter(prefix="/agent", tags=["agent"])


@router.get("/reconcile")
async def reconcile(
    request: Request,
    node_id: str = Query(default=""),
    current_version: str | None = Query(default=None),
    token: str | None = Depends(node_token),
    store: DocumentStore = Depends(get_store),
):
    return ok(request, await svc.reconcile(store, node_id, token, current_version))


async def _report_from_body(request: Request) -> dict | None:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    return body if isinstance(body, dict) else None


@router.get("/heartbeat")
async def heartbeat(
    request: Request,
    node_id: str = Query(default=""),
    token: str | None = Depends(node_token),
    store: DocumentStore = Depends(get_store),
):
    return ok(request, await svc.heartbeat(store, node_id, token))


@router.post("/heartbeat")
async def heartbeat_with_report(
    request: Request,
    node_id: str = Query(default=""),
    token: str | None = Depends(node_token),
    store: DocumentStore = Depends(get_store),
):
    report = await _report_from_body(request)
    return ok(request, await svc.heartbeat(store, node_id, token, report))


@router.post("/events")
async def events(
    request: Request,
    payload: AgentEventsRequest,
    node_id: str = Query(default=""),
    token: str | None = Depends(node_token),
    store: DocumentStore = Depends(get_store),
):
    return ok(request, await svc.ingest_events(store, payload.node_id or node_id, token, payload.events))
