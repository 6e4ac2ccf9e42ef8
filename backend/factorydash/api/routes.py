"""Session lifecycle, workflow error and health endpoints."""

import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from factorydash import __version__
from factorydash.api.dependencies import get_ledger, get_resume_gate, get_session_service
from factorydash.auth import Identity, require_identity
from factorydash.db import check_connection
from factorydash.db.models import MediaFile
from factorydash.errors import StorageUnavailable
from factorydash.schemas.sessions import (
    CreateSessionRequest,
    PublishRequest,
    RejectRequest,
    ResumeDecisionRequest,
)
from factorydash.services.ledger import SessionFilter, SessionLedger, clamp_page
from factorydash.services.resume_gate import Decision, ResumeGate
from factorydash.services.sessions import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Pydantic Schemas
# ============================================================================

class CreateSessionResponse(BaseModel):
    """Response schema for POST /api/sessions."""
    ok: bool = True
    sessionId: int
    status: str
    trigger: dict[str, Any]


class ResumeResponse(BaseModel):
    """Response schema for POST /api/sessions/{id}/approve."""
    ok: bool = True
    action: str
    ideaIndex: Optional[int] = None


class HealthResponse(BaseModel):
    """Response schema for GET /api/health."""
    status: str
    version: str
    uptime_seconds: float
    database: bool
    workflow_engine: bool


def _degraded(message: str) -> JSONResponse:
    """Empty page flagged as degraded because the store could not be read."""
    return JSONResponse(
        status_code=503,
        content={"ok": False, "error": message, "degraded": True, "data": [], "total": 0},
    )


def _media_dict(media: MediaFile) -> dict[str, Any]:
    data = media.as_dict()
    data["metadata"] = data.pop("metadata_json")
    return data


# ============================================================================
# Sessions
# ============================================================================

@router.get("/sessions")
async def list_sessions(
    status: Optional[str] = None,
    marketplace: Optional[str] = None,
    source: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    sort: str = "updated_at",
    order: str = "DESC",
    identity: Identity = Depends(require_identity),
    ledger: SessionLedger = Depends(get_ledger),
):
    """List sessions with filters, whitelisted sort and clamped paging."""
    filters = SessionFilter(status=status, marketplace=marketplace, source=source, search=search)
    try:
        rows, total = await ledger.list_sessions(filters, sort=sort, order=order, limit=limit, offset=offset)
    except StorageUnavailable as e:
        return _degraded(e.message)

    safe_limit, safe_offset = clamp_page(limit, offset)
    return {
        "ok": True,
        "data": [row.as_dict() for row in rows],
        "total": total,
        "limit": safe_limit,
        "offset": safe_offset,
    }


@router.get("/sessions/{session_id}")
async def get_session_detail(
    session_id: int,
    identity: Identity = Depends(require_identity),
    ledger: SessionLedger = Depends(get_ledger),
):
    """Session row with steps, cost entries, cost summary and media."""
    detail = await ledger.session_detail(session_id)
    return {
        "ok": True,
        "data": {
            **detail["session"].as_dict(),
            "awaiting_decision": detail["session"].resume_url is not None,
            "steps": [step.as_dict() for step in detail["steps"]],
            "costs": [entry.as_dict() for entry in detail["costs"]],
            "cost_summary": detail["cost_summary"],
            "media": [_media_dict(media) for media in detail["media"]],
        },
    }


@router.post("/sessions", status_code=201, response_model=CreateSessionResponse)
async def create_session(
    request: CreateSessionRequest,
    identity: Identity = Depends(require_identity),
    service: SessionService = Depends(get_session_service),
):
    """Create a session and trigger the master pipeline.

    A failed trigger does not fail the request: the session is committed and
    the trigger outcome is reported alongside it.
    """
    session, trigger = await service.create(
        request.product_name,
        request.marketplace,
        product_articles=request.product_articles,
        product_description=request.product_description,
        created_by=identity.login,
    )
    return CreateSessionResponse(sessionId=session.id, status=session.status, trigger=trigger.as_dict())


@router.post("/sessions/{session_id}/approve", response_model=ResumeResponse)
async def submit_decision(
    session_id: int,
    request: ResumeDecisionRequest,
    identity: Identity = Depends(require_identity),
    gate: ResumeGate = Depends(get_resume_gate),
):
    """Relay approve/reject/select_idea to the paused workflow run."""
    decision = Decision(action=request.action, idea_index=request.idea_index)
    await gate.submit(session_id, decision)
    logger.info(f"{identity.login} sent '{decision.action}' to session {session_id}")
    return ResumeResponse(action=decision.action, ideaIndex=decision.idea_index)


@router.put("/sessions/{session_id}/approve")
async def approve_session(
    session_id: int,
    identity: Identity = Depends(require_identity),
    service: SessionService = Depends(get_session_service),
):
    row = await service.approve(session_id)
    return {"ok": True, "data": row.as_dict()}


@router.put("/sessions/{session_id}/reject")
async def reject_session(
    session_id: int,
    request: Optional[RejectRequest] = None,
    identity: Identity = Depends(require_identity),
    service: SessionService = Depends(get_session_service),
):
    reason = request.reason if request else None
    row = await service.reject(session_id, reason)
    return {"ok": True, "data": row.as_dict()}


@router.post("/sessions/{session_id}/publish")
async def publish_session(
    session_id: int,
    request: PublishRequest,
    identity: Identity = Depends(require_identity),
    service: SessionService = Depends(get_session_service),
):
    """Hand approved content to the publisher workflow."""
    row, result = await service.publish(
        session_id,
        request.channels,
        caption=request.caption,
        generate_caption=request.generate_caption,
    )
    return {"ok": True, "data": row.as_dict(), "publisher": result.data}


@router.delete("/sessions/{session_id}")
async def cancel_session(
    session_id: int,
    identity: Identity = Depends(require_identity),
    service: SessionService = Depends(get_session_service),
):
    """Cancel a session. Not an interrupt: the engine no-ops later callbacks."""
    row = await service.cancel(session_id)
    logger.info(f"{identity.login} cancelled session {session_id}")
    return {"ok": True, "data": row.as_dict()}


# ============================================================================
# Workflow errors
# ============================================================================

@router.get("/errors")
async def list_errors(
    workflow: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    identity: Identity = Depends(require_identity),
    ledger: SessionLedger = Depends(get_ledger),
):
    """Engine-reported errors, newest first."""
    try:
        rows, total = await ledger.list_errors(workflow=workflow, limit=limit, offset=offset)
    except StorageUnavailable as e:
        return _degraded(e.message)
    return {"ok": True, "data": [row.as_dict() for row in rows], "total": total}


# ============================================================================
# Health
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Liveness of the relational store and the workflow engine. 503 if either is down."""
    database_ok = await check_connection(request.app.state.engine)
    engine_ok = (await request.app.state.workflow_client.ping()).ok
    body = HealthResponse(
        status="ok" if database_ok and engine_ok else "degraded",
        version=__version__,
        uptime_seconds=round(time.monotonic() - request.app.state.started_at, 1),
        database=database_ok,
        workflow_engine=engine_ok,
    )
    if body.status != "ok":
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
