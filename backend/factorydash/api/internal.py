"""Callback endpoints for the workflow engine.

These routes carry no authentication; they must only be reachable from the
engine's private network.

POST /api/internal/step-update      step progress (upsert)
POST /api/internal/session-update   session status report
POST /api/internal/error            engine-side error
POST /api/internal/log-error        lenient error alias used from workflows
POST /api/internal/cost             metered AI call
POST /api/internal/media            object already placed in storage
POST /api/internal/content-ready    content generated (notification only)
POST /api/internal/video-ready      video ready for review (notification only)
POST /api/internal/card-ready       product card ready (notification only)
"""

import logging

from fastapi import APIRouter, Depends

from factorydash.api.dependencies import get_ingress
from factorydash.schemas.callbacks import (
    CardReady,
    ContentReady,
    CostReport,
    ErrorReport,
    LogErrorReport,
    MediaRegistration,
    SessionUpdate,
    StepUpdate,
    VideoReady,
)
from factorydash.services.callbacks import CallbackIngress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/internal", tags=["internal"])


@router.post("/step-update")
async def step_update(report: StepUpdate, ingress: CallbackIngress = Depends(get_ingress)):
    step = await ingress.step_update(report)
    return {"ok": True, "data": step.as_dict()}


@router.post("/session-update")
async def session_update(report: SessionUpdate, ingress: CallbackIngress = Depends(get_ingress)):
    result = await ingress.session_update(report)
    # Reports for terminal sessions are acknowledged so the engine does not retry
    return {"ok": True, "ignored": result.ignored, "data": result.session.as_dict()}


@router.post("/error")
async def workflow_error(report: ErrorReport, ingress: CallbackIngress = Depends(get_ingress)):
    record = await ingress.error(report)
    return {"ok": True, "data": {"id": record.id}}


@router.post("/log-error")
async def log_error(report: LogErrorReport, ingress: CallbackIngress = Depends(get_ingress)):
    record = await ingress.log_error(report)
    return {"ok": True, "data": {"id": record.id}}


@router.post("/cost")
async def cost(report: CostReport, ingress: CallbackIngress = Depends(get_ingress)):
    entry = await ingress.cost(report)
    return {"ok": True, "data": {"id": entry.id, "tokens_total": entry.tokens_total}}


@router.post("/media", status_code=201)
async def media(report: MediaRegistration, ingress: CallbackIngress = Depends(get_ingress)):
    registered = await ingress.media(report)
    return {"ok": True, "data": {"id": registered.id}}


@router.post("/content-ready")
async def content_ready(report: ContentReady, ingress: CallbackIngress = Depends(get_ingress)):
    ingress.content_ready(report)
    return {"ok": True}


@router.post("/video-ready")
async def video_ready(report: VideoReady, ingress: CallbackIngress = Depends(get_ingress)):
    ingress.video_ready(report)
    return {"ok": True}


@router.post("/card-ready")
async def card_ready(report: CardReady, ingress: CallbackIngress = Depends(get_ingress)):
    ingress.card_ready(report)
    return {"ok": True}
