"""Pydantic schemas for workflow-engine callbacks.

The engine posts camelCase JSON for the ledger callbacks and snake_case JSON
for the stage-ready notifications and the ``log-error`` alias; both spellings
are accepted where the engine has used them. Input/output documents and media
metadata are stored verbatim, so they are typed as opaque JSON values.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts both ``sessionId`` and ``session_id`` style keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepUpdate(CamelModel):
    """POST /api/internal/step-update"""
    session_id: int
    step_name: str = Field(min_length=1)
    step_order: Optional[int] = None
    status: Optional[str] = None
    input_data: Optional[JsonValue] = None
    output_data: Optional[JsonValue] = None
    ai_model: Optional[str] = None
    tokens_used: Optional[int] = None
    duration_ms: Optional[int] = None


class SessionUpdate(CamelModel):
    """POST /api/internal/session-update

    ``resume_url`` is present only while the engine is paused on a wait node.
    """
    session_id: int
    status: str
    current_step: Optional[str] = None
    error_message: Optional[str] = None
    error_step: Optional[str] = None
    resume_url: Optional[str] = None


class ErrorReport(CamelModel):
    """POST /api/internal/error"""
    session_id: Optional[int] = None
    workflow_name: str = Field(min_length=1)
    node_name: Optional[str] = None
    error_message: str = Field(min_length=1)
    error_stack: Optional[str] = None


class LogErrorReport(BaseModel):
    """POST /api/internal/log-error (snake_case, every field optional)"""
    session_id: Optional[int] = None
    workflow_name: Optional[str] = None
    node_name: Optional[str] = None
    error_message: Optional[str] = None


class CostReport(CamelModel):
    """POST /api/internal/cost"""
    session_id: Optional[int] = None
    step_name: Optional[str] = None
    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None


class MediaRegistration(CamelModel):
    """POST /api/internal/media"""
    session_id: Optional[int] = None
    file_key: str = Field(min_length=1)
    file_name: str = Field(min_length=1)
    file_type: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    source: Optional[str] = None
    metadata: Optional[JsonValue] = None


class ContentReady(BaseModel):
    """POST /api/internal/content-ready"""
    model_config = ConfigDict(extra="allow")

    idea_id: Optional[int] = None
    voice_script_id: Optional[int] = None
    video_prompt_id: Optional[int] = None
    status: Optional[str] = None


class VideoReady(BaseModel):
    """POST /api/internal/video-ready"""
    model_config = ConfigDict(extra="allow")

    session_id: Optional[int] = None
    final_video_url: Optional[str] = None
    status: Optional[str] = None


class CardReady(BaseModel):
    """POST /api/internal/card-ready"""
    model_config = ConfigDict(extra="allow")

    card_id: Optional[int] = None
    product_name: Optional[str] = None
    status: Optional[str] = None
    image_url: Optional[str] = None
