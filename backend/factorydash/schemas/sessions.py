"""Pydantic request schemas for the human-facing session API."""

from typing import Optional

from pydantic import BaseModel, Field

from factorydash.schemas.callbacks import CamelModel


class CreateSessionRequest(CamelModel):
    """Request schema for POST /api/sessions."""
    product_name: str
    marketplace: str
    product_articles: list[str] = []
    product_description: str = ""


class ResumeDecisionRequest(CamelModel):
    """Request schema for POST /api/sessions/{id}/approve."""
    action: str
    idea_index: Optional[int] = None


class RejectRequest(BaseModel):
    """Request schema for PUT /api/sessions/{id}/reject."""
    reason: Optional[str] = None


class PublishRequest(CamelModel):
    """Request schema for POST /api/sessions/{id}/publish."""
    channels: list[str] = Field(default_factory=list)
    caption: Optional[str] = None
    generate_caption: bool = False
