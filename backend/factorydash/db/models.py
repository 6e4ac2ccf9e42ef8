"""SQLAlchemy 2.0 ORM models for the pipeline session ledger."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    # Server-generated timestamps come back in the same INSERT/UPDATE statement
    __mapper_args__ = {"eager_defaults": True}

    def as_dict(self) -> dict[str, Any]:
        """Mapped column values keyed by attribute name, datetimes as ISO strings."""
        data = {}
        for attr in inspect(type(self)).column_attrs:
            value = getattr(self, attr.key)
            if isinstance(value, datetime):
                value = value.isoformat()
            data[attr.key] = value
        return data


class PipelineSession(Base):
    """One content-production job tracked through the workflow engine.

    ``resume_url`` is set while the engine is paused waiting for a human
    decision and cleared by the engine's next status report.
    """
    __tablename__ = "pipeline_sessions"
    __table_args__ = (
        Index("idx_pipeline_sessions_status_updated", "status", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(32), default="web")
    status: Mapped[str] = mapped_column(String(32), default="created")
    current_step: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    product_name: Mapped[str] = mapped_column(String(500))
    product_articles: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    product_description: Mapped[str] = mapped_column(Text, default="")
    marketplace: Mapped[str] = mapped_column(String(32), index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Rows live in external content tables
    idea_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    voice_script_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    video_prompt_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    resume_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_step: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class PipelineStep(Base):
    """One named stage of a session, upserted on (session_id, step_name)."""
    __tablename__ = "pipeline_steps"
    __table_args__ = (
        UniqueConstraint("session_id", "step_name", name="uq_pipeline_steps_session_step"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("pipeline_sessions.id"), index=True)
    step_name: Mapped[str] = mapped_column(String(128))
    step_order: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    input_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    output_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    ai_model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class CostEntry(Base):
    """Immutable record of one metered AI provider call."""
    __tablename__ = "ai_costs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pipeline_sessions.id"), nullable=True, index=True
    )
    step_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    provider: Mapped[str] = mapped_column(String(64))
    model: Mapped[str] = mapped_column(String(128))
    tokens_prompt: Mapped[int] = mapped_column(Integer, default=0)
    tokens_completion: Mapped[int] = mapped_column(Integer, default=0)
    tokens_total: Mapped[int] = mapped_column(Integer, default=0)
    cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class WorkflowError(Base):
    """Error reported by the workflow engine about its own execution.

    session_id is not a foreign key: the engine may report errors for runs
    that never had a ledger session.
    """
    __tablename__ = "workflow_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    workflow_name: Mapped[str] = mapped_column(String(128), index=True)
    node_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error_message: Mapped[str] = mapped_column(Text)
    error_stack: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class MediaFile(Base):
    """Pointer to an object the engine already placed in object storage."""
    __tablename__ = "media_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pipeline_sessions.id"), nullable=True, index=True
    )
    file_key: Mapped[str] = mapped_column(String(500))
    file_name: Mapped[str] = mapped_column(String(255))
    file_type: Mapped[str] = mapped_column(String(32), default="document")
    mime_type: Mapped[str] = mapped_column(String(128), default="application/octet-stream")
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    source: Mapped[str] = mapped_column(String(32), default="workflow")
    metadata_json: Mapped[Optional[Any]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
