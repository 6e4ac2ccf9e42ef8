"""Session ledger: the relational source of truth for pipeline progress.

Every session mutation is a single guarded ``UPDATE ... RETURNING`` and
hands back the post-mutation row. When the guard matches nothing, a
follow-up read raises NotFoundError for a missing row and ConflictError for
a row in the wrong state.

Driver-level storage failures are raised as StorageUnavailable.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factorydash.db.models import CostEntry, MediaFile, PipelineSession, PipelineStep, WorkflowError
from factorydash.errors import ConflictError, NotFoundError, StorageUnavailable, ValidationError
from factorydash.orchestrator.state import (
    GATED_TRANSITIONS,
    SESSION_STATUSES,
    STEP_STATUSES,
    TERMINAL_SESSION_STATUSES,
    is_session_status,
    is_step_status,
    resume_url_after,
    step_effects,
)

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "id": PipelineSession.id,
    "created_at": PipelineSession.created_at,
    "updated_at": PipelineSession.updated_at,
    "product_name": PipelineSession.product_name,
    "status": PipelineSession.status,
}
DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _utcnow() -> datetime:
    # Stored naive, matching CURRENT_TIMESTAMP server defaults
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp_page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    """Clamp paging to 1..MAX_LIMIT rows and a non-negative offset."""
    safe_limit = min(max(limit or DEFAULT_LIMIT, 1), MAX_LIMIT)
    safe_offset = max(offset or 0, 0)
    return safe_limit, safe_offset


@dataclass
class SessionFilter:
    status: Optional[str] = None
    marketplace: Optional[str] = None
    source: Optional[str] = None
    search: Optional[str] = None


@dataclass
class StatusReport:
    """Result of applying an engine session-update.

    ``ignored`` is True when the session was terminal and the report was
    logged without touching the row.
    """

    session: PipelineSession
    ignored: bool = False


def _transition_guard(target: str):
    """SQL condition on the current status under which ``target`` is legal."""
    if target == "cancelled":
        return PipelineSession.status != "published"
    allowed_from = GATED_TRANSITIONS.get(target)
    if allowed_from is not None:
        return PipelineSession.status.in_(allowed_from)
    return PipelineSession.status.not_in(TERMINAL_SESSION_STATUSES)


def _error_context_values(
    target: str,
    error_message: Optional[str],
    error_step: Optional[str],
) -> dict[str, Any]:
    """Error columns to write alongside a status change.

    Supplied values win. Otherwise a move into a different, non-error status
    clears the previous failure context; staying in the same status or
    entering ``error`` keeps it.
    """
    values: dict[str, Any] = {}
    for column, supplied in (
        (PipelineSession.error_message, error_message),
        (PipelineSession.error_step, error_step),
    ):
        if supplied is not None:
            values[column.key] = supplied
        elif target != "error":
            values[column.key] = case((PipelineSession.status == target, column), else_=None)
    return values


class SessionLedger:
    """Async repository over the pipeline ledger tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Database unavailable: {type(e).__name__}: {e}")
            raise StorageUnavailable("Database unavailable") from e

    async def _require_session(self, session: AsyncSession, session_id: int) -> PipelineSession:
        row = await session.get(PipelineSession, session_id)
        if row is None:
            raise NotFoundError(f"Session {session_id} not found")
        return row

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def create_session(
        self,
        product_name: str,
        marketplace: str,
        product_articles: Optional[list] = None,
        product_description: str = "",
        source: str = "web",
        created_by: Optional[str] = None,
    ) -> PipelineSession:
        if not product_name or not product_name.strip():
            raise ValidationError("productName is required")
        if not marketplace:
            raise ValidationError("marketplace is required")

        async with self._session() as session:
            row = PipelineSession(
                product_name=product_name.strip(),
                marketplace=marketplace,
                product_articles=product_articles or [],
                product_description=product_description or "",
                source=source,
                status="created",
                created_by=created_by,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)

        logger.info(f"Created session {row.id} ({row.product_name}, {row.marketplace})")
        return row

    async def get_session(self, session_id: int) -> PipelineSession:
        async with self._session() as session:
            return await self._require_session(session, session_id)

    async def list_sessions(
        self,
        filters: Optional[SessionFilter] = None,
        sort: str = "updated_at",
        order: str = "DESC",
        limit: Optional[int] = DEFAULT_LIMIT,
        offset: Optional[int] = 0,
    ) -> tuple[list[PipelineSession], int]:
        """Filtered, sorted page of sessions plus the unpaged total.

        Unknown sort columns fall back to ``updated_at``; unknown orders to
        DESC.
        """
        filters = filters or SessionFilter()
        conditions = []
        if filters.status:
            conditions.append(PipelineSession.status == filters.status)
        if filters.marketplace:
            conditions.append(PipelineSession.marketplace == filters.marketplace)
        if filters.source:
            conditions.append(PipelineSession.source == filters.source)
        if filters.search:
            conditions.append(PipelineSession.product_name.ilike(f"%{filters.search}%"))

        sort_column = SORTABLE_COLUMNS.get(sort, PipelineSession.updated_at)
        ordering = sort_column.asc() if (order or "").upper() == "ASC" else sort_column.desc()
        safe_limit, safe_offset = clamp_page(limit, offset)

        async with self._session() as session:
            result = await session.execute(
                select(PipelineSession)
                .where(*conditions)
                .order_by(ordering, PipelineSession.id.desc())
                .limit(safe_limit)
                .offset(safe_offset)
            )
            rows = list(result.scalars().all())
            total = await session.scalar(
                select(func.count()).select_from(PipelineSession).where(*conditions)
            )
        return rows, total or 0

    async def transition(
        self,
        session_id: int,
        new_status: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> PipelineSession:
        """Human-driven status change (approve/reject/publish/cancel).

        Clears any pending wait address: a human decision taken outside the
        resume gate supersedes it.

        Args:
            session_id: Session to change
            new_status: Target status, validated against the enum
            extra: Optional ``error_message`` / ``error_step`` to store

        Raises:
            ValidationError: Unknown target status
            NotFoundError: No such session
            ConflictError: Current status does not allow the transition
        """
        if not is_session_status(new_status):
            raise ValidationError(
                f"Invalid status '{new_status}'. Allowed: {', '.join(SESSION_STATUSES)}"
            )
        extra = extra or {}
        values: dict[str, Any] = {"status": new_status, "resume_url": None}
        values.update(
            _error_context_values(new_status, extra.get("error_message"), extra.get("error_step"))
        )

        async with self._session() as session:
            result = await session.execute(
                update(PipelineSession)
                .where(PipelineSession.id == session_id, _transition_guard(new_status))
                .values(**values)
                .returning(PipelineSession)
                .execution_options(synchronize_session=False)
            )
            row = result.scalar_one_or_none()
            if row is None:
                current = await self._require_session(session, session_id)
                raise ConflictError(
                    f"Cannot move session {session_id} from '{current.status}' to '{new_status}'"
                )
            await session.commit()

        logger.info(f"Session {session_id} -> {new_status}")
        return row

    async def cancel(self, session_id: int) -> PipelineSession:
        """Cancel a session unless it is already published. Idempotent."""
        return await self.transition(session_id, "cancelled")

    async def apply_status_report(
        self,
        session_id: int,
        status: str,
        current_step: Optional[str] = None,
        error_message: Optional[str] = None,
        error_step: Optional[str] = None,
        resume_url: Optional[str] = None,
    ) -> StatusReport:
        """Apply a session-update callback from the workflow engine.

        Writes only the supplied optional fields. The wait address is
        replaced by whatever the report carries, so a report without one
        resolves a pending decision. Reports for terminal sessions are
        logged and ignored.
        """
        if not status:
            raise ValidationError("sessionId and status are required")
        if not is_session_status(status):
            raise ValidationError(
                f"Invalid status '{status}'. Allowed: {', '.join(SESSION_STATUSES)}"
            )

        values: dict[str, Any] = {
            "status": status,
            "resume_url": resume_url_after(status, resume_url),
        }
        if current_step:
            values["current_step"] = current_step
        values.update(_error_context_values(status, error_message, error_step))

        async with self._session() as session:
            result = await session.execute(
                update(PipelineSession)
                .where(
                    PipelineSession.id == session_id,
                    PipelineSession.status.not_in(TERMINAL_SESSION_STATUSES),
                )
                .values(**values)
                .returning(PipelineSession)
                .execution_options(synchronize_session=False)
            )
            row = result.scalar_one_or_none()
            if row is None:
                current = await self._require_session(session, session_id)
                logger.warning(
                    f"Ignoring '{status}' report for session {session_id}: "
                    f"already {current.status}"
                )
                return StatusReport(session=current, ignored=True)
            await session.commit()

        logger.info(
            f"Session {session_id} reported {status}"
            + (" (awaiting decision)" if row.resume_url else "")
        )
        return StatusReport(session=row)

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    async def record_step(
        self,
        session_id: int,
        step_name: str,
        step_order: Optional[int] = None,
        status: Optional[str] = None,
        input_data: Any = None,
        output_data: Any = None,
        ai_model: Optional[str] = None,
        tokens_used: Optional[int] = None,
        duration_ms: Optional[int] = None,
    ) -> PipelineStep:
        """Upsert the (session_id, step_name) step row from a step-update.

        Supplied payload fields overwrite, absent ones are left untouched. A
        new row without a status starts as ``running``; an existing row keeps
        its status. Timestamps and the session's current_step follow
        ``step_effects``.
        """
        if not session_id or not step_name:
            raise ValidationError("sessionId and stepName are required")
        if status is not None and not is_step_status(status):
            raise ValidationError(
                f"Invalid step status '{status}'. Allowed: {', '.join(sorted(STEP_STATUSES))}"
            )

        fields = {
            "step_order": step_order,
            "input_data": input_data,
            "output_data": output_data,
            "ai_model": ai_model,
            "tokens_used": tokens_used,
            "duration_ms": duration_ms,
        }

        # A concurrent first callback for the same step may win the insert;
        # the second attempt then finds the row and updates it.
        for attempt in range(2):
            try:
                return await self._upsert_step(session_id, step_name, status, fields)
            except IntegrityError:
                if attempt:
                    raise
                logger.info(f"Step {session_id}/{step_name} inserted concurrently, retrying as update")
        raise AssertionError("unreachable")

    async def _upsert_step(
        self,
        session_id: int,
        step_name: str,
        status: Optional[str],
        fields: dict[str, Any],
    ) -> PipelineStep:
        async with self._session() as session:
            await self._require_session(session, session_id)

            result = await session.execute(
                select(PipelineStep).where(
                    PipelineStep.session_id == session_id,
                    PipelineStep.step_name == step_name,
                )
            )
            step = result.scalar_one_or_none()
            previous_status = step.status if step is not None else None
            if step is None:
                step = PipelineStep(session_id=session_id, step_name=step_name, step_order=0)
                session.add(step)

            new_status = status or previous_status or "running"
            step.status = new_status
            for key, value in fields.items():
                if value is not None:
                    setattr(step, key, value)

            effects = step_effects(
                previous_status, new_status, step.started_at, step.completed_at, _utcnow()
            )
            step.started_at = effects.started_at
            step.completed_at = effects.completed_at

            if effects.mirror_current_step:
                await session.execute(
                    update(PipelineSession)
                    .where(PipelineSession.id == session_id)
                    .values(current_step=step_name)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()

        logger.info(f"Step {session_id}/{step_name}: {previous_status or 'new'} -> {new_status}")
        return step

    async def list_steps(self, session_id: int) -> list[PipelineStep]:
        async with self._session() as session:
            result = await session.execute(
                select(PipelineStep)
                .where(PipelineStep.session_id == session_id)
                .order_by(PipelineStep.step_order, PipelineStep.id)
            )
            return list(result.scalars().all())

    # -----------------------------------------------------------------------
    # Costs, errors, media
    # -----------------------------------------------------------------------

    async def record_cost(
        self,
        provider: str,
        model: str,
        session_id: Optional[int] = None,
        step_name: Optional[str] = None,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
        cost_usd: Optional[float] = None,
        duration_ms: Optional[int] = None,
    ) -> CostEntry:
        """Append one immutable cost entry.

        ``total_tokens`` defaults to prompt + completion when absent.
        """
        if not provider or not model:
            raise ValidationError("provider and model are required")

        prompt_tokens = prompt_tokens or 0
        completion_tokens = completion_tokens or 0
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens

        async with self._session() as session:
            if session_id is not None:
                await self._require_session(session, session_id)
            entry = CostEntry(
                session_id=session_id,
                step_name=step_name,
                provider=provider,
                model=model,
                tokens_prompt=prompt_tokens,
                tokens_completion=completion_tokens,
                tokens_total=total_tokens,
                cost_usd=cost_usd or 0.0,
                duration_ms=duration_ms or 0,
            )
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
        return entry

    async def list_costs(self, session_id: int) -> list[CostEntry]:
        async with self._session() as session:
            result = await session.execute(
                select(CostEntry)
                .where(CostEntry.session_id == session_id)
                .order_by(CostEntry.created_at, CostEntry.id)
            )
            return list(result.scalars().all())

    async def cost_summary(self, session_id: int) -> dict[str, Any]:
        """Entry count, summed tokens and summed cost for one session."""
        async with self._session() as session:
            result = await session.execute(
                select(
                    func.count(CostEntry.id),
                    func.coalesce(func.sum(CostEntry.tokens_total), 0),
                    func.coalesce(func.sum(CostEntry.cost_usd), 0.0),
                ).where(CostEntry.session_id == session_id)
            )
            count, tokens, cost = result.one()
        return {"entries": count, "total_tokens": int(tokens), "total_cost_usd": float(cost)}

    async def record_error(
        self,
        workflow_name: str,
        error_message: str,
        session_id: Optional[int] = None,
        node_name: Optional[str] = None,
        error_stack: Optional[str] = None,
    ) -> WorkflowError:
        """Persist an error the workflow engine reported about its own run.

        Never changes session status; a separate session-update carries a
        terminal ``error`` status if the run actually failed.
        """
        if not workflow_name or not error_message:
            raise ValidationError("workflowName and errorMessage are required")

        async with self._session() as session:
            record = WorkflowError(
                session_id=session_id,
                workflow_name=workflow_name,
                node_name=node_name,
                error_message=error_message,
                error_stack=error_stack,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)

        logger.warning(
            f"Workflow error in {workflow_name}"
            + (f"/{node_name}" if node_name else "")
            + (f" (session {session_id})" if session_id else "")
            + f": {error_message}"
        )
        return record

    async def list_errors(
        self,
        workflow: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIMIT,
        offset: Optional[int] = 0,
    ) -> tuple[list[WorkflowError], int]:
        conditions = []
        if workflow:
            conditions.append(WorkflowError.workflow_name == workflow)
        safe_limit, safe_offset = clamp_page(limit, offset)

        async with self._session() as session:
            result = await session.execute(
                select(WorkflowError)
                .where(*conditions)
                .order_by(WorkflowError.created_at.desc(), WorkflowError.id.desc())
                .limit(safe_limit)
                .offset(safe_offset)
            )
            rows = list(result.scalars().all())
            total = await session.scalar(
                select(func.count()).select_from(WorkflowError).where(*conditions)
            )
        return rows, total or 0

    async def register_media(
        self,
        file_key: str,
        file_name: str,
        session_id: Optional[int] = None,
        file_type: Optional[str] = None,
        mime_type: Optional[str] = None,
        file_size: Optional[int] = None,
        source: Optional[str] = None,
        metadata: Any = None,
    ) -> MediaFile:
        """Record a pointer to an object the engine already stored."""
        if not file_key or not file_name:
            raise ValidationError("fileKey and fileName are required")

        async with self._session() as session:
            if session_id is not None:
                await self._require_session(session, session_id)
            media = MediaFile(
                session_id=session_id,
                file_key=file_key,
                file_name=file_name,
                file_type=file_type or "document",
                mime_type=mime_type or "application/octet-stream",
                file_size=file_size or 0,
                source=source or "workflow",
                metadata_json=metadata,
            )
            session.add(media)
            await session.commit()
            await session.refresh(media)
        return media

    async def list_media(self, session_id: int) -> list[MediaFile]:
        async with self._session() as session:
            result = await session.execute(
                select(MediaFile)
                .where(MediaFile.session_id == session_id)
                .order_by(MediaFile.created_at, MediaFile.id)
            )
            return list(result.scalars().all())

    async def session_detail(self, session_id: int) -> dict[str, Any]:
        """Session row with its steps, cost entries, cost summary and media."""
        row = await self.get_session(session_id)
        return {
            "session": row,
            "steps": await self.list_steps(session_id),
            "costs": await self.list_costs(session_id),
            "cost_summary": await self.cost_summary(session_id),
            "media": await self.list_media(session_id),
        }
