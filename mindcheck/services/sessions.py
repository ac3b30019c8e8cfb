from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mindcheck.models import ASSESSMENT_TYPES, AssessmentSession, User
from mindcheck.models.entities import utcnow
from mindcheck.services.analysis import AnalysisResult
from mindcheck.services.capture import (
    CaptureFragment,
    append_turns,
    build_text_data,
    set_visual_summary,
    stored_turns,
)
from mindcheck.services.errors import ConflictError, InvalidStateError, SessionNotFoundError


logger = logging.getLogger(__name__)


SUPERSEDED_REASON = "superseded"


class SessionStore:
    """Durable assessment sessions and the only writer of their status.

    Transitions::

        pending -> active -> completed
           |         |
           +---------+----> cancelled

    Each transition is a single conditional UPDATE keyed by the session id and
    guarded by the allowed source statuses, so a lost race shows up as zero
    affected rows rather than a silent overwrite.
    """

    def __init__(self, session: AsyncSession, *, agent_label: str = "Assistant"):
        self._session = session
        self._agent_label = agent_label

    async def create_session(
        self,
        user_id: str | UUID,
        assessment_type: str = "checkin",
        *,
        display_name: str | None = None,
    ) -> AssessmentSession:
        """Cancel the user's pending sessions, then open a new pending one."""
        if assessment_type not in ASSESSMENT_TYPES:
            raise ValueError(f"Unsupported assessment type: {assessment_type!r}.")
        user_uuid = self._coerce_uuid(user_id, "user_id")
        await self._get_or_create_user(user_uuid, display_name)

        now = utcnow()
        superseded = await self._session.execute(
            update(AssessmentSession)
            .where(AssessmentSession.user_id == user_uuid)
            .where(AssessmentSession.status == "pending")
            .values(
                status="cancelled",
                cancel_reason=SUPERSEDED_REASON,
                cancelled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if superseded.rowcount:
            logger.info("Cancelled %d pending session(s) for user %s.", superseded.rowcount, user_uuid)

        record = AssessmentSession(
            id=uuid4(),
            user_id=user_uuid,
            assessment_type=assessment_type,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        self._session.add(record)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ConflictError(
                f"Another session for user {user_uuid} was created concurrently."
            ) from exc

        logger.info("Created %s session %s for user %s.", assessment_type, record.id, user_uuid)
        return record

    async def commit(self) -> None:
        """Make every transition so far durable and visible to other connections."""
        await self._session.commit()

    async def get(self, session_id: str | UUID) -> AssessmentSession:
        return await self._load(self._coerce_uuid(session_id, "session_id"))

    async def get_user(self, user_id: str | UUID) -> User | None:
        return await self._session.get(User, self._coerce_uuid(user_id, "user_id"))

    async def activate(self, session_id: str | UUID) -> AssessmentSession:
        """pending -> active. Already active is a no-op."""
        session_uuid = self._coerce_uuid(session_id, "session_id")
        now = utcnow()
        changed, record = await self._transition(
            session_uuid,
            allowed_from=("pending",),
            values={"status": "active", "activated_at": now, "updated_at": now},
        )
        if changed:
            logger.info("Activated session %s.", session_uuid)
            return record
        if record.status == "active":
            return record
        raise InvalidStateError(session_uuid, record.status, "activate")

    async def attach_capture(
        self,
        session_id: str | UUID,
        fragment: CaptureFragment,
    ) -> AssessmentSession:
        """Merge a transcript or visual fragment; only legal while active."""
        session_uuid = self._coerce_uuid(session_id, "session_id")
        record = await self._load(session_uuid, for_update=True)
        if record.status != "active":
            raise InvalidStateError(session_uuid, record.status, "attach capture to")

        values: dict[str, Any] = {}
        if fragment.turns is not None:
            merged = append_turns(stored_turns(record.text_data), fragment.turns)
            values["text_data"] = build_text_data(merged, agent_label=self._agent_label)
        if fragment.visual_summary is not None:
            values["visual_data"] = set_visual_summary(record.visual_data, fragment.visual_summary)
        if not values:
            return record

        values["updated_at"] = utcnow()
        changed, record = await self._transition(
            session_uuid, allowed_from=("active",), values=values
        )
        if not changed:
            raise InvalidStateError(session_uuid, record.status, "attach capture to")
        return record

    async def complete(
        self,
        session_id: str | UUID,
        analysis: AnalysisResult,
        final_score: float,
    ) -> AssessmentSession:
        """active -> completed. Not idempotent: a second call fails."""
        if not isinstance(analysis, AnalysisResult):
            raise TypeError("complete() requires a validated AnalysisResult.")
        session_uuid = self._coerce_uuid(session_id, "session_id")
        now = utcnow()
        changed, record = await self._transition(
            session_uuid,
            allowed_from=("active",),
            values={
                "status": "completed",
                "analysis": analysis.to_dict(),
                "final_score": final_score,
                "completed_at": now,
                "updated_at": now,
            },
        )
        if not changed:
            raise InvalidStateError(session_uuid, record.status, "complete")
        logger.info("Completed session %s with score %s.", session_uuid, final_score)
        return record

    async def cancel(self, session_id: str | UUID, reason: str | None = None) -> AssessmentSession:
        """{pending, active} -> cancelled. Cancelling twice is fine; a completed session is not."""
        session_uuid = self._coerce_uuid(session_id, "session_id")
        now = utcnow()
        changed, record = await self._transition(
            session_uuid,
            allowed_from=("pending", "active"),
            values={
                "status": "cancelled",
                "cancel_reason": (reason or "").strip() or None,
                "cancelled_at": now,
                "updated_at": now,
            },
        )
        if changed:
            logger.info("Cancelled session %s (%s).", session_uuid, reason or "no reason")
            return record
        if record.status == "cancelled":
            return record
        raise InvalidStateError(session_uuid, record.status, "cancel")

    async def list_sessions(
        self,
        user_id: str | UUID,
        *,
        limit: int = 20,
    ) -> list[AssessmentSession]:
        """Return the user's sessions, most recent first."""
        stmt = (
            select(AssessmentSession)
            .where(AssessmentSession.user_id == self._coerce_uuid(user_id, "user_id"))
            .order_by(AssessmentSession.created_at.desc())
            .limit(max(1, limit))
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_completed(
        self,
        user_id: str | UUID,
        *,
        since: datetime | None = None,
    ) -> list[AssessmentSession]:
        stmt = (
            select(AssessmentSession)
            .where(AssessmentSession.user_id == self._coerce_uuid(user_id, "user_id"))
            .where(AssessmentSession.status == "completed")
            .order_by(AssessmentSession.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if since is not None:
            stmt = stmt.where(AssessmentSession.created_at >= since)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def latest_completed(
        self,
        user_id: str | UUID,
        *,
        exclude: Iterable[UUID] = (),
    ) -> AssessmentSession | None:
        stmt = (
            select(AssessmentSession)
            .where(AssessmentSession.user_id == self._coerce_uuid(user_id, "user_id"))
            .where(AssessmentSession.status == "completed")
            .order_by(AssessmentSession.completed_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        excluded = list(exclude)
        if excluded:
            stmt = stmt.where(AssessmentSession.id.not_in(excluded))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _transition(
        self,
        session_id: UUID,
        *,
        allowed_from: tuple[str, ...],
        values: dict[str, Any],
    ) -> tuple[bool, AssessmentSession]:
        result = await self._session.execute(
            update(AssessmentSession)
            .where(AssessmentSession.id == session_id)
            .where(AssessmentSession.status.in_(allowed_from))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        record = await self._load(session_id)
        return bool(result.rowcount), record

    async def _load(self, session_id: UUID, *, for_update: bool = False) -> AssessmentSession:
        record = await self._session.get(
            AssessmentSession,
            session_id,
            populate_existing=True,
            with_for_update=for_update or None,
        )
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    async def _get_or_create_user(self, user_id: UUID, display_name: str | None) -> User:
        user = await self._session.get(User, user_id)
        if user:
            if display_name and not user.display_name:
                user.display_name = display_name.strip()
            return user

        user = User(id=user_id, display_name=(display_name or "").strip() or None)
        self._session.add(user)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ConflictError(f"User {user_id} was created concurrently.") from exc
        return user

    def _coerce_uuid(self, value: str | UUID, name: str) -> UUID:
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid {name} provided.") from exc


def session_analysis(record: AssessmentSession) -> AnalysisResult | None:
    """Typed view of a session's stored analysis."""
    if record.analysis is None:
        return None
    return AnalysisResult.from_dict(record.analysis)
