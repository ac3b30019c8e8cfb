from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mindcheck.models.base import Base


ASSESSMENT_TYPES = ("baseline", "checkin")
SESSION_STATUSES = ("pending", "active", "completed", "cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Person taking check-ins; created lazily on first session."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    sessions: Mapped[list[AssessmentSession]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class AssessmentSession(Base):
    """One attempt at a check-in or baseline assessment."""

    __tablename__ = "assessment_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="cascade"), nullable=False
    )
    assessment_type: Mapped[str] = mapped_column(String(16), default="checkin")
    status: Mapped[str] = mapped_column(String(16), default="pending")
    text_data: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    visual_data: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    analysis: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    final_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship(back_populates="sessions")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')",
            name="ck_assessment_sessions_status",
        ),
        CheckConstraint(
            "assessment_type IN ('baseline', 'checkin')",
            name="ck_assessment_sessions_type",
        ),
        CheckConstraint(
            "(final_score IS NULL) OR (final_score >= 0 AND final_score <= 100)",
            name="ck_assessment_sessions_final_score",
        ),
        CheckConstraint(
            "(status = 'completed') = (analysis IS NOT NULL)",
            name="ck_assessment_sessions_analysis_completed",
        ),
        Index("ix_assessment_sessions_user_created", "user_id", "created_at"),
        Index(
            "uq_assessment_sessions_user_pending",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
