from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionCreate(BaseModel):
    """Payload to open a new assessment session for a user."""

    user_id: str = Field(..., description="Identifier of the user taking the check-in.")
    assessment_type: Literal["baseline", "checkin"] = Field(default="checkin")
    display_name: str | None = Field(
        default=None,
        max_length=120,
        description="Optional display name stored on first contact; its first word greets the student.",
    )


class CaptureRequest(BaseModel):
    """Transcript and/or visual fragment delivered while a session is active."""

    turns: list[dict[str, Any]] | None = Field(
        default=None,
        description="Ordered conversation turns; malformed entries are dropped.",
    )
    visual_summary: dict[str, Any] | None = Field(
        default=None,
        description="Opaque visual capture summary; the last write wins.",
    )


class FinalizeRequest(BaseModel):
    student_first_name: str | None = Field(default=None, max_length=120)


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class AnalysisItem(BaseModel):
    """Serializable view of a validated analysis."""

    version: str
    themes: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    risk_level: str
    direction_of_change: str
    mood_score: int
    text_score: float
    uncertainty: float
    drivers_positive: list[str] = Field(default_factory=list)
    drivers_negative: list[str] = Field(default_factory=list)
    conversation_summary: str
    notable_quotes: list[str] = Field(default_factory=list)


class SessionItem(BaseModel):
    """Serializable view of an assessment session record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    assessment_type: str
    status: str
    text_data: dict[str, Any] | None = None
    visual_data: dict[str, Any] | None = None
    analysis: AnalysisItem | None = None
    final_score: float | None = None
    cancel_reason: str | None = None
    created_at: datetime
    activated_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_uuid(cls, value: Any) -> str:
        return str(value)


class SessionListResponse(BaseModel):
    items: list[SessionItem]


class FinalizeResponse(BaseModel):
    session: SessionItem
    final_score: float
    degraded: bool = Field(
        default=False,
        description="True when the analysis fell back to neutral defaults.",
    )
