from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mindcheck.services.reports import RenderedReport, ReportBundle


class DateRangeItem(BaseModel):
    start: datetime
    end: datetime


class ThemeCountItem(BaseModel):
    theme: str
    count: int


class ReportBundleItem(BaseModel):
    """Aggregated wellbeing report for one user and window."""

    user_id: str
    period_days: int
    date_range: DateRangeItem
    check_in_count: int
    average_score: int | None = None
    average_mood: float | None = None
    theme_frequency: dict[str, int] = Field(default_factory=dict)
    top_themes: list[ThemeCountItem] = Field(default_factory=list)
    top_positive_drivers: list[str] = Field(default_factory=list)
    top_concern_drivers: list[str] = Field(default_factory=list)
    summaries: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, bundle: ReportBundle) -> "ReportBundleItem":
        return cls(
            user_id=bundle.user_id,
            period_days=bundle.period_days,
            date_range=DateRangeItem(start=bundle.date_range.start, end=bundle.date_range.end),
            check_in_count=bundle.check_in_count,
            average_score=bundle.average_score,
            average_mood=bundle.average_mood,
            theme_frequency=dict(bundle.theme_frequency),
            top_themes=[
                ThemeCountItem(theme=theme, count=count) for theme, count in bundle.top_themes()
            ],
            top_positive_drivers=list(bundle.top_positive_drivers),
            top_concern_drivers=list(bundle.top_concern_drivers),
            summaries=list(bundle.summaries),
        )


class ReportResponse(BaseModel):
    report: ReportBundleItem
    narrative: str
    text: str

    @classmethod
    def from_domain(cls, rendered: RenderedReport) -> "ReportResponse":
        return cls(
            report=ReportBundleItem.from_domain(rendered.bundle),
            narrative=rendered.narrative,
            text=rendered.text,
        )


class ReportEmailRequest(BaseModel):
    recipient: str = Field(..., max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    period_days: int = Field(default=30, description="One of 14, 30 or 90.")


class ReportEmailResponse(BaseModel):
    message_id: str | None = None
    delivered: bool
