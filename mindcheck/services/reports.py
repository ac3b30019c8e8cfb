from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol
from uuid import UUID

from mindcheck.models import AssessmentSession
from mindcheck.services.errors import EmptyRangeError
from mindcheck.services.sessions import SessionStore, session_analysis


logger = logging.getLogger(__name__)


REPORT_PERIODS = (14, 30, 90)
NARRATIVE_UNAVAILABLE = "AI summary generation temporarily unavailable. Please try again later."


@dataclass(frozen=True, slots=True)
class DateRange:
    start: datetime
    end: datetime


@dataclass(slots=True)
class ReportBundle:
    """Derived rollup of one user's completed sessions over a window. Never persisted."""

    user_id: str
    period_days: int
    date_range: DateRange
    check_in_count: int
    average_score: int | None
    average_mood: float | None
    theme_frequency: dict[str, int] = field(default_factory=dict)
    top_positive_drivers: list[str] = field(default_factory=list)
    top_concern_drivers: list[str] = field(default_factory=list)
    summaries: list[str] = field(default_factory=list)

    def top_themes(self, limit: int = 10) -> list[tuple[str, int]]:
        return Counter(self.theme_frequency).most_common(limit)


@dataclass(slots=True)
class RenderedReport:
    bundle: ReportBundle
    narrative: str
    text: str


class ReportAggregator:
    """Pure reducer from completed sessions to a :class:`ReportBundle`."""

    def __init__(self, *, driver_limit: int = 10, summary_limit: int = 15):
        self._driver_limit = driver_limit
        self._summary_limit = summary_limit

    def aggregate(
        self,
        user_id: str | UUID,
        period_days: int,
        sessions: Iterable[AssessmentSession],
        *,
        now: datetime | None = None,
    ) -> ReportBundle:
        if period_days not in REPORT_PERIODS:
            raise ValueError(f"period_days must be one of {REPORT_PERIODS}.")
        end = _as_utc(now or datetime.now(timezone.utc))
        start = end - timedelta(days=period_days)

        in_range = [
            record
            for record in sessions
            if record.status == "completed" and start <= _as_utc(record.created_at) <= end
        ]
        if not in_range:
            raise EmptyRangeError(user_id, period_days)

        # Stable sort keeps the caller's order for identical timestamps.
        newest_first = sorted(in_range, key=lambda record: _as_utc(record.created_at), reverse=True)
        analyses = [(record, session_analysis(record)) for record in newest_first]

        scores = [record.final_score for record in newest_first if record.final_score is not None]
        moods = [analysis.mood_score for _, analysis in analyses if analysis is not None]

        theme_counts: Counter[str] = Counter()
        positive: list[str] = []
        concerns: list[str] = []
        summaries: list[str] = []
        for _, analysis in analyses:
            if analysis is None:
                continue
            theme_counts.update(analysis.themes)
            positive.extend(analysis.drivers_positive)
            concerns.extend(analysis.drivers_negative)
            summaries.append(analysis.conversation_summary)

        return ReportBundle(
            user_id=str(user_id),
            period_days=period_days,
            date_range=DateRange(
                start=_as_utc(newest_first[-1].created_at),
                end=_as_utc(newest_first[0].created_at),
            ),
            check_in_count=len(newest_first),
            average_score=_rounded_mean_int(scores),
            average_mood=_rounded_mean_tenths(moods),
            theme_frequency=dict(theme_counts),
            top_positive_drivers=positive[: self._driver_limit],
            top_concern_drivers=concerns[: self._driver_limit],
            summaries=summaries[: self._summary_limit],
        )


class NarrativeGenerator(Protocol):
    async def generate_report_narrative(self, report_facts: str) -> str | None: ...


class ReportDelivery(Protocol):
    async def send_report(self, *, recipient: str, subject: str, body: str) -> str | None: ...


class ReportService:
    """Fetch a user's window of completed sessions and turn it into a report."""

    def __init__(
        self,
        store: SessionStore,
        aggregator: ReportAggregator,
        *,
        narrator: NarrativeGenerator | None = None,
        mailer: ReportDelivery | None = None,
    ):
        self._store = store
        self._aggregator = aggregator
        self._narrator = narrator
        self._mailer = mailer

    async def build_bundle(
        self,
        user_id: str | UUID,
        period_days: int,
        *,
        now: datetime | None = None,
    ) -> ReportBundle:
        if period_days not in REPORT_PERIODS:
            raise ValueError(f"period_days must be one of {REPORT_PERIODS}.")
        end = _as_utc(now or datetime.now(timezone.utc))
        sessions = await self._store.list_completed(user_id, since=end - timedelta(days=period_days))
        return self._aggregator.aggregate(user_id, period_days, sessions, now=end)

    async def build_report(
        self,
        user_id: str | UUID,
        period_days: int,
        *,
        now: datetime | None = None,
    ) -> RenderedReport:
        bundle = await self.build_bundle(user_id, period_days, now=now)
        narrative = await self._narrate(bundle)
        return RenderedReport(
            bundle=bundle,
            narrative=narrative,
            text=render_report_text(bundle, narrative, generated_at=now),
        )

    async def email_report(
        self,
        user_id: str | UUID,
        period_days: int,
        *,
        recipient: str,
        now: datetime | None = None,
    ) -> str | None:
        if self._mailer is None:
            raise RuntimeError("Report delivery is not configured.")
        report = await self.build_report(user_id, period_days, now=now)
        return await self._mailer.send_report(
            recipient=recipient,
            subject=f"Your {period_days}-day wellbeing report",
            body=report.text,
        )

    async def _narrate(self, bundle: ReportBundle) -> str:
        if self._narrator is None:
            return NARRATIVE_UNAVAILABLE
        try:
            narrative = await self._narrator.generate_report_narrative(report_facts(bundle))
        except Exception as exc:
            logger.warning("Report narrative generation failed.", exc_info=exc)
            return NARRATIVE_UNAVAILABLE
        return narrative or NARRATIVE_UNAVAILABLE


def report_facts(bundle: ReportBundle) -> str:
    """Data summary handed to the narrative model."""
    themes = ", ".join(theme for theme, _ in bundle.top_themes(10)) or "none recorded"
    lines = [
        "Data Summary:",
        f"- Period: Last {bundle.period_days} days",
        f"- Check-ins: {bundle.check_in_count}",
        f"- Average Score: {_display(bundle.average_score)}/100",
        f"- Average Mood Score: {_display(bundle.average_mood)}/10",
        f"- Top Themes: {themes}",
        f"- Positive Factors: {', '.join(bundle.top_positive_drivers) or 'none recorded'}",
        f"- Concerns: {', '.join(bundle.top_concern_drivers) or 'none recorded'}",
        "",
        "Conversation Summaries:",
    ]
    lines.extend(f"- {summary}" for summary in bundle.summaries)
    return "\n".join(lines)


def render_report_text(
    bundle: ReportBundle,
    narrative: str,
    *,
    generated_at: datetime | None = None,
) -> str:
    rule = "-" * 63
    generated = _as_utc(generated_at or datetime.now(timezone.utc))
    themes = [f"  {theme} ({count})" for theme, count in bundle.top_themes(15)] or ["  None recorded"]
    positives = [f"  - {item}" for item in bundle.top_positive_drivers] or ["  None recorded"]
    concerns = [f"  - {item}" for item in bundle.top_concern_drivers] or ["  None recorded"]
    lines = [
        "=" * 63,
        "WELLBEING REPORT".center(63),
        "=" * 63,
        "",
        f"Report Period: {_long_date(bundle.date_range.start)} to {_long_date(bundle.date_range.end)} "
        f"({bundle.period_days} days)",
        f"Generated: {generated.strftime('%d/%m/%Y %H:%M')} UTC",
        "",
        rule,
        "SUMMARY STATISTICS",
        rule,
        f"Total Check-ins:        {bundle.check_in_count}",
        f"Average Score:          {_display(bundle.average_score)}/100",
        f"Average Mood:           {_display(bundle.average_mood)}/10",
        "",
        rule,
        "KEY THEMES",
        rule,
        *themes,
        "",
        rule,
        "POSITIVE FACTORS",
        rule,
        *positives,
        "",
        rule,
        "AREAS OF CONCERN",
        rule,
        *concerns,
        "",
        rule,
        "DETAILED ANALYSIS",
        rule,
        narrative.strip(),
    ]
    return "\n".join(lines)


def _rounded_mean_int(values: list[float]) -> int | None:
    if not values:
        return None
    mean = Decimal(str(sum(values))) / Decimal(len(values))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _rounded_mean_tenths(values: list[int]) -> float | None:
    if not values:
        return None
    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _display(value: Any) -> str:
    return "n/a" if value is None else str(value)


def _long_date(value: datetime) -> str:
    return f"{value.day} {value.strftime('%B %Y')}"
