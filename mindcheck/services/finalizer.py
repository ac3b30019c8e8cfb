from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from mindcheck.integrations.llm import AnalysisContext
from mindcheck.models import AssessmentSession
from mindcheck.services.analysis import (
    AnalysisOutcome,
    AnalysisResult,
    AnalysisUnavailable,
    AnalysisValidator,
)
from mindcheck.services.capture import CaptureFragment, finalize_transcript, stored_turns
from mindcheck.services.errors import InvalidStateError
from mindcheck.services.sessions import SessionStore, session_analysis


logger = logging.getLogger(__name__)

# Strong references to detached notification tasks until they finish.
_background_tasks: set[asyncio.Task[None]] = set()


class TranscriptAnalyzer(Protocol):
    async def analyze_transcript(self, transcript: str, context: AnalysisContext) -> Any: ...


class CaptureCollaborator(Protocol):
    """Per-session handle on the capture device; ``stop`` may be sync or async."""

    def stop(self) -> Any: ...


class SessionEventSink(Protocol):
    async def session_completed(self, payload: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class FinalizeOutcome:
    session: AssessmentSession
    analysis: AnalysisResult
    final_score: float
    warning: str | None = None


class SessionFinalizer:
    """End capture, analyze, validate and complete one active session."""

    def __init__(
        self,
        store: SessionStore,
        analyzer: TranscriptAnalyzer,
        *,
        validator: AnalysisValidator | None = None,
        sinks: Sequence[SessionEventSink] = (),
        analysis_timeout: float = 30.0,
        capture_stop_grace: float = 3.0,
        agent_label: str = "Assistant",
    ):
        self._store = store
        self._analyzer = analyzer
        self._validator = validator or AnalysisValidator()
        self._sinks = list(sinks)
        self._analysis_timeout = analysis_timeout
        self._capture_stop_grace = capture_stop_grace
        self._agent_label = agent_label

    async def finalize(
        self,
        session_id: str | UUID,
        *,
        capture: CaptureCollaborator | None = None,
        student_first_name: str | None = None,
    ) -> FinalizeOutcome:
        record = await self._store.get(session_id)
        if record.status != "active":
            raise InvalidStateError(record.id, record.status, "finalize")

        visual_summary = await self._stop_capture(record.id, capture)
        if visual_summary is not None:
            record = await self._store.attach_capture(
                record.id, CaptureFragment(visual_summary=visual_summary)
            )

        bundle = finalize_transcript(stored_turns(record.text_data), agent_label=self._agent_label)
        raw: Any = None
        if not self._validator.should_short_circuit(bundle.user_text):
            context = await self._build_context(record, student_first_name)
            raw = await self._run_analysis(bundle.full_conversation, context)
        outcome = self._validator.evaluate(bundle.user_text, raw)
        self._log_outcome(record.id, outcome)

        analysis = outcome.result
        final_score = analysis.text_score
        completed = await self._store.complete(record.id, analysis, final_score)
        # Sinks only hear about completions that are already durable.
        await self._store.commit()

        self._notify(completed, analysis)
        return FinalizeOutcome(
            session=completed,
            analysis=analysis,
            final_score=final_score,
            warning=outcome.warning,
        )

    async def _stop_capture(
        self,
        session_id: UUID,
        capture: CaptureCollaborator | None,
    ) -> dict[str, Any] | None:
        if capture is None:
            return None
        try:
            summary = capture.stop()
            if inspect.isawaitable(summary):
                summary = await asyncio.wait_for(summary, timeout=self._capture_stop_grace)
        except asyncio.TimeoutError:
            logger.warning("Capture stop for session %s exceeded %.1fs; continuing.", session_id, self._capture_stop_grace)
            return None
        except Exception as exc:
            logger.warning("Capture stop for session %s failed; continuing.", session_id, exc_info=exc)
            return None
        return dict(summary) if isinstance(summary, dict) else None

    async def _build_context(
        self,
        record: AssessmentSession,
        student_first_name: str | None,
    ) -> AnalysisContext:
        context = AnalysisContext(checkin_id=str(record.id), student_first_name=student_first_name)
        if context.student_first_name is None:
            user = await self._store.get_user(record.user_id)
            if user and user.display_name:
                context.student_first_name = user.display_name.split()[0]

        previous = await self._store.latest_completed(record.user_id, exclude=[record.id])
        if previous is not None:
            previous_analysis = session_analysis(previous)
            context.previous_score = previous.final_score
            if previous_analysis is not None:
                context.previous_themes = list(previous_analysis.themes)
                context.previous_direction = previous_analysis.direction_of_change
        return context

    async def _run_analysis(
        self,
        transcript: str,
        context: AnalysisContext,
    ) -> Any:
        try:
            return await asyncio.wait_for(
                self._analyzer.analyze_transcript(transcript, context),
                timeout=self._analysis_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Analysis for check-in %s timed out after %.1fs.", context.checkin_id, self._analysis_timeout)
            return AnalysisUnavailable(reason="timeout")
        except Exception as exc:
            logger.warning("Analysis for check-in %s failed.", context.checkin_id, exc_info=exc)
            return AnalysisUnavailable(reason=type(exc).__name__)

    def _log_outcome(self, session_id: UUID, outcome: AnalysisOutcome) -> None:
        if outcome.warning:
            logger.warning("Session %s analysis degraded: %s", session_id, outcome.warning)
        elif outcome.defaults_applied:
            logger.info(
                "Session %s analysis defaulted fields: %s",
                session_id,
                ", ".join(outcome.defaults_applied),
            )

    def _notify(self, record: AssessmentSession, analysis: AnalysisResult) -> None:
        if not self._sinks:
            return
        payload = {
            "session_id": str(record.id),
            "user_id": str(record.user_id),
            "assessment_type": record.assessment_type,
            "final_score": record.final_score,
            "completed_at": record.completed_at.isoformat() if record.completed_at else None,
            "analysis": analysis.to_dict(),
            "text_data": record.text_data,
        }
        task = asyncio.create_task(self._dispatch(payload))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def _dispatch(self, payload: dict[str, Any]) -> None:
        for sink in self._sinks:
            try:
                await sink.session_completed(payload)
            except Exception as exc:
                logger.warning(
                    "Downstream notification %s failed for session %s.",
                    type(sink).__name__,
                    payload["session_id"],
                    exc_info=exc,
                )


async def wait_for_background() -> None:
    """Await outstanding downstream notifications (shutdown and tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
