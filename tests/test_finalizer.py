from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mindcheck.integrations.llm import AnalysisContext, AnalysisProviderError
from mindcheck.models import AssessmentSession, User
from mindcheck.services.analysis import INSUFFICIENT_SUMMARY, UNAVAILABLE_SUMMARY
from mindcheck.services.capture import CaptureFragment
from mindcheck.services.errors import InvalidStateError
from mindcheck.services.finalizer import SessionFinalizer, wait_for_background
from mindcheck.services.sessions import SessionStore


CONVERSATION = [
    {"role": "assistant", "text": "How has this week been?", "timestamp": 1.0},
    {"role": "user", "text": "Busy with exams but I went running twice.", "timestamp": 2.0},
    {"role": "assistant", "text": "How would you rate your mood?", "timestamp": 3.0},
    {"role": "user", "text": "Maybe a six out of ten.", "timestamp": 4.0},
]


class StubAnalyzer:
    def __init__(self, response: Any = None, *, error: Exception | None = None, delay: float = 0.0):
        self.response = response if response is not None else {
            "mood_score": 6,
            "text_score": 64,
            "uncertainty": 0.2,
            "risk_level": "mild",
            "direction_of_change": "same",
            "themes": ["exams", "exercise"],
            "drivers_positive": ["running"],
            "drivers_negative": ["exams"],
            "conversation_summary": "The student described a busy exam week.",
        }
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, AnalysisContext]] = []

    async def analyze_transcript(self, transcript: str, context: AnalysisContext) -> Any:
        self.calls.append((transcript, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class StubSink:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.payloads: list[dict[str, Any]] = []

    async def session_completed(self, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("sink offline")
        self.payloads.append(payload)


class StubCapture:
    def __init__(self, summary: Any = None, *, delay: float = 0.0, error: Exception | None = None):
        self.summary = summary
        self.delay = delay
        self.error = error
        self.stopped = False

    async def stop(self) -> Any:
        self.stopped = True
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.summary


async def _active_with_conversation(store: SessionStore, *, display_name: str | None = None):
    user_id = uuid4()
    record = await store.create_session(user_id, display_name=display_name)
    await store.activate(record.id)
    await store.attach_capture(record.id, CaptureFragment.from_payload(turns=CONVERSATION))
    return record


@pytest.mark.asyncio
async def test_finalize_completes_with_validated_analysis(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer()
    record = await _active_with_conversation(store)

    outcome = await SessionFinalizer(store, analyzer).finalize(record.id)

    assert outcome.session.status == "completed"
    assert outcome.final_score == 64
    assert outcome.session.final_score == 64
    assert outcome.analysis.mood_score == 6
    assert outcome.warning is None
    transcript, context = analyzer.calls[0]
    assert transcript.startswith("Assistant: How has this week been?")
    assert "User: Maybe a six out of ten." in transcript
    assert context.checkin_id == str(record.id)


@pytest.mark.asyncio
async def test_sparse_transcript_skips_model(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer()
    record = await store.create_session(uuid4())
    await store.activate(record.id)
    await store.attach_capture(
        record.id,
        CaptureFragment.from_payload(
            turns=[
                {"role": "assistant", "text": "Hello! How are you feeling today?"},
                {"role": "user", "text": "ok"},
            ]
        ),
    )

    outcome = await SessionFinalizer(store, analyzer).finalize(record.id)

    assert analyzer.calls == []
    assert outcome.session.status == "completed"
    assert outcome.analysis.conversation_summary == INSUFFICIENT_SUMMARY
    assert outcome.analysis.uncertainty == pytest.approx(0.9)
    assert outcome.final_score == 50


@pytest.mark.asyncio
async def test_empty_transcript_still_completes(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer()
    record = await store.create_session(uuid4())
    await store.activate(record.id)

    outcome = await SessionFinalizer(store, analyzer).finalize(record.id)

    assert outcome.session.status == "completed"
    assert analyzer.calls == []


@pytest.mark.asyncio
async def test_provider_failure_degrades_to_neutral(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer(error=AnalysisProviderError("no providers"))
    record = await _active_with_conversation(store)

    outcome = await SessionFinalizer(store, analyzer).finalize(record.id)

    assert outcome.session.status == "completed"
    assert outcome.analysis.conversation_summary == UNAVAILABLE_SUMMARY
    assert outcome.analysis.mood_score == 5
    assert outcome.analysis.text_score == 50
    assert outcome.warning is not None


@pytest.mark.asyncio
async def test_analysis_timeout_degrades_to_neutral(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer(delay=1.0)
    record = await _active_with_conversation(store)

    outcome = await SessionFinalizer(store, analyzer, analysis_timeout=0.01).finalize(record.id)

    assert outcome.session.status == "completed"
    assert outcome.analysis.uncertainty == pytest.approx(0.9)
    assert "timeout" in (outcome.warning or "")


@pytest.mark.asyncio
async def test_malformed_model_output_is_sanitized(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer({"moodScore": 42, "textScore": "high", "riskLevel": "HIGH"})
    record = await _active_with_conversation(store)

    outcome = await SessionFinalizer(store, analyzer).finalize(record.id)

    assert outcome.analysis.mood_score == 5
    assert outcome.analysis.text_score == 50
    assert outcome.analysis.uncertainty >= 0.6
    assert outcome.analysis.risk_level == "high"


@pytest.mark.asyncio
async def test_finalize_twice_fails(session: AsyncSession) -> None:
    store = SessionStore(session)
    record = await _active_with_conversation(store)
    finalizer = SessionFinalizer(store, StubAnalyzer())
    await finalizer.finalize(record.id)

    with pytest.raises(InvalidStateError):
        await finalizer.finalize(record.id)


@pytest.mark.asyncio
async def test_finalize_pending_session_fails(session: AsyncSession) -> None:
    store = SessionStore(session)
    record = await store.create_session(uuid4())

    with pytest.raises(InvalidStateError):
        await SessionFinalizer(store, StubAnalyzer()).finalize(record.id)

    assert (await store.get(record.id)).status == "pending"


@pytest.mark.asyncio
async def test_capture_summary_is_stored_before_completion(session: AsyncSession) -> None:
    store = SessionStore(session)
    record = await _active_with_conversation(store)
    capture = StubCapture({"dominant_expression": "calm"})

    outcome = await SessionFinalizer(store, StubAnalyzer()).finalize(record.id, capture=capture)

    assert capture.stopped
    assert outcome.session.visual_data == {"dominant_expression": "calm"}


@pytest.mark.asyncio
async def test_capture_stop_failure_does_not_block(session: AsyncSession) -> None:
    store = SessionStore(session)
    record = await _active_with_conversation(store)

    slow = StubCapture({"late": True}, delay=1.0)
    outcome = await SessionFinalizer(store, StubAnalyzer(), capture_stop_grace=0.01).finalize(
        record.id, capture=slow
    )

    assert outcome.session.status == "completed"
    assert outcome.session.visual_data is None


@pytest.mark.asyncio
async def test_capture_stop_error_is_ignored(session: AsyncSession) -> None:
    store = SessionStore(session)
    record = await _active_with_conversation(store)

    outcome = await SessionFinalizer(store, StubAnalyzer()).finalize(
        record.id, capture=StubCapture(error=RuntimeError("camera gone"))
    )

    assert outcome.session.status == "completed"


@pytest.mark.asyncio
async def test_sinks_receive_payload_and_failures_are_logged(
    session: AsyncSession, caplog: pytest.LogCaptureFixture
) -> None:
    store = SessionStore(session)
    record = await _active_with_conversation(store)
    broken = StubSink(fail=True)
    healthy = StubSink()

    with caplog.at_level(logging.WARNING, logger="mindcheck.services.finalizer"):
        outcome = await SessionFinalizer(store, StubAnalyzer(), sinks=(broken, healthy)).finalize(record.id)
        await wait_for_background()

    assert outcome.session.status == "completed"
    assert healthy.payloads[0]["session_id"] == str(record.id)
    assert healthy.payloads[0]["final_score"] == 64
    assert any("Downstream notification" in message for message in caplog.messages)


@pytest.mark.asyncio
async def test_context_includes_name_and_previous_session(session: AsyncSession) -> None:
    store = SessionStore(session)
    user_id = uuid4()
    analyzer = StubAnalyzer()
    finalizer = SessionFinalizer(store, analyzer)

    first = await store.create_session(user_id, display_name="Jordan Lee")
    await store.activate(first.id)
    await store.attach_capture(first.id, CaptureFragment.from_payload(turns=CONVERSATION))
    await finalizer.finalize(first.id)

    second = await store.create_session(user_id)
    await store.activate(second.id)
    await store.attach_capture(second.id, CaptureFragment.from_payload(turns=CONVERSATION))
    await finalizer.finalize(second.id)

    first_context = analyzer.calls[0][1]
    second_context = analyzer.calls[1][1]
    assert first_context.student_first_name == "Jordan"
    assert first_context.previous_score is None
    assert second_context.previous_score == 64
    assert second_context.previous_themes == ["exams", "exercise"]
    assert second_context.previous_direction == "same"


@pytest.mark.asyncio
async def test_explicit_first_name_wins(session: AsyncSession) -> None:
    store = SessionStore(session)
    analyzer = StubAnalyzer()
    record = await _active_with_conversation(store, display_name="Jordan Lee")

    await SessionFinalizer(store, analyzer).finalize(record.id, student_first_name="Jo")

    assert analyzer.calls[0][1].student_first_name == "Jo"


class CommittedStatusSink:
    """Reads the completed session back over a separate connection."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.statuses: list[str | None] = []

    async def session_completed(self, payload: dict[str, Any]) -> None:
        async with self._session_factory() as other:
            record = await other.get(AssessmentSession, UUID(payload["session_id"]))
            self.statuses.append(record.status if record is not None else None)


@pytest.mark.asyncio
async def test_sinks_see_the_completion_committed(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkins.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(User.__table__.create)
        await conn.run_sync(AssessmentSession.__table__.create)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    sink = CommittedStatusSink(session_factory)

    try:
        async with session_factory() as db_session:
            store = SessionStore(db_session)
            record = await _active_with_conversation(store)
            await store.commit()

            await SessionFinalizer(store, StubAnalyzer(), sinks=(sink,)).finalize(record.id)
            await wait_for_background()
    finally:
        await engine.dispose()

    assert sink.statuses == ["completed"]
