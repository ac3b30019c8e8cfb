from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

from mindcheck.api.deps import get_report_service
from mindcheck.core.app import create_app
from mindcheck.services.errors import EmptyRangeError
from mindcheck.services.reports import DateRange, RenderedReport, ReportBundle


class StubReportService:
    def __init__(self) -> None:
        start = datetime(2026, 10, 1, tzinfo=timezone.utc)
        end = datetime(2026, 10, 18, tzinfo=timezone.utc)
        self.bundle = ReportBundle(
            user_id=str(uuid4()),
            period_days=30,
            date_range=DateRange(start=start, end=end),
            check_in_count=3,
            average_score=70,
            average_mood=6.0,
            theme_frequency={"sleep": 2, "work": 1},
            top_positive_drivers=["friends"],
            top_concern_drivers=["exams"],
            summaries=["Talked about exams."],
        )
        self.error: Exception | None = None
        self.calls: list[tuple[str, int]] = []
        self.emails: list[str] = []

    async def build_report(self, user_id: str, period_days: int) -> RenderedReport:
        self.calls.append((user_id, period_days))
        if self.error is not None:
            raise self.error
        return RenderedReport(bundle=self.bundle, narrative="Narrative.", text="WELLBEING REPORT")

    async def email_report(self, user_id: str, period_days: int, *, recipient: str) -> str | None:
        self.calls.append((user_id, period_days))
        if self.error is not None:
            raise self.error
        self.emails.append(recipient)
        return "ses-001"


@contextmanager
def client_with_service(service: StubReportService):
    app = create_app()

    async def override_service():
        return service

    app.dependency_overrides[get_report_service] = override_service
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


def test_get_report_returns_bundle() -> None:
    service = StubReportService()
    user_id = str(uuid4())

    with client_with_service(service) as client:
        response = client.get(f"/api/reports/{user_id}", params={"period_days": 30})

    assert response.status_code == 200
    body = response.json()
    assert body["report"]["average_score"] == 70
    assert body["report"]["check_in_count"] == 3
    assert body["report"]["top_themes"][0] == {"theme": "sleep", "count": 2}
    assert body["narrative"] == "Narrative."
    assert service.calls == [(user_id, 30)]


def test_empty_period_maps_to_404() -> None:
    service = StubReportService()
    service.error = EmptyRangeError("u", 14)

    with client_with_service(service) as client:
        response = client.get(f"/api/reports/{uuid4()}", params={"period_days": 14})

    assert response.status_code == 404
    assert response.json()["detail"] == "No data for this period"


def test_unsupported_period_maps_to_400() -> None:
    service = StubReportService()
    service.error = ValueError("period_days must be one of (14, 30, 90).")

    with client_with_service(service) as client:
        response = client.get(f"/api/reports/{uuid4()}", params={"period_days": 7})

    assert response.status_code == 400


def test_email_report_delivers() -> None:
    service = StubReportService()

    with client_with_service(service) as client:
        response = client.post(
            f"/api/reports/{uuid4()}/email",
            json={"recipient": "student@example.com", "period_days": 90},
        )

    assert response.status_code == 200
    assert response.json() == {"message_id": "ses-001", "delivered": True}
    assert service.emails == ["student@example.com"]
    assert service.calls[0][1] == 90


def test_email_report_rejects_bad_recipient() -> None:
    with client_with_service(StubReportService()) as client:
        response = client.post(f"/api/reports/{uuid4()}/email", json={"recipient": "not-an-email"})

    assert response.status_code == 422
