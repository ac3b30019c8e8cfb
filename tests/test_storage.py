from __future__ import annotations

import json
from uuid import uuid4

import pytest

from mindcheck.core.config import AppSettings
from mindcheck.integrations.storage import SessionArchiveStorage


class StubS3Client:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[dict[str, object]] = []
        self.fail = fail

    async def put_object(self, **kwargs) -> None:
        if self.fail:
            raise RuntimeError("s3 unavailable")
        self.calls.append(kwargs)


class StubClientContextManager:
    def __init__(self, client) -> None:
        self._client = client

    async def __aenter__(self):
        return self._client

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class StubBotoSession:
    def __init__(self, client) -> None:
        self._client = client
        self.services: list[str] = []

    def client(self, service_name: str, **kwargs) -> StubClientContextManager:
        self.services.append(service_name)
        return StubClientContextManager(self._client)


def _payload() -> dict[str, object]:
    return {
        "session_id": str(uuid4()),
        "user_id": str(uuid4()),
        "assessment_type": "checkin",
        "final_score": 64.0,
        "analysis": {"mood_score": 6},
    }


@pytest.mark.asyncio
async def test_persist_session_no_bucket_returns_none() -> None:
    storage = SessionArchiveStorage(AppSettings())

    assert await storage.persist_session(_payload()) is None


@pytest.mark.asyncio
async def test_persist_session_uploads_to_s3(monkeypatch: pytest.MonkeyPatch) -> None:
    client = StubS3Client()
    boto_session = StubBotoSession(client)
    monkeypatch.setattr(
        "mindcheck.integrations.storage.aioboto3.Session",
        lambda *args, **kwargs: boto_session,
    )

    settings = AppSettings(
        S3_SESSION_ARCHIVE_BUCKET="mindcheck-sessions",
        S3_SESSION_ARCHIVE_PREFIX="archive/",
        AWS_REGION="eu-west-2",
    )
    payload = _payload()

    key = await SessionArchiveStorage(settings).persist_session(payload)

    assert key is not None
    assert key.startswith(f"archive/{payload['user_id']}/{payload['session_id']}/")
    assert boto_session.services == ["s3"]
    call = client.calls[0]
    assert call["Bucket"] == "mindcheck-sessions"
    assert call["ContentType"] == "application/json"
    body = json.loads(call["Body"])
    assert body["final_score"] == 64.0
    assert "exported_at" in body


@pytest.mark.asyncio
async def test_persist_session_failure_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "mindcheck.integrations.storage.aioboto3.Session",
        lambda *args, **kwargs: StubBotoSession(StubS3Client(fail=True)),
    )
    settings = AppSettings(S3_SESSION_ARCHIVE_BUCKET="mindcheck-sessions")

    assert await SessionArchiveStorage(settings).persist_session(_payload()) is None
