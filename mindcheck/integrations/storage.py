from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import aioboto3

from mindcheck.core.config import AppSettings


logger = logging.getLogger(__name__)


class SessionArchiveStorage:
    """Archive completed session payloads to S3-compatible storage."""

    def __init__(self, settings: AppSettings):
        self._settings = settings

    async def session_completed(self, payload: dict[str, Any]) -> None:
        await self.persist_session(payload)

    async def persist_session(self, payload: dict[str, Any]) -> str | None:
        bucket = self._settings.s3_session_archive_bucket
        if not bucket:
            logger.debug("S3 session archive bucket absent; skipping session upload.")
            return None

        key_prefix = self._settings.s3_session_archive_prefix or "sessions/"
        timestamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        key = f"{key_prefix.rstrip('/')}/{payload['user_id']}/{payload['session_id']}/{timestamp}.json"
        body = json.dumps(
            {**payload, "exported_at": timestamp},
            ensure_ascii=False,
            default=str,
        ).encode("utf-8")

        try:
            async with aioboto3.Session().client("s3", **self._client_kwargs()) as client:
                await client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/json",
                )
            logger.info("Archived session to s3://%s/%s", bucket, key)
            return key
        except Exception as exc:  # pragma: no cover - network path
            logger.warning("Failed to archive session to S3", exc_info=exc)
            return None

    def _client_kwargs(self) -> dict[str, Any]:
        client_kwargs: dict[str, Any] = {}
        if self._settings.aws_region:
            client_kwargs["region_name"] = self._settings.aws_region
        if self._settings.aws_access_key_id and self._settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = self._settings.aws_access_key_id.get_secret_value()
            client_kwargs["aws_secret_access_key"] = self._settings.aws_secret_access_key.get_secret_value()
        return client_kwargs
