from __future__ import annotations

import logging
from typing import Any, Callable

import aioboto3
import httpx

from mindcheck.core.config import AppSettings


logger = logging.getLogger(__name__)


class EnrichmentWebhook:
    """Announce completed sessions to the downstream enrichment pipeline."""

    def __init__(
        self,
        settings: AppSettings,
        *,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ):
        self._webhook_url = (
            settings.enrichment_webhook_url.get_secret_value()
            if settings.enrichment_webhook_url
            else None
        )
        self._client_factory = http_client_factory or (lambda: httpx.AsyncClient(timeout=httpx.Timeout(10.0)))
        self._app_env = settings.app_env

    async def session_completed(self, payload: dict[str, Any]) -> None:
        if not self._webhook_url:
            logger.debug("Enrichment webhook not configured; skipping notification.")
            return

        body = {
            "event": "session.completed",
            "environment": self._app_env,
            "session_id": payload["session_id"],
            "user_id": payload["user_id"],
            "assessment_type": payload.get("assessment_type"),
            "final_score": payload.get("final_score"),
        }
        async with self._client_factory() as client:
            response = await client.post(self._webhook_url, json=body)
        response.raise_for_status()


class ReportMailer:
    """Deliver rendered wellbeing reports through Amazon SES."""

    def __init__(self, settings: AppSettings):
        self._settings = settings

    async def send_report(
        self,
        *,
        recipient: str,
        subject: str,
        body: str,
    ) -> str | None:
        sender = self._settings.ses_sender_email
        if not sender:
            logger.debug("SES sender address absent; skipping report email.")
            return None

        client_kwargs: dict[str, Any] = {}
        if self._settings.aws_region:
            client_kwargs["region_name"] = self._settings.aws_region
        if self._settings.aws_access_key_id and self._settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = self._settings.aws_access_key_id.get_secret_value()
            client_kwargs["aws_secret_access_key"] = self._settings.aws_secret_access_key.get_secret_value()

        async with aioboto3.Session().client("ses", **client_kwargs) as client:
            response = await client.send_email(
                Source=sender,
                Destination={"ToAddresses": [recipient]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        message_id = response.get("MessageId")
        logger.info("Sent report email %s to %s", message_id, recipient)
        return message_id
