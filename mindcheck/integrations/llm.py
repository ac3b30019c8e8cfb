from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aioboto3
from openai import AsyncAzureOpenAI, AsyncOpenAI

from mindcheck.core.config import AppSettings


logger = logging.getLogger(__name__)


ANALYSIS_SYSTEM_PROMPT = """You are a wellbeing check-in text assessment model.

Read a short conversational transcript from a wellbeing check in and return a structured JSON analysis of what the student said.
You are not a therapist. Do not give advice, reassurance or instructions. Only turn the text into labels, scores and a short neutral summary.

Return valid JSON only, with exactly these fields:
  version: string ("v1.0")
  themes: array of 2 to 6 broad areas mentioned (for example "sleep", "work", "mood")
  keywords: array of 3 to 10 concrete terms or short phrases from this conversation
  risk_level: "none" | "mild" | "moderate" | "high"
  direction_of_change: "better" | "worse" | "same" | "unclear"
  mood_score: integer 1 to 10, the explicit mood rating the student gave (estimate from tone if none was given)
  text_score: integer 0 to 100, overall wellbeing for this conversation only
  uncertainty: number 0 to 1, near 0.1 when the transcript is clear and detailed, 0.8 or higher when there is very little to go on
  drivers_positive: array of short phrases for what helped them feel okay
  drivers_negative: array of short phrases for what pulled their mood down
  conversation_summary: 1 or 2 plain, neutral, past-tense sentences describing what the student talked about
  notable_quotes: array of 1 to 3 short phrases copied from the transcript

risk_level is "high" if there is any mention or clear implication of self harm, wanting to die, suicidal thinking or being unsafe."""

REPORT_NARRATIVE_PROMPT = (
    "You are a professional wellbeing analyst writing an objective, factual summary for a student. "
    "Write 500-750 words with the sections Overview, Wellbeing Patterns, Key Themes, Positive Indicators, "
    "Areas of Concern and Observations. Use a neutral, third-person tone ('The data shows...'). "
    "Avoid medical diagnoses, prescriptive advice and subjective judgments."
)


class AnalysisProviderError(RuntimeError):
    """No configured provider returned a parseable analysis."""


@dataclass(slots=True)
class AnalysisContext:
    """Context passed alongside a transcript to the analysis model."""

    checkin_id: str
    student_first_name: str | None = None
    previous_themes: list[str] = field(default_factory=list)
    previous_score: float | None = None
    previous_direction: str | None = None

    def to_prompt_payload(self) -> dict[str, Any]:
        return {
            "checkin_id": self.checkin_id,
            "student_first_name": self.student_first_name,
            "previous_text_themes": list(self.previous_themes),
            "previous_score": self.previous_score,
            "previous_direction_of_change": self.previous_direction,
        }


class AnalysisOrchestrator:
    """Transcript analysis with Azure OpenAI primary, OpenAI and Bedrock fallbacks."""

    def __init__(self, settings: AppSettings):
        self._settings = settings
        self._azure_client: AsyncAzureOpenAI | None = None
        self._openai_client: AsyncOpenAI | None = None

        if settings.azure_openai_api_key and settings.azure_openai_endpoint and settings.azure_openai_deployment:
            self._azure_client = AsyncAzureOpenAI(
                api_key=settings.azure_openai_api_key.get_secret_value(),
                azure_endpoint=settings.azure_openai_endpoint,
                api_version=settings.azure_openai_api_version or "2024-02-15-preview",
            )
        elif settings.openai_api_key:
            self._openai_client = AsyncOpenAI(api_key=settings.openai_api_key.get_secret_value())

    async def analyze_transcript(
        self,
        transcript: str,
        context: AnalysisContext,
        *,
        max_tokens: int = 800,
    ) -> dict[str, Any]:
        """Return the model's raw, unvalidated analysis as a JSON object."""
        user_prompt = self._build_analysis_prompt(transcript, context)
        messages = [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

        content = await self._complete(messages, max_tokens=max_tokens, temperature=0.2)
        if content is None and self._bedrock_configured():
            content = await self._invoke_bedrock(
                system=ANALYSIS_SYSTEM_PROMPT,
                prompt=user_prompt,
                max_tokens=max_tokens,
                temperature=0.2,
            )
        if content is None:
            raise AnalysisProviderError("Unable to analyze transcript with configured providers.")
        return self._parse_analysis_response(content)

    async def generate_report_narrative(
        self,
        report_facts: str,
        *,
        max_tokens: int = 2000,
    ) -> str | None:
        """Return a narrative for a report bundle, or None when no provider answered."""
        messages = [
            {"role": "system", "content": REPORT_NARRATIVE_PROMPT},
            {"role": "user", "content": report_facts},
        ]
        content = await self._complete(messages, max_tokens=max_tokens, temperature=0.4)
        if content is None and self._bedrock_configured():
            content = await self._invoke_bedrock(
                system=REPORT_NARRATIVE_PROMPT,
                prompt=report_facts,
                max_tokens=max_tokens,
                temperature=0.4,
            )
        return content

    async def _complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> str | None:
        if self._azure_client:
            try:
                response = await self._azure_client.chat.completions.create(
                    model=self._settings.azure_openai_deployment,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                content = response.choices[0].message.content if response.choices else None
                if content:
                    return content.strip()
            except Exception as exc:  # pragma: no cover - network failure path
                logger.warning("Azure OpenAI call failed, falling back.", exc_info=exc)

        if self._openai_client:
            try:
                response = await self._openai_client.chat.completions.create(
                    model=self._settings.openai_analysis_model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                content = response.choices[0].message.content if response.choices else None
                if content:
                    return content.strip()
            except Exception as exc:  # pragma: no cover - network failure path
                logger.warning("OpenAI call failed, attempting Bedrock.", exc_info=exc)

        return None

    def _build_analysis_prompt(self, transcript: str, context: AnalysisContext) -> str:
        return (
            "Here is the context for this check in:\n\n"
            f"{json.dumps(context.to_prompt_payload(), indent=2, ensure_ascii=False)}\n\n"
            "Here is the transcript of the conversation between the student and the check in companion.\n"
            "Use only what is actually written here. Do not invent information.\n\n"
            "TRANSCRIPT START\n"
            f"{transcript}\n"
            "TRANSCRIPT END\n\n"
            "Now produce a single valid JSON object that matches the schema described in the system prompt."
        )

    def _parse_analysis_response(self, content: str) -> dict[str, Any]:
        sanitized = self._strip_json_fences(content.strip())
        try:
            parsed = json.loads(sanitized)
        except json.JSONDecodeError as exc:
            logger.debug("Analysis response not valid JSON: %s", sanitized[:500])
            raise AnalysisProviderError("Analysis response was not valid JSON.") from exc
        if not isinstance(parsed, dict):
            raise AnalysisProviderError("Analysis response was not a JSON object.")
        return parsed

    def _strip_json_fences(self, value: str) -> str:
        if value.startswith("```"):
            value = value.strip()
            if value.lower().startswith("```json"):
                value = value[7:]
            elif value.startswith("```"):
                value = value[3:]
            if value.endswith("```"):
                value = value[:-3]
        return value.strip()

    def _bedrock_configured(self) -> bool:
        return bool(self._settings.bedrock_region and self._settings.bedrock_model_id)

    async def _invoke_bedrock(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str | None:
        try:
            async with self._bedrock_client() as client:
                body = json.dumps(
                    {
                        "anthropic_version": "bedrock-2023-05-31",
                        "max_tokens": max_tokens,
                        "temperature": temperature,
                        "system": system,
                        "messages": [
                            {"role": "user", "content": [{"type": "text", "text": prompt}]},
                        ],
                    }
                )
                response = await client.invoke_model(
                    modelId=self._settings.bedrock_model_id,
                    contentType="application/json",
                    accept="application/json",
                    body=body,
                )
                payload = await response["body"].read()
                parsed = json.loads(payload)
                blocks = parsed.get("content")
                if blocks:
                    text = blocks[0].get("text")
                    if text:
                        return text.strip()
        except Exception as exc:  # pragma: no cover - network failure path
            logger.warning("Bedrock invocation failed", exc_info=exc)

        return None

    def _bedrock_client(self):
        session_kwargs: dict[str, Any] = {"region_name": self._settings.bedrock_region}
        if self._settings.aws_access_key_id and self._settings.aws_secret_access_key:
            session_kwargs.update(
                {
                    "aws_access_key_id": self._settings.aws_access_key_id.get_secret_value(),
                    "aws_secret_access_key": self._settings.aws_secret_access_key.get_secret_value(),
                }
            )

        session = aioboto3.Session()
        return session.client("bedrock-runtime", **session_kwargs)
