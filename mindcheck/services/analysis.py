"""Translation boundary between untrusted model output and stored analysis.

Everything the external model returns passes through :class:`AnalysisValidator`
before it is attached to a session. The validator never raises: malformed,
missing or out-of-range values are replaced field by field with neutral
defaults, so every :class:`AnalysisResult` it produces satisfies the bounds
below and can be stored and displayed without further checks.

======================  =====================================  ===========
field                   bound                                  default
======================  =====================================  ===========
``mood_score``          integer in [1, 10]                     5
``text_score``          number in [0, 100]                     50 (+ uncertainty >= 0.6)
``uncertainty``         number in [0, 1]                       0.5
``risk_level``          none / mild / moderate / high          none
``direction_of_change`` better / worse / same / unclear        unclear
======================  =====================================  ===========
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal


logger = logging.getLogger(__name__)


RiskLevel = Literal["none", "mild", "moderate", "high"]
DirectionOfChange = Literal["better", "worse", "same", "unclear"]

ANALYSIS_SCHEMA_VERSION = "v1.0"
MIN_TRANSCRIPT_LENGTH = 10

RISK_LEVELS: tuple[str, ...] = ("none", "mild", "moderate", "high")
DIRECTIONS_OF_CHANGE: tuple[str, ...] = ("better", "worse", "same", "unclear")

DEFAULT_MOOD_SCORE = 5
DEFAULT_TEXT_SCORE = 50.0
DEFAULT_UNCERTAINTY = 0.5
DEFAULTED_SCORE_MIN_UNCERTAINTY = 0.6
FALLBACK_UNCERTAINTY = 0.9

PLACEHOLDER_SUMMARY = "Check-in completed."
INSUFFICIENT_SUMMARY = (
    "There was not enough information in this check in to understand how the student is feeling."
)
UNAVAILABLE_SUMMARY = "Text analysis did not return usable content for this check in."

# Accepted spellings per field, first match wins.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "version": ("version",),
    "themes": ("themes",),
    "keywords": ("keywords",),
    "risk_level": ("risk_level", "riskLevel"),
    "direction_of_change": ("direction_of_change", "directionOfChange"),
    "mood_score": ("mood_score", "moodScore"),
    "text_score": ("text_score", "textScore"),
    "uncertainty": ("uncertainty",),
    "drivers_positive": ("drivers_positive", "driversPositive", "driver_positive", "driverPositive"),
    "drivers_negative": ("drivers_negative", "driversNegative", "driver_negative", "driverNegative"),
    "conversation_summary": ("conversation_summary", "conversationSummary"),
    "notable_quotes": ("notable_quotes", "notableQuotes"),
}

_MISSING = object()


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Validated wellbeing signal for one session. Immutable once built."""

    version: str
    themes: tuple[str, ...]
    keywords: tuple[str, ...]
    risk_level: RiskLevel
    direction_of_change: DirectionOfChange
    mood_score: int
    text_score: float
    uncertainty: float
    drivers_positive: tuple[str, ...]
    drivers_negative: tuple[str, ...]
    conversation_summary: str
    notable_quotes: tuple[str, ...]

    @classmethod
    def neutral(cls, summary: str, *, uncertainty: float = FALLBACK_UNCERTAINTY) -> "AnalysisResult":
        return cls(
            version=ANALYSIS_SCHEMA_VERSION,
            themes=(),
            keywords=(),
            risk_level="none",
            direction_of_change="unclear",
            mood_score=DEFAULT_MOOD_SCORE,
            text_score=DEFAULT_TEXT_SCORE,
            uncertainty=uncertainty,
            drivers_positive=(),
            drivers_negative=(),
            conversation_summary=summary,
            notable_quotes=(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "themes": list(self.themes),
            "keywords": list(self.keywords),
            "risk_level": self.risk_level,
            "direction_of_change": self.direction_of_change,
            "mood_score": self.mood_score,
            "text_score": self.text_score,
            "uncertainty": self.uncertainty,
            "drivers_positive": list(self.drivers_positive),
            "drivers_negative": list(self.drivers_negative),
            "conversation_summary": self.conversation_summary,
            "notable_quotes": list(self.notable_quotes),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AnalysisResult":
        """Rebuild a stored result. Stored payloads went through validation already."""
        return sanitize_analysis(payload).result


@dataclass(frozen=True, slots=True)
class AnalysisUnavailable:
    """Marker for a failed, timed out or unparseable model call."""

    reason: str


@dataclass(frozen=True, slots=True)
class AnalysisOutcome:
    """Validated result plus observability flags that never reach the user."""

    result: AnalysisResult
    defaults_applied: tuple[str, ...] = field(default_factory=tuple)
    warning: str | None = None

    @property
    def degraded(self) -> bool:
        return self.warning is not None


def is_too_sparse(transcript: str | None) -> bool:
    """True when a transcript is too short to be worth sending to the model."""
    if not transcript:
        return True
    return len(transcript.strip()) < MIN_TRANSCRIPT_LENGTH


def sanitize_analysis(raw: Any) -> AnalysisOutcome:
    """Validate every field of ``raw`` independently and fill defaults.

    ``raw`` that is not a mapping at all is treated like a failed call.
    """
    if not isinstance(raw, Mapping):
        return AnalysisOutcome(
            result=AnalysisResult.neutral(UNAVAILABLE_SUMMARY),
            warning="Analysis payload was not a JSON object, using fallback",
        )

    defaulted: list[str] = []

    mood_score = _bounded_number(_lookup(raw, "mood_score"), 1, 10)
    if mood_score is None:
        defaulted.append("mood_score")
        mood_value = DEFAULT_MOOD_SCORE
    else:
        mood_value = _round_half_up(mood_score)

    uncertainty = _bounded_number(_lookup(raw, "uncertainty"), 0, 1)
    if uncertainty is None:
        defaulted.append("uncertainty")
        uncertainty = DEFAULT_UNCERTAINTY

    text_score = _bounded_number(_lookup(raw, "text_score"), 0, 100)
    if text_score is None:
        defaulted.append("text_score")
        text_score = DEFAULT_TEXT_SCORE
        uncertainty = max(uncertainty, DEFAULTED_SCORE_MIN_UNCERTAINTY)

    risk_level = _enum_value(_lookup(raw, "risk_level"), RISK_LEVELS)
    if risk_level is None:
        defaulted.append("risk_level")
        risk_level = "none"

    direction = _enum_value(_lookup(raw, "direction_of_change"), DIRECTIONS_OF_CHANGE)
    if direction is None:
        defaulted.append("direction_of_change")
        direction = "unclear"

    summary = _non_empty_text(_lookup(raw, "conversation_summary"))
    if summary is None:
        defaulted.append("conversation_summary")
        summary = PLACEHOLDER_SUMMARY

    version = _non_empty_text(_lookup(raw, "version"))
    if version is None:
        version = ANALYSIS_SCHEMA_VERSION

    sequences: dict[str, tuple[str, ...]] = {}
    for name in ("themes", "keywords", "drivers_positive", "drivers_negative", "notable_quotes"):
        value = _lookup(raw, name)
        cleaned = _string_sequence(value)
        if cleaned is None:
            if value is not _MISSING:
                defaulted.append(name)
            cleaned = ()
        sequences[name] = cleaned

    for name in defaulted:
        logger.warning("Invalid or missing %s in analysis payload; default applied.", name)

    result = AnalysisResult(
        version=version,
        themes=sequences["themes"],
        keywords=sequences["keywords"],
        risk_level=risk_level,  # type: ignore[arg-type]
        direction_of_change=direction,  # type: ignore[arg-type]
        mood_score=mood_value,
        text_score=text_score,
        uncertainty=uncertainty,
        drivers_positive=sequences["drivers_positive"],
        drivers_negative=sequences["drivers_negative"],
        conversation_summary=summary,
        notable_quotes=sequences["notable_quotes"],
    )
    return AnalysisOutcome(result=result, defaults_applied=tuple(defaulted))


class AnalysisValidator:
    """Produce a guaranteed-valid :class:`AnalysisResult` for any input."""

    def should_short_circuit(self, transcript: str | None) -> bool:
        return is_too_sparse(transcript)

    def insufficient(self, context_summary: str | None = None) -> AnalysisOutcome:
        logger.warning("Transcript too short; returning high-uncertainty analysis.")
        return AnalysisOutcome(
            result=AnalysisResult.neutral(context_summary or INSUFFICIENT_SUMMARY),
            warning="Transcript too short for analysis",
        )

    def unavailable(self, failure: AnalysisUnavailable) -> AnalysisOutcome:
        logger.warning("Analysis unavailable (%s); returning neutral analysis.", failure.reason)
        return AnalysisOutcome(
            result=AnalysisResult.neutral(UNAVAILABLE_SUMMARY),
            warning=f"Analysis unavailable, using fallback: {failure.reason}",
        )

    def validate(self, raw: Any) -> AnalysisOutcome:
        if isinstance(raw, AnalysisUnavailable):
            return self.unavailable(raw)
        return sanitize_analysis(raw)

    def evaluate(
        self,
        transcript: str | None,
        raw: Any,
        *,
        context_summary: str | None = None,
    ) -> AnalysisOutcome:
        """Apply the short-circuit rule, then validate whatever the model returned."""
        if self.should_short_circuit(transcript):
            return self.insufficient(context_summary)
        return self.validate(raw)


def _lookup(raw: Mapping[str, Any], name: str) -> Any:
    for key in _FIELD_ALIASES[name]:
        if key in raw:
            return raw[key]
    return _MISSING


def _bounded_number(value: Any, lower: float, upper: float) -> float | None:
    # bool is an int subclass; true/false are not scores.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        # Integers past float range; no bound accepts them.
        return None
    if not math.isfinite(number) or number < lower or number > upper:
        return None
    return number


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _enum_value(value: Any, allowed: tuple[str, ...]) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in allowed else None


def _non_empty_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _string_sequence(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        return None
    items: list[str] = []
    for item in value:
        if item is None or isinstance(item, (Mapping, list, tuple, bool)):
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return tuple(items)
