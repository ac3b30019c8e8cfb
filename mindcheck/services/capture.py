from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger(__name__)


USER_ROLES = frozenset({"user", "student"})
AGENT_ROLES = frozenset({"assistant", "agent", "ai"})


@dataclass(frozen=True, slots=True)
class Turn:
    """One utterance in a check-in conversation."""

    role: str
    text: str
    timestamp: float | None = None

    @property
    def key(self) -> tuple[str, str, float | None]:
        return (self.role, self.text, self.timestamp)

    @property
    def is_user(self) -> bool:
        return self.role in USER_ROLES

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "text": self.text, "timestamp": self.timestamp}

    @classmethod
    def from_raw(cls, raw: Any) -> "Turn | None":
        """Return a turn, or None when the fragment is malformed."""
        if not isinstance(raw, Mapping):
            return None
        role = raw.get("role")
        text = raw.get("text")
        if not isinstance(role, str) or not role.strip():
            return None
        if not isinstance(text, str) or not text.strip():
            return None
        timestamp = raw.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            timestamp = None
        return cls(role=role.strip().lower(), text=text.strip(), timestamp=timestamp)


@dataclass(frozen=True, slots=True)
class CaptureFragment:
    """Payload delivered by the capture collaborators while a session is active."""

    turns: tuple[Turn, ...] | None = None
    visual_summary: dict[str, Any] | None = None

    @classmethod
    def from_payload(
        cls,
        *,
        turns: Iterable[Any] | None = None,
        visual_summary: Mapping[str, Any] | None = None,
    ) -> "CaptureFragment":
        parsed = None
        if turns is not None:
            parsed = tuple(clean_turns(turns))
        return cls(
            turns=parsed,
            visual_summary=dict(visual_summary) if visual_summary is not None else None,
        )


@dataclass(frozen=True, slots=True)
class TranscriptBundle:
    transcripts: tuple[str, ...]
    full_conversation: str

    @property
    def user_text(self) -> str:
        return "\n".join(self.transcripts)


def clean_turns(raw_turns: Iterable[Any]) -> list[Turn]:
    """Drop malformed fragments and exact duplicates, keeping first-seen order."""
    cleaned: list[Turn] = []
    seen: set[tuple[str, str, float | None]] = set()
    dropped = 0
    for raw in raw_turns:
        turn = raw if isinstance(raw, Turn) else Turn.from_raw(raw)
        if turn is None:
            dropped += 1
            continue
        if turn.key in seen:
            continue
        seen.add(turn.key)
        cleaned.append(turn)
    if dropped:
        logger.debug("Dropped %d malformed transcript fragment(s).", dropped)
    return cleaned


def append_turns(existing: Iterable[Any], incoming: Iterable[Any]) -> list[Turn]:
    """Merge an incoming turn fragment into the captured turns.

    A strictly longer incoming sequence is a fresh observation of the whole
    conversation and replaces what is stored. Anything shorter can never
    shrink the stored turns: its turns are appended unless an identical
    ``(role, text, timestamp)`` is already present.
    """
    current = clean_turns(existing)
    fresh = clean_turns(incoming)
    if len(fresh) > len(current):
        return fresh

    known = {turn.key for turn in current}
    merged = list(current)
    for turn in fresh:
        if turn.key not in known:
            known.add(turn.key)
            merged.append(turn)
    return merged


def set_visual_summary(
    existing: Mapping[str, Any] | None,
    incoming: Mapping[str, Any] | None,
) -> dict[str, Any] | None:
    """Last write wins; a missing incoming summary keeps the stored one."""
    if incoming is None:
        return dict(existing) if existing is not None else None
    return dict(incoming)


def finalize_transcript(turns: Iterable[Any], *, agent_label: str = "Assistant") -> TranscriptBundle:
    ordered = clean_turns(turns)
    transcripts = tuple(turn.text for turn in ordered if turn.is_user)
    lines = [f"{_role_label(turn.role, agent_label)}: {turn.text}" for turn in ordered]
    return TranscriptBundle(transcripts=transcripts, full_conversation="\n".join(lines))


def build_text_data(turns: Iterable[Turn], *, agent_label: str = "Assistant") -> dict[str, Any]:
    """Serialize captured turns into the session's stored ``text_data`` payload."""
    ordered = list(turns)
    bundle = finalize_transcript(ordered, agent_label=agent_label)
    return {
        "turns": [turn.to_dict() for turn in ordered],
        "transcripts": list(bundle.transcripts),
        "full_conversation": bundle.full_conversation,
    }


def stored_turns(text_data: Mapping[str, Any] | None) -> list[Turn]:
    if not text_data:
        return []
    raw = text_data.get("turns")
    if not isinstance(raw, list):
        return []
    return clean_turns(raw)


def _role_label(role: str, agent_label: str) -> str:
    if role in USER_ROLES:
        return "User"
    if role in AGENT_ROLES:
        return agent_label
    return role.title()
