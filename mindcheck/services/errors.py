"""Error taxonomy shared by the session and report services."""

from __future__ import annotations

from uuid import UUID


class SessionError(Exception):
    """Base class for assessment session failures surfaced to callers."""


class SessionNotFoundError(SessionError, LookupError):
    def __init__(self, session_id: UUID | str):
        super().__init__(f"Assessment session {session_id} does not exist.")
        self.session_id = session_id


class InvalidStateError(SessionError):
    """An operation was attempted against a session whose status forbids it."""

    def __init__(self, session_id: UUID | str, status: str, operation: str):
        super().__init__(
            f"Cannot {operation} session {session_id} while it is {status}."
        )
        self.session_id = session_id
        self.status = status
        self.operation = operation


class ConflictError(SessionError):
    """A concurrent session creation for the same user won the race. Retry once."""


class EmptyRangeError(SessionError):
    """No completed sessions fall inside the requested report window."""

    def __init__(self, user_id: UUID | str, period_days: int):
        super().__init__(f"No check-ins for user {user_id} in the last {period_days} days.")
        self.user_id = user_id
        self.period_days = period_days
