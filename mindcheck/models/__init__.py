"""SQLAlchemy models and declarative base."""

from mindcheck.models.base import Base  # noqa: F401
from mindcheck.models.entities import (  # noqa: F401
    ASSESSMENT_TYPES,
    SESSION_STATUSES,
    AssessmentSession,
    User,
)

__all__ = [
    "Base",
    "User",
    "AssessmentSession",
    "ASSESSMENT_TYPES",
    "SESSION_STATUSES",
]
