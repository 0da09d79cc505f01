"""Domain models and business logic."""

from social_link.domain.enums import (
    REFRESHABLE_STATUSES,
    ConnectionStatus,
    FailureKind,
    Platform,
)
from social_link.domain.models import (
    AuthorizationStart,
    ConnectionCredentials,
    ConnectionSummary,
    RateLimitDecision,
    StatusChange,
    SweepResult,
)

__all__ = [
    "AuthorizationStart",
    "ConnectionCredentials",
    "ConnectionStatus",
    "ConnectionSummary",
    "FailureKind",
    "Platform",
    "REFRESHABLE_STATUSES",
    "RateLimitDecision",
    "StatusChange",
    "SweepResult",
]
