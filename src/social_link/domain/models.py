"""Domain models - pure Python classes independent of database."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from social_link.domain.enums import ConnectionStatus, Platform


@dataclass(frozen=True)
class ConnectionSummary:
    """Secret-free view of a connection, safe to hand to any consumer."""

    id: UUID
    user_id: str
    platform: Platform
    status: ConnectionStatus
    external_account_id: str | None = None
    external_account_handle: str | None = None
    scopes: list[str] = field(default_factory=list)
    token_expires_at: datetime | None = None
    last_error: str | None = None
    last_refreshed_at: datetime | None = None
    next_refresh_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_healthy(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "platform": str(self.platform),
            "status": str(self.status),
            "external_account_id": self.external_account_id,
            "external_account_handle": self.external_account_handle,
            "scopes": list(self.scopes),
            "token_expires_at": _iso(self.token_expires_at),
            "last_error": self.last_error,
            "last_refreshed_at": _iso(self.last_refreshed_at),
            "next_refresh_at": _iso(self.next_refresh_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class ConnectionCredentials:
    """Decrypted credentials of an ACTIVE connection, for in-process consumers only."""

    connection_id: UUID
    platform: Platform
    external_account_id: str | None
    access_token: str
    expires_at: datetime | None

    def __repr__(self) -> str:
        # Never render the token
        return (
            f"ConnectionCredentials(connection_id={self.connection_id!r}, "
            f"platform={self.platform!r}, expires_at={self.expires_at!r})"
        )


@dataclass(frozen=True)
class AuthorizationStart:
    """Result of initiating a connect flow."""

    authorize_url: str
    state: str
    expires_at: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    retry_after: float | None = None  # seconds, only when denied


@dataclass(frozen=True)
class StatusChange:
    """Notification emitted whenever a connection's status changes."""

    connection_id: UUID
    user_id: str
    platform: Platform
    old_status: ConnectionStatus | None
    new_status: ConnectionStatus
    occurred_at: datetime
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection_id": str(self.connection_id),
            "user_id": self.user_id,
            "platform": str(self.platform),
            "old_status": str(self.old_status) if self.old_status else None,
            "new_status": str(self.new_status),
            "occurred_at": self.occurred_at.isoformat(),
            "last_error": self.last_error,
        }


@dataclass
class SweepResult:
    """Summary of one refresh sweep."""

    expired: list[UUID] = field(default_factory=list)
    recovered: list[UUID] = field(default_factory=list)
    dispatched: list[UUID] = field(default_factory=list)

    @property
    def dispatched_count(self) -> int:
        return len(self.dispatched)
