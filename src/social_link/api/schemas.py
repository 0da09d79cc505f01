"""Request and response models shared by the API routes."""

from datetime import datetime

from pydantic import BaseModel, Field

from social_link.db.models import SocialAccountConnectionModel
from social_link.domain.models import ConnectionSummary
from social_link.services.registry import to_summary


class ConnectionResponse(BaseModel):
    """A connection as exposed to the dashboard. Never includes tokens."""

    id: str
    user_id: str
    platform: str
    status: str
    external_account_id: str | None = None
    external_account_handle: str | None = None
    scopes: list[str] = Field(default_factory=list)
    token_expires_at: datetime | None = None
    last_error: str | None = None
    last_refreshed_at: datetime | None = None
    next_refresh_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_summary(cls, summary: ConnectionSummary) -> "ConnectionResponse":
        return cls(
            id=str(summary.id),
            user_id=summary.user_id,
            platform=str(summary.platform),
            status=str(summary.status),
            external_account_id=summary.external_account_id,
            external_account_handle=summary.external_account_handle,
            scopes=list(summary.scopes),
            token_expires_at=summary.token_expires_at,
            last_error=summary.last_error,
            last_refreshed_at=summary.last_refreshed_at,
            next_refresh_at=summary.next_refresh_at,
            created_at=summary.created_at,
            updated_at=summary.updated_at,
        )

    @classmethod
    def from_record(cls, record: SocialAccountConnectionModel) -> "ConnectionResponse":
        return cls.from_summary(to_summary(record))


class ConnectionListResponse(BaseModel):
    """Response with a user's connections."""

    accounts: list[ConnectionResponse]
    total: int
