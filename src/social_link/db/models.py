"""SQLAlchemy ORM models."""

from datetime import datetime
from typing import Any
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

from social_link.utils.clock import ensure_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        return ensure_utc(value)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SocialAccountConnectionModel(Base):
    """A linked third-party social account and its (encrypted) credentials."""

    __tablename__ = "social_account_connections"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    # NULL only for placeholder records created by a failed first-time connect
    external_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_account_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending_auth")
    encrypted_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_issued_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    scopes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_refresh_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_refreshed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "platform", "external_account_id", name="uq_user_platform_external"
        ),
        Index("ix_connections_status_expiry", "status", "token_expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SocialAccountConnectionModel id={self.id} platform={self.platform} "
            f"status={self.status}>"
        )


class AuthorizationRequestModel(Base):
    """An in-flight connect attempt, keyed by its single-use state."""

    __tablename__ = "authorization_requests"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    redirect_uri: Mapped[str] = mapped_column(String(2048), nullable=False)
    code_verifier: Mapped[str | None] = mapped_column(String(128), nullable=True)
    scopes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    # Set for reconnects of an existing record
    connection_id: Mapped[PyUUID | None] = mapped_column(Uuid, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
