"""Domain enumerations."""

from enum import StrEnum


class Platform(StrEnum):
    """Supported social platforms."""

    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"


class ConnectionStatus(StrEnum):
    """Lifecycle status of a linked social account."""

    DISCONNECTED = "disconnected"
    PENDING_AUTH = "pending_auth"
    ACTIVE = "active"
    TOKEN_REFRESHING = "token_refreshing"
    RATE_LIMITED = "rate_limited"
    TOKEN_EXPIRED = "token_expired"
    ERROR = "error"


# Statuses the refresh path is allowed to start from
REFRESHABLE_STATUSES = frozenset(
    {
        ConnectionStatus.ACTIVE,
        ConnectionStatus.TOKEN_EXPIRED,
        ConnectionStatus.RATE_LIMITED,
    }
)


class FailureKind(StrEnum):
    """Classification of an outbound OAuth failure."""

    TRANSIENT = "transient"  # Network, timeout, 5xx - retryable
    PERMANENT = "permanent"  # 4xx, invalid_grant, revoked - not retryable
