"""Error taxonomy for connection and token lifecycle operations.

Every error carries a stable ``code`` (the class name) and the HTTP status the
API layer should answer with. Background refresh errors are recorded on the
connection record instead of being raised to a caller.
"""

from uuid import UUID


class SocialLinkError(Exception):
    """Base class for all connection lifecycle errors."""

    http_status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": self.message}


class UnsupportedPlatform(SocialLinkError):
    """Raised when a platform has no adapter."""

    http_status = 400

    def __init__(self, platform: str) -> None:
        super().__init__(f"Platform '{platform}' is not supported")
        self.platform = platform


class InvalidOrExpiredState(SocialLinkError):
    """Raised when a callback state is unknown, already used, or past its TTL."""

    http_status = 400

    def __init__(self, message: str = "Invalid or expired state parameter") -> None:
        super().__init__(message)


class AuthorizationDenied(SocialLinkError):
    """Raised when the user declined consent on the platform."""

    http_status = 400

    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"Authorization denied: {description or error}"
        super().__init__(message)
        self.error = error
        self.description = description


class TokenExchangeFailed(SocialLinkError):
    """Raised when the platform permanently rejected the authorization code."""

    http_status = 400


class TokenExchangeTransientFailure(SocialLinkError):
    """Raised when the code exchange failed for a retryable reason."""

    http_status = 503


class RefreshFailed(SocialLinkError):
    """Raised when a refresh token was permanently rejected; reconnect required."""

    http_status = 400


class RefreshTransientFailure(SocialLinkError):
    """Raised when a refresh failed for a retryable reason; a retry is scheduled."""

    http_status = 503

    def __init__(self, message: str, retry_in_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_in_seconds = retry_in_seconds

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        if self.retry_in_seconds is not None:
            data["retry_after"] = round(self.retry_in_seconds, 3)
        return data


class RevocationFailed(SocialLinkError):
    """Platform-side revoke failed. Logged; never fails a disconnect."""

    http_status = 502


class RateLimitExceeded(SocialLinkError):
    """Raised when the outbound rate limit for a platform is exhausted."""

    http_status = 429

    def __init__(self, platform: str, retry_after: float) -> None:
        super().__init__(
            f"Rate limit exceeded for {platform}; retry in {retry_after:.1f}s"
        )
        self.platform = platform
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["retry_after"] = round(self.retry_after, 3)
        return data


class ConnectionNotFound(SocialLinkError):
    """Raised when a connection id does not exist."""

    http_status = 404

    def __init__(self, connection_id: UUID | str) -> None:
        super().__init__(f"No connection found with ID '{connection_id}'")
        self.connection_id = connection_id


class RefreshInProgress(SocialLinkError):
    """Raised when another caller already holds the connection's lock."""

    http_status = 409

    def __init__(self, connection_id: UUID | str) -> None:
        super().__init__(f"Refresh already in progress for connection '{connection_id}'")
        self.connection_id = connection_id


class ConnectionNotRefreshable(SocialLinkError):
    """Raised when refresh is requested for a connection in a terminal state."""

    http_status = 409


class LockTimeout(SocialLinkError):
    """Raised when a bounded wait on a connection lock runs out."""

    http_status = 503

    def __init__(self, connection_id: UUID | str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:.1f}s waiting for connection '{connection_id}'; retry later"
        )
        self.connection_id = connection_id
        self.timeout = timeout


class EncryptionError(SocialLinkError):
    """Raised when encryption/decryption fails."""

    http_status = 500


class PlatformNotConfigured(SocialLinkError):
    """Raised when a live adapter is requested but the platform has no credentials."""

    http_status = 503

    def __init__(self, platform: str) -> None:
        super().__init__(f"OAuth client credentials for '{platform}' are not configured")
        self.platform = platform
