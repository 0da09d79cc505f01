"""Base interface for platform OAuth adapters.

An adapter translates the generic operations (authorize URL, code exchange,
refresh, revoke, profile lookup) into one platform's endpoints and payloads.
Adapters hold no connection state. Every outbound call is bounded by the
client timeout, and every failure is raised as ``OAuthAdapterError`` with a
``FailureKind`` so callers can decide whether to retry.
"""

import base64
import hashlib
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from social_link.domain.enums import FailureKind, Platform
from social_link.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# OAuth error codes that signal a retryable condition; every other error is permanent
TRANSIENT_OAUTH_ERRORS = frozenset({"temporarily_unavailable", "server_error", "slow_down"})


class OAuthAdapterError(Exception):
    """Raised when a platform OAuth call fails."""

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    @property
    def retryable(self) -> bool:
        return self.kind == FailureKind.TRANSIENT


@dataclass
class OAuthClientConfig:
    """OAuth application credentials for one platform."""

    client_id: str
    client_secret: str


@dataclass
class TokenGrant:
    """Tokens returned by a code exchange or refresh."""

    access_token: str
    expires_in: int | None = None
    refresh_token: str | None = None
    scopes: list[str] = field(default_factory=list)
    token_type: str = "Bearer"

    def __repr__(self) -> str:
        return (
            f"TokenGrant(expires_in={self.expires_in!r}, "
            f"has_refresh_token={self.refresh_token is not None}, scopes={self.scopes!r})"
        )


@dataclass
class AccountProfile:
    """Identity of the external account that granted access."""

    external_account_id: str
    handle: str | None = None


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier (43+ URL-safe characters)."""
    return secrets.token_urlsafe(64)


def code_challenge_s256(code_verifier: str) -> str:
    """Derive the S256 PKCE code challenge for a verifier."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def parse_scopes(value: Any) -> list[str]:
    """Normalize a scope field (space or comma separated string, or list)."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(s) for s in value if s]
    return [s for s in str(value).replace(",", " ").split() if s]


class OAuthAdapter(ABC):
    """Abstract base class for platform OAuth adapters.

    The default implementations follow RFC 6749 (form-encoded POST to the
    token endpoint, client credentials in the body). Platforms that deviate
    override the relevant hooks or methods.
    """

    authorize_endpoint: str = ""
    token_endpoint: str = ""
    revoke_endpoint: str | None = None
    default_scopes: tuple[str, ...] = ()
    scope_separator: str = " "
    client_id_param: str = "client_id"
    uses_pkce: bool = False
    # Meta platforms extend long-lived access tokens instead of using refresh tokens
    refresh_with_access_token: bool = False
    # Lifetime assumed when a token response omits expires_in
    default_token_lifetime_seconds: int | None = None

    def __init__(
        self,
        config: OAuthClientConfig,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.config = config
        self.client = client or httpx.Client(timeout=timeout)

    @property
    @abstractmethod
    def platform(self) -> Platform:
        """The platform this adapter talks to."""
        ...

    @abstractmethod
    def fetch_profile(self, access_token: str) -> AccountProfile:
        """Resolve the external account behind an access token."""
        ...

    def build_authorize_url(
        self,
        state: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        code_verifier: str | None = None,
    ) -> str:
        """Build the platform URL the user is redirected to for consent."""
        params: dict[str, str] = {
            self.client_id_param: self.config.client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": self.scope_separator.join(scopes or self.default_scopes),
            "response_type": "code",
        }
        if self.uses_pkce:
            if not code_verifier:
                raise ValueError(f"{self.platform} requires a PKCE code verifier")
            params["code_challenge"] = code_challenge_s256(code_verifier)
            params["code_challenge_method"] = "S256"
        params.update(self._extra_authorize_params())

        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            **self._client_auth_data(),
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        response = self._request(
            "POST", self.token_endpoint, data=data, headers=self._token_headers()
        )
        payload = self._json(response, "token exchange")
        return self._parse_token_payload(payload)

    def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Mint a new access token from a refresh token."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._client_auth_data(),
        }
        response = self._request(
            "POST", self.token_endpoint, data=data, headers=self._token_headers()
        )
        payload = self._json(response, "token refresh")
        return self._parse_token_payload(payload)

    def revoke(self, token: str) -> bool:
        """Revoke a token on the platform. Returns False if the platform refused."""
        if not self.revoke_endpoint:
            return True

        response = self._request(
            "POST",
            self.revoke_endpoint,
            data={"token": token, **self._client_auth_data()},
            headers=self._token_headers(),
            raise_for_status=False,
        )
        if response.status_code in (200, 204):
            return True

        logger.warning(
            "token_revoke_rejected",
            platform=self.platform,
            status_code=response.status_code,
        )
        return False

    def close(self) -> None:
        self.client.close()

    def _extra_authorize_params(self) -> dict[str, str]:
        return {}

    def _client_auth_data(self) -> dict[str, str]:
        return {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }

    def _token_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/x-www-form-urlencoded"}

    def _request(
        self,
        method: str,
        url: str,
        raise_for_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, mapping transport problems to TRANSIENT failures."""
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise OAuthAdapterError(
                FailureKind.TRANSIENT, f"{self.platform} request timed out: {e}"
            ) from e
        except httpx.RequestError as e:
            raise OAuthAdapterError(
                FailureKind.TRANSIENT, f"{self.platform} request failed: {e}"
            ) from e

        if raise_for_status and response.status_code >= 400:
            raise self._error_from_response(response)
        return response

    def _json(self, response: httpx.Response, action: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            # Gateways answer with HTML pages during outages
            raise OAuthAdapterError(
                FailureKind.TRANSIENT,
                f"{self.platform} {action} returned a non-JSON body",
                status_code=response.status_code,
            ) from e

        if not isinstance(payload, dict):
            raise OAuthAdapterError(
                FailureKind.TRANSIENT,
                f"{self.platform} {action} returned an unexpected payload",
                status_code=response.status_code,
            )
        return payload

    def _error_from_response(self, response: httpx.Response) -> OAuthAdapterError:
        """Classify an HTTP error response."""
        error_code, description = self._extract_error(response)
        status = response.status_code

        if status >= 500 or status in (408, 429) or error_code in TRANSIENT_OAUTH_ERRORS:
            kind = FailureKind.TRANSIENT
        else:
            kind = FailureKind.PERMANENT

        message = f"{self.platform} returned HTTP {status}"
        if error_code or description:
            message += f": {description or error_code}"

        return OAuthAdapterError(kind, message, status_code=status, error_code=error_code)

    def _extract_error(self, response: httpx.Response) -> tuple[str | None, str | None]:
        try:
            payload = response.json()
        except ValueError:
            return None, None
        if not isinstance(payload, dict):
            return None, None

        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            return (str(code) if code is not None else None), error.get("message")
        return error, payload.get("error_description")

    def _parse_token_payload(
        self,
        payload: dict[str, Any],
        fallback_scopes: list[str] | None = None,
    ) -> TokenGrant:
        if "error" in payload and not payload.get("access_token"):
            error = payload.get("error")
            kind = (
                FailureKind.TRANSIENT
                if error in TRANSIENT_OAUTH_ERRORS
                else FailureKind.PERMANENT
            )
            raise OAuthAdapterError(
                kind,
                f"{self.platform} token endpoint error: "
                f"{payload.get('error_description') or error}",
                error_code=str(error),
            )

        access_token = payload.get("access_token")
        if not access_token:
            raise OAuthAdapterError(
                FailureKind.PERMANENT,
                f"{self.platform} token response did not include an access token",
            )

        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=self._parse_expires_in(payload.get("expires_in")),
            scopes=parse_scopes(payload.get("scope")) or list(fallback_scopes or []),
            token_type=payload.get("token_type", "Bearer"),
        )

    def _parse_expires_in(self, value: Any) -> int | None:
        """Token lifetime in seconds; platforms send ints, numeric strings or floats."""
        if value is None or value == "":
            return self.default_token_lifetime_seconds
        try:
            seconds = int(float(value))
        except (TypeError, ValueError):
            raise OAuthAdapterError(
                FailureKind.TRANSIENT,
                f"{self.platform} token response has an unreadable expires_in: {value!r}",
            ) from None
        if seconds <= 0:
            return self.default_token_lifetime_seconds
        return seconds
