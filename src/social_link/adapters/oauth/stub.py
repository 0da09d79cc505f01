"""Stub OAuth adapter for development and testing.

Never touches the network. Authorization codes of the form ``anything:acct``
resolve to external account ``acct``; the codes ``denied-by-platform`` and
``platform-down`` simulate permanent and transient exchange failures.
"""

import threading
from urllib.parse import urlencode
from uuid import uuid4

from social_link.adapters.oauth.base import (
    AccountProfile,
    OAuthAdapter,
    OAuthAdapterError,
    OAuthClientConfig,
    TokenGrant,
    code_challenge_s256,
)
from social_link.domain.enums import FailureKind, Platform
from social_link.logging import get_logger

logger = get_logger(__name__)

STUB_AUTHORIZE_URL = "https://oauth.stub.local/authorize"
PERMANENT_FAILURE_CODE = "denied-by-platform"
TRANSIENT_FAILURE_CODE = "platform-down"


class StubOAuthAdapter(OAuthAdapter):
    """Adapter that simulates a platform's OAuth endpoints in memory."""

    default_scopes = ("basic",)

    def __init__(
        self,
        platform: Platform = Platform.YOUTUBE,
        expires_in: int | None = 3600,
        uses_pkce: bool = False,
        issue_refresh_token: bool = True,
    ) -> None:
        super().__init__(OAuthClientConfig(client_id="stub", client_secret="stub"), client=None)
        self._platform = platform
        self.expires_in = expires_in
        self.uses_pkce = uses_pkce
        self.issue_refresh_token = issue_refresh_token

        # Failure injection
        self.refresh_failure: FailureKind | None = None
        # Raised as-is from refresh, for failures outside the adapter contract
        self.refresh_error: Exception | None = None
        self.revoke_result: bool = True
        self.revoke_failure: FailureKind | None = None
        # When set, refresh blocks until the gate opens (concurrency tests)
        self.refresh_gate: threading.Event | None = None
        self.refresh_started = threading.Event()

        self.exchange_calls = 0
        self.refresh_calls = 0
        self.revoke_calls = 0
        self._lock = threading.Lock()
        self._profiles: dict[str, AccountProfile] = {}

    @property
    def platform(self) -> Platform:
        return self._platform

    def build_authorize_url(
        self,
        state: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        code_verifier: str | None = None,
    ) -> str:
        params = {
            "platform": str(self.platform),
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": " ".join(scopes or self.default_scopes),
        }
        if self.uses_pkce and code_verifier:
            params["code_challenge"] = code_challenge_s256(code_verifier)
        return f"{STUB_AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenGrant:
        with self._lock:
            self.exchange_calls += 1

        if code == PERMANENT_FAILURE_CODE:
            raise OAuthAdapterError(
                FailureKind.PERMANENT,
                "stub code rejected",
                status_code=400,
                error_code="invalid_grant",
            )
        if code == TRANSIENT_FAILURE_CODE:
            raise OAuthAdapterError(
                FailureKind.TRANSIENT, "stub platform unavailable", status_code=503
            )

        account = code.split(":", 1)[1] if ":" in code else "stub-account"
        grant = self._new_grant()
        self._profiles[grant.access_token] = AccountProfile(
            external_account_id=account, handle=f"@{account}"
        )
        return grant

    def refresh_token(self, refresh_token: str) -> TokenGrant:
        with self._lock:
            self.refresh_calls += 1
        self.refresh_started.set()

        if self.refresh_gate is not None:
            self.refresh_gate.wait(timeout=10)

        if self.refresh_error is not None:
            raise self.refresh_error
        if self.refresh_failure is not None:
            raise OAuthAdapterError(self.refresh_failure, f"stub refresh {self.refresh_failure}")

        logger.debug("stub_refresh", platform=self.platform)
        return self._new_grant()

    def revoke(self, token: str) -> bool:
        with self._lock:
            self.revoke_calls += 1
        if self.revoke_failure is not None:
            raise OAuthAdapterError(self.revoke_failure, "stub revoke failed")
        return self.revoke_result

    def fetch_profile(self, access_token: str) -> AccountProfile:
        return self._profiles.get(
            access_token, AccountProfile(external_account_id="stub-account", handle="@stub")
        )

    def _new_grant(self) -> TokenGrant:
        return TokenGrant(
            access_token=f"stub-access-{uuid4().hex}",
            refresh_token=f"stub-refresh-{uuid4().hex}" if self.issue_refresh_token else None,
            expires_in=self.expires_in,
            scopes=list(self.default_scopes),
        )
