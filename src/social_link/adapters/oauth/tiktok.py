"""TikTok OAuth 2.0 adapter (Login Kit v2).

TikTok names the client identifier ``client_key``, separates scopes with
commas, and can report token errors inside an HTTP 200 body.
"""

from typing import Any

from social_link.adapters.oauth.base import (
    AccountProfile,
    OAuthAdapter,
    OAuthAdapterError,
    TokenGrant,
)
from social_link.domain.enums import FailureKind, Platform

TIKTOK_AUTH_URL = "https://www.tiktok.com/v2/auth/authorize/"
TIKTOK_TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
TIKTOK_REVOKE_URL = "https://open.tiktokapis.com/v2/oauth/revoke/"
TIKTOK_USER_INFO_URL = "https://open.tiktokapis.com/v2/user/info/"

TIKTOK_SCOPES = (
    "user.info.basic",
    "video.publish",
    "video.upload",
)

DEFAULT_TIKTOK_TOKEN_SECONDS = 86400  # 24 hours


class TikTokOAuthAdapter(OAuthAdapter):
    """TikTok Login Kit."""

    authorize_endpoint = TIKTOK_AUTH_URL
    token_endpoint = TIKTOK_TOKEN_URL
    revoke_endpoint = TIKTOK_REVOKE_URL
    default_scopes = TIKTOK_SCOPES
    scope_separator = ","
    client_id_param = "client_key"

    @property
    def platform(self) -> Platform:
        return Platform.TIKTOK

    def _client_auth_data(self) -> dict[str, str]:
        return {
            "client_key": self.config.client_id,
            "client_secret": self.config.client_secret,
        }

    def _parse_token_payload(
        self,
        payload: dict[str, Any],
        fallback_scopes: list[str] | None = None,
    ) -> TokenGrant:
        grant = super()._parse_token_payload(payload, fallback_scopes)
        if grant.expires_in is None:
            grant.expires_in = DEFAULT_TIKTOK_TOKEN_SECONDS
        return grant

    def fetch_profile(self, access_token: str) -> AccountProfile:
        response = self._request(
            "GET",
            TIKTOK_USER_INFO_URL,
            params={"fields": "open_id,display_name"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = self._json(response, "profile lookup")

        error = data.get("error") or {}
        if isinstance(error, dict) and error.get("code") not in (None, "ok"):
            raise OAuthAdapterError(
                FailureKind.PERMANENT,
                f"tiktok user info failed: {error.get('message') or error.get('code')}",
                error_code=str(error.get("code")),
            )

        user = data.get("data", {}).get("user", {})
        if not user.get("open_id"):
            raise OAuthAdapterError(
                FailureKind.PERMANENT, "tiktok user info did not include an open_id"
            )
        return AccountProfile(
            external_account_id=str(user["open_id"]), handle=user.get("display_name")
        )
