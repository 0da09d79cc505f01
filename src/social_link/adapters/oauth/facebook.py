"""Facebook OAuth adapter (Facebook Login / Graph API).

Facebook issues no refresh tokens. The short-lived token from the code
exchange is immediately traded for a long-lived (~60 day) token, and "refresh"
means trading the current long-lived token for a fresh one before it lapses.
"""

import httpx

from social_link.adapters.oauth.base import (
    AccountProfile,
    OAuthAdapter,
    OAuthAdapterError,
    TokenGrant,
)
from social_link.domain.enums import FailureKind, Platform

GRAPH_API_VERSION = "v18.0"
FACEBOOK_AUTH_URL = f"https://www.facebook.com/{GRAPH_API_VERSION}/dialog/oauth"
GRAPH_API_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"
FACEBOOK_TOKEN_URL = f"{GRAPH_API_URL}/oauth/access_token"

# Long-lived token lifetime when the Graph API omits expires_in
LONG_LIVED_TOKEN_SECONDS = 60 * 24 * 3600

FACEBOOK_SCOPES = (
    "public_profile",
    "pages_show_list",
    "pages_read_engagement",
    "pages_manage_posts",
)

# Graph API error codes that are worth retrying (throttling, temporary outage)
GRAPH_TRANSIENT_CODES = frozenset({"1", "2", "4", "17", "32", "341", "613"})


class FacebookOAuthAdapter(OAuthAdapter):
    """Facebook Login via the Meta Graph API."""

    authorize_endpoint = FACEBOOK_AUTH_URL
    token_endpoint = FACEBOOK_TOKEN_URL
    default_scopes = FACEBOOK_SCOPES
    scope_separator = ","
    refresh_with_access_token = True
    default_token_lifetime_seconds = LONG_LIVED_TOKEN_SECONDS

    @property
    def platform(self) -> Platform:
        return Platform.FACEBOOK

    def _extra_authorize_params(self) -> dict[str, str]:
        return {"auth_type": "rerequest"}

    def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenGrant:
        """Exchange the code, then upgrade to a long-lived token."""
        response = self._request(
            "GET",
            FACEBOOK_TOKEN_URL,
            params={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )
        short_lived = self._parse_token_payload(self._json(response, "token exchange"))
        grant = self._exchange_long_lived(short_lived.access_token)
        grant.scopes = short_lived.scopes or grant.scopes
        return grant

    def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Extend a long-lived access token (passed in place of a refresh token)."""
        return self._exchange_long_lived(refresh_token)

    def revoke(self, token: str) -> bool:
        response = self._request(
            "DELETE",
            f"{GRAPH_API_URL}/me/permissions",
            params={"access_token": token},
            raise_for_status=False,
        )
        if response.status_code != 200:
            return False
        try:
            return bool(response.json().get("success", True))
        except ValueError:
            return True

    def fetch_profile(self, access_token: str) -> AccountProfile:
        response = self._request(
            "GET",
            f"{GRAPH_API_URL}/me",
            params={"fields": "id,name", "access_token": access_token},
        )
        data = self._json(response, "profile lookup")
        if "id" not in data:
            raise OAuthAdapterError(
                FailureKind.PERMANENT, "facebook profile response did not include an id"
            )
        return AccountProfile(external_account_id=str(data["id"]), handle=data.get("name"))

    def _exchange_long_lived(self, access_token: str) -> TokenGrant:
        response = self._request(
            "GET",
            FACEBOOK_TOKEN_URL,
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "fb_exchange_token": access_token,
            },
        )
        return self._parse_token_payload(self._json(response, "long-lived token exchange"))

    def _error_from_response(self, response: httpx.Response) -> OAuthAdapterError:
        error = super()._error_from_response(response)
        # Graph API reports throttling as HTTP 400 with specific error codes
        if error.error_code in GRAPH_TRANSIENT_CODES:
            error.kind = FailureKind.TRANSIENT
        return error

