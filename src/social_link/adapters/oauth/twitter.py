"""Twitter / X OAuth 2.0 adapter (authorization code with PKCE)."""

import base64

from social_link.adapters.oauth.base import AccountProfile, OAuthAdapter, OAuthAdapterError
from social_link.domain.enums import FailureKind, Platform

TWITTER_AUTH_URL = "https://twitter.com/i/oauth2/authorize"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_REVOKE_URL = "https://api.twitter.com/2/oauth2/revoke"
TWITTER_ME_URL = "https://api.twitter.com/2/users/me"

# offline.access is what makes Twitter issue a refresh token
TWITTER_SCOPES = (
    "tweet.read",
    "tweet.write",
    "users.read",
    "offline.access",
)


class TwitterOAuthAdapter(OAuthAdapter):
    """Twitter OAuth 2.0 for confidential clients (HTTP Basic client auth)."""

    authorize_endpoint = TWITTER_AUTH_URL
    token_endpoint = TWITTER_TOKEN_URL
    revoke_endpoint = TWITTER_REVOKE_URL
    default_scopes = TWITTER_SCOPES
    uses_pkce = True

    @property
    def platform(self) -> Platform:
        return Platform.TWITTER

    def _client_auth_data(self) -> dict[str, str]:
        # Credentials travel in the Authorization header instead
        return {}

    def _token_headers(self) -> dict[str, str]:
        credentials = f"{self.config.client_id}:{self.config.client_secret}".encode()
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {base64.b64encode(credentials).decode()}",
        }

    def revoke(self, token: str) -> bool:
        response = self._request(
            "POST",
            TWITTER_REVOKE_URL,
            data={"token": token, "token_type_hint": "access_token"},
            headers=self._token_headers(),
            raise_for_status=False,
        )
        return response.status_code == 200

    def fetch_profile(self, access_token: str) -> AccountProfile:
        response = self._request(
            "GET",
            TWITTER_ME_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        user = self._json(response, "profile lookup").get("data") or {}
        if "id" not in user:
            raise OAuthAdapterError(
                FailureKind.PERMANENT, "twitter profile response did not include an id"
            )
        return AccountProfile(external_account_id=str(user["id"]), handle=user.get("username"))
