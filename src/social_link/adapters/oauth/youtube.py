"""YouTube OAuth 2.0 adapter (Google accounts)."""

from social_link.adapters.oauth.base import AccountProfile, OAuthAdapter, OAuthAdapterError
from social_link.domain.enums import FailureKind, Platform

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
YOUTUBE_CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"

YOUTUBE_SCOPES = (
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube.readonly",
)


class YouTubeOAuthAdapter(OAuthAdapter):
    """Google OAuth scoped to the user's YouTube channel.

    Google only returns a refresh token when ``access_type=offline`` and the
    consent screen is shown, so both are forced. Refresh responses omit the
    refresh token; the stored one stays valid.
    """

    authorize_endpoint = GOOGLE_AUTH_URL
    token_endpoint = GOOGLE_TOKEN_URL
    revoke_endpoint = GOOGLE_REVOKE_URL
    default_scopes = YOUTUBE_SCOPES

    @property
    def platform(self) -> Platform:
        return Platform.YOUTUBE

    def _extra_authorize_params(self) -> dict[str, str]:
        return {
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }

    def revoke(self, token: str) -> bool:
        response = self._request(
            "POST",
            GOOGLE_REVOKE_URL,
            data={"token": token},
            headers=self._token_headers(),
            raise_for_status=False,
        )
        return response.status_code == 200

    def fetch_profile(self, access_token: str) -> AccountProfile:
        response = self._request(
            "GET",
            YOUTUBE_CHANNELS_URL,
            params={"part": "snippet", "mine": "true"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        items = self._json(response, "channel lookup").get("items", [])

        if not items:
            raise OAuthAdapterError(
                FailureKind.PERMANENT,
                "The authorized Google account has no YouTube channel",
            )

        channel = items[0]
        return AccountProfile(
            external_account_id=str(channel["id"]),
            handle=channel.get("snippet", {}).get("title"),
        )
