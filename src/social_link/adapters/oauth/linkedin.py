"""LinkedIn OAuth 2.0 adapter (Sign In with LinkedIn using OpenID Connect)."""

from social_link.adapters.oauth.base import AccountProfile, OAuthAdapter, OAuthAdapterError
from social_link.domain.enums import FailureKind, Platform

LINKEDIN_AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_REVOKE_URL = "https://www.linkedin.com/oauth/v2/revoke"
LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"

LINKEDIN_SCOPES = (
    "openid",
    "profile",
    "email",
    "w_member_social",
)


class LinkedInOAuthAdapter(OAuthAdapter):
    """LinkedIn member authorization."""

    authorize_endpoint = LINKEDIN_AUTH_URL
    token_endpoint = LINKEDIN_TOKEN_URL
    revoke_endpoint = LINKEDIN_REVOKE_URL
    default_scopes = LINKEDIN_SCOPES

    @property
    def platform(self) -> Platform:
        return Platform.LINKEDIN

    def fetch_profile(self, access_token: str) -> AccountProfile:
        response = self._request(
            "GET",
            LINKEDIN_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = self._json(response, "profile lookup")
        if "sub" not in data:
            raise OAuthAdapterError(
                FailureKind.PERMANENT, "linkedin userinfo response did not include a subject"
            )
        return AccountProfile(external_account_id=str(data["sub"]), handle=data.get("name"))
