"""Instagram OAuth adapter via Facebook Login.

Instagram Professional accounts (Business or Creator) are reached through the
Facebook Page they are linked to, so the token flow is Facebook's and the
profile lookup walks the user's pages to find the Instagram account.
"""

from social_link.adapters.oauth.base import AccountProfile, OAuthAdapterError
from social_link.adapters.oauth.facebook import GRAPH_API_URL, FacebookOAuthAdapter
from social_link.domain.enums import FailureKind, Platform
from social_link.logging import get_logger

logger = get_logger(__name__)

INSTAGRAM_SCOPES = (
    "instagram_basic",
    "instagram_content_publish",
    "instagram_manage_insights",
    "pages_show_list",
    "pages_read_engagement",
)


class InstagramOAuthAdapter(FacebookOAuthAdapter):
    """Instagram Graph API access through a linked Facebook Page."""

    default_scopes = INSTAGRAM_SCOPES

    @property
    def platform(self) -> Platform:
        return Platform.INSTAGRAM

    def fetch_profile(self, access_token: str) -> AccountProfile:
        """Find the first Facebook Page with a linked Instagram account."""
        response = self._request(
            "GET",
            f"{GRAPH_API_URL}/me/accounts",
            params={
                "fields": "id,name,instagram_business_account{id,username}",
                "access_token": access_token,
            },
        )
        pages = self._json(response, "page lookup").get("data", [])

        for page in pages:
            ig_account = page.get("instagram_business_account")
            if ig_account and ig_account.get("id"):
                logger.debug(
                    "instagram_account_resolved",
                    facebook_page_id=page.get("id"),
                    instagram_account_id=ig_account["id"],
                )
                return AccountProfile(
                    external_account_id=str(ig_account["id"]),
                    handle=ig_account.get("username"),
                )

        raise OAuthAdapterError(
            FailureKind.PERMANENT,
            "No Instagram Professional account is linked to the authorized Facebook Pages. "
            "Convert the account to Business or Creator and link it to a Page.",
        )
