"""Platform OAuth adapters and the dispatch table that selects them."""

import threading

import httpx

from social_link.adapters.oauth.base import (
    AccountProfile,
    OAuthAdapter,
    OAuthAdapterError,
    OAuthClientConfig,
    TokenGrant,
    code_challenge_s256,
    generate_code_verifier,
)
from social_link.adapters.oauth.facebook import FacebookOAuthAdapter
from social_link.adapters.oauth.instagram import InstagramOAuthAdapter
from social_link.adapters.oauth.linkedin import LinkedInOAuthAdapter
from social_link.adapters.oauth.stub import StubOAuthAdapter
from social_link.adapters.oauth.tiktok import TikTokOAuthAdapter
from social_link.adapters.oauth.twitter import TwitterOAuthAdapter
from social_link.adapters.oauth.youtube import YouTubeOAuthAdapter
from social_link.config import Settings, get_settings
from social_link.domain.enums import Platform
from social_link.domain.errors import PlatformNotConfigured, UnsupportedPlatform
from social_link.logging import get_logger

logger = get_logger(__name__)

OAUTH_ADAPTERS: dict[Platform, type[OAuthAdapter]] = {
    Platform.FACEBOOK: FacebookOAuthAdapter,
    Platform.INSTAGRAM: InstagramOAuthAdapter,
    Platform.TWITTER: TwitterOAuthAdapter,
    Platform.LINKEDIN: LinkedInOAuthAdapter,
    Platform.TIKTOK: TikTokOAuthAdapter,
    Platform.YOUTUBE: YouTubeOAuthAdapter,
}

# Settings fields holding each platform's (client id, client secret)
_CREDENTIAL_FIELDS: dict[Platform, tuple[str, str]] = {
    Platform.FACEBOOK: ("facebook_app_id", "facebook_app_secret"),
    Platform.INSTAGRAM: ("instagram_app_id", "instagram_app_secret"),
    Platform.TWITTER: ("twitter_client_id", "twitter_client_secret"),
    Platform.LINKEDIN: ("linkedin_client_id", "linkedin_client_secret"),
    Platform.TIKTOK: ("tiktok_client_key", "tiktok_client_secret"),
    Platform.YOUTUBE: ("youtube_client_id", "youtube_client_secret"),
}


def parse_platform(value: str | Platform) -> Platform:
    """Resolve a platform name, raising UnsupportedPlatform for unknown values."""
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).strip().lower())
    except ValueError:
        raise UnsupportedPlatform(str(value)) from None


def client_config_for(platform: Platform, settings: Settings) -> OAuthClientConfig:
    """Read a platform's OAuth application credentials from settings."""
    id_field, secret_field = _CREDENTIAL_FIELDS[platform]
    client_id = getattr(settings, id_field)
    client_secret = getattr(settings, secret_field)

    # Instagram runs on Facebook Login and can share the Facebook app
    if platform == Platform.INSTAGRAM and not (client_id and client_secret):
        client_id = settings.facebook_app_id
        client_secret = settings.facebook_app_secret

    if not client_id or not client_secret:
        raise PlatformNotConfigured(platform)
    return OAuthClientConfig(client_id=client_id, client_secret=client_secret)


def get_oauth_adapter(
    platform: str | Platform,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> OAuthAdapter:
    """Build the adapter for a platform according to ``OAUTH_PROVIDER``.

    Raises:
        UnsupportedPlatform: If the platform has no adapter.
        PlatformNotConfigured: If live mode is selected and credentials are missing.
    """
    platform = parse_platform(platform)
    settings = settings or get_settings()
    adapter_cls = OAUTH_ADAPTERS.get(platform)
    if adapter_cls is None:
        raise UnsupportedPlatform(platform)

    if settings.oauth_provider == "stub":
        return StubOAuthAdapter(platform=platform, uses_pkce=adapter_cls.uses_pkce)

    return adapter_cls(
        client_config_for(platform, settings),
        client=client,
        timeout=settings.oauth_http_timeout_seconds,
    )


class OAuthAdapterRegistry:
    """Builds one adapter per platform on first use and reuses it.

    Instances are callable, so services can take either a registry or any
    ``Callable[[Platform], OAuthAdapter]``.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self._adapters: dict[Platform, OAuthAdapter] = {}
        self._lock = threading.Lock()

    def __call__(self, platform: str | Platform) -> OAuthAdapter:
        platform = parse_platform(platform)
        with self._lock:
            adapter = self._adapters.get(platform)
            if adapter is None:
                adapter = get_oauth_adapter(platform, settings=self._settings)
                self._adapters[platform] = adapter
                logger.debug("oauth_adapter_created", platform=platform)
            return adapter

    def close(self) -> None:
        with self._lock:
            for adapter in self._adapters.values():
                adapter.close()
            self._adapters.clear()


__all__ = [
    "AccountProfile",
    "OAUTH_ADAPTERS",
    "OAuthAdapter",
    "OAuthAdapterError",
    "OAuthAdapterRegistry",
    "OAuthClientConfig",
    "TokenGrant",
    "client_config_for",
    "code_challenge_s256",
    "generate_code_verifier",
    "get_oauth_adapter",
    "parse_platform",
    # Adapters
    "FacebookOAuthAdapter",
    "InstagramOAuthAdapter",
    "LinkedInOAuthAdapter",
    "StubOAuthAdapter",
    "TikTokOAuthAdapter",
    "TwitterOAuthAdapter",
    "YouTubeOAuthAdapter",
]
