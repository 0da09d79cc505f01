"""Tests for platform OAuth adapters."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from social_link.adapters.oauth import (
    OAuthAdapterRegistry,
    client_config_for,
    get_oauth_adapter,
    parse_platform,
)
from social_link.adapters.oauth.base import (
    OAuthAdapterError,
    OAuthClientConfig,
    code_challenge_s256,
    parse_scopes,
)
from social_link.adapters.oauth.facebook import FacebookOAuthAdapter
from social_link.adapters.oauth.instagram import InstagramOAuthAdapter
from social_link.adapters.oauth.stub import StubOAuthAdapter
from social_link.adapters.oauth.tiktok import TikTokOAuthAdapter
from social_link.adapters.oauth.twitter import TwitterOAuthAdapter
from social_link.adapters.oauth.youtube import YouTubeOAuthAdapter
from social_link.config import Settings
from social_link.domain.enums import FailureKind, Platform
from social_link.domain.errors import PlatformNotConfigured, UnsupportedPlatform

CONFIG = OAuthClientConfig(client_id="client-id", client_secret="client-secret")


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestHelpers:
    """Tests for shared OAuth helpers."""

    def test_code_challenge_rfc7636_vector(self):
        """Test S256 challenge against the RFC 7636 appendix example."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert code_challenge_s256(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_parse_scopes(self):
        """Test scope normalization from strings and lists."""
        assert parse_scopes("a b,c") == ["a", "b", "c"]
        assert parse_scopes(["x", "", "y"]) == ["x", "y"]
        assert parse_scopes(None) == []

    def test_parse_platform(self):
        """Test platform names are case-insensitive and unknown ones rejected."""
        assert parse_platform("YouTube") == Platform.YOUTUBE
        with pytest.raises(UnsupportedPlatform):
            parse_platform("myspace")


class TestAuthorizeUrls:
    """Tests for consent URL construction."""

    def test_twitter_uses_pkce(self):
        """Test Twitter URLs carry an S256 challenge derived from the verifier."""
        adapter = TwitterOAuthAdapter(CONFIG, client=mock_client(lambda r: httpx.Response(500)))
        url = adapter.build_authorize_url(
            "state-1", "https://app/cb/twitter", code_verifier="v" * 50
        )

        params = query(url)
        assert params["state"] == "state-1"
        assert params["code_challenge"] == code_challenge_s256("v" * 50)
        assert params["code_challenge_method"] == "S256"
        assert "offline.access" in params["scope"].split(" ")

    def test_pkce_platform_requires_verifier(self):
        """Test a PKCE platform refuses to build a URL without a verifier."""
        adapter = TwitterOAuthAdapter(CONFIG, client=mock_client(lambda r: httpx.Response(500)))
        with pytest.raises(ValueError):
            adapter.build_authorize_url("state-1", "https://app/cb/twitter")

    def test_youtube_requests_offline_access(self):
        """Test Google is asked for a refresh token."""
        adapter = YouTubeOAuthAdapter(CONFIG, client=mock_client(lambda r: httpx.Response(500)))
        params = query(adapter.build_authorize_url("s", "https://app/cb/youtube"))

        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert "code_challenge" not in params

    def test_tiktok_uses_client_key_and_commas(self):
        """Test TikTok's client_key parameter and comma-separated scopes."""
        adapter = TikTokOAuthAdapter(CONFIG, client=mock_client(lambda r: httpx.Response(500)))
        params = query(adapter.build_authorize_url("s", "https://app/cb/tiktok"))

        assert params["client_key"] == "client-id"
        assert "client_id" not in params
        assert params["scope"] == "user.info.basic,video.publish,video.upload"


class TestTokenCalls:
    """Tests for token exchange and refresh against mocked endpoints."""

    def test_youtube_exchange_code(self):
        """Test a successful code exchange parses the grant."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = parse_qs(request.content.decode())
            assert body["grant_type"] == ["authorization_code"]
            assert body["code"] == ["abc"]
            assert body["client_secret"] == ["client-secret"]
            return httpx.Response(
                200,
                json={
                    "access_token": "at-1",
                    "refresh_token": "rt-1",
                    "expires_in": 3599,
                    "scope": "https://www.googleapis.com/auth/youtube.upload",
                },
            )

        adapter = YouTubeOAuthAdapter(CONFIG, client=mock_client(handler))
        grant = adapter.exchange_code("abc", "https://app/cb/youtube")

        assert grant.access_token == "at-1"
        assert grant.refresh_token == "rt-1"
        assert grant.expires_in == 3599
        assert grant.scopes == ["https://www.googleapis.com/auth/youtube.upload"]
        assert "at-1" not in repr(grant)

    def test_twitter_sends_basic_auth_and_verifier(self):
        """Test Twitter's confidential client auth and PKCE verifier."""
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "at", "expires_in": 7200})

        adapter = TwitterOAuthAdapter(CONFIG, client=mock_client(handler))
        adapter.exchange_code("abc", "https://app/cb/twitter", code_verifier="verifier")

        assert str(seen["auth"]).startswith("Basic ")
        body = seen["body"]
        assert body["code_verifier"] == ["verifier"]
        assert "client_secret" not in body

    @pytest.mark.parametrize(
        "status,payload,kind",
        [
            (400, {"error": "invalid_grant"}, FailureKind.PERMANENT),
            (401, {"error": "invalid_client"}, FailureKind.PERMANENT),
            (503, {"error": "server_error"}, FailureKind.TRANSIENT),
            (429, {}, FailureKind.TRANSIENT),
            (400, {"error": "temporarily_unavailable"}, FailureKind.TRANSIENT),
        ],
    )
    def test_refresh_failure_classification(self, status, payload, kind):
        """Test HTTP failures are classified as transient or permanent."""
        adapter = YouTubeOAuthAdapter(
            CONFIG, client=mock_client(lambda r: httpx.Response(status, json=payload))
        )

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.refresh_token("rt-1")

        assert exc_info.value.kind == kind
        assert exc_info.value.status_code == status

    def test_network_error_is_transient(self):
        """Test transport errors are retryable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = YouTubeOAuthAdapter(CONFIG, client=mock_client(handler))

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.refresh_token("rt-1")
        assert exc_info.value.retryable is True

    def test_html_body_is_transient(self):
        """Test a gateway error page is not mistaken for a rejection."""
        adapter = YouTubeOAuthAdapter(
            CONFIG, client=mock_client(lambda r: httpx.Response(200, text="<html>oops</html>"))
        )

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.refresh_token("rt-1")
        assert exc_info.value.kind == FailureKind.TRANSIENT

    @pytest.mark.parametrize("expires_in,expected", [("3600.0", 3600), ("7200", 7200), (86400.5, 86400)])
    def test_expires_in_accepts_numeric_strings(self, expires_in, expected):
        """Test lifetimes sent as strings or floats are read."""
        adapter = YouTubeOAuthAdapter(
            CONFIG,
            client=mock_client(
                lambda r: httpx.Response(200, json={"access_token": "new", "expires_in": expires_in})
            ),
        )

        assert adapter.refresh_token("rt-1").expires_in == expected

    def test_unreadable_expires_in_is_transient(self):
        """Test a garbled lifetime is reported as an adapter failure."""
        adapter = YouTubeOAuthAdapter(
            CONFIG,
            client=mock_client(
                lambda r: httpx.Response(200, json={"access_token": "new", "expires_in": "soon"})
            ),
        )

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.refresh_token("rt-1")
        assert exc_info.value.kind == FailureKind.TRANSIENT

    def test_decoding_error_is_transient(self):
        """Test a body that cannot be decoded is retryable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.DecodingError("bad gzip", request=request)

        adapter = YouTubeOAuthAdapter(CONFIG, client=mock_client(handler))

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.refresh_token("rt-1")
        assert exc_info.value.kind == FailureKind.TRANSIENT

    def test_facebook_exchanges_for_long_lived_token(self):
        """Test Facebook upgrades the short-lived token and defaults its lifetime."""
        calls: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            params = dict(request.url.params)
            calls.append(params)
            if params.get("grant_type") == "fb_exchange_token":
                return httpx.Response(200, json={"access_token": "long-lived"})
            return httpx.Response(200, json={"access_token": "short-lived", "expires_in": 3600})

        adapter = FacebookOAuthAdapter(CONFIG, client=mock_client(handler))
        grant = adapter.exchange_code("abc", "https://app/cb/facebook")

        assert grant.access_token == "long-lived"
        assert grant.expires_in == 60 * 24 * 3600
        assert calls[1]["fb_exchange_token"] == "short-lived"
        assert adapter.refresh_with_access_token is True

    def test_facebook_throttling_is_transient(self):
        """Test Graph API throttling codes are retryable despite HTTP 400."""
        adapter = FacebookOAuthAdapter(
            CONFIG,
            client=mock_client(
                lambda r: httpx.Response(
                    400, json={"error": {"code": 4, "message": "Application request limit"}}
                )
            ),
        )

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.refresh_token("long-lived")
        assert exc_info.value.kind == FailureKind.TRANSIENT


class TestProfiles:
    """Tests for external account resolution."""

    def test_instagram_walks_pages(self):
        """Test Instagram resolves the first linked business account."""
        payload = {
            "data": [
                {"id": "page-1", "name": "No IG"},
                {
                    "id": "page-2",
                    "instagram_business_account": {"id": "ig-9", "username": "brand"},
                },
            ]
        }
        adapter = InstagramOAuthAdapter(
            CONFIG, client=mock_client(lambda r: httpx.Response(200, json=payload))
        )

        profile = adapter.fetch_profile("token")

        assert profile.external_account_id == "ig-9"
        assert profile.handle == "brand"

    def test_instagram_without_business_account_is_permanent(self):
        """Test a personal Instagram account cannot be connected."""
        adapter = InstagramOAuthAdapter(
            CONFIG, client=mock_client(lambda r: httpx.Response(200, json={"data": []}))
        )

        with pytest.raises(OAuthAdapterError) as exc_info:
            adapter.fetch_profile("token")
        assert exc_info.value.kind == FailureKind.PERMANENT

    def test_youtube_channel_lookup(self):
        """Test YouTube resolves the channel id and title."""
        payload = {"items": [{"id": "UC123", "snippet": {"title": "My Channel"}}]}
        adapter = YouTubeOAuthAdapter(
            CONFIG, client=mock_client(lambda r: httpx.Response(200, json=payload))
        )

        profile = adapter.fetch_profile("token")

        assert profile.external_account_id == "UC123"
        assert profile.handle == "My Channel"

    def test_twitter_revoke(self):
        """Test revoke reports the platform's answer."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = parse_qs(request.content.decode())
            assert body["token"] == ["at-1"]
            return httpx.Response(200, content=json.dumps({"revoked": True}))

        adapter = TwitterOAuthAdapter(CONFIG, client=mock_client(handler))
        assert adapter.revoke("at-1") is True


class TestAdapterSelection:
    """Tests for adapter dispatch and configuration."""

    def test_stub_mode_returns_stub(self):
        """Test stub mode never builds a live adapter."""
        adapter = get_oauth_adapter("twitter", settings=Settings(oauth_provider="stub"))

        assert isinstance(adapter, StubOAuthAdapter)
        assert adapter.platform == Platform.TWITTER
        assert adapter.uses_pkce is True

    def test_live_mode_requires_credentials(self):
        """Test a live adapter without credentials is reported, not built."""
        settings = Settings(oauth_provider="live", linkedin_client_id=None)

        with pytest.raises(PlatformNotConfigured):
            get_oauth_adapter(Platform.LINKEDIN, settings=settings)

    def test_instagram_falls_back_to_facebook_app(self):
        """Test Instagram reuses the Facebook app credentials."""
        settings = Settings(
            facebook_app_id="fb-id",
            facebook_app_secret="fb-secret",
            instagram_app_id=None,
            instagram_app_secret=None,
        )

        config = client_config_for(Platform.INSTAGRAM, settings)
        assert config.client_id == "fb-id"

    def test_registry_reuses_adapters(self):
        """Test the registry builds one adapter per platform."""
        registry = OAuthAdapterRegistry(Settings(oauth_provider="stub"))

        first = registry("youtube")
        assert registry(Platform.YOUTUBE) is first
        assert registry("tiktok") is not first
        registry.close()
