"""Tests for the async existence probes, driven through httpx.MockTransport."""
from __future__ import annotations

import asyncio
import dataclasses

import httpx
import pytest

from fediverse_radar.errors import RateLimitedError
from fediverse_radar.models import AccountIdentifier, Namespace, ProbeState
from fediverse_radar.remote.prober import BlueskyProfileProber, MastodonSearchProber, build_async_client

BRIDGED_MASTODON = AccountIdentifier("jo-hn.mastodon.social.ap.brid.gy", Namespace.BRIDGE)
BRIDGED_BLUESKY = AccountIdentifier("alice.bsky.social@bsky.brid.gy", Namespace.BRIDGE)


def _probe(config, prober_cls, handler, identifier, instance=None, **kwargs):
    async def _run():
        async with build_async_client(config, transport=httpx.MockTransport(handler)) as client:
            prober = prober_cls(client, config, **kwargs)
            return await prober.probe(identifier, instance)

    return asyncio.run(_run())


# ==============================================================================
# Bluesky profile prober
# ==============================================================================

@pytest.mark.integration
class TestBlueskyProfileProber:
    def test_200_means_exists(self, radar_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"handle": "jo-hn.mastodon.social.ap.brid.gy"})

        result = _probe(radar_config, BlueskyProfileProber, handler, BRIDGED_MASTODON)
        assert result.state is ProbeState.EXISTS
        assert seen[0].url.path == "/xrpc/app.bsky.actor.getProfile"
        assert seen[0].url.params["actor"] == "jo-hn.mastodon.social.ap.brid.gy"

    def test_400_means_absent_with_detail(self, radar_config):
        def handler(request):
            return httpx.Response(400, json={"error": "InvalidRequest", "message": "Profile not found"})

        result = _probe(radar_config, BlueskyProfileProber, handler, BRIDGED_MASTODON)
        assert result.state is ProbeState.ABSENT
        assert "Profile not found" in result.detail

    @pytest.mark.parametrize("status", [403, 404, 410])
    def test_other_client_errors_mean_absent(self, radar_config, status):
        result = _probe(radar_config, BlueskyProfileProber, lambda request: httpx.Response(status), BRIDGED_MASTODON)
        assert result.state is ProbeState.ABSENT
        assert result.detail.startswith(f"HTTP {status}")

    def test_429_is_retried_not_absent(self, radar_config, monkeypatch):
        config = dataclasses.replace(radar_config, transient_retries=1)
        monkeypatch.setattr("fediverse_radar.remote.prober._BASE_DELAY", 0.0)
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        result = _probe(config, BlueskyProfileProber, handler, BRIDGED_MASTODON)
        assert result.state is ProbeState.ERROR
        assert len(calls) == 2

    def test_server_errors_are_retried_then_reported_as_error(self, radar_config, monkeypatch):
        config = dataclasses.replace(radar_config, transient_retries=2)
        monkeypatch.setattr("fediverse_radar.remote.prober._BASE_DELAY", 0.0)
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        result = _probe(config, BlueskyProfileProber, handler, BRIDGED_MASTODON)
        assert result.state is ProbeState.ERROR
        assert result.detail == "HTTP 503"
        assert len(calls) == 3

    def test_transport_error_then_success(self, radar_config, monkeypatch):
        config = dataclasses.replace(radar_config, transient_retries=1)
        monkeypatch.setattr("fediverse_radar.remote.prober._BASE_DELAY", 0.0)
        responses = iter([httpx.ConnectError("reset"), httpx.Response(200, json={})])

        def handler(request):
            outcome = next(responses)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = _probe(config, BlueskyProfileProber, handler, BRIDGED_MASTODON)
        assert result.state is ProbeState.EXISTS

    def test_profile_page_confirmation(self, radar_config):
        def handler(request):
            if request.url.host == "bsky.app":
                return httpx.Response(404)
            return httpx.Response(200, json={})

        result = _probe(
            radar_config, BlueskyProfileProber, handler, BRIDGED_MASTODON, confirm_profile_page=True
        )
        assert result.state is ProbeState.ABSENT
        assert "profile page" in result.detail


# ==============================================================================
# Mastodon search prober
# ==============================================================================

@pytest.mark.integration
class TestMastodonSearchProber:
    def test_non_empty_accounts_means_exists(self, radar_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"accounts": [{"acct": "alice.bsky.social@bsky.brid.gy"}]})

        result = _probe(radar_config, MastodonSearchProber, handler, BRIDGED_BLUESKY, "mastodon.example")
        assert result.state is ProbeState.EXISTS
        assert result.detail == "mastodon.example"
        assert seen[0].url.host == "mastodon.example"
        assert seen[0].url.path == "/api/v2/search"
        assert seen[0].url.params["q"] == "alice.bsky.social@bsky.brid.gy"

    def test_empty_accounts_means_absent(self, radar_config):
        def handler(request):
            return httpx.Response(200, json={"accounts": [], "statuses": [], "hashtags": []})

        result = _probe(radar_config, MastodonSearchProber, handler, BRIDGED_BLUESKY, "mastodon.example")
        assert result.state is ProbeState.ABSENT

    def test_429_raises_rate_limited_with_retry_after(self, radar_config):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "12"})

        with pytest.raises(RateLimitedError) as excinfo:
            _probe(radar_config, MastodonSearchProber, handler, BRIDGED_BLUESKY, "mastodon.example")
        assert excinfo.value.instance == "mastodon.example"
        assert excinfo.value.retry_after == 12.0

    def test_server_error_is_error_not_absent(self, radar_config):
        def handler(request):
            return httpx.Response(500, text="boom")

        result = _probe(radar_config, MastodonSearchProber, handler, BRIDGED_BLUESKY, "mastodon.example")
        assert result.state is ProbeState.ERROR
        assert "HTTP 500" in result.detail

    def test_timeout_is_error(self, radar_config):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = _probe(radar_config, MastodonSearchProber, handler, BRIDGED_BLUESKY, "mastodon.example")
        assert result.state is ProbeState.ERROR
        assert "ReadTimeout" in result.detail
