"""
Tests for caption parameter capture in caption_extractor/capture.py.
"""

import asyncio

import httpx
import pytest

from caption_extractor.capture import (
    CAPTION_TOKEN_MESSAGE,
    CaptureBus,
    RemoteTokenLookup,
    TokenRegistry,
)
from caption_extractor.channel import MessageChannel
from caption_extractor.client import INTERNAL_REQUEST, build_client

CAPTION_URL = "https://www.youtube.com/api/timedtext?v=dQw4w9WgXcQ&lang=en&pot=TOKEN123"


@pytest.fixture
def channel():
    return MessageChannel()


@pytest.fixture
def registry(channel, fake_timer):
    registry = TokenRegistry(max_age=3600, clock=fake_timer)
    registry.attach(channel)
    return registry


@pytest.fixture
def bus(channel, cache, fake_timer):
    return CaptureBus(channel, cache, endpoint_marker="timedtext", clock=fake_timer)


class TestCaptureBus:
    """Tests for CaptureBus observation."""

    def test_observe_url_captures_token(self, bus, registry):
        """Test that a caption request's token reaches the registry."""
        captured = bus.observe_url(CAPTION_URL)

        assert captured is not None
        assert captured.video_id == "dQw4w9WgXcQ"
        assert captured.token == "TOKEN123"
        assert bus.lookup("dQw4w9WgXcQ") == "TOKEN123"
        assert registry.get("dQw4w9WgXcQ") == "TOKEN123"

    def test_observe_url_sends_message(self, channel, bus):
        """Test the shape of the relayed message."""
        received = []
        channel.add_listener(received.append)
        bus.observe_url(CAPTION_URL)

        assert len(received) == 1
        message = received[0]
        assert message["type"] == CAPTION_TOKEN_MESSAGE
        assert message["video_id"] == "dQw4w9WgXcQ"
        assert message["token"] == "TOKEN123"
        assert message["url"] == CAPTION_URL

    def test_video_id_inferred_from_page(self, bus, registry):
        """Test that the page URL supplies the id when the request lacks it."""
        captured = bus.observe_url(
            "https://www.youtube.com/api/timedtext?lang=en&pot=TOKEN123",
            page_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        )
        assert captured.video_id == "dQw4w9WgXcQ"
        assert registry.get("dQw4w9WgXcQ") == "TOKEN123"

    def test_non_caption_request_ignored(self, bus, registry):
        """Test that requests to other endpoints are not captured."""
        assert bus.observe_url("https://www.youtube.com/youtubei/v1/player?pot=TOKEN123&v=dQw4w9WgXcQ") is None
        assert len(registry) == 0

    def test_request_without_token_ignored(self, bus, registry):
        """Test that caption requests without a token are not captured."""
        assert bus.observe_url("https://www.youtube.com/api/timedtext?v=dQw4w9WgXcQ&lang=en") is None
        assert len(registry) == 0

    def test_request_without_video_id_ignored(self, bus):
        """Test that a token without an inferable video id is dropped."""
        assert bus.observe_url("https://www.youtube.com/api/timedtext?pot=TOKEN123") is None

    def test_newer_token_supersedes(self, bus, registry):
        """Test that a later capture overwrites the earlier one."""
        bus.observe_url(CAPTION_URL)
        bus.observe_url(CAPTION_URL.replace("TOKEN123", "TOKEN456"))
        assert bus.lookup("dQw4w9WgXcQ") == "TOKEN456"
        assert registry.get("dQw4w9WgXcQ") == "TOKEN456"

    def test_observe_response_caches_body(self, bus, cache):
        """Test that observed caption bodies land in the response cache."""
        assert bus.observe_response(CAPTION_URL, '{"events": []}')
        assert cache.get("dQw4w9WgXcQ") == '{"events": []}'

    def test_observe_response_ignores_other_urls(self, bus, cache):
        assert not bus.observe_response("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "<html>")
        assert cache.get("dQw4w9WgXcQ") is None


class TestEventHooks:
    """Tests for the httpx event hooks."""

    @pytest.mark.asyncio
    async def test_hooks_capture_token_and_body(self, bus, registry, cache):
        """Test capture through a client carrying the bus hooks."""

        def handler(request):
            return httpx.Response(200, text='{"events": []}')

        client = build_client(transport=httpx.MockTransport(handler), interceptors=[bus])
        async with client:
            response = await client.get(CAPTION_URL)
            await asyncio.sleep(0)

        assert response.status_code == 200
        assert response.text == '{"events": []}'
        assert registry.get("dQw4w9WgXcQ") == "TOKEN123"
        assert cache.get("dQw4w9WgXcQ") == '{"events": []}'

    @pytest.mark.asyncio
    async def test_failed_response_not_cached(self, bus, cache):
        """Test that error responses are not stored."""

        def handler(request):
            return httpx.Response(403, text="forbidden")

        client = build_client(transport=httpx.MockTransport(handler), interceptors=[bus])
        async with client:
            response = await client.get(CAPTION_URL)

        assert response.status_code == 403
        assert cache.get("dQw4w9WgXcQ") is None

    @pytest.mark.asyncio
    async def test_internal_request_ignored(self, bus, registry, cache):
        """Test that the package's own caption requests are not captured."""

        def handler(request):
            return httpx.Response(200, text='{"events": []}')

        client = build_client(transport=httpx.MockTransport(handler), interceptors=[bus])
        async with client:
            response = await client.get(CAPTION_URL, extensions=INTERNAL_REQUEST)

        assert response.status_code == 200
        assert bus.lookup("dQw4w9WgXcQ") is None
        assert registry.get("dQw4w9WgXcQ") is None
        assert cache.get("dQw4w9WgXcQ") is None
        assert cache.get_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_install_preserves_existing_hooks(self, bus):
        """Test that installing the bus keeps hooks already on the client."""
        seen = []

        async def existing(request):
            seen.append(str(request.url))

        def handler(request):
            return httpx.Response(200, text="")

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), event_hooks={"request": [existing]}
        )
        bus.install(client)
        async with client:
            await client.get(CAPTION_URL)

        assert seen == [CAPTION_URL]
        assert bus.lookup("dQw4w9WgXcQ") == "TOKEN123"


class TestTokenRegistry:
    """Tests for the restricted-context token registry."""

    def test_stale_token_reported_absent(self, fake_timer):
        """Test that tokens older than max_age are not returned."""
        registry = TokenRegistry(max_age=3600, clock=fake_timer)
        registry.store("dQw4w9WgXcQ", "TOKEN123")
        fake_timer.advance(3599)
        assert registry.get("dQw4w9WgXcQ") == "TOKEN123"
        fake_timer.advance(2)
        assert registry.get("dQw4w9WgXcQ") is None

    def test_zero_max_age_disables_expiry(self, fake_timer):
        registry = TokenRegistry(max_age=0, clock=fake_timer)
        registry.store("dQw4w9WgXcQ", "TOKEN123")
        fake_timer.advance(10**6)
        assert registry.get("dQw4w9WgXcQ") == "TOKEN123"

    def test_unrelated_messages_ignored(self):
        registry = TokenRegistry()
        registry.handle_message({"type": "other", "video_id": "dQw4w9WgXcQ", "token": "x"})
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_respond(self):
        registry = TokenRegistry()
        registry.store("dQw4w9WgXcQ", "TOKEN123")
        assert await registry.respond({"action": "get_caption_token", "video_id": "dQw4w9WgXcQ"}) == {
            "token": "TOKEN123"
        }
        assert await registry.respond({"action": "unknown"}) is None


class TestRemoteTokenLookup:
    """Tests for token lookups through the channel."""

    @pytest.mark.asyncio
    async def test_lookup_round_trip(self, channel, registry):
        """Test reading a relayed token through a channel request."""
        registry.store("dQw4w9WgXcQ", "TOKEN123")
        lookup = RemoteTokenLookup(channel)
        assert await lookup.lookup("dQw4w9WgXcQ") == "TOKEN123"
        assert await lookup.lookup("otherVideo1") is None

    @pytest.mark.asyncio
    async def test_lookup_without_responder(self):
        """Test that a lookup with nobody answering yields None."""
        lookup = RemoteTokenLookup(MessageChannel(), timeout=0.01)
        assert await lookup.lookup("dQw4w9WgXcQ") is None
