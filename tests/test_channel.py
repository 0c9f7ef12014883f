"""
Tests for the cross-context message channel in caption_extractor/channel.py.
"""

import asyncio

import pytest

from caption_extractor.channel import MessageChannel


class TestSend:
    """Tests for one-way messages."""

    def test_send_without_listener_is_dropped(self):
        """Test that sending with no listener neither raises nor queues."""
        channel = MessageChannel()
        channel.send({"type": "caption_token", "video_id": "dQw4w9WgXcQ"})

        received = []
        channel.add_listener(received.append)
        assert received == []

    def test_send_outside_loop_delivers_inline(self):
        """Test delivery without a running event loop."""
        channel = MessageChannel()
        received = []
        channel.add_listener(received.append)

        channel.send({"type": "ping"})
        assert received == [{"type": "ping"}]

    @pytest.mark.asyncio
    async def test_send_inside_loop_is_deferred(self):
        """Test that delivery happens on a later loop iteration."""
        channel = MessageChannel()
        received = []
        channel.add_listener(received.append)

        channel.send({"type": "ping"})
        assert received == []
        await asyncio.sleep(0)
        assert received == [{"type": "ping"}]

    def test_send_copies_message(self):
        """Test that listeners get a copy, not the sender's object."""
        channel = MessageChannel()
        received = []
        channel.add_listener(received.append)

        message = {"type": "ping", "data": {"n": 1}}
        channel.send(message)
        received[0]["data"]["n"] = 2
        assert message["data"]["n"] == 1

    def test_listener_failure_is_contained(self):
        """Test that a failing listener does not affect the sender or other listeners."""
        channel = MessageChannel()
        received = []

        def broken(message):
            raise RuntimeError("boom")

        channel.add_listener(broken)
        channel.add_listener(received.append)
        channel.send({"type": "ping"})
        assert received == [{"type": "ping"}]

    def test_remove_listener(self):
        channel = MessageChannel()
        received = []
        channel.add_listener(received.append)
        channel.remove_listener(received.append)
        channel.send({"type": "ping"})
        assert received == []


class TestRequest:
    """Tests for request/response round trips."""

    @pytest.mark.asyncio
    async def test_request_without_responder(self):
        """Test that a missing responder yields None."""
        channel = MessageChannel()
        assert await channel.request({"action": "get_caption_token"}) is None

    @pytest.mark.asyncio
    async def test_request_async_responder(self):
        """Test a round trip to a coroutine responder."""
        channel = MessageChannel()

        async def responder(message):
            return {"echo": message["action"]}

        channel.set_responder(responder)
        assert channel.has_responder
        assert await channel.request({"action": "ping"}) == {"echo": "ping"}

    @pytest.mark.asyncio
    async def test_request_sync_responder(self):
        """Test a round trip to a plain function responder."""
        channel = MessageChannel()
        channel.set_responder(lambda message: {"ok": True})
        assert await channel.request({"action": "ping"}) == {"ok": True}

    @pytest.mark.asyncio
    async def test_request_timeout(self):
        """Test that a slow responder yields None after the timeout."""
        channel = MessageChannel(request_timeout=0.01)

        async def slow(message):
            await asyncio.sleep(1)
            return {"late": True}

        channel.set_responder(slow)
        assert await channel.request({"action": "ping"}) is None

    @pytest.mark.asyncio
    async def test_request_responder_failure(self):
        """Test that a failing responder yields None."""
        channel = MessageChannel()

        async def broken(message):
            raise RuntimeError("boom")

        channel.set_responder(broken)
        assert await channel.request({"action": "ping"}) is None
