"""Shared pytest fixtures for caption extraction tests."""

import json

import httpx
import pytest
import pytest_asyncio

from caption_extractor.cache import TranscriptCache
from caption_extractor.client import build_client
from caption_extractor.config import Settings

VIDEO_ID = "dQw4w9WgXcQ"
WATCH_URL = f"https://www.youtube.com/watch?v={VIDEO_ID}"
TIMEDTEXT_URL = f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang=en"


class FakeTimer:
    """Manually advanced clock for cache and token expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_track(code: str = "en", name: str = "English", kind: str = "") -> dict:
    track = {
        "baseUrl": f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang={code}",
        "name": {"simpleText": name},
        "languageCode": code,
    }
    if kind:
        track["kind"] = kind
    return track


def make_watch_page(
    tracks: list[dict] | None = None,
    title: str | None = "Test Video",
    description: str = "A test description",
    channel: str | None = "Test Channel",
) -> str:
    """Build a minimal watch page with an embedded caption track list."""
    head = "<title>Test Video - YouTube</title>"
    if title:
        head += f'<meta property="og:title" content="{title}">'
    head += f'<meta property="og:description" content="{description}">'

    player = '"playabilityStatus":{"status":"OK"}'
    if tracks is not None:
        captions = json.dumps({"playerCaptionsTracklistRenderer": {"captionTracks": tracks}})
        player += f',"captions":{captions}'
    player += f',"videoDetails":{{"videoId":"{VIDEO_ID}"}}'

    body = f"<script>var ytInitialPlayerResponse = {{{player}}};</script>"
    if channel:
        body += f'<div class="ytd-video-owner-renderer"><a href="/@test">{channel}</a></div>'
    return f"<html><head>{head}</head><body>{body}</body></html>"


def make_json3(*events: tuple[int, int, str]) -> str:
    return json.dumps(
        {
            "events": [
                {"tStartMs": start, "dDurationMs": duration, "segs": [{"utf8": text}]}
                for start, duration, text in events
            ]
        }
    )


@pytest.fixture
def fake_timer():
    """Provide a manually advanced clock."""
    return FakeTimer()


@pytest.fixture
def cache(fake_timer):
    """Provide a transcript cache driven by a fake clock."""
    return TranscriptCache(ttl=300, maxsize=16, timer=fake_timer)


@pytest.fixture
def test_settings():
    """Settings with defaults, independent of the environment."""
    return Settings(_env_file=None)


@pytest.fixture
def make_page():
    """Factory for watch page documents."""
    return make_watch_page


@pytest.fixture
def make_caption_track():
    """Factory for caption track entries of the watch page."""
    return make_track


@pytest.fixture
def make_json3_body():
    """Factory for json3 transcript bodies from (start_ms, duration_ms, text) tuples."""
    return make_json3


@pytest.fixture
def watch_page():
    """Watch page with English and Simplified Chinese tracks."""
    return make_watch_page([make_track("en", "English"), make_track("zh-CN", "Chinese (China)")])


@pytest.fixture
def json3_body():
    return make_json3((1000, 2000, "Hello"), (3000, 1500, "world"))


class Recorder:
    """Routes MockTransport requests to canned responses and records them."""

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, status_code: int = 200, *, text=None, json_data=None, handler=None) -> None:
        """Register a response for a URL path; a fresh Response is built per request."""
        if handler is None:
            def handler(request):
                if json_data is not None:
                    return httpx.Response(status_code, json=json_data)
                return httpx.Response(status_code, text=text or "")
        self.routes[path] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def recorder():
    """Provide a request recorder usable as a MockTransport handler."""
    return Recorder()


@pytest_asyncio.fixture
async def http_client(recorder, test_settings):
    """Async HTTP client backed by the recorder."""
    client = build_client(test_settings, transport=httpx.MockTransport(recorder))
    yield client
    await client.aclose()
