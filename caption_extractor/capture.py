"""
Caption parameter capture.

YouTube's caption endpoint only serves a track when the request carries a
proof-of-origin token (``pot``) minted by the player. The player's own caption
requests are observed here, in the privileged context, through httpx event
hooks registered on the client that carries the player traffic. The hooks are
read-only: they never modify, delay, or fail the observed request. Requests
the package issues itself are marked internal and skipped.

Captured tokens are relayed to the restricted context over a MessageChannel,
where a TokenRegistry keeps its own copy and answers lookups from the
transcript fetcher. Caption response bodies seen by the same hooks are stored
in the TranscriptCache.
"""

import logging
import time
from typing import Any, Callable

import httpx

from caption_extractor.cache import TranscriptCache
from caption_extractor.channel import Message, MessageChannel
from caption_extractor.client import is_internal
from caption_extractor.config import settings
from caption_extractor.schemas import CaptionToken
from caption_extractor.utils import query_param

logger = logging.getLogger(__name__)

CAPTION_TOKEN_MESSAGE = "caption_token"
GET_CAPTION_TOKEN_ACTION = "get_caption_token"


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class CaptureBus:
    """
    Observes outbound caption requests in the privileged context.

    The bus owns its own token map; the restricted context only ever sees
    copies delivered through the channel.
    """

    def __init__(
        self,
        channel: MessageChannel,
        cache: TranscriptCache | None = None,
        endpoint_marker: str | None = None,
        page_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            channel: Channel used to relay captured tokens
            cache: Response cache fed with observed caption bodies
            endpoint_marker: URL substring identifying caption requests
            page_url: URL of the page currently loaded in this context, used
                to infer the video id when a caption request omits it
            clock: Wall clock in seconds
        """
        self.channel = channel
        self.cache = cache
        self.endpoint_marker = endpoint_marker or settings.caption_endpoint_marker
        self.page_url = page_url
        self._clock = clock
        self._tokens: dict[str, CaptionToken] = {}

    def matches(self, url: str) -> bool:
        return self.endpoint_marker in url

    def observe_url(self, url: str, page_url: str | None = None) -> CaptionToken | None:
        """
        Capture the token from an outbound caption request URL.

        Args:
            url: Full request URL
            page_url: Page URL to infer the video id from (default: self.page_url)

        Returns:
            The captured token, or None when the URL carries no usable token
        """
        if not self.matches(url):
            return None

        token = query_param(url, "pot")
        if not token:
            return None

        video_id = query_param(url, "v") or query_param(page_url or self.page_url, "v")
        if not video_id:
            logger.debug("Caption request carried a token but no video id could be inferred")
            return None

        captured = CaptionToken(video_id=video_id, token=token, captured_at_ms=_now_ms(self._clock))
        self._tokens[video_id] = captured
        logger.info(f"Captured caption token for video {video_id}")

        self.channel.send(
            {
                "type": CAPTION_TOKEN_MESSAGE,
                "video_id": video_id,
                "token": token,
                "url": url,
                "captured_at_ms": captured.captured_at_ms,
            }
        )
        return captured

    def observe_response(self, url: str, body: str) -> bool:
        """
        Store an observed caption response body in the response cache.

        Returns:
            True if the body was cached
        """
        if self.cache is None or not self.matches(url):
            return False

        video_id = query_param(url, "v")
        if not video_id:
            return False

        self.cache.put(video_id, body, url=url)
        logger.info(f"Intercepted transcript for video {video_id}")
        return True

    def lookup(self, video_id: str) -> str | None:
        """Read this context's own token map."""
        captured = self._tokens.get(video_id)
        return captured.token if captured else None

    # ========== httpx event hooks ==========

    async def on_request(self, request: httpx.Request) -> None:
        if is_internal(request):
            return
        self.observe_url(str(request.url))

    async def on_response(self, response: httpx.Response) -> None:
        if is_internal(response.request):
            return
        url = str(response.request.url)
        if not self.matches(url) or not response.is_success:
            return
        await response.aread()
        self.observe_response(url, response.text)

    def install(self, client: httpx.AsyncClient) -> httpx.AsyncClient:
        """
        Register the capture hooks on a client.

        Existing hooks are preserved; the bus only appends its own.
        """
        hooks = client.event_hooks
        hooks.setdefault("request", []).append(self.on_request)
        hooks.setdefault("response", []).append(self.on_response)
        client.event_hooks = hooks
        return client


class TokenRegistry:
    """
    Restricted-context copy of the captured tokens.

    Fed only by ``caption_token`` messages; answers ``get_caption_token``
    requests. A newer capture for the same video supersedes the older one.
    """

    def __init__(self, max_age: float | None = None, clock: Callable[[], float] = time.time):
        """
        Args:
            max_age: Seconds after which a token is reported absent; 0 disables
                expiry (default: settings.caption_token_max_age)
            clock: Wall clock in seconds
        """
        self.max_age = max_age if max_age is not None else settings.caption_token_max_age
        self._clock = clock
        self._tokens: dict[str, CaptionToken] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def attach(self, channel: MessageChannel) -> None:
        channel.add_listener(self.handle_message)
        channel.set_responder(self.respond)

    def store(self, video_id: str, token: str, captured_at_ms: int | None = None) -> CaptionToken:
        captured = CaptionToken(
            video_id=video_id,
            token=token,
            captured_at_ms=captured_at_ms if captured_at_ms is not None else _now_ms(self._clock),
        )
        self._tokens[video_id] = captured
        return captured

    def get(self, video_id: str) -> str | None:
        captured = self._tokens.get(video_id)
        if captured is None:
            return None
        if self.max_age and _now_ms(self._clock) - captured.captured_at_ms > self.max_age * 1000:
            logger.debug(f"Caption token for video {video_id} is stale")
            return None
        return captured.token

    def handle_message(self, message: Message) -> None:
        if message.get("type") != CAPTION_TOKEN_MESSAGE:
            return
        video_id = message.get("video_id")
        token = message.get("token")
        if video_id and token:
            self.store(video_id, token, message.get("captured_at_ms"))
            logger.info(f"Stored caption token relayed for video {video_id}")

    async def respond(self, message: Message) -> dict[str, Any] | None:
        if message.get("action") != GET_CAPTION_TOKEN_ACTION:
            return None
        video_id = message.get("video_id", "")
        token = self.get(video_id)
        logger.debug(f"Caption token requested for video {video_id}: {'found' if token else 'not found'}")
        return {"token": token}


class RemoteTokenLookup:
    """Restricted-side token lookup performed as a channel round trip."""

    def __init__(self, channel: MessageChannel, timeout: float | None = None):
        self.channel = channel
        self.timeout = timeout

    async def lookup(self, video_id: str) -> str | None:
        response = await self.channel.request(
            {"action": GET_CAPTION_TOKEN_ACTION, "video_id": video_id},
            timeout=self.timeout,
        )
        if not isinstance(response, dict):
            return None
        return response.get("token") or None
