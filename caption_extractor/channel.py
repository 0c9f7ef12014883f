"""
Message passing between isolated execution contexts.

The privileged context that observes caption traffic and the restricted
context that runs extractions never share state. They communicate only
through a MessageChannel, which offers two primitives:

- ``send``: one-way, fire-and-forget, best-effort. Messages are copied and
  delivered on the next loop iteration; nothing is queued for listeners that
  register later, and ordering across messages is not guaranteed.
- ``request``: a single round trip to the channel's responder, bounded by a
  timeout. A missing responder or an elapsed timeout yields ``None``.
"""

import asyncio
import copy
import inspect
import logging
from typing import Any, Awaitable, Callable

from caption_extractor.config import settings

logger = logging.getLogger(__name__)

Message = dict[str, Any]
Listener = Callable[[Message], None]
Responder = Callable[[Message], Awaitable[Any] | Any]


class MessageChannel:
    """Asynchronous, at-most-once message channel between two contexts."""

    def __init__(self, name: str = "runtime", request_timeout: float | None = None):
        """
        Args:
            name: Channel name used in log messages
            request_timeout: Default timeout for ``request`` in seconds
        """
        self.name = name
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.message_timeout
        )
        self._listeners: list[Listener] = []
        self._responder: Responder | None = None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_responder(self, responder: Responder | None) -> None:
        """Install the handler answering ``request`` calls (one per channel)."""
        self._responder = responder

    @property
    def has_responder(self) -> bool:
        return self._responder is not None

    def send(self, message: Message) -> None:
        """
        Send a one-way message to every current listener.

        Never blocks and never raises. Delivery happens on the running event
        loop when there is one, otherwise inline.
        """
        if not self._listeners:
            logger.debug(f"[{self.name}] No listener for message {message.get('type')!r}, dropped")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for listener in list(self._listeners):
            payload = copy.deepcopy(message)
            if loop is not None:
                loop.call_soon(self._deliver, listener, payload)
            else:
                self._deliver(listener, payload)

    def _deliver(self, listener: Listener, message: Message) -> None:
        try:
            listener(message)
        except Exception as e:
            logger.error(f"[{self.name}] Listener failed for message {message.get('type')!r}: {e}")

    async def request(self, message: Message, timeout: float | None = None) -> Any | None:
        """
        Perform a single request/response round trip.

        Args:
            message: Request message
            timeout: Seconds to wait for the responder (default: channel timeout)

        Returns:
            Copy of the responder's answer, or None when there is no responder,
            the responder fails, or the timeout elapses
        """
        if self._responder is None:
            logger.debug(f"[{self.name}] No responder for request {message.get('action')!r}")
            return None

        timeout = self.request_timeout if timeout is None else timeout
        try:
            result = self._responder(copy.deepcopy(message))
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Request {message.get('action')!r} timed out after {timeout}s")
            return None
        except Exception as e:
            logger.error(f"[{self.name}] Responder failed for {message.get('action')!r}: {e}")
            return None

        return copy.deepcopy(result)
