"""
HTTP client factory.

Every upstream call in the package goes through an ``httpx.AsyncClient``
built here. Observers such as the capture bus register themselves as event
hooks on the client instead of patching the transport.

Requests the package issues on its own behalf carry the ``INTERNAL_REQUEST``
extension so observers can tell them apart from player traffic.
"""

import httpx

from caption_extractor.config import Settings, settings as default_settings

INTERNAL_REQUEST_EXTENSION = "caption_extractor.internal"
INTERNAL_REQUEST = {INTERNAL_REQUEST_EXTENSION: True}


def is_internal(request: httpx.Request) -> bool:
    return bool(request.extensions.get(INTERNAL_REQUEST_EXTENSION))


def build_client(
    config: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    interceptors: list | None = None,
) -> httpx.AsyncClient:
    """
    Create an async client with the configured user agent and timeout.

    Args:
        config: Settings instance (default: global settings)
        transport: Optional transport, used by tests to mock upstreams
        interceptors: Objects exposing ``install(client)``, e.g. a CaptureBus

    Returns:
        Configured httpx.AsyncClient
    """
    config = config or default_settings
    client = httpx.AsyncClient(
        headers={"User-Agent": config.user_agent},
        timeout=httpx.Timeout(config.http_timeout),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        follow_redirects=True,
        transport=transport,
    )
    for interceptor in interceptors or []:
        interceptor.install(client)
    return client
