"""
Submission of extraction results to the backend service.

The backend base URL is read from the key/value store (``backendUrl``) on
every call, so a settings change takes effect immediately. Submission is a
single attempt and never raises; the outcome is reported as a
SubmissionResult.
"""

import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel

from caption_extractor import normalizer
from caption_extractor.config import Settings, settings as default_settings
from caption_extractor.schemas import ExtractionBundle, SubmissionPayload
from caption_extractor.storage import KeyValueStore

logger = logging.getLogger(__name__)

BACKEND_URL_KEY = "backendUrl"
AUTH_TOKEN_KEY = "authToken"
API_PREFIX = "/api/v1"
SUBMIT_ENDPOINT = "/submit"

_API_PREFIX_SUFFIX = re.compile(r"/api/v1/?$")


class SubmissionResult(BaseModel):
    success: bool
    message: str
    task_id: str | None = None
    data: Any = None


def normalize_backend_url(base_url: str) -> str:
    """
    Return the API root for a backend base URL.

    Examples:
        >>> normalize_backend_url("http://localhost:8096")
        'http://localhost:8096/api/v1'
        >>> normalize_backend_url("https://example.com/api/v1")
        'https://example.com/api/v1'
    """
    return _API_PREFIX_SUFFIX.sub("", base_url.strip().rstrip("/")) + API_PREFIX


async def get_backend_url(store: KeyValueStore | None, config: Settings | None = None) -> str:
    """Resolve the backend API root from the store, falling back to settings."""
    config = config or default_settings
    base_url = await store.get(BACKEND_URL_KEY) if store is not None else None
    if not isinstance(base_url, str) or not base_url.strip():
        base_url = config.backend_url
    return normalize_backend_url(base_url)


def build_payload(bundle: ExtractionBundle, timestamp: str | None = None) -> SubmissionPayload:
    """Map an extraction bundle to the backend's submit body."""
    metadata = bundle.metadata
    subtitles = normalizer.to_wire(bundle.subtitles.items, bundle.subtitles.language_code)
    payload = SubmissionPayload(
        url=metadata.url,
        title=metadata.title,
        description=metadata.description or "",
        subtitles=subtitles,
    )
    if timestamp:
        payload.timestamp = timestamp
    return payload


class SubmissionClient:
    """Posts extraction bundles to ``<backend>/api/v1/submit``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: KeyValueStore | None = None,
        config: Settings | None = None,
    ):
        self.client = client
        self.store = store
        self.config = config or default_settings

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = await self.store.get(AUTH_TOKEN_KEY) if self.store is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def submit(self, bundle: ExtractionBundle, timestamp: str | None = None) -> SubmissionResult:
        """
        Submit an extraction bundle.

        Args:
            bundle: Extraction result to submit
            timestamp: Client-side capture time (default: now)

        Returns:
            SubmissionResult; ``task_id`` is the backend's ``data.id`` as a string
        """
        payload = build_payload(bundle, timestamp)
        try:
            endpoint = await get_backend_url(self.store, self.config) + SUBMIT_ENDPOINT
            logger.info(
                f"Submitting video {bundle.metadata.video_id} to {endpoint} "
                f"({len(payload.subtitles)} subtitles)"
            )
            response = await self.client.post(
                endpoint,
                content=payload.model_dump_json(),
                headers=await self._headers(),
                timeout=self.config.submit_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Submission failed for video {bundle.metadata.video_id}: {e}")
            return SubmissionResult(success=False, message=f"Submission failed: {e}")

        if not isinstance(body, dict) or body.get("success") is not True:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"Backend rejected video {bundle.metadata.video_id}: {message}")
            return SubmissionResult(success=False, message=message or "Submission failed")

        data = body.get("data")
        task_id = data.get("id") if isinstance(data, dict) else None
        logger.info(f"Submitted video {bundle.metadata.video_id}, task {task_id}")
        return SubmissionResult(
            success=True,
            message=body.get("message") or "Submitted successfully",
            task_id=str(task_id) if task_id is not None else None,
            data=data,
        )
