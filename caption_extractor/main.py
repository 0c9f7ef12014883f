"""
FastAPI application for caption extraction.

This module exposes the extraction pipeline over HTTP: extracting metadata
and subtitles for a video page, submitting the result to the backend,
reporting observed caption requests to the capture bus, and managing the
backend URL setting.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, fields
from typing import Any

import httpx
import structlog
from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, clear_contextvars

from caption_extractor import __version__, normalizer
from caption_extractor.cache import TranscriptCache
from caption_extractor.capture import CaptureBus, RemoteTokenLookup, TokenRegistry
from caption_extractor.channel import MessageChannel
from caption_extractor.client import build_client
from caption_extractor.config import Settings, settings
from caption_extractor.exceptions import (
    ExtractionError,
    InvalidVideoIdentifier,
    MetadataError,
    TooManyRequests,
    UnexpectedHtmlResponse,
    UnparseableTranscript,
)
from caption_extractor.orchestrator import VideoDataExtractor, create_extractor, validate_bundle
from caption_extractor.schemas import ExtractionBundle, Platform
from caption_extractor.storage import KeyValueStore, SqlStore, create_store
from caption_extractor.submission import (
    BACKEND_URL_KEY,
    SubmissionClient,
    SubmissionResult,
    normalize_backend_url,
)
from caption_extractor.transcript import YoutubeTranscriptFetcher

# Configure logging with request ID context
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logger = structlog.get_logger()

# Request ID context variable
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Track app startup time for uptime calculation
_app_start_time = time.time()


def sanitize_for_log(input_str: str) -> str:
    """
    Sanitize user input for logging to prevent log injection attacks.

    Replaces newlines, carriage returns, and tabs with their escaped
    representations.
    """
    return input_str.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")


# ============================================================================
# Service Wiring
# ============================================================================


@dataclass
class Services:
    """Pipeline objects shared by the request handlers for the app's lifetime."""

    channel: MessageChannel
    registry: TokenRegistry
    cache: TranscriptCache
    capture_bus: CaptureBus
    http_client: httpx.AsyncClient
    store: KeyValueStore
    extractor: VideoDataExtractor
    submission_client: SubmissionClient

    async def start(self) -> None:
        if isinstance(self.store, SqlStore):
            try:
                await self.store.engine.init_db()
            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise

    async def close(self) -> None:
        await self.http_client.aclose()
        if isinstance(self.store, SqlStore):
            await self.store.engine.close()

    def bind(self, app: FastAPI) -> None:
        """Expose every service on ``app.state`` for the dependency getters."""
        for field in fields(self):
            setattr(app.state, field.name, getattr(self, field.name))


def build_services(
    config: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None
) -> Services:
    """
    Wire the capture bus, extraction pipeline and storage.

    The capture bus is installed on the shared HTTP client, so it observes
    every caption request sent through it except the ones the pipeline marks
    as its own.

    Args:
        config: Settings instance (default: global settings)
        transport: Optional transport, used by tests to mock upstreams
    """
    config = config or settings
    channel = MessageChannel()
    registry = TokenRegistry(max_age=config.caption_token_max_age)
    registry.attach(channel)
    cache = TranscriptCache(ttl=config.transcript_cache_ttl, maxsize=config.transcript_cache_maxsize)
    bus = CaptureBus(channel, cache, endpoint_marker=config.caption_endpoint_marker)
    client = build_client(config, transport=transport, interceptors=[bus])
    store = create_store(config)

    return Services(
        channel=channel,
        registry=registry,
        cache=cache,
        capture_bus=bus,
        http_client=client,
        store=store,
        extractor=create_extractor(client, cache, RemoteTokenLookup(channel), config),
        submission_client=SubmissionClient(client, store, config),
    )


# ============================================================================
# Lifespan Context Manager
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the capture bus, extraction pipeline and storage for the app's lifetime."""
    logger.info("=" * 60)
    logger.info("Caption Extractor Starting")
    logger.info("=" * 60)
    logger.info(f"  - Caption endpoint marker: {settings.caption_endpoint_marker}")
    logger.info(f"  - Transcript cache TTL: {settings.transcript_cache_ttl}s")
    logger.info(f"  - Caption token max age: {settings.caption_token_max_age}s")
    logger.info(f"  - Storage backend: {settings.storage_backend}")
    logger.info(f"  - Default backend URL: {settings.backend_url}")
    logger.info("=" * 60)

    services = build_services(settings)
    await services.start()
    services.bind(app)

    yield

    await services.close()
    logger.info("Caption Extractor stopped")


# Create FastAPI app
app = FastAPI(
    title="Caption Extractor",
    description="Extract video metadata and subtitles from YouTube and Bilibili pages",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ============================================================================
# Middleware Configuration
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID for tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request_id_var.set(request_id)

        clear_contextvars()
        bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def configure_middleware():
    """Configure middleware."""
    from fastapi.middleware.cors import CORSMiddleware

    # Requests come from browser extension pages
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)


configure_middleware()


# ============================================================================
# Dependencies
# ============================================================================


def get_extractor(request: Request) -> VideoDataExtractor:
    return request.app.state.extractor


def get_transcript_fetcher(request: Request) -> YoutubeTranscriptFetcher:
    return request.app.state.extractor.transcript_fetcher


def get_capture_bus(request: Request) -> CaptureBus:
    return request.app.state.capture_bus


def get_store(request: Request) -> KeyValueStore:
    return request.app.state.store


def get_submission_client(request: Request) -> SubmissionClient:
    return request.app.state.submission_client


# ============================================================================
# Pydantic Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    detail: str | None = Field(None, description="Additional error details")


class SubtitleRecordModel(BaseModel):
    """A canonical subtitle record."""

    sid: int = Field(..., description="1-based sequence id")
    start: float = Field(..., alias="from", description="Start time in seconds")
    end: float = Field(..., alias="to", description="End time in seconds")
    content: str = Field(..., description="Subtitle text")
    location: int = Field(2, description="Position code")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {"example": {"sid": 1, "from": 3.0, "to": 5.0, "content": "Hello", "location": 2}},
    }


class SubtitleBlockModel(BaseModel):
    title: str
    language: str
    language_code: str
    subtitle_count: int
    items: list[SubtitleRecordModel] = Field(default_factory=list)


class VideoMetadataResponse(BaseModel):
    """Video metadata response model."""

    platform: Platform = Field(..., description="Source platform")
    video_id: str = Field(..., description="Canonical video id")
    title: str = Field(..., description="Video title")
    url: str = Field(..., description="Page URL")
    description: str | None = Field(None, description="Video description")
    duration: int | None = Field(None, description="Video duration in seconds")
    uploader_name: str | None = Field(None, description="Uploader name")
    uploader_id: str | None = Field(None, description="Uploader id")
    thumbnail_url: str | None = Field(None, description="URL to video thumbnail")


class ExtractionResponse(BaseModel):
    metadata: VideoMetadataResponse
    subtitles: SubtitleBlockModel
    summary: dict[str, Any] = Field(default_factory=dict, description="Conversion summary")


class TranscriptItemModel(BaseModel):
    text: str
    start: float
    duration: float
    language_code: str


class TranscriptResponse(BaseModel):
    video_id: str
    language_code: str
    item_count: int
    items: list[TranscriptItemModel]


class CaptionTrackModel(BaseModel):
    code: str = Field(..., description="Language code")
    name: str = Field(..., description="Track display name")
    auto_generated: bool = Field(..., description="Whether the track is auto-generated")


class CaptionTracksResponse(BaseModel):
    video_id: str
    tracks: list[CaptionTrackModel]


class SubmitRequest(BaseModel):
    url: str = Field(..., max_length=500, description="Video page URL")
    lang: str | None = Field(None, max_length=20, description="Preferred subtitle language")
    timestamp: str | None = Field(None, description="Client-side capture time (ISO 8601)")


class InterceptRequest(BaseModel):
    """A caption request observed in a page context."""

    url: str = Field(..., max_length=4000, description="Caption request URL")
    page_url: str | None = Field(None, max_length=500, description="URL of the page that issued it")
    body: str | None = Field(None, description="Caption response body, if captured")


class InterceptResponse(BaseModel):
    token_captured: bool
    response_cached: bool
    video_id: str | None = None


class BackendUrlRequest(BaseModel):
    backend_url: str = Field(..., max_length=500, pattern=r"^https?://", description="Backend base URL")


class BackendUrlResponse(BaseModel):
    backend_url: str = Field(..., description="Configured backend base URL")
    api_root: str = Field(..., description="Resolved API root")
    is_default: bool = Field(..., description="Whether the default from settings is in effect")


class HealthResponse(BaseModel):
    """Response model for enhanced health check."""

    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: float = Field(..., description="Current Unix timestamp")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    cache: dict = Field(default_factory=dict, description="Transcript cache statistics")
    tokens: int = Field(0, description="Caption tokens held by the registry")
    storage: dict = Field(default_factory=dict, description="Storage status")


def bundle_to_response(bundle: ExtractionBundle) -> ExtractionResponse:
    metadata = bundle.metadata
    subtitles = bundle.subtitles
    return ExtractionResponse(
        metadata=VideoMetadataResponse(
            platform=metadata.platform,
            video_id=metadata.video_id,
            title=metadata.title,
            url=metadata.url,
            description=metadata.description,
            duration=metadata.duration,
            uploader_name=metadata.uploader_name,
            uploader_id=metadata.uploader_id,
            thumbnail_url=metadata.thumbnail_url,
        ),
        subtitles=SubtitleBlockModel(
            title=subtitles.title,
            language=subtitles.language,
            language_code=subtitles.language_code,
            subtitle_count=len(subtitles.items),
            items=[SubtitleRecordModel.model_validate(s.to_record()) for s in subtitles.items],
        ),
        summary=normalizer.conversion_summary(subtitles.items, subtitles.items, metadata.platform),
    )


# ============================================================================
# Exception Handlers
# ============================================================================


def status_for(exc: ExtractionError) -> int:
    """Map an extraction error to an HTTP status code."""
    if isinstance(exc, InvalidVideoIdentifier):
        return 400
    if isinstance(exc, TooManyRequests):
        return 503
    if isinstance(exc, (MetadataError, UnexpectedHtmlResponse, UnparseableTranscript)):
        return 502
    return 404


@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    status_code = status_for(exc)
    logger.warning(f"Extraction error ({exc.error_code}): {sanitize_for_log(exc.message)}")
    error_response = ErrorResponse(
        error=exc.error_code,
        message=exc.message,
        detail=f"video_id={exc.video_id}" if exc.video_id else None,
    )
    return Response(
        content=error_response.model_dump_json(),
        status_code=status_code,
        media_type="application/json",
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with field-level detail."""
    errors = exc.errors()
    logger.warning(f"Validation error: {errors}")

    error_details = []
    for error in errors:
        loc = " -> ".join(str(x) for x in error["loc"])
        error_details.append(f"{loc}: {error['msg']}")

    error_response = ErrorResponse(
        error="validation_error",
        message="Invalid request parameters",
        detail="; ".join(error_details),
    )
    return Response(
        content=error_response.model_dump_json(),
        status_code=400,
        media_type="application/json",
    )


# ============================================================================
# API Endpoints
# ============================================================================


@app.get(
    "/api/v1/extract",
    response_model=ExtractionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Unsupported or invalid URL"},
        502: {"model": ErrorResponse, "description": "Metadata could not be fetched"},
    },
    summary="Extract metadata and subtitles for a video page",
)
async def extract(
    url: str = Query(..., max_length=500, description="YouTube or Bilibili video page URL"),
    lang: str | None = Query(None, max_length=20, description="Preferred subtitle language"),
    extractor: VideoDataExtractor = Depends(get_extractor),
) -> ExtractionResponse:
    """
    Extract metadata and subtitles for a YouTube or Bilibili page.

    Transcript failures do not fail the request; the subtitle block is
    returned empty instead.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/v1/extract?url=https://www.youtube.com/watch?v=dQw4w9WgXcQ&lang=en"
    ```
    """
    bundle = await extractor.extract(url, lang)
    logger.info(
        f"Extracted {bundle.metadata.platform.value} video {bundle.metadata.video_id} "
        f"with {len(bundle.subtitles.items)} subtitles"
    )
    return bundle_to_response(bundle)


@app.get(
    "/api/v1/transcript",
    response_model=TranscriptResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL"},
        404: {"model": ErrorResponse, "description": "No transcript for the video or language"},
        503: {"model": ErrorResponse, "description": "Upstream requires a captcha"},
    },
    summary="Fetch the raw transcript of a YouTube video",
)
async def get_transcript(
    url: str = Query(..., max_length=500, description="YouTube URL or video ID"),
    lang: str | None = Query(None, max_length=20, description="Preferred language"),
    fetcher: YoutubeTranscriptFetcher = Depends(get_transcript_fetcher),
) -> TranscriptResponse:
    """Fetch a transcript without downgrading failures."""
    video_id = fetcher.retrieve_video_id(url)
    items = await fetcher.fetch_transcript(video_id, lang)
    return TranscriptResponse(
        video_id=video_id,
        language_code=items[0].language_code if items else (lang or "unknown"),
        item_count=len(items),
        items=[
            TranscriptItemModel(
                text=i.text, start=i.start, duration=i.duration, language_code=i.language_code
            )
            for i in items
        ],
    )


@app.get(
    "/api/v1/transcript/languages",
    response_model=CaptionTracksResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL"},
        404: {"model": ErrorResponse, "description": "Video not found or captions disabled"},
    },
    summary="List caption tracks for a YouTube video",
)
async def list_languages(
    url: str = Query(..., max_length=500, description="YouTube URL or video ID"),
    fetcher: YoutubeTranscriptFetcher = Depends(get_transcript_fetcher),
) -> CaptionTracksResponse:
    video_id = fetcher.retrieve_video_id(url)
    tracks = await fetcher.list_caption_tracks(video_id)
    return CaptionTracksResponse(
        video_id=video_id,
        tracks=[
            CaptionTrackModel(code=t.language_code, name=t.display_name, auto_generated=t.kind == "asr")
            for t in tracks
        ],
    )


@app.post(
    "/api/v1/submit",
    response_model=SubmissionResult,
    responses={
        400: {"model": ErrorResponse, "description": "Unsupported or invalid URL"},
        422: {"model": SubmissionResult, "description": "Extracted data is incomplete"},
        502: {"model": SubmissionResult, "description": "Backend rejected the submission"},
    },
    summary="Extract a video and submit it to the backend",
)
async def submit(
    body: SubmitRequest,
    response: Response,
    extractor: VideoDataExtractor = Depends(get_extractor),
    submission_client: SubmissionClient = Depends(get_submission_client),
) -> SubmissionResult:
    """
    Extract a video page and submit the result to the configured backend.

    **Example:**
    ```bash
    curl -X POST "http://localhost:8000/api/v1/submit" \\
      -H "Content-Type: application/json" \\
      -d '{"url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ"}'
    ```
    """
    bundle = await extractor.extract(body.url, body.lang)
    if not validate_bundle(bundle):
        response.status_code = 422
        return SubmissionResult(success=False, message="Extracted video data is incomplete")

    result = await submission_client.submit(bundle, body.timestamp)
    if not result.success:
        response.status_code = 502
    return result


@app.post(
    "/api/v1/intercept",
    response_model=InterceptResponse,
    summary="Report a caption request observed in a page",
)
async def intercept(
    body: InterceptRequest,
    bus: CaptureBus = Depends(get_capture_bus),
) -> InterceptResponse:
    """
    Feed a caption request seen by a page observer into the capture bus.

    Requests that do not target the caption endpoint are ignored.
    """
    captured = bus.observe_url(body.url, body.page_url)
    cached = bus.observe_response(body.url, body.body) if body.body else False
    return InterceptResponse(
        token_captured=captured is not None,
        response_cached=cached,
        video_id=captured.video_id if captured else None,
    )


async def _backend_url_response(store: KeyValueStore) -> BackendUrlResponse:
    stored = await store.get(BACKEND_URL_KEY)
    is_default = not (isinstance(stored, str) and stored.strip())
    backend_url = settings.backend_url if is_default else stored
    return BackendUrlResponse(
        backend_url=backend_url,
        api_root=normalize_backend_url(backend_url),
        is_default=is_default,
    )


@app.get("/api/v1/settings/backend-url", response_model=BackendUrlResponse, summary="Get the backend URL")
async def get_backend_url_setting(store: KeyValueStore = Depends(get_store)) -> BackendUrlResponse:
    return await _backend_url_response(store)


@app.put("/api/v1/settings/backend-url", response_model=BackendUrlResponse, summary="Set the backend URL")
async def set_backend_url_setting(
    body: BackendUrlRequest, store: KeyValueStore = Depends(get_store)
) -> BackendUrlResponse:
    await store.set(BACKEND_URL_KEY, body.backend_url.strip())
    logger.info(f"Backend URL set to {sanitize_for_log(body.backend_url)}")
    return await _backend_url_response(store)


@app.delete(
    "/api/v1/settings/backend-url", response_model=BackendUrlResponse, summary="Reset the backend URL"
)
async def reset_backend_url_setting(store: KeyValueStore = Depends(get_store)) -> BackendUrlResponse:
    await store.remove(BACKEND_URL_KEY)
    logger.info("Backend URL reset to default")
    return await _backend_url_response(store)


@app.get("/", summary="Simple health check")
async def root() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "healthy", "service": "caption-extractor", "version": __version__}


@app.get("/health", response_model=HealthResponse, summary="Enhanced health check")
async def health(request: Request) -> HealthResponse:
    """
    Enhanced health check with service metrics.

    Returns service status, uptime, transcript cache statistics, the number of
    captured caption tokens and storage status.
    """
    state = request.app.state
    cache: TranscriptCache = state.cache
    storage_status = await state.store.health_check()
    overall_status = "healthy" if storage_status.get("status") == "healthy" else "degraded"

    return HealthResponse(
        status=overall_status,
        service="caption-extractor",
        version=__version__,
        timestamp=time.time(),
        uptime_seconds=time.time() - _app_start_time,
        cache=cache.get_stats(),
        tokens=len(state.registry),
        storage=storage_status,
    )
