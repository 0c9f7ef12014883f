"""
YouTube transcript fetching and parsing.

This module implements the transcript state machine:

    1. Resolve the canonical video id
    2. Consult the response cache (a hit goes straight to parsing)
    3. Fetch the watch page and extract the embedded caption track list
    4. Select a track by language preference
    5. Attach the captured caption token, if one is available
    6. Fetch the transcript body
    7. Parse it as json3 events, falling back to legacy <text> markup
    8. Return TranscriptItems in source order, times in seconds

Every failure is raised as a TranscriptError subclass; nothing is retried.

Caption token handling:
    The caption endpoint rejects or empties requests that lack the player's
    proof-of-origin token. When the restricted context has a token for the
    video it is attached together with ``fmt=json3`` and ``c=WEB``. Without
    one the request still goes out (degraded mode) and whatever comes back is
    surfaced as-is.
"""

import html
import json
import logging
import re
from typing import Any, Protocol
from urllib.parse import urljoin

import httpx

from caption_extractor.cache import TranscriptCache
from caption_extractor.client import INTERNAL_REQUEST
from caption_extractor.config import Settings, settings as default_settings
from caption_extractor.exceptions import (
    InvalidVideoIdentifier,
    LanguageNotAvailable,
    TooManyRequests,
    TranscriptNotAvailable,
    TranscriptsDisabled,
    UnexpectedHtmlResponse,
    UnparseableTranscript,
    VideoUnavailable,
)
from caption_extractor.normalizer import is_number
from caption_extractor.schemas import CaptionTrackDescriptor, TranscriptItem
from caption_extractor.utils import extract_video_id

logger = logging.getLogger(__name__)


# ISO 639-1 language code to name mapping
LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "zh-CN": "Chinese (Simplified)",
    "zh-Hans": "Chinese (Simplified)",
    "zh-TW": "Chinese (Traditional)",
    "zh-Hant": "Chinese (Traditional)",
    "ar": "Arabic",
    "hi": "Hindi",
    "tr": "Turkish",
    "pl": "Polish",
    "nl": "Dutch",
    "sv": "Swedish",
    "id": "Indonesian",
    "th": "Thai",
    "vi": "Vietnamese",
    "uk": "Ukrainian",
}

# Page markers
CAPTIONS_MARKER = '"captions":'
VIDEO_DETAILS_MARKER = ',"videoDetails'
CAPTCHA_MARKER = 'class="g-recaptcha"'
PLAYABILITY_MARKER = '"playabilityStatus":'

# Legacy caption markup: <text start="0.5" dur="1.25">Hi &amp; bye</text>
RE_XML_TRANSCRIPT = re.compile(
    r'<text\s+start="([^"]*)"\s+dur="([^"]*)"[^>]*>([^<]*)</text>'
)
RE_HTML_DOCUMENT = re.compile(r"<!DOCTYPE html>|<html", re.IGNORECASE)

# Format selection parameters sent along with a caption token
TOKEN_FORMAT_PARAMS = {"fmt": "json3", "c": "WEB"}


class TokenLookup(Protocol):
    async def lookup(self, video_id: str) -> str | None: ...


def language_name(code: str) -> str:
    """Return a display name for a language code, falling back to the code."""
    return LANGUAGE_NAMES.get(code) or LANGUAGE_NAMES.get(code.split("-")[0], code)


# ============================================================================
# Page parsing and track selection
# ============================================================================


def _track_name(name: Any, fallback: str) -> str:
    if isinstance(name, dict):
        if name.get("simpleText"):
            return name["simpleText"]
        runs = name.get("runs") or []
        if runs and runs[0].get("text"):
            return runs[0]["text"]
    return fallback


def parse_caption_tracks(
    page_html: str, video_id: str, base_url: str = "https://www.youtube.com"
) -> list[CaptionTrackDescriptor]:
    """
    Extract caption track descriptors from a watch page.

    Args:
        page_html: Watch page document
        video_id: Video id, used in error messages
        base_url: Base URL for resolving relative track URLs

    Returns:
        Non-empty list of CaptionTrackDescriptor in page order

    Raises:
        TooManyRequests: The page is a captcha challenge
        VideoUnavailable: The page carries no playability status
        TranscriptsDisabled: No caption data or no caption tracks
    """
    parts = page_html.split(CAPTIONS_MARKER, 1)
    if len(parts) <= 1:
        if CAPTCHA_MARKER in page_html:
            raise TooManyRequests(video_id)
        if PLAYABILITY_MARKER not in page_html:
            raise VideoUnavailable(video_id)
        raise TranscriptsDisabled(video_id)

    fragment = parts[1].split(VIDEO_DETAILS_MARKER, 1)[0].replace("\n", "")
    try:
        captions = json.loads(fragment).get("playerCaptionsTracklistRenderer")
    except (json.JSONDecodeError, AttributeError):
        captions = None

    if not isinstance(captions, dict):
        raise TranscriptsDisabled(video_id)

    raw_tracks = captions.get("captionTracks")
    if not raw_tracks:
        raise TranscriptsDisabled(video_id)

    tracks = []
    for raw in raw_tracks:
        code = raw.get("languageCode")
        source = raw.get("baseUrl")
        if not code or not source:
            continue
        tracks.append(
            CaptionTrackDescriptor(
                language_code=code,
                display_name=_track_name(raw.get("name"), language_name(code)),
                source_url=urljoin(base_url, source),
                kind=raw.get("kind", ""),
            )
        )

    if not tracks:
        raise TranscriptsDisabled(video_id)
    return tracks


def select_track(
    tracks: list[CaptionTrackDescriptor], lang: str | None, video_id: str
) -> CaptionTrackDescriptor:
    """
    Pick a caption track by language preference.

    Exact code match first, then the first track sharing the primary subtag
    (``zh`` matches ``zh-CN``). Without a preference the first track wins.

    Raises:
        LanguageNotAvailable: No track matches the requested language
    """
    if not tracks:
        raise TranscriptsDisabled(video_id)
    if not lang:
        return tracks[0]

    for track in tracks:
        if track.language_code == lang:
            return track

    primary = lang.split("-")[0].lower()
    for track in tracks:
        if track.language_code.split("-")[0].lower() == primary:
            return track

    raise LanguageNotAvailable(lang, [t.language_code for t in tracks], video_id)


def build_transcript_url(track: CaptionTrackDescriptor, token: str | None) -> str:
    """Return the track URL, with the caption token and format parameters when available."""
    if not token:
        return track.source_url
    url = httpx.URL(track.source_url).copy_merge_params({"pot": token, **TOKEN_FORMAT_PARAMS})
    return str(url)


# ============================================================================
# Transcript body parsing
# ============================================================================


def _event_seconds(event: dict[str, Any], key: str, video_id: str | None) -> float:
    value = event.get(key)
    if value is None:
        return 0.0
    if not is_number(value):
        raise UnparseableTranscript(video_id, f"Malformed json3 event field {key}: {value!r}")
    return max(0.0, value / 1000)


def parse_json3_events(
    body: str, language_code: str, video_id: str | None = None
) -> list[TranscriptItem]:
    """
    Parse a json3 caption document.

    Each event carries ``tStartMs`` / ``dDurationMs`` and zero or more
    ``segs`` whose ``utf8`` fragments are concatenated. Events without
    nonblank text are skipped; a missing time counts as 0.

    Returns:
        Items in event order; empty when the body is not a json3 document

    Raises:
        UnparseableTranscript: A text event carries a non-numeric time
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return []
    if not isinstance(data, dict) or not isinstance(data.get("events"), list):
        return []

    items = []
    for event in data["events"]:
        if not isinstance(event, dict) or not isinstance(event.get("segs"), list):
            continue
        text = "".join(
            seg["utf8"] for seg in event["segs"] if isinstance(seg, dict) and isinstance(seg.get("utf8"), str)
        ).strip()
        if not text:
            continue
        items.append(
            TranscriptItem(
                text=text,
                start=_event_seconds(event, "tStartMs", video_id),
                duration=_event_seconds(event, "dDurationMs", video_id),
                language_code=language_code,
            )
        )
    return items


def _to_seconds(value: str) -> float:
    try:
        return max(0.0, float(value))
    except ValueError:
        return 0.0


def parse_legacy_xml(body: str, language_code: str) -> list[TranscriptItem] | None:
    """
    Parse legacy ``<text start=".." dur="..">`` caption markup.

    ``start`` and ``dur`` are already in seconds. Text is entity-decoded and
    entries with blank text are dropped.

    Returns:
        Items in document order, or None if the body has no <text> entries
    """
    matches = RE_XML_TRANSCRIPT.findall(body)
    if not matches:
        return None

    items = []
    for start, duration, raw_text in matches:
        text = html.unescape(raw_text).strip()
        if not text:
            continue
        items.append(
            TranscriptItem(
                text=text,
                start=_to_seconds(start),
                duration=_to_seconds(duration),
                language_code=language_code,
            )
        )
    return items


def parse_transcript_body(
    body: str, language_code: str, video_id: str | None = None
) -> list[TranscriptItem]:
    """
    Parse a transcript response in either supported wire format.

    json3 events are tried first; if they yield no text the legacy markup
    parser runs. Legacy markup whose entries are all blank yields an empty
    list, which is a valid outcome.

    Raises:
        UnexpectedHtmlResponse: Neither format matched and the body is an HTML page
        UnparseableTranscript: Neither format matched, or the body is blank
    """
    if not body or not body.strip():
        raise UnparseableTranscript(video_id, "Empty transcript response")

    items = parse_json3_events(body, language_code, video_id)
    if items:
        return items

    logger.debug("No json3 events with text, trying legacy markup")
    legacy = parse_legacy_xml(body, language_code)
    if legacy is not None:
        return legacy

    if RE_HTML_DOCUMENT.search(body):
        raise UnexpectedHtmlResponse(video_id)
    raise UnparseableTranscript(video_id)


# ============================================================================
# Fetcher
# ============================================================================


class YoutubeTranscriptFetcher:
    """
    Retrieves YouTube transcripts over HTTP.

    The fetcher never writes to the response cache; it is populated only by
    the capture bus observing the player's own caption traffic. Its own
    requests are marked internal so the bus skips them even when both share
    one client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: TranscriptCache | None = None,
        token_lookup: TokenLookup | None = None,
        config: Settings | None = None,
    ):
        """
        Args:
            client: HTTP client used for page and caption requests
            cache: Response cache consulted before any network call
            token_lookup: Source of captured caption tokens
            config: Settings instance. Uses global defaults if None.
        """
        self.client = client
        self.cache = cache
        self.token_lookup = token_lookup
        self.config = config or default_settings

    @staticmethod
    def retrieve_video_id(video: str) -> str:
        """Return the 11-character id for a video URL or bare id."""
        video_id = extract_video_id(video.strip())
        if video_id is None:
            raise InvalidVideoIdentifier(video)
        return video_id

    def _headers(self, lang: str | None) -> dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        if lang:
            headers["Accept-Language"] = lang
        return headers

    async def fetch_video_page(self, video_id: str, lang: str | None = None) -> str:
        """Fetch the watch page document for a video."""
        response = await self.client.get(
            f"{self.config.youtube_base_url}/watch",
            params={"v": video_id},
            headers=self._headers(lang),
            extensions=INTERNAL_REQUEST,
        )
        return response.text

    async def list_caption_tracks(
        self, video: str, lang: str | None = None
    ) -> list[CaptionTrackDescriptor]:
        """
        List the caption tracks advertised by a video's watch page.

        Raises:
            TooManyRequests, VideoUnavailable, TranscriptsDisabled
        """
        video_id = self.retrieve_video_id(video)
        page_html = await self.fetch_video_page(video_id, lang)
        return parse_caption_tracks(page_html, video_id, self.config.youtube_base_url)

    async def fetch_transcript(self, video: str, lang: str | None = None) -> list[TranscriptItem]:
        """
        Fetch and parse the transcript of a YouTube video.

        Args:
            video: Video URL or 11-character id
            lang: Preferred language code (e.g. "en", "zh-CN")

        Returns:
            TranscriptItems in chronological order; may be empty

        Raises:
            InvalidVideoIdentifier: No video id in the input
            TooManyRequests, VideoUnavailable, TranscriptsDisabled:
                Page-level failures
            LanguageNotAvailable: No track for the requested language
            TranscriptNotAvailable: The caption request failed
            UnexpectedHtmlResponse, UnparseableTranscript: Unknown body format
        """
        video_id = self.retrieve_video_id(video)

        if self.cache is not None:
            cached = self.cache.get(video_id)
            if cached is not None:
                logger.info(f"Using cached transcript for video {video_id}")
                return parse_transcript_body(cached, lang or "unknown", video_id)

        tracks = await self.list_caption_tracks(video_id, lang)
        track = select_track(tracks, lang, video_id)
        logger.info(
            f"Selected caption track '{track.language_code}' for video {video_id} "
            f"({len(tracks)} available)"
        )

        token = await self.token_lookup.lookup(video_id) if self.token_lookup else None
        if token:
            logger.info(f"Using caption token for video {video_id}")
        else:
            logger.warning(f"No caption token found for video {video_id}, using original URL")

        response = await self.client.get(
            build_transcript_url(track, token),
            headers=self._headers(lang),
            extensions=INTERNAL_REQUEST,
        )
        if not response.is_success:
            logger.warning(f"Caption request for video {video_id} failed with HTTP {response.status_code}")
            raise TranscriptNotAvailable(video_id, response.status_code)

        items = parse_transcript_body(response.text, track.language_code, video_id)
        logger.info(f"Parsed {len(items)} transcript items for video {video_id}")
        return items
