"""
Extraction orchestrator.

Combines metadata and subtitles for a page URL into an ExtractionBundle.
Metadata failures abort the extraction; transcript failures are downgraded
to an empty subtitle block so a video without captions can still be
submitted.
"""

import asyncio
import logging

import httpx

from caption_extractor import normalizer
from caption_extractor.cache import TranscriptCache
from caption_extractor.config import Settings, settings as default_settings
from caption_extractor.exceptions import TranscriptError
from caption_extractor.metadata import BilibiliClient, YoutubeMetadataFetcher
from caption_extractor.schemas import (
    ExtractionBundle,
    Platform,
    SubtitleBlock,
    TranscriptItem,
    VideoIdentity,
)
from caption_extractor.transcript import TokenLookup, YoutubeTranscriptFetcher, language_name
from caption_extractor.utils import resolve_identity

logger = logging.getLogger(__name__)

NO_SUBTITLES = SubtitleBlock(title="No subtitles", language="none", language_code="none")
BILIBILI_SUBTITLES_SKIPPED = SubtitleBlock(
    title="Bilibili subtitles not fetched", language="n/a", language_code="none"
)


class VideoDataExtractor:
    """Routes a page URL to the right platform fetchers and assembles the result."""

    def __init__(
        self,
        transcript_fetcher: YoutubeTranscriptFetcher,
        youtube_metadata: YoutubeMetadataFetcher,
        bilibili_client: BilibiliClient,
    ):
        self.transcript_fetcher = transcript_fetcher
        self.youtube_metadata = youtube_metadata
        self.bilibili_client = bilibili_client

    async def extract(
        self, page_url: str, lang: str | None = None, page_html: str | None = None
    ) -> ExtractionBundle:
        """
        Extract metadata and subtitles for a video page.

        Args:
            page_url: URL of the video page
            lang: Preferred subtitle language
            page_html: Already loaded page document, if any

        Returns:
            ExtractionBundle for the page

        Raises:
            NotSupportedPlatform, InvalidVideoIdentifier: URL not recognized
            MetadataError: Metadata could not be fetched
        """
        identity = resolve_identity(page_url)
        logger.info(f"Extracting {identity.platform.value} video {identity.canonical_id}")

        if identity.platform is Platform.youtube:
            return await self._extract_youtube(identity, page_url, lang, page_html)
        return await self._extract_bilibili(identity, page_url)

    async def _extract_youtube(
        self, identity: VideoIdentity, url: str, lang: str | None, page_html: str | None
    ) -> ExtractionBundle:
        video_id = identity.canonical_id
        metadata, items = await asyncio.gather(
            self.youtube_metadata.fetch(video_id, url, page_html),
            self._fetch_transcript(video_id, lang),
            return_exceptions=True,
        )
        if isinstance(metadata, BaseException):
            raise metadata
        if isinstance(items, BaseException):
            raise items

        if items is None:
            return ExtractionBundle(metadata=metadata, subtitles=NO_SUBTITLES)

        code = items[0].language_code if items else "unknown"
        subtitles = SubtitleBlock(
            title=f"{metadata.title} - Subtitles",
            language=language_name(code),
            language_code=code,
            items=tuple(normalizer.convert(items, Platform.youtube)),
        )
        logger.info(f"Extracted {len(subtitles.items)} subtitles for video {video_id}")
        return ExtractionBundle(metadata=metadata, subtitles=subtitles)

    async def _fetch_transcript(self, video_id: str, lang: str | None) -> list[TranscriptItem] | None:
        try:
            return await self.transcript_fetcher.fetch_transcript(video_id, lang)
        except (TranscriptError, httpx.HTTPError) as e:
            logger.warning(f"Subtitle retrieval failed for video {video_id}: {e}")
            return None

    async def _extract_bilibili(self, identity: VideoIdentity, url: str) -> ExtractionBundle:
        # Subtitles are available through BilibiliClient.get_subtitles but are
        # not part of the extraction result.
        metadata = await self.bilibili_client.get_metadata(url, identity)
        return ExtractionBundle(metadata=metadata, subtitles=BILIBILI_SUBTITLES_SKIPPED)


def validate_bundle(bundle: ExtractionBundle) -> bool:
    """Check that a bundle carries the metadata a submission needs."""
    metadata = bundle.metadata
    if not metadata.video_id or not metadata.title or not metadata.platform:
        logger.error(f"Incomplete video metadata: {metadata}")
        return False

    if not bundle.subtitles.language_code:
        logger.warning("Subtitle data is incomplete, submitting without subtitles")
    return True


def create_extractor(
    client: httpx.AsyncClient,
    cache: TranscriptCache | None = None,
    token_lookup: TokenLookup | None = None,
    config: Settings | None = None,
) -> VideoDataExtractor:
    """Wire the platform fetchers around a shared HTTP client."""
    config = config or default_settings
    return VideoDataExtractor(
        transcript_fetcher=YoutubeTranscriptFetcher(client, cache, token_lookup, config),
        youtube_metadata=YoutubeMetadataFetcher(client, config),
        bilibili_client=BilibiliClient(client, config),
    )
