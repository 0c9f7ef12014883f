"""
Video metadata fetchers.

YouTube metadata is scraped from the watch page document (Open Graph tags,
the channel link and the document title). Bilibili metadata comes from the
public web-interface REST API, which also resolves the ``aid``/``cid`` pair
identifying the active part of a multi-part video.
"""

import logging

import httpx
from bs4 import BeautifulSoup

from caption_extractor import normalizer
from caption_extractor.client import INTERNAL_REQUEST
from caption_extractor.config import Settings, settings as default_settings
from caption_extractor.exceptions import (
    InvalidVideoIdentifier,
    MetadataFetchFailed,
    MissingPageIdentifiers,
    TranscriptNotAvailable,
    UnparseableTranscript,
)
from caption_extractor.schemas import (
    BilibiliVideoInfo,
    Platform,
    SubtitleBlock,
    VideoIdentity,
    VideoMetadata,
)
from caption_extractor.utils import current_part, resolve_identity

logger = logging.getLogger(__name__)

YOUTUBE_THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"
BILIBILI_THUMBNAIL_URL = "https://i0.hdslb.com/bfs/archive/{bvid}.jpg"
YOUTUBE_CHANNEL_SELECTOR = "ytd-channel-name a, .ytd-video-owner-renderer a"
YOUTUBE_TITLE_SUFFIX = " - YouTube"


# ============================================================================
# YouTube
# ============================================================================


def _meta_content(soup: BeautifulSoup, prop: str) -> str:
    tag = soup.find("meta", attrs={"property": prop})
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def youtube_metadata_from_page(video_id: str, url: str, page_html: str | None) -> VideoMetadata:
    """
    Build YouTube metadata from a watch page document.

    Never fails: missing elements fall back to the document title without its
    `` - YouTube`` suffix, then to ``YouTube Video <id>``. Duration is not
    available from the page and is reported as 0.
    """
    soup = BeautifulSoup(page_html or "", "html.parser")

    title = _meta_content(soup, "og:title")
    description = _meta_content(soup, "og:description")

    uploader = ""
    channel = soup.select_one(YOUTUBE_CHANNEL_SELECTOR)
    if channel is not None:
        uploader = channel.get_text(strip=True)

    if not title and soup.title and soup.title.string:
        title = soup.title.string.replace(YOUTUBE_TITLE_SUFFIX, "").strip()
    if not title:
        title = f"YouTube Video {video_id}"

    return VideoMetadata(
        platform=Platform.youtube,
        video_id=video_id,
        title=title,
        url=url,
        description=description,
        duration=0,
        uploader_name=uploader,
        uploader_id="",
        thumbnail_url=YOUTUBE_THUMBNAIL_URL.format(video_id=video_id),
    )


class YoutubeMetadataFetcher:
    """Fetches the watch page and scrapes it for metadata."""

    def __init__(self, client: httpx.AsyncClient, config: Settings | None = None):
        self.client = client
        self.config = config or default_settings

    async def fetch(self, video_id: str, url: str, page_html: str | None = None) -> VideoMetadata:
        """
        Args:
            video_id: Canonical video id
            url: Page URL reported in the metadata
            page_html: Already loaded page document; fetched when None

        Raises:
            MetadataFetchFailed: The watch page could not be retrieved
        """
        if page_html is None:
            try:
                response = await self.client.get(
                    f"{self.config.youtube_base_url}/watch",
                    params={"v": video_id},
                    extensions=INTERNAL_REQUEST,
                )
            except httpx.HTTPError as e:
                raise MetadataFetchFailed(video_id, str(e)) from e
            if not response.is_success:
                raise MetadataFetchFailed(video_id, f"HTTP {response.status_code}")
            page_html = response.text

        return youtube_metadata_from_page(video_id, url, page_html)


# ============================================================================
# Bilibili
# ============================================================================


def bilibili_metadata(info: BilibiliVideoInfo, url: str) -> VideoMetadata:
    return VideoMetadata(
        platform=Platform.bilibili,
        video_id=info.bvid,
        title=info.title,
        url=url,
        description=info.description,
        duration=info.duration,
        uploader_name=info.uploader_name,
        uploader_id=info.uploader_id,
        thumbnail_url=BILIBILI_THUMBNAIL_URL.format(bvid=info.bvid),
    )


class BilibiliClient:
    """
    Client for the Bilibili web-interface API.

    Requests carry the site referer and a Chinese-first Accept-Language, as
    the player pages do.
    """

    HEADERS = {
        "Referer": "https://www.bilibili.com/",
        "Origin": "https://www.bilibili.com",
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    }

    def __init__(self, client: httpx.AsyncClient, config: Settings | None = None):
        self.client = client
        self.config = config or default_settings

    async def _get_json(self, url: str, video_id: str, params: dict | None = None) -> dict:
        try:
            response = await self.client.get(
                url, params=params, headers=self.HEADERS, extensions=INTERNAL_REQUEST
            )
        except httpx.HTTPError as e:
            raise MetadataFetchFailed(video_id, str(e)) from e

        if not response.is_success:
            raise MetadataFetchFailed(video_id, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise MetadataFetchFailed(video_id, "Invalid JSON response") from e

        if not isinstance(data, dict):
            raise MetadataFetchFailed(video_id, "Unexpected response shape")
        return data

    async def get_video_info(self, url: str, identity: VideoIdentity | None = None) -> BilibiliVideoInfo:
        """
        Resolve video info and the ``cid`` of the active part.

        The part number comes from the ``p`` query parameter (default 1). When
        no page matches it the first page is used; videos without a page list
        use the top-level ``cid``.

        Raises:
            InvalidVideoIdentifier: The URL is not a Bilibili video URL
            MetadataFetchFailed: The API failed or returned a non-zero code
            MissingPageIdentifiers: ``aid`` or ``cid`` could not be resolved
        """
        identity = identity or resolve_identity(url)
        if identity.platform is not Platform.bilibili:
            raise InvalidVideoIdentifier(url)

        video_id = identity.canonical_id
        params = {"bvid": identity.bvid} if identity.bvid else {"aid": identity.aid}
        data = await self._get_json(
            f"{self.config.bilibili_api_base}/x/web-interface/view", video_id, params
        )
        if data.get("code") != 0 or not data.get("data"):
            raise MetadataFetchFailed(video_id, data.get("message"))

        video = data["data"]
        part = current_part(url)
        pages = video.get("pages") or []
        if pages:
            target = next((page for page in pages if page.get("page") == part), pages[0])
            cid = target.get("cid")
        else:
            cid = video.get("cid")
        aid = video.get("aid") or identity.aid

        if not aid or not cid:
            raise MissingPageIdentifiers(video_id)

        owner = video.get("owner") or {}
        logger.info(f"Resolved Bilibili video {video_id}: aid={aid} cid={cid} part={part}")
        return BilibiliVideoInfo(
            bvid=video.get("bvid") or identity.bvid or "",
            aid=int(aid),
            cid=int(cid),
            title=video.get("title") or "",
            description=video.get("desc") or "",
            duration=video.get("duration"),
            uploader_name=owner.get("name") or "",
            uploader_id=str(owner.get("mid") or ""),
            current_page=part,
            total_pages=len(pages) or 1,
        )

    async def get_metadata(self, url: str, identity: VideoIdentity | None = None) -> VideoMetadata:
        info = await self.get_video_info(url, identity)
        return bilibili_metadata(info, url)

    async def get_subtitles(self, aid: int, cid: int) -> SubtitleBlock:
        """
        Fetch the first subtitle track of a video part.

        Returns:
            SubtitleBlock with canonical items; an empty block when the part
            has no subtitle tracks

        Raises:
            MetadataFetchFailed: The subtitle list request failed
            TranscriptNotAvailable: The subtitle body could not be downloaded
            UnparseableTranscript: The subtitle body has no ``body`` list
        """
        video_id = f"av{aid}"
        data = await self._get_json(
            f"{self.config.bilibili_api_base}/x/player/v2",
            video_id,
            {"aid": aid, "cid": cid},
        )
        if data.get("code") != 0:
            raise MetadataFetchFailed(video_id, data.get("message"))

        tracks = ((data.get("data") or {}).get("subtitle") or {}).get("subtitles") or []
        if not tracks:
            logger.info(f"No subtitles for Bilibili video {video_id} (cid={cid})")
            return SubtitleBlock(title="", language="", language_code="")

        track = tracks[0]
        subtitle_url = track.get("subtitle_url") or ""
        if subtitle_url.startswith("//"):
            subtitle_url = f"https:{subtitle_url}"
        logger.info(f"Selected Bilibili subtitle track '{track.get('lan')}' for {video_id}")

        try:
            response = await self.client.get(
                subtitle_url, headers=self.HEADERS, extensions=INTERNAL_REQUEST
            )
        except httpx.HTTPError as e:
            raise TranscriptNotAvailable(video_id) from e
        if not response.is_success:
            raise TranscriptNotAvailable(video_id, response.status_code)

        try:
            body = response.json().get("body")
        except (ValueError, AttributeError) as e:
            raise UnparseableTranscript(video_id, "Subtitle data is not JSON") from e
        if not isinstance(body, list):
            raise UnparseableTranscript(video_id, "Subtitle data is malformed or empty")

        items = normalizer.convert(body, Platform.bilibili)
        label = track.get("lan_doc") or track.get("lan")
        return SubtitleBlock(
            title=label or "Subtitles",
            language=label or "unknown",
            language_code=track.get("lan") or "unknown",
            items=tuple(items),
        )
