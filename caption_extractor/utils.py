"""
Video identifier resolution.

Pure functions mapping a page URL to a platform and canonical video id.
"""

import re
from urllib.parse import parse_qs, urlparse

from caption_extractor.exceptions import InvalidVideoIdentifier, NotSupportedPlatform
from caption_extractor.schemas import Platform, VideoIdentity

# Pre-compiled regex patterns for performance
YOUTUBE_ID_PATTERN_COMPILED = re.compile(r"^([a-zA-Z0-9_-]{11})$")
YOUTUBE_PATH_PATTERN_COMPILED = re.compile(
    r"^/(?:embed|v|shorts)/([a-zA-Z0-9_-]{11})(?:[/?#]|$)"
)
YOUTU_BE_PATH_PATTERN_COMPILED = re.compile(r"^/([a-zA-Z0-9_-]{11})(?:[/?#]|$)")
BILIBILI_BVID_PATTERN_COMPILED = re.compile(r"/video/(BV[a-zA-Z0-9]+)")
BILIBILI_AID_PATTERN_COMPILED = re.compile(r"/video/av(\d+)")


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_youtube_host(host: str) -> bool:
    return host == "youtube.com" or host.endswith(".youtube.com") or host == "youtu.be"


def is_bilibili_host(host: str) -> bool:
    return host == "bilibili.com" or host.endswith(".bilibili.com")


def extract_video_id(url: str) -> str | None:
    """
    Extract video ID from a YouTube URL or return the input if it's a raw ID.

    This function handles the recognized YouTube URL shapes:
    - https://www.youtube.com/watch?v=VIDEO_ID
    - https://youtu.be/VIDEO_ID
    - https://www.youtube.com/embed/VIDEO_ID
    - https://www.youtube.com/v/VIDEO_ID
    - https://www.youtube.com/shorts/VIDEO_ID
    - Raw 11-character video ID

    Args:
        url: YouTube URL or video ID

    Returns:
        11-character YouTube video ID, or None if not found

    Examples:
        >>> extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
        >>> extract_video_id("https://youtu.be/dQw4w9WgXcQ?t=10")
        'dQw4w9WgXcQ'
        >>> extract_video_id("dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
    """
    match = YOUTUBE_ID_PATTERN_COMPILED.match(url)
    if match:
        return match.group(1)

    host = _host(url)
    if not is_youtube_host(host):
        return None

    parsed = urlparse(url)
    if host == "youtu.be":
        match = YOUTU_BE_PATH_PATTERN_COMPILED.match(parsed.path)
        return match.group(1) if match else None

    candidates = parse_qs(parsed.query).get("v", [])
    if candidates and YOUTUBE_ID_PATTERN_COMPILED.match(candidates[0]):
        return candidates[0]

    match = YOUTUBE_PATH_PATTERN_COMPILED.match(parsed.path)
    if match:
        return match.group(1)

    return None


def extract_bilibili_id(url: str) -> str | None:
    """
    Extract a Bilibili video id in canonical form.

    Returns the ``BV...`` id when present, otherwise ``av<digits>``.

    Examples:
        >>> extract_bilibili_id("https://www.bilibili.com/video/BV1xx411c7mD?p=2")
        'BV1xx411c7mD'
        >>> extract_bilibili_id("https://www.bilibili.com/video/av170001")
        'av170001'
    """
    match = BILIBILI_BVID_PATTERN_COMPILED.search(url)
    if match:
        return match.group(1)

    match = BILIBILI_AID_PATTERN_COMPILED.search(url)
    if match:
        return f"av{match.group(1)}"

    return None


def is_valid_youtube_url(url: str) -> bool:
    """
    Validate that a URL is a YouTube video URL with strict scheme and host validation.

    Examples:
        >>> is_valid_youtube_url("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        True
        >>> is_valid_youtube_url("https://evil.com?ref=youtube.com/watch?v=VIDEO_ID")
        False
        >>> is_valid_youtube_url("ftp://youtube.com/watch?v=dQw4w9WgXcQ")
        False
    """
    if YOUTUBE_ID_PATTERN_COMPILED.match(url):
        return True

    if not url.startswith(("http://", "https://")):
        return False

    return extract_video_id(url) is not None


def resolve_identity(url: str) -> VideoIdentity:
    """
    Resolve the platform and canonical id for a page URL.

    Args:
        url: Page URL or bare 11-character YouTube id

    Returns:
        VideoIdentity for the page

    Raises:
        NotSupportedPlatform: If the URL belongs to neither platform
        InvalidVideoIdentifier: If the platform is known but no id is found
    """
    url = url.strip()
    if YOUTUBE_ID_PATTERN_COMPILED.match(url):
        return VideoIdentity(Platform.youtube, url)

    host = _host(url)
    if is_youtube_host(host):
        video_id = extract_video_id(url)
        if video_id is None:
            raise InvalidVideoIdentifier(url)
        return VideoIdentity(Platform.youtube, video_id)

    if is_bilibili_host(host):
        video_id = extract_bilibili_id(urlparse(url).path)
        if video_id is None:
            raise InvalidVideoIdentifier(url)
        return VideoIdentity(Platform.bilibili, video_id)

    raise NotSupportedPlatform(url)


def query_param(url: str | None, name: str) -> str | None:
    """Return the first value of a query parameter, or None."""
    if not url:
        return None
    try:
        values = parse_qs(urlparse(url).query).get(name)
    except ValueError:
        return None
    return values[0] if values else None


def current_part(url: str) -> int:
    """Return the active Bilibili part number from the ``p`` query parameter."""
    value = query_param(url, "p")
    try:
        part = int(value) if value else 1
    except ValueError:
        return 1
    return part if part > 0 else 1
