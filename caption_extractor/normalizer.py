"""
Subtitle normalization.

Converts per-platform subtitle lines into the canonical record shape
``{sid, from, to, content, location}`` (the Bilibili shape), plus helpers
for inspecting and summarizing converted lists.

Inputs may be plain mappings, TranscriptItem or CanonicalSubtitle instances.
Conversion never raises: unsupported platforms and malformed input are
logged and produce an empty list.
"""

import logging
import math
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from caption_extractor.schemas import (
    DEFAULT_POSITION,
    CanonicalSubtitle,
    Platform,
    TranscriptItem,
    WireSubtitle,
)

logger = logging.getLogger(__name__)


class SubtitleFormat(str, Enum):
    youtube = "youtube"
    bilibili = "bilibili"
    unknown = "unknown"


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_record(item: Any) -> Mapping[str, Any]:
    if isinstance(item, TranscriptItem):
        return {
            "text": item.text,
            "duration": item.duration,
            "offset": item.start,
            "lang": item.language_code,
        }
    if isinstance(item, CanonicalSubtitle):
        return item.to_record()
    if isinstance(item, Mapping):
        return item
    raise TypeError(f"Unsupported subtitle item: {type(item).__name__}")


def _platform_name(platform: Platform | str) -> str:
    if isinstance(platform, Platform):
        return platform.value
    return str(platform).lower()


# ============================================================================
# Conversion
# ============================================================================


def _from_youtube(record: Mapping[str, Any], index: int) -> CanonicalSubtitle:
    offset = record.get("offset")
    duration = record.get("duration")
    start = max(0.0, offset) if is_number(offset) else 0.0
    length = max(0.0, duration) if is_number(duration) else 0.0
    return CanonicalSubtitle(
        sequence_id=index + 1,
        start=start,
        end=start + length,
        text=record.get("text") or "",
        position=DEFAULT_POSITION,
    )


def _validate_bilibili(record: Mapping[str, Any], index: int) -> CanonicalSubtitle:
    start = record.get("from")
    start = start if is_number(start) else 0
    end = record.get("to")
    end = end if is_number(end) else start
    return CanonicalSubtitle(
        sequence_id=record.get("sid") or index + 1,
        start=start,
        end=max(end, start),
        text=record.get("content") or "",
        position=record.get("location") or DEFAULT_POSITION,
    )


_CONVERTERS = {
    SubtitleFormat.youtube: _from_youtube,
    SubtitleFormat.bilibili: _validate_bilibili,
}


def _record_format(record: Mapping[str, Any]) -> SubtitleFormat:
    if {"text", "duration", "offset"} <= record.keys():
        return SubtitleFormat.youtube
    if {"content", "from", "to"} <= record.keys():
        return SubtitleFormat.bilibili
    return SubtitleFormat.unknown


def convert(items: Iterable[Any] | None, platform: Platform | str) -> list[CanonicalSubtitle]:
    """
    Normalize subtitle lines from a platform into canonical subtitles.

    YouTube lines ``{text, duration, offset}`` are renumbered from 1 with
    ``to = from + duration``. Bilibili lines are already canonical and are
    only repaired: missing ids take their 1-based position, non-numeric
    ``from`` becomes 0 and non-numeric ``to`` falls back to ``from``.

    Each line is converted by its own shape; only lines matching neither
    shape use the platform's converter. Canonical output therefore converts
    to the same list whichever platform is given.

    Args:
        items: Subtitle lines (mappings, TranscriptItem or CanonicalSubtitle)
        platform: Source platform of the lines

    Returns:
        Canonical subtitles in input order; empty for empty input, an
        unsupported platform or malformed items
    """
    items = list(items or [])
    if not items:
        logger.debug("Subtitle list is empty, nothing to convert")
        return []

    name = _platform_name(platform)
    if name not in (Platform.youtube.value, Platform.bilibili.value):
        logger.warning(f"Unsupported subtitle platform: {platform}, returning empty list")
        return []
    fallback = _CONVERTERS[SubtitleFormat(name)]

    try:
        converted = []
        for index, item in enumerate(items):
            record = _as_record(item)
            converter = _CONVERTERS.get(_record_format(record), fallback)
            converted.append(converter(record, index))
    except (TypeError, ValueError, AttributeError) as e:
        logger.error(f"Subtitle conversion failed for platform {name}: {e}")
        return []

    logger.debug(f"Converted {len(converted)} {name} subtitles to canonical format")
    return converted


def detect_format(items: Sequence[Any] | None) -> SubtitleFormat:
    """Guess the format of a subtitle list from the keys of its first item."""
    if not items:
        return SubtitleFormat.unknown
    try:
        return _record_format(_as_record(items[0]))
    except TypeError:
        return SubtitleFormat.unknown


def validate_format(items: Sequence[Any] | None, platform: Platform | str) -> bool:
    """
    Check the first item of a list against a platform's field types.

    An empty list is valid for every platform; an unknown platform never is.
    """
    if not items:
        return True
    try:
        first = _as_record(items[0])
    except TypeError:
        return False

    name = _platform_name(platform)
    if name == Platform.youtube.value:
        return (
            isinstance(first.get("text"), str)
            and is_number(first.get("duration"))
            and is_number(first.get("offset"))
        )
    if name == Platform.bilibili.value:
        return (
            is_number(first.get("sid"))
            and is_number(first.get("from"))
            and is_number(first.get("to"))
            and isinstance(first.get("content"), str)
        )
    return False


# ============================================================================
# Wire bridge
# ============================================================================


def to_wire(subtitles: Iterable[Any], lang: str = "unknown") -> list[WireSubtitle]:
    """
    Map subtitle lines to the per-line shape the backend expects.

    Accepts canonical subtitles, transcript items or either record shape;
    ``lang`` is used where a line carries no language of its own.
    """
    wire = []
    for item in subtitles:
        record = _as_record(item)
        start = record.get("offset") if is_number(record.get("offset")) else record.get("from")
        start = start if is_number(start) else 0
        duration = record.get("duration")
        if not is_number(duration):
            end = record.get("to")
            duration = end - start if is_number(end) else 0
        wire.append(
            WireSubtitle(
                text=record.get("text") or record.get("content") or "",
                duration=max(0.0, duration),
                offset=max(0.0, start),
                lang=record.get("lang") or lang,
            )
        )
    return wire


def from_wire(records: Iterable[Mapping[str, Any] | WireSubtitle]) -> list[CanonicalSubtitle]:
    """Normalize backend-shaped lines back into canonical subtitles."""
    items = [r.model_dump() if isinstance(r, WireSubtitle) else r for r in records]
    return convert(items, Platform.youtube)


# ============================================================================
# Statistics and summaries
# ============================================================================


def subtitle_stats(subtitles: Sequence[CanonicalSubtitle]) -> dict[str, Any]:
    """
    Get statistics for a canonical subtitle list.

    Returns:
        Dictionary with total_count, total_duration, average_duration and,
        for non-empty lists, the first and last subtitle
    """
    if not subtitles:
        return {"total_count": 0, "total_duration": 0, "average_duration": 0}

    total = sum(s.end - s.start for s in subtitles)
    return {
        "total_count": len(subtitles),
        "total_duration": total,
        "average_duration": total / len(subtitles),
        "first": subtitles[0],
        "last": subtitles[-1],
    }


def format_time(seconds: float) -> str:
    """
    Format seconds as ``MM:SS``, or ``HH:MM:SS`` from one hour up.

    Examples:
        >>> format_time(75)
        '01:15'
        >>> format_time(3661)
        '01:01:01'
        >>> format_time(-5)
        '00:00'
    """
    if seconds is None or math.isnan(seconds) or seconds < 0:
        return "00:00"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def conversion_summary(
    original: Sequence[Any], converted: Sequence[CanonicalSubtitle], platform: Platform | str
) -> dict[str, Any]:
    """Summarize a conversion for callers; durations rounded to two decimals."""
    stats = subtitle_stats(converted)
    first = stats.get("first")
    last = stats.get("last")
    return {
        "platform": _platform_name(platform),
        "original_count": len(original),
        "converted_count": stats["total_count"],
        "success": stats["total_count"] > 0,
        "total_duration": round(stats["total_duration"], 2),
        "average_duration": round(stats["average_duration"], 2),
        "first_content": first.text[:50] if first else "",
        "last_content": last.text[:50] if last else "",
        "format": SubtitleFormat.bilibili.value,
    }


def log_conversion_summary(
    original: Sequence[Any], converted: Sequence[CanonicalSubtitle], platform: Platform | str
) -> None:
    stats = subtitle_stats(converted)
    name = _platform_name(platform)
    logger.info(
        f"{name} subtitle conversion: {len(original)} in, {stats['total_count']} out, "
        f"total {format_time(stats['total_duration'])}, "
        f"average {stats['average_duration']:.2f}s"
    )
    for label in ("first", "last"):
        sub = stats.get(label)
        if sub:
            logger.info(
                f"  {label}: [{format_time(sub.start)}-{format_time(sub.end)}] {sub.text[:30]}"
            )
