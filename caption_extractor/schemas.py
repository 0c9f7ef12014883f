"""
Data model for extraction results.

Internal entities are frozen dataclasses, created once per extraction call and
never mutated. The outbound submission shape is a pydantic model so it can be
serialized straight into the backend request body.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field

# Position code used by the canonical subtitle shape ("bottom center")
DEFAULT_POSITION = 2


class Platform(str, Enum):
    """Supported video platforms."""

    youtube = "youtube"
    bilibili = "bilibili"


@dataclass(frozen=True)
class VideoIdentity:
    """
    Platform and canonical id derived from a page URL.

    For Bilibili the canonical id is either the ``BV...`` form or ``av<digits>``.
    """

    platform: Platform
    canonical_id: str

    @property
    def bvid(self) -> str | None:
        if self.platform is Platform.bilibili and self.canonical_id.startswith("BV"):
            return self.canonical_id
        return None

    @property
    def aid(self) -> str | None:
        if self.platform is Platform.bilibili and self.canonical_id.startswith("av"):
            return self.canonical_id[2:]
        return None


@dataclass(frozen=True)
class CaptionToken:
    video_id: str
    token: str
    captured_at_ms: int


@dataclass(frozen=True)
class CachedTranscriptPayload:
    video_id: str
    raw_body: str
    captured_at_ms: int
    url: str | None = None


@dataclass(frozen=True)
class CaptionTrackDescriptor:
    """A caption track advertised by the video page."""

    language_code: str
    display_name: str
    source_url: str
    kind: str = ""


@dataclass(frozen=True)
class TranscriptItem:
    """
    One timed transcript line.

    Attributes:
        text: Line text
        start: Start offset in seconds
        duration: Duration in seconds
        language_code: Language of the track the line came from
    """

    text: str
    start: float
    duration: float
    language_code: str

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class CanonicalSubtitle:
    """
    Platform-independent subtitle record.

    Mirrors the Bilibili record ``{sid, from, to, content, location}``.
    """

    sequence_id: int
    start: float
    end: float
    text: str
    position: int = DEFAULT_POSITION

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_record(self) -> dict[str, Any]:
        return {
            "sid": self.sequence_id,
            "from": self.start,
            "to": self.end,
            "content": self.text,
            "location": self.position,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "CanonicalSubtitle":
        return cls(
            sequence_id=record["sid"],
            start=record["from"],
            end=record["to"],
            text=record["content"],
            position=record.get("location", DEFAULT_POSITION),
        )


@dataclass(frozen=True)
class VideoMetadata:
    platform: Platform
    video_id: str
    title: str
    url: str
    description: str | None = None
    duration: int | None = None
    uploader_name: str | None = None
    uploader_id: str | None = None
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class BilibiliVideoInfo:
    """Resolved identifiers and info for one Bilibili video part."""

    bvid: str
    aid: int
    cid: int
    title: str
    description: str = ""
    duration: int | None = None
    uploader_name: str = ""
    uploader_id: str = ""
    current_page: int = 1
    total_pages: int = 1


@dataclass(frozen=True)
class SubtitleBlock:
    title: str
    language: str
    language_code: str
    items: tuple[CanonicalSubtitle, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ExtractionBundle:
    """Terminal artifact of one extraction, handed to the submission sink."""

    metadata: VideoMetadata
    subtitles: SubtitleBlock


# ============================================================================
# Outbound wire models
# ============================================================================


def utc_isoformat() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class WireSubtitle(BaseModel):
    """Pre-normalization per-line shape expected by the backend."""

    text: str
    duration: float = Field(..., ge=0, description="Duration in seconds")
    offset: float = Field(..., ge=0, description="Start offset in seconds")
    lang: str = "unknown"


class SubmissionPayload(BaseModel):
    """Body of the backend submit call."""

    url: str
    title: str
    description: str = ""
    operationType: str = "submit_from_extension"
    subtitles: list[WireSubtitle] = Field(default_factory=list)
    playlistId: str = ""
    timestamp: str = Field(default_factory=utc_isoformat)
    savedAt: str = Field(default_factory=utc_isoformat)
