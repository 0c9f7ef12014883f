"""
Error taxonomy for video extraction.

Every failure carries enough context (video id, requested language, available
alternatives, upstream message) to render a user-facing message without a
second round trip. Nothing in this package retries; errors propagate to the
caller, and only the orchestrator downgrades transcript failures.
"""

from typing import Any


class ExtractionError(Exception):
    """Base class for all extraction failures."""

    error_code = "extraction_failed"

    def __init__(self, message: str, video_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.video_id = video_id

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message, "video_id": self.video_id}


# ========== Identifier Errors ==========


class InvalidVideoIdentifier(ExtractionError):
    """The URL belongs to a known platform but carries no recognizable id."""

    error_code = "invalid_video_identifier"

    def __init__(self, url: str, message: str | None = None):
        super().__init__(message or f"Impossible to retrieve a video ID from: {url}")
        self.url = url


class NotSupportedPlatform(InvalidVideoIdentifier):
    """The URL matches neither supported platform."""

    error_code = "not_supported_platform"

    def __init__(self, url: str):
        super().__init__(url, f"Unsupported video platform: {url}")


# ========== Transcript Errors ==========


class TranscriptError(ExtractionError):
    """Base class for transcript acquisition failures."""

    error_code = "transcript_error"


class TooManyRequests(TranscriptError):
    error_code = "too_many_requests"

    def __init__(self, video_id: str | None = None):
        super().__init__(
            "YouTube is receiving too many requests from this IP and now requires "
            "solving a captcha to continue",
            video_id,
        )


class VideoUnavailable(TranscriptError):
    error_code = "video_unavailable"

    def __init__(self, video_id: str):
        super().__init__(f"The video is no longer available ({video_id})", video_id)


class TranscriptsDisabled(TranscriptError):
    error_code = "transcripts_disabled"

    def __init__(self, video_id: str):
        super().__init__(f"Transcript is disabled on this video ({video_id})", video_id)


class LanguageNotAvailable(TranscriptError):
    error_code = "language_not_available"

    def __init__(self, language: str, available: list[str], video_id: str):
        super().__init__(
            f"No transcripts are available in {language} for this video ({video_id}). "
            f"Available languages: {', '.join(available)}",
            video_id,
        )
        self.language = language
        self.available = list(available)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(language=self.language, available=self.available)
        return data


class TranscriptNotAvailable(TranscriptError):
    error_code = "transcript_not_available"

    def __init__(self, video_id: str, status_code: int | None = None):
        super().__init__(f"No transcripts are available for this video ({video_id})", video_id)
        self.status_code = status_code


class UnexpectedHtmlResponse(TranscriptError):
    error_code = "unexpected_html_response"

    def __init__(self, video_id: str | None = None):
        super().__init__(
            "Received HTML page instead of transcript data. "
            "This video may not have transcripts available.",
            video_id,
        )


class UnparseableTranscript(TranscriptError):
    error_code = "unparseable_transcript"

    def __init__(self, video_id: str | None = None, reason: str | None = None):
        super().__init__(
            reason
            or "Unable to parse transcript response. The response may be in an unexpected format.",
            video_id,
        )


# ========== Metadata Errors ==========


class MetadataError(ExtractionError):
    """Base class for metadata failures. These abort the extraction."""

    error_code = "metadata_error"


class MetadataFetchFailed(MetadataError):
    error_code = "metadata_fetch_failed"

    def __init__(self, video_id: str, upstream_message: str | None = None):
        super().__init__(
            f"Failed to fetch video info for {video_id}: {upstream_message or 'unknown error'}",
            video_id,
        )
        self.upstream_message = upstream_message


class MissingPageIdentifiers(MetadataError):
    error_code = "missing_page_identifiers"

    def __init__(self, video_id: str):
        super().__init__(f"Unable to resolve aid or cid for video {video_id}", video_id)
