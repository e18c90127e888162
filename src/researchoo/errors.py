"""Error taxonomy for ingestion, generation and the analysis pipeline."""

from __future__ import annotations

from google.genai import errors as genai_errors

QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "Resource has been exhausted", "exceeded your current quota")

QUOTA_MESSAGE = (
    "The AI service quota was exhausted while analyzing this file. "
    "Try a shorter clip, upload the audio track instead of the video, "
    "or paste a plain-text transcript."
)


class ResearchError(RuntimeError):
    """Base class for failures surfaced to the user."""


class IngestionError(ResearchError):
    """The source file could not be turned into submittable content."""


class FileTooLargeError(IngestionError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"File is {size / (1024 * 1024):.1f} MB; the limit is {limit / (1024 * 1024):.0f} MB"
        )
        self.size = size
        self.limit = limit


class ProcessingFailedError(IngestionError):
    """The remote service reported that it could not process the upload."""


class ProcessingTimeoutError(IngestionError):
    """The uploaded file did not become ready within the polling budget."""


class ParseError(ResearchError):
    """A model response was not valid JSON or lacked required fields.

    Carries the response length and a head/tail snippet so a truncated
    response (output size limit) can be told apart from malformed content.
    """

    def __init__(self, message: str, stage: str = "", raw: str | None = None) -> None:
        self.stage = stage
        self.length = len(raw) if raw is not None else 0
        self.head = raw[:200] if raw else ""
        self.tail = raw[-200:] if raw else ""
        detail = message
        if raw is not None:
            detail = (
                f"{message} (stage={stage or '?'}, length={self.length}, "
                f"head={self.head[:80]!r}, tail={self.tail[-80:]!r})"
            )
        super().__init__(detail)


class QuotaExhaustedError(ResearchError):
    def __init__(self, cause: BaseException | None = None) -> None:
        super().__init__(QUOTA_MESSAGE)
        self.cause = cause


class StageFailedError(ResearchError):
    """An on-demand generation stage produced no usable result."""


class NoDocumentError(ResearchError):
    """An edit was requested while no analysis is open."""

    def __init__(self) -> None:
        super().__init__("No analysis is open; analyze or select a file first")


def status_of(exc: BaseException) -> int | None:
    """Return the HTTP-like status carried by an exception, if any."""
    if isinstance(exc, genai_errors.APIError):
        return exc.code
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_retryable(exc: BaseException) -> bool:
    """Client errors other than 429 are permanent; everything else is transient."""
    status = status_of(exc)
    if status is None:
        return True
    return not (400 <= status < 500 and status != 429)


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, QuotaExhaustedError):
        return True
    if isinstance(exc, ParseError):
        return False
    if status_of(exc) == 429:
        return True
    message = str(exc)
    return any(marker in message for marker in QUOTA_MARKERS)


def describe_failure(exc: BaseException) -> str:
    """User-facing message for a failed analysis."""
    if is_quota_error(exc):
        return QUOTA_MESSAGE
    if isinstance(exc, genai_errors.APIError) and exc.message:
        return exc.message
    return str(exc) or exc.__class__.__name__
