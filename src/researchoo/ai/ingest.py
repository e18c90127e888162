"""Turn a source file into content the AI service can analyze.

Small files are base64-inlined into the request. Larger files go through
the file service: uploaded once, then polled until the service reports the
file ready.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Union

from researchoo import config
from researchoo.ai.provider import InlineContent, RemoteContent, StructuredProvider
from researchoo.ai.retry import retry
from researchoo.errors import (
    FileTooLargeError,
    ProcessingFailedError,
    ProcessingTimeoutError,
)

logger = logging.getLogger(__name__)

ContentHandle = Union[InlineContent, RemoteContent]

ProgressCallback = Callable[[str, Union[int, None]], None]

MIME_TYPES = {
    # video
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".m4v": "video/x-m4v",
    # audio
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".aac": "audio/aac",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
    # text
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
}

DEFAULT_MIME_TYPES = {
    "video": "video/mp4",
    "audio": "audio/mpeg",
    "text": "text/plain",
}


def resolve_mime_type(path: Path, file_type: str, declared: str | None = None) -> str:
    """Declared MIME type, else extension lookup, else the type-group default."""
    if declared and declared != "application/octet-stream":
        return declared
    by_ext = MIME_TYPES.get(path.suffix.lower())
    if by_ext:
        return by_ext
    return DEFAULT_MIME_TYPES.get(file_type, "text/plain")


class ContentIngestor:
    """Produces a content handle for one source file."""

    def __init__(
        self,
        provider: StructuredProvider,
        inline_limit: int | None = None,
        max_size: int | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        retry_base_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._inline_limit = inline_limit if inline_limit is not None else config.INLINE_LIMIT_BYTES
        self._max_size = max_size if max_size is not None else config.MAX_UPLOAD_BYTES
        self._poll_interval = poll_interval if poll_interval is not None else config.UPLOAD_POLL_INTERVAL
        self._max_polls = max_polls if max_polls is not None else config.UPLOAD_POLL_MAX_ATTEMPTS
        self._retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else config.RETRY_BASE_DELAY
        )
        self._sleep = sleep

    def ingest(
        self,
        path: Path,
        file_type: str,
        declared_mime: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ContentHandle:
        """Read or upload ``path`` and return a handle ready for submission.

        Raises:
            FileTooLargeError: The file exceeds the hard size cap.
            ProcessingFailedError: The file service rejected the upload.
            ProcessingTimeoutError: The upload never became ready.
        """
        size = path.stat().st_size
        if size > self._max_size:
            raise FileTooLargeError(size, self._max_size)

        mime_type = resolve_mime_type(path, file_type, declared_mime)
        if on_progress:
            on_progress("uploading", 0)

        if size <= self._inline_limit:
            logger.info("Inlining %s (%d bytes, %s)", path.name, size, mime_type)
            handle: ContentHandle = InlineContent(data=path.read_bytes(), mime_type=mime_type)
        else:
            handle = self._upload_and_wait(path, mime_type, on_progress)

        if on_progress:
            on_progress("processing", 30)
        return handle

    def _upload_and_wait(
        self, path: Path, mime_type: str, on_progress: ProgressCallback | None,
    ) -> RemoteContent:
        remote = retry(
            lambda: self._provider.upload(path, mime_type),
            max_attempts=3,
            base_delay=self._retry_base_delay,
            label=f"Upload {path.name}",
            sleep=self._sleep,
        )
        if on_progress:
            on_progress("uploading", 20)

        t0 = time.perf_counter()
        for attempt in range(1, self._max_polls + 1):
            if remote.state == "ACTIVE":
                logger.info(
                    "Remote file %s ready after %d poll(s) (%.1fs)",
                    remote.name, attempt - 1, time.perf_counter() - t0,
                )
                return RemoteContent(
                    uri=remote.uri, name=remote.name, mime_type=remote.mime_type or mime_type,
                )
            if remote.state == "FAILED":
                raise ProcessingFailedError(f"File processing failed for {path.name}")
            logger.debug("Remote file %s state=%s (poll %d)", remote.name, remote.state, attempt)
            self._sleep(self._poll_interval)
            remote = self._provider.get_file(remote.name)

        if remote.state == "ACTIVE":
            return RemoteContent(uri=remote.uri, name=remote.name, mime_type=remote.mime_type or mime_type)
        if remote.state == "FAILED":
            raise ProcessingFailedError(f"File processing failed for {path.name}")
        raise ProcessingTimeoutError(
            f"File {path.name} was not ready after {self._max_polls * self._poll_interval:.0f}s"
        )
