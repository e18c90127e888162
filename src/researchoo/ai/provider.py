"""AI capability interface and Gemini implementation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Union

from google import genai
from google.genai import types

from researchoo import config

logger = logging.getLogger(__name__)


@dataclass
class InlineContent:
    """File bytes submitted directly with the request."""

    data: bytes
    mime_type: str


@dataclass
class RemoteContent:
    """A file previously uploaded to the service, referenced by URI."""

    uri: str
    name: str
    mime_type: str


@dataclass
class RemoteFile:
    name: str
    uri: str
    state: str  # "PROCESSING" | "ACTIVE" | "FAILED"
    mime_type: str | None = None


ContentPart = Union[InlineContent, RemoteContent, str]


class StructuredProvider(Protocol):
    """Protocol for the generative service used by the analysis pipeline."""

    def generate(
        self,
        parts: list[ContentPart],
        system: str,
        schema: dict,
        temperature: float,
        model: str | None = None,
    ) -> str:
        """Return the raw response text, expected to be JSON matching ``schema``."""
        ...

    def upload(self, path: Path, mime_type: str) -> RemoteFile:
        """Upload a large file for later reference."""
        ...

    def get_file(self, name: str) -> RemoteFile:
        """Fetch the current processing state of an uploaded file."""
        ...


def _state_name(state: object) -> str:
    value = getattr(state, "value", state)
    return str(value or "STATE_UNSPECIFIED").upper()


def _to_remote_file(f: types.File) -> RemoteFile:
    return RemoteFile(
        name=f.name or "",
        uri=f.uri or "",
        state=_state_name(f.state),
        mime_type=f.mime_type,
    )


def _to_part(part: ContentPart) -> types.Part:
    if isinstance(part, InlineContent):
        return types.Part.from_bytes(data=part.data, mime_type=part.mime_type)
    if isinstance(part, RemoteContent):
        return types.Part.from_uri(file_uri=part.uri, mime_type=part.mime_type)
    return types.Part.from_text(text=part)


class GeminiProvider:
    """Gemini implementation of structured generation and file upload."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: genai.Client | None = None,
    ) -> None:
        key = api_key or config.GEMINI_API_KEY
        if client is None and not key:
            raise RuntimeError("Required environment variable GEMINI_API_KEY is not set")
        self._client = client or genai.Client(api_key=key)
        self._model = model or config.GEMINI_MODEL

    def generate(
        self,
        parts: list[ContentPart],
        system: str,
        schema: dict,
        temperature: float,
        model: str | None = None,
    ) -> str:
        """Generate JSON constrained by ``schema``.

        Args:
            parts: Content parts (inline bytes, uploaded file references, text).
            system: System instruction for this invocation.
            schema: JSON Schema the response must follow.
            temperature: Sampling temperature.
            model: Optional model override.

        Returns:
            The raw response text.
        """
        model_name = model or self._model
        logger.debug("Generate via %s (%d part(s))", model_name, len(parts))
        t0 = time.perf_counter()
        response = self._client.models.generate_content(
            model=model_name,
            contents=[_to_part(p) for p in parts],
            config=types.GenerateContentConfig(
                system_instruction=system,
                response_mime_type="application/json",
                response_json_schema=schema,
                temperature=temperature,
            ),
        )
        text = response.text or ""
        logger.debug("Generate complete: %d chars, %.0fms", len(text), (time.perf_counter() - t0) * 1000)
        return text

    def upload(self, path: Path, mime_type: str) -> RemoteFile:
        logger.info("Uploading %s (%s) to the file service", path.name, mime_type)
        uploaded = self._client.files.upload(
            file=str(path),
            config=types.UploadFileConfig(mime_type=mime_type, display_name=path.name),
        )
        return _to_remote_file(uploaded)

    def get_file(self, name: str) -> RemoteFile:
        return _to_remote_file(self._client.files.get(name=name))
