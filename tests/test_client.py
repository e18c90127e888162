"""Tests for structured generation and the Gemini provider adapter."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from google.genai import types

from helpers import FakeSleep, StatusError
from researchoo.ai.client import StructuredClient, parse_json_response
from researchoo.ai.provider import GeminiProvider, InlineContent, RemoteContent
from researchoo.errors import ParseError

SCHEMA = {"type": "object", "properties": {"ok": {"type": "boolean"}}}


# ── parse_json_response ──


class TestParseJsonResponse:
    def test_bare_object(self) -> None:
        assert parse_json_response('{"ok": true}') == {"ok": True}

    def test_fenced_object(self) -> None:
        raw = 'Here you go:\n```json\n{"ok": false}\n```'
        assert parse_json_response(raw) == {"ok": False}

    def test_empty_response(self) -> None:
        with pytest.raises(ParseError, match="Empty response"):
            parse_json_response("  ", stage="main")

    def test_truncated_response_reports_length(self) -> None:
        raw = '{"transcript": "Question: Why?'
        with pytest.raises(ParseError) as exc_info:
            parse_json_response(raw, stage="main")
        assert exc_info.value.length == len(raw)
        assert exc_info.value.stage == "main"

    def test_array_is_rejected(self) -> None:
        with pytest.raises(ParseError, match="Expected a JSON object"):
            parse_json_response("[1, 2]")


# ── StructuredClient ──


class TestStructuredClient:
    def test_passes_request_through(self) -> None:
        provider = MagicMock()
        provider.generate.return_value = '{"ok": true}'
        client = StructuredClient(provider, max_attempts=3, base_delay=1.0, sleep=FakeSleep())

        result = client.generate(["hello"], "SYSTEM", SCHEMA, temperature=0.3, model="m")

        assert result == {"ok": True}
        provider.generate.assert_called_once_with(
            ["hello"], system="SYSTEM", schema=SCHEMA, temperature=0.3, model="m",
        )

    def test_transient_failure_is_retried(self) -> None:
        provider = MagicMock()
        provider.generate.side_effect = [StatusError(500), '{"ok": true}']
        sleep = FakeSleep()
        client = StructuredClient(provider, max_attempts=3, base_delay=1.0, sleep=sleep)

        assert client.generate(["x"], "S", SCHEMA) == {"ok": True}
        assert provider.generate.call_count == 2
        assert sleep.calls == [1.0]

    def test_parse_failure_is_not_retried(self) -> None:
        provider = MagicMock()
        provider.generate.return_value = "I cannot help with that"
        client = StructuredClient(provider, max_attempts=3, base_delay=1.0, sleep=FakeSleep())

        with pytest.raises(ParseError):
            client.generate(["x"], "S", SCHEMA, label="main")
        assert provider.generate.call_count == 1

    def test_attempt_budget_from_config(self) -> None:
        provider = MagicMock()
        provider.generate.side_effect = StatusError(503)
        with patch("researchoo.ai.client.config") as mock_config:
            mock_config.RETRY_MAX_ATTEMPTS = 2
            mock_config.RETRY_BASE_DELAY = 0.5
            client = StructuredClient(provider, sleep=FakeSleep())
        with pytest.raises(StatusError):
            client.generate(["x"], "S", SCHEMA)
        assert provider.generate.call_count == 2


# ── GeminiProvider ──


class TestGeminiProvider:
    def test_requires_key_or_client(self) -> None:
        with patch("researchoo.ai.provider.config") as mock_config:
            mock_config.GEMINI_API_KEY = ""
            with pytest.raises(RuntimeError, match="GEMINI_API_KEY"):
                GeminiProvider()

    def test_generate_builds_json_request(self) -> None:
        client = MagicMock()
        client.models.generate_content.return_value = MagicMock(text='{"ok": true}')
        provider = GeminiProvider(client=client, model="gemini-test")

        raw = provider.generate(
            [InlineContent(b"abc", "text/plain"), RemoteContent("gs://f", "files/f", "video/mp4"), "go"],
            system="SYSTEM", schema=SCHEMA, temperature=0.2,
        )

        assert raw == '{"ok": true}'
        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        contents = kwargs["contents"]
        assert len(contents) == 3
        assert contents[0].inline_data.data == b"abc"
        assert contents[1].file_data.file_uri == "gs://f"
        assert contents[2].text == "go"
        cfg = kwargs["config"]
        assert cfg.system_instruction == "SYSTEM"
        assert cfg.response_mime_type == "application/json"
        assert cfg.response_json_schema == SCHEMA
        assert cfg.temperature == 0.2

    def test_model_override(self) -> None:
        client = MagicMock()
        client.models.generate_content.return_value = MagicMock(text="{}")
        provider = GeminiProvider(client=client, model="default")
        provider.generate(["x"], system="S", schema=SCHEMA, temperature=0.1, model="other")
        assert client.models.generate_content.call_args.kwargs["model"] == "other"

    def test_upload_and_state(self) -> None:
        client = MagicMock()
        client.files.upload.return_value = types.File(
            name="files/1", uri="https://f/1", state=types.FileState.PROCESSING, mime_type="video/mp4",
        )
        client.files.get.return_value = types.File(
            name="files/1", uri="https://f/1", state=types.FileState.ACTIVE,
        )
        provider = GeminiProvider(client=client)

        remote = provider.upload(Path("/tmp/a.mp4"), "video/mp4")
        assert remote.name == "files/1"
        assert remote.state == "PROCESSING"
        assert client.files.upload.call_args.kwargs["file"] == "/tmp/a.mp4"

        assert provider.get_file("files/1").state == "ACTIVE"
        client.files.get.assert_called_once_with(name="files/1")
