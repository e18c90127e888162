"""Structured generation: prompt + schema in, parsed JSON out."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable

from researchoo import config
from researchoo.ai.provider import ContentPart, StructuredProvider
from researchoo.ai.retry import retry
from researchoo.errors import ParseError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_json_response(raw: str, stage: str = "") -> dict:
    """Parse a model response into a JSON object.

    Accepts a bare JSON object or one wrapped in a markdown code fence.
    Raises ParseError with length and head/tail diagnostics otherwise.
    """
    text = (raw or "").strip()
    if not text:
        raise ParseError("Empty response from model", stage=stage, raw=raw or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        match = _FENCE_RE.search(text)
        if not match:
            raise ParseError(f"Response is not valid JSON: {e.msg}", stage=stage, raw=raw) from e
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError as e2:
            raise ParseError(f"Response is not valid JSON: {e2.msg}", stage=stage, raw=raw) from e2
    if not isinstance(data, dict):
        raise ParseError(
            f"Expected a JSON object, got {type(data).__name__}", stage=stage, raw=raw,
        )
    return data


class StructuredClient:
    """Runs schema-constrained generations through the retry executor.

    Each call is an independent logical invocation, so the main, affinity
    and insights stages can reuse one client against the same content.
    """

    def __init__(
        self,
        provider: StructuredProvider,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._max_attempts = max_attempts or config.RETRY_MAX_ATTEMPTS
        self._base_delay = base_delay if base_delay is not None else config.RETRY_BASE_DELAY
        self._sleep = sleep

    def generate(
        self,
        parts: list[ContentPart],
        system_prompt: str,
        schema: dict,
        temperature: float = 0.2,
        label: str = "generate",
        model: str | None = None,
    ) -> dict:
        t0 = time.perf_counter()
        raw = retry(
            lambda: self._provider.generate(
                parts, system=system_prompt, schema=schema,
                temperature=temperature, model=model,
            ),
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            label=label,
            sleep=self._sleep,
        )
        logger.info("%s: %d chars in %.2fs", label, len(raw or ""), time.perf_counter() - t0)
        return parse_json_response(raw, stage=label)
