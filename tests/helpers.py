"""Shared test helpers: scripted provider, recorded sleep and canned stage responses."""

from __future__ import annotations

import json
from pathlib import Path

from researchoo.ai.provider import RemoteFile
from researchoo.ai.schemas import AFFINITY_SCHEMA, INSIGHTS_SCHEMA, MAIN_SCHEMA

MAIN_RESPONSE = {
    "transcript": "Question: Why?\nAnswer: Because.",
    "tags": [{"id": "t1", "label": "Reason", "color": "#fff"}],
    "highlights": [{"id": "h1", "text": "Because.", "tagId": "t1"}],
    "painPoints": ["Unclear motivation"],
    "opportunities": ["Explain the why"],
    "patterns": ["Short answers"],
    "sentiment": {"label": "Neutral", "score": 55, "positivePct": 30, "neutralPct": 50, "negativePct": 20},
    "keyFindings": ["Users answer tersely"],
    "keyQuotes": ["Because."],
    "recommendations": [{"text": "Ask follow-up questions", "priority": "High"}],
}

AFFINITY_RESPONSE = {
    "items": [
        {"id": "th1", "type": "theme", "title": "Motivation", "color": "#FDE68A"},
        {"id": "s1", "type": "subcluster", "title": "Stated reasons", "parentId": "th1", "highlightIds": ["h1"]},
    ],
}

INSIGHTS_RESPONSE = {
    "insightsTable": [
        {
            "quoteId": "h1",
            "theme": "Motivation",
            "emotion": "Indifference",
            "need": "Clarity",
            "opportunity": "Onboarding",
            "proposedUXSolution": "Add a short explainer",
        },
    ],
    "keyNeeds": ["Clarity"],
    "synthesis": "Users need reasons.",
    "wordCloud": [{"word": "because", "count": 3}],
    "problemPatternsChart": [{"theme": "Motivation", "frequency": 2, "intensity": 4}],
}


class StatusError(Exception):
    """An error carrying an HTTP-like status code, like the SDK's APIError."""

    def __init__(self, code: int, message: str = "request failed") -> None:
        super().__init__(message)
        self.code = code


class FakeSleep:
    """Records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _script(outcome) -> list:
    return list(outcome) if isinstance(outcome, list) else [outcome]


class FakeProvider:
    """Scripted StructuredProvider.

    Each stage gets an outcome or a list of outcomes consumed one per call
    (the last one repeats). An outcome is a dict (returned as JSON), a str
    (returned verbatim) or an exception (raised).
    """

    def __init__(
        self,
        main=MAIN_RESPONSE,
        affinity=AFFINITY_RESPONSE,
        insights=INSIGHTS_RESPONSE,
        states: list[str] | None = None,
        upload_errors: list[Exception] | None = None,
    ) -> None:
        self._scripts = {
            "main": _script(main),
            "affinity": _script(affinity),
            "insights": _script(insights),
        }
        self._states = list(states or ["ACTIVE"])
        self._upload_errors = list(upload_errors or [])
        self.calls: list[dict] = []
        self.uploads: list[tuple[Path, str]] = []
        self.polls = 0

    def script(self, stage: str, outcome) -> None:
        """Replace the remaining outcomes of one stage."""
        self._scripts[stage] = _script(outcome)

    def stage_calls(self, stage: str) -> list[dict]:
        return [c for c in self.calls if c["stage"] == stage]

    def generate(self, parts, system, schema, temperature, model=None) -> str:
        if schema is MAIN_SCHEMA:
            stage = "main"
        elif schema is AFFINITY_SCHEMA:
            stage = "affinity"
        elif schema is INSIGHTS_SCHEMA:
            stage = "insights"
        else:
            raise AssertionError("unexpected schema")
        self.calls.append({
            "stage": stage, "parts": parts, "system": system,
            "temperature": temperature, "model": model,
        })
        script = self._scripts[stage]
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, dict):
            return json.dumps(outcome)
        return outcome

    def _next_state(self) -> str:
        return self._states.pop(0) if len(self._states) > 1 else self._states[0]

    def upload(self, path: Path, mime_type: str) -> RemoteFile:
        if self._upload_errors:
            raise self._upload_errors.pop(0)
        self.uploads.append((path, mime_type))
        return RemoteFile("files/abc123", "https://files.example/abc123", self._next_state(), mime_type)

    def get_file(self, name: str) -> RemoteFile:
        self.polls += 1
        return RemoteFile(name, "https://files.example/abc123", self._next_state())
