"""Strict conversion of raw stage JSON into typed results.

This is the only place that knows the wire shape of the model's output.
Required fields that are missing or of the wrong type raise ParseError;
optional fields receive their defaults here so downstream code never has
to guard against absent keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from researchoo.errors import ParseError
from researchoo.models import Highlight, Sentiment, SentimentSlice, Tag

SENTIMENT_LABELS = ("Positive", "Neutral", "Negative", "Mixed")
PRIORITIES = ("High", "Medium", "Low")
SENTIMENT_COLORS = {
    "Positive": "#4ADE80",
    "Neutral": "#94A3B8",
    "Negative": "#F87171",
}
DEFAULT_TAG_COLOR = "#E2E8F0"
UNGROUPED_THEME_ID = "ungrouped"
UNGROUPED_THEME_TITLE = "Ungrouped"


@dataclass
class Recommendation:
    text: str
    priority: str


@dataclass
class MainResult:
    transcript: str
    tags: list[Tag]
    highlights: list[Highlight]
    pain_points: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    sentiment: Sentiment = field(default_factory=Sentiment)
    key_findings: list[str] = field(default_factory=list)
    key_quotes: list[str] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)


@dataclass
class Subcluster:
    id: str
    title: str
    highlight_ids: list[str] = field(default_factory=list)


@dataclass
class Theme:
    id: str
    title: str
    color: str | None = None
    subclusters: list[Subcluster] = field(default_factory=list)


@dataclass
class AffinityResult:
    themes: list[Theme] = field(default_factory=list)


@dataclass
class InsightEntry:
    quote_id: str
    theme: str
    emotion: str = ""
    need: str = ""
    opportunity: str = ""
    proposed_solution: str = ""


@dataclass
class WordEntry:
    word: str
    count: int


@dataclass
class PatternPoint:
    theme: str
    frequency: int
    intensity: int


@dataclass
class InsightsResult:
    rows: list[InsightEntry] = field(default_factory=list)
    key_needs: list[str] = field(default_factory=list)
    key_pain_points: list[str] = field(default_factory=list)
    key_opportunities: list[str] = field(default_factory=list)
    synthesis: str = ""
    word_cloud: list[WordEntry] = field(default_factory=list)
    problem_patterns: list[PatternPoint] = field(default_factory=list)


# ── Field helpers ──


def _kind_name(kind: type | tuple[type, ...]) -> str:
    if isinstance(kind, tuple):
        return " or ".join(k.__name__ for k in kind)
    return kind.__name__


def _require(data: dict, key: str, kind: type | tuple[type, ...], stage: str, where: str = "") -> Any:
    if key not in data or data[key] is None:
        raise ParseError(f"Missing required field {where}{key!r}", stage=stage)
    value = data[key]
    if not isinstance(value, kind):
        raise ParseError(
            f"Field {where}{key!r} should be {_kind_name(kind)}, got {type(value).__name__}",
            stage=stage,
        )
    return value


def _require_str(data: dict, key: str, stage: str, where: str = "") -> str:
    value = _require(data, key, (str, int), stage, where)
    return str(value)


def _objects(data: dict, key: str, stage: str, required: bool = False) -> list[dict]:
    if required:
        items = _require(data, key, list, stage)
    else:
        items = data.get(key) or []
        if not isinstance(items, list):
            raise ParseError(f"Field {key!r} should be a list", stage=stage)
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ParseError(f"{key}[{i}] should be an object", stage=stage)
    return items


def _strings(data: dict, key: str) -> list[str]:
    items = data.get(key) or []
    if not isinstance(items, list):
        return []
    return [str(s) for s in items if s is not None and str(s).strip()]


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return default


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


# ── Stage parsers ──


def _parse_sentiment(raw: Any) -> Sentiment:
    if not isinstance(raw, dict):
        return Sentiment()
    label = raw.get("label")
    if label not in SENTIMENT_LABELS:
        label = "Neutral"
    distribution = []
    for name, key in (("Positive", "positivePct"), ("Neutral", "neutralPct"), ("Negative", "negativePct")):
        if key in raw:
            distribution.append(
                SentimentSlice(name, _clamp(_as_int(raw[key]), 0, 100), SENTIMENT_COLORS[name])
            )
    return Sentiment(
        label=label,
        score=_clamp(_as_int(raw.get("score"), 50), 0, 100),
        distribution=distribution,
    )


def parse_main(data: dict) -> MainResult:
    """Parse the transcript/tags/highlights stage. All three are required."""
    stage = "main"
    transcript = _require(data, "transcript", str, stage)

    tags = []
    for i, t in enumerate(_objects(data, "tags", stage, required=True)):
        where = f"tags[{i}]."
        tags.append(Tag(
            id=_require_str(t, "id", stage, where),
            label=_require_str(t, "label", stage, where),
            color=str(t.get("color") or DEFAULT_TAG_COLOR),
        ))

    highlights = []
    for i, h in enumerate(_objects(data, "highlights", stage, required=True)):
        where = f"highlights[{i}]."
        highlights.append(Highlight(
            id=_require_str(h, "id", stage, where),
            text=_require_str(h, "text", stage, where),
            tag_id=_require_str(h, "tagId", stage, where),
        ))

    recommendations = []
    for r in _objects(data, "recommendations", stage):
        text = str(r.get("text") or "").strip()
        if not text:
            continue
        priority = r.get("priority")
        recommendations.append(Recommendation(text, priority if priority in PRIORITIES else "Medium"))

    return MainResult(
        transcript=transcript,
        tags=tags,
        highlights=highlights,
        pain_points=_strings(data, "painPoints"),
        opportunities=_strings(data, "opportunities"),
        patterns=_strings(data, "patterns"),
        sentiment=_parse_sentiment(data.get("sentiment")),
        key_findings=_strings(data, "keyFindings"),
        key_quotes=_strings(data, "keyQuotes"),
        recommendations=recommendations,
    )


def parse_affinity(data: dict) -> AffinityResult:
    """Build the theme -> subcluster hierarchy from the flat node list.

    Subclusters whose parent is unknown are collected under a trailing
    "Ungrouped" theme so that no highlight group is lost. Highlight ids listed
    directly on a theme become a subcluster carrying the theme's title.
    """
    stage = "affinity"
    nodes = _objects(data, "items", stage, required=True)

    themes: dict[str, Theme] = {}
    pending: list[tuple[str | None, Subcluster]] = []
    for i, node in enumerate(nodes):
        where = f"items[{i}]."
        node_id = _require_str(node, "id", stage, where)
        title = _require_str(node, "title", stage, where)
        kind = node.get("type") or ("subcluster" if node.get("parentId") else "theme")
        highlight_ids = [str(h) for h in node.get("highlightIds") or []]
        if kind == "theme":
            theme = Theme(id=node_id, title=title, color=node.get("color") or None)
            if node_id not in themes:
                themes[node_id] = theme
            if highlight_ids:
                pending.append((node_id, Subcluster(f"{node_id}_direct", title, highlight_ids)))
        else:
            pending.append((node.get("parentId"), Subcluster(node_id, title, highlight_ids)))

    orphans: list[Subcluster] = []
    for parent_id, sub in pending:
        if parent_id is not None and str(parent_id) in themes:
            themes[str(parent_id)].subclusters.append(sub)
        else:
            orphans.append(sub)

    result = list(themes.values())
    if orphans:
        result.append(Theme(id=UNGROUPED_THEME_ID, title=UNGROUPED_THEME_TITLE, subclusters=orphans))
    return AffinityResult(themes=result)


def parse_insights(data: dict) -> InsightsResult:
    stage = "insights"
    rows = []
    for i, r in enumerate(_objects(data, "insightsTable", stage, required=True)):
        where = f"insightsTable[{i}]."
        rows.append(InsightEntry(
            quote_id=_require_str(r, "quoteId", stage, where),
            theme=_require_str(r, "theme", stage, where),
            emotion=str(r.get("emotion") or ""),
            need=str(r.get("need") or ""),
            opportunity=str(r.get("opportunity") or ""),
            proposed_solution=str(r.get("proposedUXSolution") or ""),
        ))

    words = [
        WordEntry(str(w["word"]), max(0, _as_int(w.get("count"))))
        for w in _objects(data, "wordCloud", stage)
        if w.get("word")
    ]
    patterns = [
        PatternPoint(
            str(p["theme"]),
            max(0, _as_int(p.get("frequency"))),
            _clamp(_as_int(p.get("intensity"), 1), 1, 5),
        )
        for p in _objects(data, "problemPatternsChart", stage)
        if p.get("theme")
    ]

    synthesis = data.get("synthesis")
    return InsightsResult(
        rows=rows,
        key_needs=_strings(data, "keyNeeds"),
        key_pain_points=_strings(data, "keyPainPoints"),
        key_opportunities=_strings(data, "keyOpportunities"),
        synthesis=synthesis if isinstance(synthesis, str) else "",
        word_cloud=words,
        problem_patterns=patterns,
    )
