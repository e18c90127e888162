"""Research document data model.

Plain dataclasses serialized to the camelCase JSON shape the dashboard and
the persisted session blobs use.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

FILE_TYPES = ("video", "audio", "text")
FILE_STATUSES = ("uploading", "processing", "uploaded", "error")
NOTE = "note"
SUBCLUSTER = "subcluster"


def new_id() -> str:
    """Short random identifier for user-created objects."""
    return uuid.uuid4().hex[:12]


class Screen(str, Enum):
    START = "START"
    UPLOAD = "UPLOAD"
    PROCESSING = "PROCESSING"
    TRANSCRIPT = "TRANSCRIPT"
    AFFINITY = "AFFINITY"
    INSIGHTS = "INSIGHTS"
    SUMMARY = "SUMMARY"
    EXPORT = "EXPORT"
    END = "END"


@dataclass
class Tag:
    id: str
    label: str
    color: str

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "color": self.color}

    @classmethod
    def from_dict(cls, d: dict) -> Tag:
        return cls(id=d["id"], label=d["label"], color=d.get("color", "#E2E8F0"))


@dataclass
class Highlight:
    id: str
    text: str
    tag_id: str

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "tagId": self.tag_id}

    @classmethod
    def from_dict(cls, d: dict) -> Highlight:
        return cls(id=d["id"], text=d["text"], tag_id=d["tagId"])


@dataclass
class AffinityItem:
    """A note or AI-derived pattern placed inside a cluster.

    ``unresolved_ids`` lists highlight references that did not match any
    highlight when the item was built; they are rendered as missing quotes.
    """

    id: str
    text: str
    highlight_ids: list[str] | None = None
    type: str | None = None
    unresolved_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"id": self.id, "text": self.text}
        if self.highlight_ids is not None:
            d["highlightIds"] = list(self.highlight_ids)
        if self.type is not None:
            d["type"] = self.type
        if self.unresolved_ids:
            d["unresolvedHighlightIds"] = list(self.unresolved_ids)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> AffinityItem:
        ids = d.get("highlightIds")
        return cls(
            id=d["id"],
            text=d.get("text", ""),
            highlight_ids=list(ids) if ids is not None else None,
            type=d.get("type"),
            unresolved_ids=list(d.get("unresolvedHighlightIds") or []),
        )


@dataclass
class Cluster:
    id: str
    title: str
    items: list[AffinityItem] = field(default_factory=list)
    color: str = "#E2E8F0"
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "items": [i.to_dict() for i in self.items],
            "color": self.color,
        }
        for key in ("x", "y", "width", "height"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Cluster:
        return cls(
            id=d["id"],
            title=d.get("title", ""),
            items=[AffinityItem.from_dict(i) for i in d.get("items", [])],
            color=d.get("color", "#E2E8F0"),
            x=d.get("x"),
            y=d.get("y"),
            width=d.get("width"),
            height=d.get("height"),
        )


@dataclass
class SentimentSlice:
    name: str
    value: int
    color: str

    def to_dict(self) -> dict:
        return {"name": self.name, "value": self.value, "color": self.color}


@dataclass
class Sentiment:
    label: str = "Neutral"
    score: int = 50
    distribution: list[SentimentSlice] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "score": self.score,
            "distribution": [s.to_dict() for s in self.distribution],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Sentiment:
        return cls(
            label=d.get("label", "Neutral"),
            score=d.get("score", 50),
            distribution=[
                SentimentSlice(s["name"], s["value"], s.get("color", "#94A3B8"))
                for s in d.get("distribution", [])
            ],
        )


@dataclass
class Task:
    id: str
    text: str
    priority: str  # "High" | "Medium" | "Low"

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "priority": self.priority}


@dataclass
class InsightRow:
    quote_id: str
    text: str
    theme: str
    emotion: str
    need: str
    opportunity: str
    proposed_solution: str

    def to_dict(self) -> dict:
        return {
            "quoteId": self.quote_id,
            "text": self.text,
            "theme": self.theme,
            "emotion": self.emotion,
            "need": self.need,
            "opportunity": self.opportunity,
            "proposedUXSolution": self.proposed_solution,
        }

    @classmethod
    def from_dict(cls, d: dict) -> InsightRow:
        return cls(
            quote_id=d.get("quoteId", ""),
            text=d.get("text", ""),
            theme=d.get("theme", ""),
            emotion=d.get("emotion", ""),
            need=d.get("need", ""),
            opportunity=d.get("opportunity", ""),
            proposed_solution=d.get("proposedUXSolution", ""),
        )


@dataclass
class WordCount:
    word: str
    count: int

    def to_dict(self) -> dict:
        return {"word": self.word, "count": self.count}


@dataclass
class ProblemPattern:
    theme: str
    frequency: int
    intensity: int  # 1-5

    def to_dict(self) -> dict:
        return {"theme": self.theme, "frequency": self.frequency, "intensity": self.intensity}


@dataclass
class Insights:
    pain_points: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    sentiment: Sentiment = field(default_factory=Sentiment)
    table: list[InsightRow] = field(default_factory=list)
    key_needs: list[str] = field(default_factory=list)
    key_pain_points: list[str] = field(default_factory=list)
    key_opportunities: list[str] = field(default_factory=list)
    synthesis: str = ""
    word_cloud: list[WordCount] = field(default_factory=list)
    problem_patterns: list[ProblemPattern] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "painPoints": list(self.pain_points),
            "opportunities": list(self.opportunities),
            "patterns": list(self.patterns),
            "sentiment": self.sentiment.to_dict(),
            "insightsTable": [r.to_dict() for r in self.table],
            "keyNeeds": list(self.key_needs),
            "keyPainPoints": list(self.key_pain_points),
            "keyOpportunities": list(self.key_opportunities),
            "synthesis": self.synthesis,
            "wordCloud": [w.to_dict() for w in self.word_cloud],
            "problemPatternsChart": [p.to_dict() for p in self.problem_patterns],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Insights:
        return cls(
            pain_points=list(d.get("painPoints", [])),
            opportunities=list(d.get("opportunities", [])),
            patterns=list(d.get("patterns", [])),
            sentiment=Sentiment.from_dict(d.get("sentiment") or {}),
            table=[InsightRow.from_dict(r) for r in d.get("insightsTable") or []],
            key_needs=list(d.get("keyNeeds") or []),
            key_pain_points=list(d.get("keyPainPoints") or []),
            key_opportunities=list(d.get("keyOpportunities") or []),
            synthesis=d.get("synthesis") or "",
            word_cloud=[WordCount(w["word"], w["count"]) for w in d.get("wordCloud") or []],
            problem_patterns=[
                ProblemPattern(p["theme"], p["frequency"], p["intensity"])
                for p in d.get("problemPatternsChart") or []
            ],
        )


@dataclass
class Summary:
    key_findings: list[str] = field(default_factory=list)
    quotes: list[str] = field(default_factory=list)
    recommendations: list[Task] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "keyFindings": list(self.key_findings),
            "quotes": list(self.quotes),
            "recommendations": [t.to_dict() for t in self.recommendations],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Summary:
        return cls(
            key_findings=list(d.get("keyFindings", [])),
            quotes=list(d.get("quotes", [])),
            recommendations=[
                Task(t["id"], t["text"], t.get("priority", "Medium"))
                for t in d.get("recommendations", [])
            ],
        )


@dataclass
class ResearchData:
    """The canonical per-project document."""

    transcript: str = ""
    tags: list[Tag] = field(default_factory=list)
    highlights: list[Highlight] = field(default_factory=list)
    clusters: list[Cluster] = field(default_factory=list)
    insights: Insights = field(default_factory=Insights)
    summary: Summary = field(default_factory=Summary)

    def to_dict(self) -> dict:
        return {
            "transcript": self.transcript,
            "tags": [t.to_dict() for t in self.tags],
            "highlights": [h.to_dict() for h in self.highlights],
            "clusters": [c.to_dict() for c in self.clusters],
            "insights": self.insights.to_dict(),
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> ResearchData:
        return cls(
            transcript=d.get("transcript", ""),
            tags=[Tag.from_dict(t) for t in d.get("tags", [])],
            highlights=[Highlight.from_dict(h) for h in d.get("highlights", [])],
            clusters=[Cluster.from_dict(c) for c in d.get("clusters", [])],
            insights=Insights.from_dict(d.get("insights") or {}),
            summary=Summary.from_dict(d.get("summary") or {}),
        )

    def copy(self) -> ResearchData:
        return copy.deepcopy(self)

    def highlight_map(self) -> dict[str, Highlight]:
        return {h.id: h for h in self.highlights}

    def tag_map(self) -> dict[str, Tag]:
        return {t.id: t for t in self.tags}


@dataclass
class ProjectFile:
    """Lifecycle of one uploaded source, independent of the project document."""

    id: str
    name: str
    path: Path
    type: str
    status: str = "uploading"
    progress: int = 0
    error: str | None = None
    analysis_data: ResearchData | None = None
    mime_type: str | None = None
    warning: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "progress": self.progress,
            "type": self.type,
        }
        if self.error:
            d["error"] = self.error
        if self.warning:
            d["warning"] = self.warning
        if self.analysis_data is not None:
            d["analysisData"] = self.analysis_data.to_dict()
        return d


@dataclass
class SavedProject:
    id: str
    name: str
    date: str
    file_type: str
    data: ResearchData
    file_count: int | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "date": self.date,
            "fileType": self.file_type,
            "data": self.data.to_dict(),
        }
        if self.file_count is not None:
            d["fileCount"] = self.file_count
        return d

    @classmethod
    def from_dict(cls, d: dict) -> SavedProject:
        return cls(
            id=d["id"],
            name=d["name"],
            date=d["date"],
            file_type=d.get("fileType", "text"),
            data=ResearchData.from_dict(d.get("data") or {}),
            file_count=d.get("fileCount"),
        )


def detect_file_type(filename: str, mime_type: str | None = None) -> str:
    """Classify an upload as video, audio or text from its MIME type or extension."""
    if mime_type:
        if mime_type.startswith("video"):
            return "video"
        if mime_type.startswith("audio"):
            return "audio"
    ext = Path(filename).suffix.lower().lstrip(".")
    if ext in {"mp4", "mov", "avi", "mkv", "webm", "m4v"}:
        return "video"
    if ext in {"mp3", "wav", "aac", "m4a", "flac", "ogg"}:
        return "audio"
    return "text"
