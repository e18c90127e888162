"""Rewrite per-file model IDs into collision-free IDs and assemble ResearchData.

The model numbers its tags, highlights and themes locally ("t1", "h1", ...),
so two files analyzed in the same project will produce clashing IDs. Every
ID from one file is rewritten to ``<prefix>_<original>`` with a prefix
unique to that file, and all cross references are rewritten through the
same maps.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Collection

from researchoo.analysis.parse import DEFAULT_TAG_COLOR, AffinityResult, InsightsResult, MainResult
from researchoo.canvas.layout import DEFAULT_HEIGHT, DEFAULT_WIDTH, grid_position, random_pastel_color
from researchoo.models import (
    SUBCLUSTER,
    AffinityItem,
    Cluster,
    Highlight,
    InsightRow,
    Insights,
    ProblemPattern,
    ResearchData,
    Summary,
    Tag,
    Task,
    WordCount,
)

QUOTE_NOT_FOUND = "Quote not found"
UNTAGGED_LABEL = "Untagged"


def new_file_prefix() -> str:
    """Random per-file namespace token."""
    return uuid.uuid4().hex[:8]


class IdRemapper:
    """Issues ``prefix_original`` IDs, unique across every kind in one merge.

    The model occasionally repeats an ID within a file; later duplicates get
    a numeric suffix so the emitted IDs stay pairwise distinct. The forward
    map for each kind keeps the first occurrence.
    """

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self._issued: set[str] = set()
        self._maps: dict[str, dict[str, str]] = {}

    def assign(self, kind: str, original: str) -> str:
        base = f"{self.prefix}_{original}"
        new = base
        n = 2
        while new in self._issued:
            new = f"{base}_{n}"
            n += 1
        self._issued.add(new)
        self._maps.setdefault(kind, {}).setdefault(original, new)
        return new

    def lookup(self, kind: str, original: str) -> str | None:
        return self._maps.get(kind, {}).get(original)


def merge(
    main: MainResult,
    affinity: AffinityResult | None = None,
    insights: InsightsResult | None = None,
    prefix: str | None = None,
) -> ResearchData:
    """Combine the three stage results for one source file into ResearchData.

    Pure apart from the random prefix (when none is given) and the random
    color of themes the model left uncolored.
    """
    ids = IdRemapper(prefix or new_file_prefix())

    tags = [Tag(ids.assign("tag", t.id), t.label, t.color) for t in main.tags]

    highlight_ids = [ids.assign("highlight", h.id) for h in main.highlights]
    highlights = []
    for new_id, h in zip(highlight_ids, main.highlights):
        tag_id = ids.lookup("tag", h.tag_id)
        if tag_id is None:
            # Unknown tag: one placeholder per distinct id, so references stay closed
            tag_id = ids.assign("tag", h.tag_id)
            tags.append(Tag(tag_id, UNTAGGED_LABEL, DEFAULT_TAG_COLOR))
        highlights.append(Highlight(new_id, h.text, tag_id))
    by_id = {h.id: h for h in highlights}

    clusters = _build_clusters(affinity, ids, lambda hid: ids.lookup("highlight", hid))

    result_insights = Insights(
        pain_points=list(main.pain_points),
        opportunities=list(main.opportunities),
        patterns=list(main.patterns),
        sentiment=main.sentiment,
    )
    if insights is not None:
        rows = []
        for row in insights.rows:
            quote_id = ids.lookup("highlight", row.quote_id) or row.quote_id
            quoted = by_id.get(quote_id)
            rows.append(InsightRow(
                quote_id=quote_id,
                text=quoted.text if quoted else QUOTE_NOT_FOUND,
                theme=row.theme,
                emotion=row.emotion,
                need=row.need,
                opportunity=row.opportunity,
                proposed_solution=row.proposed_solution,
            ))
        result_insights.table = rows
        result_insights.key_needs = list(insights.key_needs)
        result_insights.key_pain_points = list(insights.key_pain_points)
        result_insights.key_opportunities = list(insights.key_opportunities)
        result_insights.synthesis = insights.synthesis
        result_insights.word_cloud = [WordCount(w.word, w.count) for w in insights.word_cloud]
        result_insights.problem_patterns = [
            ProblemPattern(p.theme, p.frequency, p.intensity) for p in insights.problem_patterns
        ]

    summary = Summary(
        key_findings=list(main.key_findings),
        quotes=list(main.key_quotes),
        recommendations=[
            Task(ids.assign("task", str(i + 1)), r.text, r.priority)
            for i, r in enumerate(main.recommendations)
        ],
    )

    return ResearchData(
        transcript=main.transcript,
        tags=tags,
        highlights=highlights,
        clusters=clusters,
        insights=result_insights,
        summary=summary,
    )


def affinity_clusters(
    affinity: AffinityResult,
    highlight_ids: Collection[str],
    prefix: str | None = None,
) -> list[Cluster]:
    """Clusters for an affinity result generated against an existing document.

    The highlight references are already document IDs, so only clusters and
    subclusters receive fresh prefixed IDs.
    """
    ids = IdRemapper(prefix or new_file_prefix())
    known = set(highlight_ids)
    return _build_clusters(affinity, ids, lambda hid: hid if hid in known else None)


def _build_clusters(
    affinity: AffinityResult | None,
    ids: IdRemapper,
    resolve: Callable[[str], str | None],
) -> list[Cluster]:
    clusters = []
    for index, theme in enumerate(affinity.themes if affinity else []):
        items = []
        for sub in theme.subclusters:
            resolved = []
            unresolved = []
            for hid in sub.highlight_ids:
                mapped = resolve(hid)
                if mapped is None:
                    unresolved.append(hid)
                    resolved.append(hid)
                else:
                    resolved.append(mapped)
            items.append(AffinityItem(
                id=ids.assign("subcluster", sub.id),
                text=sub.title,
                highlight_ids=resolved,
                type=SUBCLUSTER,
                unresolved_ids=unresolved,
            ))
        x, y = grid_position(index)
        clusters.append(Cluster(
            id=ids.assign("cluster", theme.id),
            title=theme.title,
            items=items,
            color=theme.color or random_pastel_color(),
            x=x,
            y=y,
            width=DEFAULT_WIDTH,
            height=DEFAULT_HEIGHT,
        ))
    return clusters
