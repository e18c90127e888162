"""Edits to a ResearchData document made from the transcript view.

Every function returns a new document; the input is never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable

from researchoo.analysis.merge import QUOTE_NOT_FOUND
from researchoo.canvas.layout import DEFAULT_WIDTH, GRID_ORIGIN, random_pastel_color
from researchoo.models import NOTE, AffinityItem, Cluster, Highlight, ResearchData, Tag, new_id

INBOX_TITLE = "Inbox"
INBOX_COLOR = "#E2E8F0"
INBOX_HEIGHT = 300


def rename_tag(data: ResearchData, tag_id: str, label: str) -> ResearchData:
    out = data.copy()
    for tag in out.tags:
        if tag.id == tag_id:
            tag.label = label
    return out


def add_highlight(
    data: ResearchData,
    text: str,
    tag_id: str | None = None,
    tag_label: str | None = None,
    tag_color: str | None = None,
) -> tuple[ResearchData, Highlight]:
    """Append a user-selected highlight.

    Pass ``tag_id`` to reuse an existing tag, or ``tag_label`` to tag it
    by name: an existing tag with that label is reused, otherwise a new
    tag is created.
    """
    if not text.strip():
        raise ValueError("Highlight text is empty")
    out = data.copy()
    if tag_id is None:
        if not tag_label:
            raise ValueError("Either tag_id or tag_label is required")
        existing = next((t for t in out.tags if t.label == tag_label), None)
        if existing is not None:
            tag_id = existing.id
        else:
            tag = Tag(new_id(), tag_label, tag_color or random_pastel_color())
            out.tags.append(tag)
            tag_id = tag.id
    elif tag_id not in out.tag_map():
        raise KeyError(tag_id)

    highlight = Highlight(new_id(), text, tag_id)
    out.highlights.append(highlight)
    return out, highlight


def add_to_inbox(data: ResearchData, text: str) -> tuple[ResearchData, AffinityItem]:
    """Send a quote to the affinity map as a note in the Inbox cluster."""
    out = data.copy()
    item = AffinityItem(id=new_id(), text=text, type=NOTE)
    inbox = next((c for c in out.clusters if c.title == INBOX_TITLE), None)
    if inbox is None:
        out.clusters.append(Cluster(
            id=new_id(),
            title=INBOX_TITLE,
            items=[item],
            color=INBOX_COLOR,
            x=GRID_ORIGIN,
            y=GRID_ORIGIN,
            width=DEFAULT_WIDTH,
            height=INBOX_HEIGHT,
        ))
    else:
        inbox.items.append(item)
    return out, item


def sidebar_tags(documents: Iterable[ResearchData | None]) -> list[Tag]:
    """Tags across documents, one per label, first occurrence wins."""
    seen: set[str] = set()
    unique = []
    for doc in documents:
        if doc is None:
            continue
        for tag in doc.tags:
            if tag.label not in seen:
                seen.add(tag.label)
                unique.append(tag)
    return unique


def filter_highlights(
    documents: Iterable[ResearchData | None], label: str | None = None,
) -> list[Highlight]:
    """Highlights across documents, optionally only those tagged ``label``."""
    docs = [d for d in documents if d is not None]
    tags: dict[str, Tag] = {}
    for doc in docs:
        tags.update(doc.tag_map())
    result = []
    for doc in docs:
        for h in doc.highlights:
            if label is None:
                result.append(h)
                continue
            tag = tags.get(h.tag_id)
            if tag is not None and tag.label == label:
                result.append(h)
    return result


def resolve_quote(data: ResearchData, highlight_id: str) -> str:
    h = data.highlight_map().get(highlight_id)
    return h.text if h else QUOTE_NOT_FOUND
