"""Affinity map editing model: view transform, gestures, clusters and notes.

The board keeps two copies of the cluster list. ``clusters`` is the live
state a renderer draws every frame; the committed copy is what has been
handed to ``on_commit`` (and so persisted). Geometry gestures and text
edits only change the live state until they are committed: a gesture on
``end_gesture()``, text edits on ``commit_edits()``. Structural changes
(add/delete/move) commit immediately.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from researchoo.canvas.layout import (
    DEFAULT_HEIGHT,
    DEFAULT_WIDTH,
    MIN_HEIGHT,
    MIN_WIDTH,
    auto_layout,
    random_pastel_color,
    with_default_geometry,
)
from researchoo.models import NOTE, AffinityItem, Cluster, new_id

logger = logging.getLogger(__name__)

MIN_SCALE = 0.1
MAX_SCALE = 4.0
ZOOM_STEP = 0.2
WHEEL_SENSITIVITY = 0.001

PAN = "pan"
DRAG = "drag"
RESIZE = "resize"

NEW_NOTE_TEXT = "New insight..."
NEW_CLUSTER_TITLE = "New Cluster"


def _clamp_scale(scale: float) -> float:
    return min(max(MIN_SCALE, scale), MAX_SCALE)


@dataclass
class Viewport:
    """Screen = canvas * scale + offset."""

    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    def zoom_to(self, scale: float) -> None:
        self.scale = _clamp_scale(scale)

    def zoom_in(self) -> None:
        self.zoom_to(self.scale + ZOOM_STEP)

    def zoom_out(self) -> None:
        self.zoom_to(self.scale - ZOOM_STEP)

    def wheel(self, delta_y: float) -> None:
        """Continuous zoom from a wheel event; scrolling up zooms in."""
        self.zoom_to(self.scale - delta_y * WHEEL_SENSITIVITY)

    def reset(self) -> None:
        self.scale = 1.0
        self.offset_x = 0.0
        self.offset_y = 0.0

    def to_canvas(self, screen_x: float, screen_y: float) -> tuple[float, float]:
        return (
            (screen_x - self.offset_x) / self.scale,
            (screen_y - self.offset_y) / self.scale,
        )


@dataclass
class Gesture:
    kind: str
    start_x: float
    start_y: float
    last_x: float
    last_y: float
    cluster_id: str | None = None
    initial: Cluster | None = None


class AffinityBoard:
    def __init__(
        self,
        clusters: list[Cluster],
        on_commit: Callable[[list[Cluster]], None] | None = None,
    ) -> None:
        self.clusters: list[Cluster] = with_default_geometry(copy.deepcopy(clusters))
        self._committed: list[Cluster] = copy.deepcopy(self.clusters)
        self._on_commit = on_commit
        self.viewport = Viewport()
        self.gesture: Gesture | None = None
        self.pending_delete: str | None = None

    # ── State ──

    @property
    def committed(self) -> list[Cluster]:
        return copy.deepcopy(self._committed)

    @property
    def has_draft(self) -> bool:
        """True when the live state differs from what was last committed."""
        return self.clusters != self._committed

    @property
    def is_tracking_pointer(self) -> bool:
        """Pointer move/up should only be observed while a gesture is active."""
        return self.gesture is not None

    def get(self, cluster_id: str) -> Cluster | None:
        for c in self.clusters:
            if c.id == cluster_id:
                return c
        return None

    def commit(self) -> None:
        self._committed = copy.deepcopy(self.clusters)
        if self._on_commit:
            self._on_commit(copy.deepcopy(self.clusters))

    def _replace(self, cluster_id: str, fn: Callable[[Cluster], Cluster]) -> bool:
        found = False
        updated = []
        for c in self.clusters:
            if c.id == cluster_id:
                updated.append(fn(c))
                found = True
            else:
                updated.append(c)
        if found:
            self.clusters = updated
        return found

    # ── Gestures ──

    def begin_pan(self, x: float, y: float) -> None:
        self.gesture = Gesture(PAN, x, y, x, y)

    def begin_drag(self, cluster_id: str, x: float, y: float) -> bool:
        return self._begin_cluster_gesture(DRAG, cluster_id, x, y)

    def begin_resize(self, cluster_id: str, x: float, y: float) -> bool:
        return self._begin_cluster_gesture(RESIZE, cluster_id, x, y)

    def _begin_cluster_gesture(self, kind: str, cluster_id: str, x: float, y: float) -> bool:
        cluster = self.get(cluster_id)
        if cluster is None:
            return False
        self.gesture = Gesture(kind, x, y, x, y, cluster_id=cluster_id, initial=cluster)
        return True

    def move_pointer(self, x: float, y: float) -> None:
        g = self.gesture
        if g is None:
            return
        if g.kind == PAN:
            # Relative to the previous event, so the offset never jumps
            self.viewport.offset_x += x - g.last_x
            self.viewport.offset_y += y - g.last_y
            g.last_x, g.last_y = x, y
            return

        if g.initial is None or g.cluster_id is None:
            return
        dx = (x - g.start_x) / self.viewport.scale
        dy = (y - g.start_y) / self.viewport.scale
        init = g.initial
        g.last_x, g.last_y = x, y
        if g.kind == DRAG:
            self._replace(g.cluster_id, lambda c: replace(c, x=init.x + dx, y=init.y + dy))
        else:
            self._replace(g.cluster_id, lambda c: replace(
                c,
                width=max(MIN_WIDTH, init.width + dx),
                height=max(MIN_HEIGHT, init.height + dy),
            ))

    def end_gesture(self) -> None:
        g = self.gesture
        self.gesture = None
        if g is not None and g.kind in (DRAG, RESIZE):
            self.commit()

    def cancel_gesture(self) -> None:
        g = self.gesture
        self.gesture = None
        if g is not None and g.initial is not None and g.cluster_id is not None:
            initial = g.initial
            self._replace(g.cluster_id, lambda c: replace(
                c, x=initial.x, y=initial.y, width=initial.width, height=initial.height,
            ))

    # ── Clusters ──

    def auto_layout(self) -> None:
        self.clusters = auto_layout(self.clusters)
        self.commit()

    def add_cluster(
        self, viewport_width: float, viewport_height: float, title: str = NEW_CLUSTER_TITLE,
    ) -> Cluster:
        """Create an empty cluster centred in the visible part of the canvas."""
        cx, cy = self.viewport.to_canvas(viewport_width / 2, viewport_height / 2)
        cluster = Cluster(
            id=new_id(),
            title=title,
            items=[],
            color=random_pastel_color(),
            x=cx - DEFAULT_WIDTH / 2,
            y=cy - DEFAULT_HEIGHT / 2,
            width=DEFAULT_WIDTH,
            height=DEFAULT_HEIGHT,
        )
        self.clusters = [*self.clusters, cluster]
        self.commit()
        return cluster

    def rename_cluster(self, cluster_id: str, title: str) -> bool:
        return self._replace(cluster_id, lambda c: replace(c, title=title))

    def request_delete_cluster(self, cluster_id: str) -> bool:
        if self.get(cluster_id) is None:
            return False
        self.pending_delete = cluster_id
        return True

    def confirm_delete(self) -> Cluster | None:
        cluster_id = self.pending_delete
        self.pending_delete = None
        if cluster_id is None:
            return None
        removed = self.get(cluster_id)
        if removed is None:
            return None
        self.clusters = [c for c in self.clusters if c.id != cluster_id]
        self.commit()
        logger.info("Deleted cluster %s (%r)", cluster_id, removed.title)
        return removed

    def cancel_delete(self) -> None:
        self.pending_delete = None

    # ── Notes ──

    def add_note(self, cluster_id: str, text: str = NEW_NOTE_TEXT) -> AffinityItem | None:
        item = AffinityItem(id=new_id(), text=text, type=NOTE)
        if not self._replace(cluster_id, lambda c: replace(c, items=[*c.items, item])):
            return None
        self.commit()
        return item

    def edit_note(self, cluster_id: str, item_id: str, text: str) -> bool:
        return self._replace(cluster_id, lambda c: replace(
            c, items=[replace(i, text=text) if i.id == item_id else i for i in c.items],
        ))

    def delete_note(self, cluster_id: str, item_id: str) -> bool:
        if not self._replace(cluster_id, lambda c: replace(
            c, items=[i for i in c.items if i.id != item_id],
        )):
            return False
        self.commit()
        return True

    def commit_edits(self) -> None:
        """Persist pending text edits (note and title blur)."""
        if self.has_draft:
            self.commit()

    def discard_edits(self) -> None:
        self.clusters = copy.deepcopy(self._committed)

    # ── Drag and drop ──

    def move_item(
        self,
        source_cluster_id: str,
        item_id: str,
        target_cluster_id: str,
        before_item_id: str | None = None,
    ) -> bool:
        """Move an item within or across clusters and commit.

        With ``before_item_id`` the item is inserted ahead of that item,
        otherwise (or if it is not in the target) appended to the target.
        """
        if before_item_id == item_id:
            return False
        source = self.get(source_cluster_id)
        target = self.get(target_cluster_id)
        if source is None or target is None:
            return False
        item = next((i for i in source.items if i.id == item_id), None)
        if item is None:
            return False

        source_items = [i for i in source.items if i.id != item_id]
        target_items = source_items if source_cluster_id == target_cluster_id else list(target.items)
        index = next(
            (n for n, i in enumerate(target_items) if i.id == before_item_id), None,
        ) if before_item_id else None
        if index is None:
            target_items.append(item)
        else:
            target_items.insert(index, item)

        updated = []
        for c in self.clusters:
            if c.id == source_cluster_id:
                updated.append(replace(c, items=source_items))
            elif c.id == target_cluster_id:
                updated.append(replace(c, items=target_items))
            else:
                updated.append(c)
        self.clusters = updated
        self.commit()
        return True
