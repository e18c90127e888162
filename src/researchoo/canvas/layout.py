"""Cluster geometry defaults and auto-layout packing."""

from __future__ import annotations

import random
from dataclasses import replace

from researchoo.models import Cluster

DEFAULT_WIDTH = 300
DEFAULT_HEIGHT = 340
MIN_WIDTH = 250
MIN_HEIGHT = 200

GRID_ORIGIN = 50
GRID_STEP = 400
GRID_COLUMNS = 3

LAYOUT_PADDING = 40
LAYOUT_START_X = 50
LAYOUT_START_Y = 50
LAYOUT_MAX_ROW_WIDTH = 1600

PASTEL_COLORS = (
    "#FDE68A", "#BFDBFE", "#BBF7D0", "#FBCFE8", "#DDD6FE",
    "#FED7AA", "#A5F3FC", "#FECACA", "#D9F99D", "#E9D5FF",
)


def random_pastel_color() -> str:
    return random.choice(PASTEL_COLORS)


def grid_position(index: int) -> tuple[float, float]:
    """Position of the index-th cluster in the initial three-column grid."""
    x = GRID_ORIGIN + (index % GRID_COLUMNS) * GRID_STEP
    y = GRID_ORIGIN + (index // GRID_COLUMNS) * GRID_STEP
    return float(x), float(y)


def with_default_geometry(clusters: list[Cluster]) -> list[Cluster]:
    """Fill in missing position/size, leaving clusters that have them untouched."""
    result = []
    for i, c in enumerate(clusters):
        if c.x is not None and c.y is not None and c.width is not None and c.height is not None:
            result.append(c)
            continue
        gx, gy = grid_position(i)
        result.append(replace(
            c,
            x=c.x if c.x is not None else gx,
            y=c.y if c.y is not None else gy,
            width=c.width if c.width is not None else DEFAULT_WIDTH,
            height=c.height if c.height is not None else DEFAULT_HEIGHT,
        ))
    return result


def auto_layout(
    clusters: list[Cluster],
    max_row_width: float = LAYOUT_MAX_ROW_WIDTH,
    padding: float = LAYOUT_PADDING,
) -> list[Cluster]:
    """Pack clusters left to right, top to bottom, in input order.

    A row wraps when the next cluster would extend past ``max_row_width``;
    the new row starts below the tallest cluster of the finished row. A
    cluster wider than the row still gets a row of its own. The result
    depends only on order and sizes, so repeated runs are identical.
    """
    x = LAYOUT_START_X
    y = LAYOUT_START_Y
    row_height = 0.0
    laid_out = []
    for c in clusters:
        width = c.width if c.width is not None else DEFAULT_WIDTH
        height = c.height if c.height is not None else DEFAULT_HEIGHT
        if x + width > max_row_width and x > LAYOUT_START_X:
            x = LAYOUT_START_X
            y += row_height + padding
            row_height = 0.0
        laid_out.append(replace(c, x=float(x), y=float(y), width=width, height=height))
        x += width + padding
        row_height = max(row_height, height)
    return laid_out
