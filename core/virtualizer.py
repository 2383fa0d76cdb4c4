"""
Viewport virtualization for the gallery grid.

Pure functions of (item count, column count, viewport). Nothing here owns
state except Virtualizer, which only remembers the current column count so
callers know when row membership changed.

Layout model:
- Items are laid out row-major: item i sits at row i // columns, column i % columns
- Every row has the same estimated height, so the total content height is
  row_count * row_height and scrollbar proportions stay stable as pages append
"""

import math
from dataclasses import dataclass
from typing import Sequence

DEFAULT_ROW_HEIGHT = 280  # px, includes the grid gap
DEFAULT_OVERSCAN = 5      # rows rendered beyond each edge of the viewport
DEFAULT_COLUMNS = 4       # used before the browser reports its width
MAX_COLUMNS = 6

# (exclusive upper width bound in px, column count)
COLUMN_BREAKPOINTS = (
    (640, 2),
    (768, 3),
    (1024, 4),
    (1280, 5),
)


def column_count_for_width(width: float | None) -> int:
    """Responsive column count: narrow screens get 2 columns, wide ones 6."""
    if width is None:
        return DEFAULT_COLUMNS
    for bound, columns in COLUMN_BREAKPOINTS:
        if width < bound:
            return columns
    return MAX_COLUMNS


def row_count(total: int, columns: int) -> int:
    if columns < 1:
        raise ValueError(f"columns must be >= 1, got {columns}")
    return math.ceil(total / columns) if total > 0 else 0


def row_of(index: int, columns: int) -> tuple[int, int]:
    """(row, column) of a flat collection index."""
    return divmod(index, columns)


def build_rows(items: Sequence, columns: int) -> list[tuple]:
    if columns < 1:
        raise ValueError(f"columns must be >= 1, got {columns}")
    return [tuple(items[i:i + columns]) for i in range(0, len(items), columns)]


@dataclass(frozen=True)
class ViewportWindow:
    """Rows actually intersecting the viewport (no overscan)."""
    first_visible_row: int
    last_visible_row: int
    row_height_estimate: float


@dataclass(frozen=True)
class VirtualRow:
    index: int
    start: float        # px offset from the top of the content
    size: float
    first_item: int     # flat index of the first item in the row
    last_item: int      # flat index one past the last item in the row


@dataclass(frozen=True)
class VirtualWindow:
    """
    Rendered rows for one scroll position.

    first_row/last_row are inclusive and already include overscan. When the
    collection is empty, first_row > last_row and virtual_rows() is empty.
    """
    viewport: ViewportWindow
    first_row: int
    last_row: int
    row_count: int
    columns: int
    total_items: int

    @property
    def total_height(self) -> float:
        return self.row_count * self.viewport.row_height_estimate

    @property
    def is_empty(self) -> bool:
        return self.row_count == 0

    def row_indices(self) -> range:
        return range(self.first_row, self.last_row + 1)

    def virtual_rows(self) -> list[VirtualRow]:
        height = self.viewport.row_height_estimate
        rows = []
        for index in self.row_indices():
            first = index * self.columns
            rows.append(VirtualRow(
                index=index,
                start=index * height,
                size=height,
                first_item=first,
                last_item=min(first + self.columns, self.total_items),
            ))
        return rows


def compute_window(
    total: int,
    columns: int,
    scroll_offset: float = 0,
    viewport_height: float = 0,
    row_height: float = DEFAULT_ROW_HEIGHT,
    overscan: int = DEFAULT_OVERSCAN,
) -> VirtualWindow:
    """
    Minimal contiguous row range covering the viewport plus overscan.

    Never reports a row outside [0, row_count). Scroll offsets past the end
    (the collection shrank, or a stale scroll report) are clamped to the last row.
    """
    if row_height <= 0:
        raise ValueError(f"row_height must be positive, got {row_height}")

    rows = row_count(total, columns)
    if rows == 0:
        viewport = ViewportWindow(0, -1, row_height)
        return VirtualWindow(viewport, 0, -1, 0, columns, total)

    scroll_offset = max(0.0, scroll_offset)
    viewport_height = max(0.0, viewport_height)

    first_visible = min(int(scroll_offset // row_height), rows - 1)
    bottom = scroll_offset + viewport_height
    # A row is visible when any part of it is above the bottom edge
    last_visible = max(first_visible, min(math.ceil(bottom / row_height) - 1, rows - 1))

    viewport = ViewportWindow(first_visible, last_visible, row_height)
    return VirtualWindow(
        viewport=viewport,
        first_row=max(0, first_visible - overscan),
        last_row=min(rows - 1, last_visible + overscan),
        row_count=rows,
        columns=columns,
        total_items=total,
    )


class Virtualizer:
    """Tracks the column count derived from the reported viewport width."""

    def __init__(self, row_height: float = DEFAULT_ROW_HEIGHT, overscan: int = DEFAULT_OVERSCAN):
        self.row_height = row_height
        self.overscan = overscan
        self.columns = DEFAULT_COLUMNS
        self.scroll_offset = 0.0
        self.viewport_height = 0.0

    def set_width(self, width: float | None) -> bool:
        """Update columns from width. Returns True if rows must be recomputed."""
        columns = column_count_for_width(width)
        changed = columns != self.columns
        self.columns = columns
        return changed

    def set_viewport(self, scroll_offset: float | None = None, viewport_height: float | None = None) -> None:
        if scroll_offset is not None:
            self.scroll_offset = scroll_offset
        if viewport_height is not None:
            self.viewport_height = viewport_height

    def window(self, total: int) -> VirtualWindow:
        return compute_window(
            total,
            self.columns,
            self.scroll_offset,
            self.viewport_height,
            self.row_height,
            self.overscan,
        )
