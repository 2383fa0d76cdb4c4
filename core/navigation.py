"""
Lightbox selection and navigation.

Navigation works on flat collection indices and knows nothing about rows or
virtualization; an item can be open while its row is not rendered.

Semantics:
- next()/prev() wrap around the current collection length
- has_next/has_prev are computed against the live length, so they change as
  pages append after the lightbox was opened
- Opening an out-of-range index raises IndexError (never clamped: a silently
  clamped index would show the wrong image)
"""

import logging
from dataclasses import dataclass

from core.collection import ImageCollection
from core.models import Item

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationState:
    open_key: str
    open_index: int


class Navigator:
    def __init__(self, collection: ImageCollection):
        self.collection = collection
        self.state: NavigationState | None = None

    @property
    def is_open(self) -> bool:
        return self.state is not None

    @property
    def open_index(self) -> int | None:
        return self.state.open_index if self.state else None

    @property
    def current(self) -> Item | None:
        if self.state is None:
            return None
        return self.collection[self.state.open_index]

    @property
    def has_next(self) -> bool:
        return self.state is not None and self.state.open_index < len(self.collection) - 1

    @property
    def has_prev(self) -> bool:
        return self.state is not None and self.state.open_index > 0

    @property
    def position(self) -> str:
        """Human-facing "i / N" counter, 1-based."""
        if self.state is None:
            return ""
        return f"{self.state.open_index + 1} / {len(self.collection)}"

    def open(self, index: int) -> NavigationState:
        length = len(self.collection)
        if index < 0 or index >= length:
            raise IndexError(f"Cannot open index {index}: collection has {length} items")
        self.state = NavigationState(self.collection[index].key, index)
        return self.state

    def open_key(self, key: str) -> NavigationState:
        index = self.collection.index_of(key)
        if index is None:
            raise KeyError(f"Item not in collection: {key}")
        return self.open(index)

    def _step(self, delta: int) -> NavigationState:
        if self.state is None:
            raise IndexError("No item is open")
        length = len(self.collection)
        return self.open((self.state.open_index + delta) % length)

    def next(self) -> NavigationState:
        return self._step(1)

    def prev(self) -> NavigationState:
        return self._step(-1)

    def close(self) -> None:
        self.state = None

    def revalidate(self) -> None:
        """
        Re-check the open item against the collection.

        Called after a reset or reload: closes when the key is gone, and
        re-points the index when the key now sits elsewhere.
        """
        if self.state is None:
            return
        index = self.collection.index_of(self.state.open_key)
        if index is None:
            logger.info("Open item %s no longer in collection, closing", self.state.open_key)
            self.state = None
        elif index != self.state.open_index:
            self.state = NavigationState(self.state.open_key, index)


GRID_KEY_DELTAS = {
    "ArrowRight": lambda columns: 1,
    "ArrowLeft": lambda columns: -1,
    "ArrowDown": lambda columns: columns,
    "ArrowUp": lambda columns: -columns,
}


def grid_neighbor(index: int, key: str, columns: int, total: int) -> int:
    """Index that receives focus when an arrow key is pressed on a grid cell (clamped)."""
    delta = GRID_KEY_DELTAS.get(key)
    if delta is None or total <= 0:
        return index
    return max(0, min(index + delta(columns), total - 1))
