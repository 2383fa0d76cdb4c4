"""
Incremental image collection.

Merges successive pages into one growing, ordered, de-duplicated sequence.

Invariants:
- Insertion order = arrival order across pages
- Each key appears once; the first occurrence wins
- Grows monotonically; only reset() empties it
- A page fetched before a reset never lands after it (generation guard)
"""

import logging
from dataclasses import dataclass

from core.models import Item, Page

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchTicket:
    """Snapshot taken when a fetch is issued: the generation and cursor it used."""
    generation: int
    cursor: str | None


class ImageCollection:
    def __init__(self):
        self._items: list[Item] = []
        self._index: dict[str, int] = {}
        self.next_cursor: str | None = None
        self.generation = 0
        self.pages_loaded = 0

    @property
    def items(self) -> tuple[Item, ...]:
        """Immutable snapshot for renderers."""
        return tuple(self._items)

    @property
    def initial_loaded(self) -> bool:
        return self.pages_loaded > 0

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def __iter__(self):
        return iter(self._items)

    def contains(self, key: str) -> bool:
        return key in self._index

    def index_of(self, key: str) -> int | None:
        return self._index.get(key)

    def issue(self) -> FetchTicket:
        """Ticket for the next fetch: resumes at next_cursor under the current generation."""
        return FetchTicket(self.generation, self.next_cursor)

    def append(self, page: Page, ticket: FetchTicket | None = None) -> bool:
        """
        Merge a page into the collection.

        Args:
            page: Page returned by the listing client
            ticket: The ticket the fetch was issued with. A ticket from an
                older generation means a reset happened in between; the page
                is dropped.

        Returns:
            True if the page was applied, False if it was discarded as stale.
        """
        if ticket is not None and ticket.generation != self.generation:
            logger.info(
                "Discarding stale page (issued gen %d, current gen %d)",
                ticket.generation, self.generation,
            )
            return False

        added = 0
        for item in page.items:
            if item.key in self._index:
                continue
            self._index[item.key] = len(self._items)
            self._items.append(item)
            added += 1

        self.next_cursor = page.continuation_cursor
        self.pages_loaded += 1
        logger.debug("Appended %d/%d items, total %d", added, len(page.items), len(self._items))
        return True

    def reset(self) -> None:
        """Empty the collection and invalidate every outstanding ticket."""
        self._items = []
        self._index = {}
        self.next_cursor = None
        self.pages_loaded = 0
        self.generation += 1
