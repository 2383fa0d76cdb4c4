"""Tests for core.collection: accumulation, de-duplication, generation guard."""

from core.collection import FetchTicket, ImageCollection


def keys(collection):
    return [item.key for item in collection]


class TestAppend:
    """Pages merge in arrival order, first occurrence wins."""

    def test_first_page_sets_cursor_and_initial_loaded(self, page):
        """Appending the first page marks the collection as loaded."""
        collection = ImageCollection()
        assert not collection.initial_loaded

        assert collection.append(page(["a.jpg", "b.jpg"], "c1"))
        assert keys(collection) == ["a.jpg", "b.jpg"]
        assert collection.next_cursor == "c1"
        assert collection.has_more
        assert collection.initial_loaded

    def test_duplicates_across_pages_keep_first_position(self, page):
        """A key seen again in a later page is skipped, not moved."""
        collection = ImageCollection()
        collection.append(page(["a.jpg", "b.jpg"], "c1"))
        collection.append(page(["c.jpg", "a.jpg"], None))

        assert keys(collection) == ["a.jpg", "b.jpg", "c.jpg"]
        assert collection.index_of("a.jpg") == 0
        assert collection.index_of("c.jpg") == 2

    def test_first_write_wins_for_duplicate_payload(self):
        """The first Item stored for a key is kept even if a later one differs."""
        from core.models import Item, Page

        collection = ImageCollection()
        collection.append(Page((Item("a.jpg", "https://first"),), "c1"))
        collection.append(Page((Item("a.jpg", "https://second"),), None))

        assert collection[0].display_url == "https://first"

    def test_duplicates_within_one_page(self, page):
        """Duplicates inside a single page collapse too."""
        collection = ImageCollection()
        collection.append(page(["a.jpg", "a.jpg", "b.jpg"]))

        assert keys(collection) == ["a.jpg", "b.jpg"]

    def test_end_of_collection(self, page):
        """An absent cursor means there is nothing more to load."""
        collection = ImageCollection()
        collection.append(page(["a.jpg"], None))

        assert not collection.has_more
        assert collection.next_cursor is None

    def test_empty_page_still_counts_as_loaded(self, page):
        """An empty first page is a loaded, empty collection."""
        collection = ImageCollection()
        collection.append(page([], None))

        assert collection.initial_loaded
        assert len(collection) == 0

    def test_items_snapshot_is_immutable(self, page):
        """Renderers get a tuple; later appends do not change an old snapshot."""
        collection = ImageCollection()
        collection.append(page(["a.jpg"], "c1"))
        snapshot = collection.items
        collection.append(page(["b.jpg"], None))

        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1
        assert len(collection.items) == 2


class TestGenerationGuard:
    """Results issued before a reset never land after it."""

    def test_issue_snapshots_generation_and_cursor(self, page):
        collection = ImageCollection()
        collection.append(page(["a.jpg"], "c1"))

        assert collection.issue() == FetchTicket(0, "c1")

    def test_stale_ticket_is_discarded(self, page):
        """A page fetched under an old generation is dropped."""
        collection = ImageCollection()
        ticket = collection.issue()
        collection.reset()

        assert not collection.append(page(["a.jpg"], "c1"), ticket)
        assert len(collection) == 0
        assert not collection.initial_loaded
        assert collection.next_cursor is None

    def test_current_ticket_is_applied(self, page):
        collection = ImageCollection()
        collection.reset()
        ticket = collection.issue()

        assert collection.append(page(["a.jpg"], None), ticket)
        assert keys(collection) == ["a.jpg"]


class TestReset:

    def test_reset_clears_everything_and_bumps_generation(self, page):
        """reset() is the only way to shrink the collection."""
        collection = ImageCollection()
        collection.append(page(["a.jpg", "b.jpg"], "c1"))
        collection.reset()

        assert len(collection) == 0
        assert not collection.contains("a.jpg")
        assert collection.pages_loaded == 0
        assert collection.generation == 1

    def test_keys_can_return_after_reset(self, page):
        """De-duplication state is cleared along with the items."""
        collection = ImageCollection()
        collection.append(page(["a.jpg"], None))
        collection.reset()
        collection.append(page(["a.jpg"], None))

        assert keys(collection) == ["a.jpg"]
