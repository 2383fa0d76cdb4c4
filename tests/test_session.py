"""
Tests for core.session.GallerySession.

Covers the fetch pipeline end to end against a fake listing: retry policy,
credential expiry and resume, load-more failures, stale results after reset.
"""

import asyncio
import threading

import pytest

from core.credentials import CredentialState
from core.errors import AuthExpiredError, CredentialRefreshError, UpstreamError
from core.session import GallerySession, Phase, SessionStore


@pytest.fixture
def delays():
    return []


@pytest.fixture
def session(paged_listing, refresher, delays):
    async def record_sleep(delay):
        delays.append(delay)
    return GallerySession(paged_listing, refresher, backoff=0.5, sleep=record_sleep)


def keys(session):
    return [item.key for item in session.collection]


class TestInitialLoad:

    def test_loads_first_page(self, session, paged_listing):
        assert asyncio.run(session.load_initial())

        assert keys(session) == ["gallery/a.jpg", "gallery/b.jpg"]
        assert session.phase == Phase.READY
        assert paged_listing.calls == [None]

    def test_initial_load_runs_once(self, session, paged_listing):
        """A second page view does not refetch the first page."""
        asyncio.run(session.load_initial())
        assert not asyncio.run(session.load_initial())
        assert paged_listing.calls == [None]

    def test_transient_failure_is_retried(self, session, paged_listing, delays):
        paged_listing.failures = [UpstreamError(503, "Service Unavailable")]

        assert asyncio.run(session.load_initial())
        assert paged_listing.calls == [None, None]
        assert delays == [0.5]

    def test_gives_up_after_three_attempts(self, session, paged_listing, delays):
        """Three attempts in total with exponential backoff, then the error view."""
        paged_listing.failures = [UpstreamError(500, "boom") for _ in range(3)]

        assert not asyncio.run(session.load_initial())
        assert len(paged_listing.calls) == 3
        assert delays == [0.5, 1.0]
        assert session.phase == Phase.ERROR
        assert session.initial_error.status == 500
        assert not session.banner

    def test_auth_failure_is_not_retried(self, session, paged_listing):
        """403 goes straight to the credential banner, no error view."""
        paged_listing.failures = [AuthExpiredError()]

        assert not asyncio.run(session.load_initial())
        assert len(paged_listing.calls) == 1
        assert session.banner
        assert session.initial_error is None
        assert session.phase == Phase.IDLE

    def test_user_retry_after_error(self, session, paged_listing):
        paged_listing.failures = [UpstreamError(500, "boom") for _ in range(3)]
        asyncio.run(session.load_initial())

        assert asyncio.run(session.retry())
        assert session.phase == Phase.READY
        assert session.initial_error is None
        assert len(session.collection) == 2

    def test_unexpected_exception_becomes_error_view(self, session, paged_listing):
        """A non-upstream exception from the listing is a 502, retried, then the error view."""
        paged_listing.failures = [ValueError("bad timestamp") for _ in range(3)]

        assert not asyncio.run(session.load_initial())
        assert len(paged_listing.calls) == 3
        assert session.phase == Phase.ERROR
        assert session.initial_error.status == 502
        assert "bad timestamp" in session.initial_error.message
        assert isinstance(session.initial_error.__cause__, ValueError)

    def test_unexpected_exception_is_retried(self, session, paged_listing):
        paged_listing.failures = [KeyError("Contents")]

        assert asyncio.run(session.load_initial())
        assert paged_listing.calls == [None, None]


class TestLoadMore:

    def test_sentinel_edge_loads_next_page(self, session, paged_listing):
        asyncio.run(session.load_initial())

        assert asyncio.run(session.on_sentinel(True))
        # b.jpg on page two is a duplicate
        assert keys(session) == ["gallery/a.jpg", "gallery/b.jpg", "gallery/c.jpg"]
        assert paged_listing.calls == [None, "c1"]

    def test_still_visible_sentinel_fires_again_after_page(self, session):
        """A short page leaves the sentinel on screen; the next report fetches again."""
        asyncio.run(session.load_initial())
        asyncio.run(session.on_sentinel(True))

        assert asyncio.run(session.on_sentinel(True))
        assert len(session.collection) == 4
        assert not session.collection.has_more

    def test_nothing_after_end_of_collection(self, session, paged_listing):
        asyncio.run(session.load_initial())
        asyncio.run(session.on_sentinel(True))
        asyncio.run(session.on_sentinel(True))

        assert not asyncio.run(session.on_sentinel(False))
        assert not asyncio.run(session.on_sentinel(True))
        assert paged_listing.calls == [None, "c1", "c2"]

    def test_sentinel_before_initial_load_is_ignored(self, session, paged_listing):
        assert not asyncio.run(session.on_sentinel(True))
        assert paged_listing.calls == []

    def test_failure_keeps_loaded_items(self, session, paged_listing):
        """A failed load-more shows a transient indicator, not the error view."""
        asyncio.run(session.load_initial())
        paged_listing.failures = [UpstreamError(500, "boom") for _ in range(3)]

        assert not asyncio.run(session.on_sentinel(True))
        assert len(session.collection) == 2
        assert session.phase == Phase.READY
        assert session.load_more_error.status == 500
        assert session.initial_error is None

    def test_retry_after_load_more_failure(self, session, paged_listing):
        asyncio.run(session.load_initial())
        paged_listing.failures = [UpstreamError(500, "boom") for _ in range(3)]
        asyncio.run(session.on_sentinel(True))

        assert asyncio.run(session.retry())
        assert session.load_more_error is None
        assert paged_listing.calls[-1] == "c1"
        assert len(session.collection) == 3


class TestCredentialExpiry:

    def test_expired_then_refreshed_resumes_same_cursor(self, session, paged_listing, refresher):
        """403 on page two -> banner -> refresh -> page two fetched with the same cursor."""
        asyncio.run(session.load_initial())
        paged_listing.failures = [AuthExpiredError()]

        asyncio.run(session.on_sentinel(True))
        assert session.banner
        assert session.credentials.state is CredentialState.EXPIRED
        assert len(session.collection) == 2

        # Automatic fetches are suppressed while expired
        asyncio.run(session.on_sentinel(False))
        assert not asyncio.run(session.on_sentinel(True))
        assert paged_listing.calls == [None, "c1"]

        assert asyncio.run(session.refresh_credentials())
        assert not session.banner
        assert paged_listing.credentials == refresher.credentials
        assert paged_listing.calls == [None, "c1", "c1"]
        assert len(session.collection) == 3

    def test_failed_refresh_keeps_banner(self, session, paged_listing, refresher):
        asyncio.run(session.load_initial())
        paged_listing.failures = [AuthExpiredError()]
        asyncio.run(session.on_sentinel(True))
        refresher.error = CredentialRefreshError("Failed to refresh credentials: 500", status=500)

        assert not asyncio.run(session.refresh_credentials())
        assert session.banner
        assert session.refresh_error.status == 500
        assert paged_listing.calls == [None, "c1"]

    def test_refresh_when_active_does_nothing(self, session, refresher):
        asyncio.run(session.load_initial())

        assert asyncio.run(session.refresh_credentials())
        assert refresher.calls == 0

    def test_user_retry_allowed_while_expired(self, session, paged_listing):
        """A manual retry that succeeds proves the credential works again."""
        paged_listing.failures = [AuthExpiredError()]
        asyncio.run(session.load_initial())
        assert session.banner

        assert asyncio.run(session.retry())
        assert not session.banner
        assert len(session.collection) == 2


class TestReset:

    def test_reload_starts_from_first_page(self, session, paged_listing):
        asyncio.run(session.load_initial())
        asyncio.run(session.on_sentinel(True))
        session.navigator.open(2)

        assert asyncio.run(session.reload())
        assert keys(session) == ["gallery/a.jpg", "gallery/b.jpg"]
        assert paged_listing.calls == [None, "c1", None]
        assert session.collection.generation == 1
        # c.jpg is not on the first page any more
        assert not session.navigator.is_open

    def test_in_flight_page_discarded_after_reset(self, session, paged_listing, event_log):
        """A page requested before reset() never lands in the new collection."""
        paged_listing.gate = threading.Event()

        async def scenario():
            task = asyncio.create_task(session.load_initial())
            while not paged_listing.started.is_set():
                await asyncio.sleep(0.01)
            assert session.is_loading
            session.reset()
            assert not session.is_loading
            paged_listing.gate.set()
            return await task

        assert not asyncio.run(scenario())
        assert len(session.collection) == 0
        assert session.collection.generation == 1
        assert session.phase == Phase.IDLE
        with open(event_log.log_path, encoding="utf-8") as f:
            assert "PAGE_DISCARDED" in f.read()


class TestViewport:

    def test_update_viewport_uses_collection_size(self, session):
        asyncio.run(session.load_initial())
        window = session.update_viewport(width=500, scroll_offset=0, viewport_height=600)

        assert window.columns == 2
        assert window.row_count == 1
        assert window.total_items == 2


class TestSessionStore:

    def test_same_id_same_session(self, paged_listing, refresher):
        store = SessionStore(lambda: GallerySession(paged_listing, refresher))
        assert store.get("a") is store.get("a")
        assert store.get("a") is not store.get("b")

    def test_evicts_least_recently_used(self, paged_listing, refresher):
        store = SessionStore(lambda: GallerySession(paged_listing, refresher), max_sessions=2)
        first = store.get("a")
        store.get("b")
        store.get("a")
        store.get("c")

        assert len(store) == 2
        assert store.get("a") is first


class TestLoadMoreScenario:

    def test_second_fetch_requested_once_when_sentinel_first_visible(self, listing_factory, page, refresher):
        """Sentinel reports before the first page are ignored; after it, one fetch per edge."""
        listing = listing_factory({
            None: page(["p1.jpg"], "abc"),
            "abc": page(["p2.jpg"], "def"),
        })
        session = GallerySession(listing, refresher, backoff=0)

        assert not asyncio.run(session.on_sentinel(True))
        asyncio.run(session.on_sentinel(False))
        asyncio.run(session.load_initial())
        assert session.collection.has_more

        assert asyncio.run(session.on_sentinel(True))
        assert listing.calls == [None, "abc"]
