"""Shared test fixtures: fake object store, fake refresher, app wiring."""

import threading

import pytest
from starlette.testclient import TestClient

from core.models import Credentials, Item, Page


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

def make_item(key: str) -> Item:
    return Item(
        key=key,
        display_url=f"https://store.test/{key}?sig=full",
        thumb_url=f"https://store.test/{key}?sig=thumb",
        byte_size=2048,
        media_type="image/jpeg",
    )


def make_page(keys, cursor=None) -> Page:
    return Page(items=tuple(make_item(k) for k in keys), continuation_cursor=cursor)


class FakeStorage:
    container = "photos"


class FakeListing:
    """
    Stands in for ListingClient.

    pages maps cursor -> Page. Exceptions queued in failures are raised by
    the next fetch_page calls, oldest first. Set gate to block fetch_page
    until the test releases it.
    """

    def __init__(self, pages=None, prefix="gallery/"):
        self.pages = pages or {}
        self.prefix = prefix
        self.storage = FakeStorage()
        self.failures = []
        self.calls = []
        self.credentials = None
        self.gate: threading.Event | None = None
        self.started = threading.Event()

    def fetch_page(self, cursor=None):
        self.calls.append(cursor)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.failures:
            raise self.failures.pop(0)
        return self.pages[cursor]

    def mint_url(self, container, key):
        return f"https://store.test/{container}/{key}?sig=minted"

    def refresh_items(self, items):
        return [item.with_urls(f"{item.display_url}&fresh=1", None) for item in items]

    def update_credentials(self, credentials):
        self.credentials = credentials


class FakeRefresher:
    """Async refresh collaborator; raises `error` if set, else returns credentials."""

    def __init__(self, error=None):
        self.error = error
        self.calls = 0
        self.credentials = Credentials("new-key", "new-secret", "new-token")

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.credentials


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def event_log(tmp_path):
    """Send structured events to a temp directory instead of logs/."""
    from core.event_recorder import EventRecorder, set_event_recorder
    recorder = EventRecorder(str(tmp_path / "logs"))
    set_event_recorder(recorder)
    yield recorder
    set_event_recorder(None)


@pytest.fixture
def page():
    """Page builder: page(["k1", "k2"], cursor)."""
    return make_page


@pytest.fixture
def item():
    """Item builder: item("k1")."""
    return make_item


@pytest.fixture
def listing_factory():
    """Build a FakeListing from a cursor -> Page mapping."""
    return FakeListing


@pytest.fixture
def paged_listing():
    """Three pages: [a, b] -> [c, b(dup)] -> [d], then end-of-collection."""
    return FakeListing({
        None: make_page(["gallery/a.jpg", "gallery/b.jpg"], "c1"),
        "c1": make_page(["gallery/c.jpg", "gallery/b.jpg"], "c2"),
        "c2": make_page(["gallery/d.jpg"]),
    })


@pytest.fixture
def refresher():
    return FakeRefresher()


@pytest.fixture
def gallery_app(monkeypatch, paged_listing, refresher):
    """Wire app.main to the fakes; restored after the test."""
    import app.main as main
    monkeypatch.setattr(main, "_listing", None)
    monkeypatch.setattr(main, "_sessions", None)
    main.configure(paged_listing, refresher, backoff=0)
    return paged_listing


@pytest.fixture
def client(gallery_app):
    """Create a fresh test client for the FastHTML app."""
    from app.main import app
    return TestClient(app)
