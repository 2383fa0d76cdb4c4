"""
Per-browser gallery session.

GallerySession is the single owner of the collection and the navigation
state; every mutation goes through it. It wires together:

- ListingClient (page fetches, run off the event loop)
- ImageCollection (accumulation, generation guard)
- LoadMoreTrigger (sentinel -> "need more")
- Navigator (lightbox)
- CredentialExpiryHandler (403 -> banner -> refresh -> resume)
- Virtualizer (column count / visible rows)

Concurrency model: all state transitions run on the event loop and complete
before the next request is handled. At most one page fetch is in flight per
generation, so pages always land in the order they were issued.

Retry policy: transient failures are retried up to max_attempts in total with
exponential backoff. Auth failures are never retried; they route to the
credential handler.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable

from core.collection import FetchTicket, ImageCollection
from core.credentials import NO_PENDING, CredentialExpiryHandler
from core.errors import CredentialRefreshError, UpstreamError, is_auth_failure
from core.event_recorder import get_event_recorder
from core.load_more import LoadMoreTrigger
from core.models import Credentials, Page
from core.navigation import Navigator
from core.storage import ListingClient
from core.virtualizer import VirtualWindow, Virtualizer

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF = 0.5  # seconds; doubled on every retry


class Phase:
    IDLE = "idle"        # nothing loaded yet
    LOADING = "loading"  # initial page in flight
    READY = "ready"      # at least one page loaded
    ERROR = "error"      # initial page failed (full-page error view)


class GallerySession:
    def __init__(
        self,
        listing: ListingClient,
        refresher: Callable[[], Awaitable[Credentials]],
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.listing = listing
        self.collection = ImageCollection()
        self.navigator = Navigator(self.collection)
        self.trigger = LoadMoreTrigger()
        self.virtualizer = Virtualizer()
        self.credentials = CredentialExpiryHandler(refresher, on_refreshed=listing.update_credentials)
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep

        self.phase = Phase.IDLE
        self.initial_error: UpstreamError | None = None
        self.load_more_error: UpstreamError | None = None
        self._in_flight: FetchTicket | None = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def banner(self) -> bool:
        """Show the credential-expired banner."""
        return not self.credentials.is_active

    @property
    def refresh_error(self):
        return self.credentials.refresh_error

    @property
    def is_loading(self) -> bool:
        return self._in_flight is not None and self._in_flight.generation == self.collection.generation

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    async def _fetch_page(self, cursor: str | None) -> Page:
        """One page, retrying transient failures. Auth failures propagate immediately."""
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(self.listing.fetch_page, cursor)
            except UpstreamError as e:
                error = e
            except Exception as e:
                # Malformed upstream data or a broken client: a 502 like any bad gateway
                logger.exception("Unexpected listing failure (cursor=%r)", cursor)
                error = UpstreamError(502, f"Unexpected listing failure: {e}")
                error.__cause__ = e

            attempt += 1
            if is_auth_failure(error) or attempt >= self.max_attempts:
                raise error
            delay = self.backoff * 2 ** (attempt - 1)
            logger.warning(
                "Listing failed (%s), retry %d/%d in %.1fs",
                error, attempt, self.max_attempts - 1, delay,
            )
            await self._sleep(delay)

    async def _fetch(self, ticket: FetchTicket, user_initiated: bool = False) -> bool:
        """
        Issue one fetch for ticket and merge the result.

        Returns:
            True if a page was appended.
        """
        if self.is_loading:
            logger.debug("Fetch already in flight, not issuing another")
            return False
        if not self.credentials.allows_fetch(user_initiated):
            logger.debug("Credentials expired, fetch suppressed")
            return False

        self._in_flight = ticket
        self.trigger.begin()
        try:
            page = await self._fetch_page(ticket.cursor)
        except UpstreamError as e:
            if ticket.generation == self.collection.generation:
                self._record_failure(e, ticket)
            return False
        finally:
            if self._in_flight is ticket:
                self._in_flight = None
                self.trigger.finish()

        if not self.collection.append(page, ticket):
            get_event_recorder().record(
                "PAGE_DISCARDED", {"generation": ticket.generation}, actor="system"
            )
            return False

        self.phase = Phase.READY
        self.initial_error = None
        self.load_more_error = None
        if not self.credentials.is_active:
            # A user-initiated fetch went through: the credential works again
            self.credentials.mark_active()
        self.trigger.rearm()
        self.navigator.revalidate()
        get_event_recorder().record("PAGE_LOADED", {
            "items": len(page.items),
            "total": len(self.collection),
            "has_more": page.has_more,
        }, actor="system")
        return True

    def _record_failure(self, error: UpstreamError, ticket: FetchTicket) -> None:
        if self.credentials.record_failure(error, ticket.cursor):
            if not self.collection.initial_loaded:
                self.phase = Phase.IDLE
            return

        logger.warning("Listing failed after retries: %s", error)
        if self.collection.initial_loaded:
            # Keep what is already rendered; show a transient indicator
            self.load_more_error = error
        else:
            self.initial_error = error
            self.phase = Phase.ERROR

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _load_first(self, user_initiated: bool = False) -> bool:
        if self.is_loading:
            return False
        ticket = self.collection.issue()
        self.phase = Phase.LOADING
        loaded = await self._fetch(ticket, user_initiated=user_initiated)
        if (
            not loaded
            and self.phase == Phase.LOADING
            and ticket.generation == self.collection.generation
        ):
            self.phase = Phase.IDLE
        return loaded

    async def load_initial(self) -> bool:
        """Load the first page, once per generation."""
        if self.collection.initial_loaded or self.is_loading:
            return False
        return await self._load_first()

    async def load_more(self) -> bool:
        if not self.collection.initial_loaded or not self.collection.has_more:
            return False
        return await self._fetch(self.collection.issue())

    async def on_sentinel(self, visible: bool) -> bool:
        """Boundary sentinel visibility report from the browser."""
        fire = self.trigger.observe(
            visible,
            initial_loaded=self.collection.initial_loaded,
            has_more=self.collection.has_more,
        )
        if not fire:
            return False
        return await self.load_more()

    async def retry(self) -> bool:
        """User-initiated retry of whatever failed last (allowed while expired)."""
        if not self.collection.initial_loaded:
            return await self._load_first(user_initiated=True)
        if not self.collection.has_more:
            return False
        return await self._fetch(self.collection.issue(), user_initiated=True)

    async def refresh_credentials(self) -> bool:
        """
        User-triggered credential refresh.

        On success, re-issues the fetch that hit the 403 with the same cursor.
        On failure the handler stays EXPIRED and refresh_error is set.

        Returns:
            True if the refresh succeeded.
        """
        try:
            pending = await self.credentials.refresh()
        except CredentialRefreshError:
            return False

        if pending is not NO_PENDING:
            await self._fetch(FetchTicket(self.collection.generation, pending))
        return True

    def reset(self) -> None:
        """Drop the collection; any in-flight fetch result will be discarded."""
        self.collection.reset()
        self.trigger.reset()
        self.navigator.revalidate()
        self.credentials.take_pending()
        self._in_flight = None
        self.phase = Phase.IDLE
        self.initial_error = None
        self.load_more_error = None
        get_event_recorder().record(
            "COLLECTION_RESET", {"generation": self.collection.generation}, actor="user"
        )

    async def reload(self) -> bool:
        """Full reload: reset, then fetch the first page again."""
        self.reset()
        return await self._load_first(user_initiated=True)

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------

    def update_viewport(
        self,
        width: float | None = None,
        scroll_offset: float | None = None,
        viewport_height: float | None = None,
    ) -> VirtualWindow:
        if width is not None:
            self.virtualizer.set_width(width)
        self.virtualizer.set_viewport(scroll_offset, viewport_height)
        return self.virtualizer.window(len(self.collection))


class SessionStore:
    """In-memory session id -> GallerySession map, oldest evicted first."""

    def __init__(self, factory: Callable[[], GallerySession], max_sessions: int = 200):
        self.factory = factory
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, GallerySession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> GallerySession:
        session = self._sessions.get(session_id)
        if session is None:
            session = self.factory()
            self._sessions[session_id] = session
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("Evicted gallery session %s", evicted)
        else:
            self._sessions.move_to_end(session_id)
        return session

    def clear(self) -> None:
        self._sessions.clear()
