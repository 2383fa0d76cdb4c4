"""
Credential expiry handling.

State machine:

    ACTIVE --403--> EXPIRED --user refresh--> REFRESHING --ok--> ACTIVE
                       ^                          |
                       +--------- failure --------+

While not ACTIVE, automatic listing fetches are suppressed and the UI shows a
banner (not an error view). A successful refresh hands back the cursor of the
fetch that failed so it can be re-issued without resetting pagination.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable

from core.errors import CredentialRefreshError, is_auth_failure
from core.event_recorder import get_event_recorder
from core.models import Credentials

logger = logging.getLogger(__name__)


class CredentialState(Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REFRESHING = "REFRESHING"


# Marks "no failed fetch waiting"; None is a valid cursor (the first page).
NO_PENDING = object()


class CredentialExpiryHandler:
    def __init__(
        self,
        refresher: Callable[[], Awaitable[Credentials]],
        on_refreshed: Callable[[Credentials], None] | None = None,
    ):
        self.refresher = refresher
        self.on_refreshed = on_refreshed
        self.state = CredentialState.ACTIVE
        self.pending_cursor = NO_PENDING
        self.refresh_error: CredentialRefreshError | None = None

    @property
    def is_active(self) -> bool:
        return self.state is CredentialState.ACTIVE

    @property
    def has_pending(self) -> bool:
        return self.pending_cursor is not NO_PENDING

    def record_failure(self, exc: BaseException, cursor: str | None) -> bool:
        """
        Inspect a listing failure.

        Returns:
            True if it was an auth failure (handler is now EXPIRED).
        """
        if not is_auth_failure(exc):
            return False
        if self.state is CredentialState.ACTIVE:
            logger.warning("Access credential expired (cursor=%r)", cursor)
            get_event_recorder().record("CREDENTIALS_EXPIRED", {"cursor": cursor}, actor="system")
        self.state = CredentialState.EXPIRED
        self.pending_cursor = cursor
        return True

    def mark_active(self) -> None:
        """A user-initiated fetch succeeded with the current credential."""
        logger.info("Access credential accepted again")
        self.state = CredentialState.ACTIVE
        self.pending_cursor = NO_PENDING
        self.refresh_error = None

    def allows_fetch(self, user_initiated: bool = False) -> bool:
        return self.is_active or user_initiated

    def take_pending(self):
        """Pop the failed cursor (NO_PENDING if none)."""
        cursor, self.pending_cursor = self.pending_cursor, NO_PENDING
        return cursor

    async def refresh(self):
        """
        Obtain new credentials from the refresh collaborator.

        Returns:
            The pending cursor to re-issue (NO_PENDING if nothing failed).
            Returns NO_PENDING without calling the collaborator when already ACTIVE.

        Raises:
            CredentialRefreshError: refresh failed; state stays EXPIRED
        """
        if self.state is CredentialState.ACTIVE:
            return NO_PENDING
        if self.state is CredentialState.REFRESHING:
            raise CredentialRefreshError("A refresh is already in progress")

        self.state = CredentialState.REFRESHING
        try:
            credentials = await self.refresher()
            if self.on_refreshed is not None:
                self.on_refreshed(credentials)
        except CredentialRefreshError as e:
            self._refresh_failed(e)
            raise
        except Exception as e:
            error = CredentialRefreshError(f"Credential refresh failed: {e}")
            self._refresh_failed(error)
            raise error from e

        self.state = CredentialState.ACTIVE
        self.refresh_error = None
        logger.info("Access credential refreshed")
        get_event_recorder().record("CREDENTIALS_REFRESHED", {}, actor="user")
        return self.take_pending()

    def _refresh_failed(self, error: CredentialRefreshError) -> None:
        self.state = CredentialState.EXPIRED
        self.refresh_error = error
        logger.warning("Credential refresh failed: %s", error.message)
        get_event_recorder().record(
            "CREDENTIAL_REFRESH_FAILED", {"error": error.message, "status": error.status}, actor="user"
        )
