"""
Load-more trigger for infinite scroll.

The browser reports the boundary sentinel's visibility; this turns those
reports into "need more" signals.

Rules:
- One signal per not-visible -> visible transition
- No signal while a fetch is in flight, when there is nothing more to load,
  or before the initial page has loaded
"""

import logging

logger = logging.getLogger(__name__)


class LoadMoreTrigger:
    def __init__(self):
        self.is_loading_more = False
        self._visible = False

    @property
    def visible(self) -> bool:
        return self._visible

    def observe(self, visible: bool, *, initial_loaded: bool, has_more: bool) -> bool:
        """
        Record a sentinel visibility report.

        Returns:
            True exactly when the caller should request the next page.
        """
        rising = visible and not self._visible
        self._visible = visible
        if not rising:
            return False

        if not initial_loaded:
            logger.debug("Sentinel visible before initial page, ignoring")
            return False
        if not has_more:
            return False
        if self.is_loading_more:
            logger.debug("Sentinel visible while a fetch is in flight, ignoring")
            return False
        return True

    def begin(self) -> None:
        self.is_loading_more = True

    def finish(self) -> None:
        self.is_loading_more = False

    def rearm(self) -> None:
        """Forget the visibility edge so a still-visible sentinel can fire again."""
        self._visible = False

    def reset(self) -> None:
        self.is_loading_more = False
        self._visible = False
