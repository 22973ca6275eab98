import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .errors import describe_error
from .guards import FlightGuard
from .models import Game, is_literal_catalog_id
from .timers import ResettableTimer

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 2.0

Lookup = Callable[[str], Awaitable[List[Game]]]


class SearchResolver:
    """
    Turns what the user types into candidate catalog ids.

    Text queries are debounced: each keystroke restarts one timer, and only
    when it elapses is a single lookup issued. A purely numeric query never
    reaches the lookup; it is offered as a direct_candidate instead.
    """

    def __init__(
        self,
        lookup: Lookup,
        delay: float = DEBOUNCE_SECONDS,
        on_change: Optional[Callable[["SearchResolver"], None]] = None,
    ):
        self._lookup = lookup
        self.delay = delay
        self.on_change = on_change

        self.query: str = ""
        self.last_resolved_query: str = ""
        self.results: List[Game] = []
        self.direct_candidate: Optional[str] = None

        self._timer = ResettableTimer()
        self._guard = FlightGuard("search lookup")
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def in_flight(self) -> bool:
        return self._guard.busy

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def update_query(self, text: str) -> None:
        """Called on every keystroke with the full entry text."""
        if self._closed:
            return
        self.query = text
        trimmed = text.strip()

        if not trimmed:
            self._timer.cancel()
            self.results = []
            self.last_resolved_query = ""
            self.direct_candidate = None
            self._notify()
            return

        if is_literal_catalog_id(trimmed):
            self._timer.cancel()
            self.results = []
            self.direct_candidate = trimmed
            self._notify()
            return

        if self.direct_candidate is not None:
            self.direct_candidate = None
            self._notify()
        self._timer.restart(self.delay, self._on_timer)

    def _on_timer(self) -> None:
        query = self.query.strip()
        if not query or query == self.last_resolved_query:
            return
        if not self._guard.try_enter():
            logger.debug("Lookup already in flight, skipping '%s'", query)
            return
        self._task = asyncio.ensure_future(self._run_lookup(query))

    async def _run_lookup(self, query: str) -> None:
        try:
            results = await self._lookup(query)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Search for '%s' failed: %s", query, describe_error(e))
            self.results = []
        else:
            if self.query.strip() and self.direct_candidate is None:
                self.results = list(results)
                self.last_resolved_query = query
        finally:
            self._guard.leave()
            self._task = None

        self._notify()
        # Edits that landed while the lookup was out were skipped by the guard.
        current = self.query.strip()
        if (
            current
            and current != query
            and current != self.last_resolved_query
            and not is_literal_catalog_id(current)
            and not self._timer.pending
            and not self._closed
        ):
            self._timer.restart(self.delay, self._on_timer)

    def close(self) -> None:
        """Cancels the debounce timer and any lookup still running."""
        self._closed = True
        self._timer.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self)
