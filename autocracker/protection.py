import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import describe_error
from .guards import FlightGuard
from .localization import _
from .models import ProtectionState, ProtectionStatus, RetryBudget, normalize_catalog_id
from .timers import ResettableTimer

logger = logging.getLogger(__name__)

MAX_PROBE_ATTEMPTS = 3
PROTECTION_MARKER = "denuvo"

PROTECTED_MESSAGE = (
    "This game contains Denuvo Anti-Tamper, you'll have to first manually crack "
    "the game's executable and afterwards use the program, otherwise the game "
    "won't work."
)
CLEAR_MESSAGE = "No DRM detected."
CHECKING_MESSAGE = "Checking for DRM..."
FAILED_MESSAGE = "check failed, attempt {attempt} of {max_attempts}"

Probe = Callable[[str], Awaitable[str]]
NoticeLookup = Callable[[str], Awaitable[Optional[str]]]


def has_protection_marker(text: Optional[str]) -> bool:
    return bool(text) and PROTECTION_MARKER in text.lower()


class ProtectionProbe:
    """
    Advisory anti-tamper check for the selected catalog id.

    Every change of catalog id resets the state to IDLE with a fresh retry
    budget. A non-empty id starts the first attempt straight away; a failed
    attempt re-issues the probe until the budget of MAX_PROBE_ATTEMPTS is
    spent, at which point the state is EXHAUSTED. PROTECTED, CLEAR and
    EXHAUSTED are final for that id.

    When a fallback is given, it is consulted only if the primary response
    carries no marker.
    """

    def __init__(
        self,
        probe: Probe,
        fallback: Optional[NoticeLookup] = None,
        max_attempts: int = MAX_PROBE_ATTEMPTS,
        retry_delay: float = 0.0,
        on_change: Optional[Callable[["ProtectionProbe"], None]] = None,
    ):
        self._probe = probe
        self._fallback = fallback
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.on_change = on_change

        self.catalog_id: str = ""
        self.state = self._fresh_state()

        self._guard = FlightGuard("protection probe")
        self._retry_timer = ResettableTimer()
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    def _fresh_state(self) -> ProtectionState:
        return ProtectionState(budget=RetryBudget(max_attempts=self.max_attempts))

    @property
    def status(self) -> ProtectionStatus:
        return self.state.status

    @property
    def is_checking(self) -> bool:
        return self.state.status is ProtectionStatus.CHECKING

    def set_catalog_id(self, value: Optional[str]) -> None:
        catalog_id = normalize_catalog_id(value)
        if catalog_id == self.catalog_id:
            return

        self._cancel_pending()
        self._generation += 1
        self._guard = FlightGuard("protection probe")
        self.catalog_id = catalog_id
        self.state = self._fresh_state()
        self._notify()

        if catalog_id:
            self._start_attempt()

    def _start_attempt(self) -> None:
        if not self.catalog_id or self.state.status.is_terminal:
            return
        if self.state.budget.exhausted:
            return
        if not self._guard.try_enter():
            return

        attempt = self.state.budget.consume()
        self.state.status = ProtectionStatus.CHECKING
        if attempt == 1:
            self.state.message = _(CHECKING_MESSAGE)
        self._notify()
        self._task = asyncio.ensure_future(
            self._attempt(self.catalog_id, attempt, self._guard, self._generation)
        )

    async def _attempt(
        self, catalog_id: str, attempt: int, guard: FlightGuard, generation: int
    ) -> None:
        try:
            text = await self._probe(catalog_id)
            protected = has_protection_marker(text)
            if not protected and self._fallback is not None:
                protected = has_protection_marker(await self._fallback(catalog_id))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation != self._generation:
                return
            logger.warning(
                "Protection check for %s failed (attempt %d of %d): %s",
                catalog_id,
                attempt,
                self.max_attempts,
                describe_error(e),
            )
            self.state.message = _(FAILED_MESSAGE).format(
                attempt=attempt, max_attempts=self.max_attempts
            )
            if self.state.budget.exhausted:
                self.state.status = ProtectionStatus.EXHAUSTED
                logger.error(
                    "Giving up on protection check for %s after %d attempts",
                    catalog_id,
                    attempt,
                )
            else:
                self._retry_timer.restart(self.retry_delay, self._start_attempt)
        else:
            if generation != self._generation:
                return
            if protected:
                self.state.status = ProtectionStatus.PROTECTED
                self.state.message = _(PROTECTED_MESSAGE)
            else:
                self.state.status = ProtectionStatus.CLEAR
                self.state.message = _(CLEAR_MESSAGE)
            logger.info(
                "App ID %s: %s", catalog_id, "uses Denuvo" if protected else "no Denuvo"
            )
        finally:
            guard.leave()
            if self._task is asyncio.current_task():
                self._task = None
        self._notify()

    def _cancel_pending(self) -> None:
        self._retry_timer.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def close(self) -> None:
        self._generation += 1
        self._cancel_pending()

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self)
