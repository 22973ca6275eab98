from typing import Callable, Optional

from .localization import _
from .timers import ResettableTimer

NOTIFICATION_SECONDS = 4.0
DEFAULT_MESSAGE = "Emulator has been applied."


class SuccessNotification:
    """Auto-dismissing success toast. Showing it again restarts the countdown."""

    def __init__(
        self,
        duration: float = NOTIFICATION_SECONDS,
        on_dismiss: Optional[Callable[[], None]] = None,
        on_change: Optional[Callable[["SuccessNotification"], None]] = None,
    ):
        self.duration = duration
        self.on_dismiss = on_dismiss
        self.on_change = on_change
        self.visible = False
        self.message = ""
        self._timer = ResettableTimer()
        self._disposed = False

    def show(self, message: Optional[str] = None) -> None:
        if self._disposed:
            return
        self.message = message or _(DEFAULT_MESSAGE)
        self.visible = True
        self._timer.restart(self.duration, self._expire)
        self._notify()

    def _expire(self) -> None:
        self.visible = False
        self._notify()
        if self.on_dismiss:
            self.on_dismiss()

    def dispose(self) -> None:
        """Cancels a pending dismissal; the callback will not fire afterwards."""
        self._disposed = True
        self._timer.cancel()

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self)
