import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import describe_error
from .guards import FlightGuard
from .localization import _
from .models import CrackSession, normalize_catalog_id
from .notification import SuccessNotification
from .progress import ProgressBridge
from .protection import ProtectionProbe

logger = logging.getLogger(__name__)

ApplyTask = Callable[[str, str, Optional[str]], Awaitable[str]]


class CrackWorkflow:
    """
    Runs the apply-task for the current catalog id and install folder.

    trigger() is a silent no-op unless every precondition holds: a catalog
    id, an install path, no session already initiated, and the protection
    probe not in the middle of a check. There is one session at a time; it is
    dropped once the task settles, whichever way it went, and a failed run
    is only retried by triggering again.
    """

    def __init__(
        self,
        apply_task: ApplyTask,
        probe: ProtectionProbe,
        progress: ProgressBridge,
        notification: SuccessNotification,
        on_change: Optional[Callable[["CrackWorkflow"], None]] = None,
    ):
        self._apply_task = apply_task
        self.probe = probe
        self.progress = progress
        self.notification = notification
        self.on_change = on_change

        self.catalog_id: str = ""
        self.install_path: str = ""
        self.language: Optional[str] = None

        self.session: Optional[CrackSession] = None
        self.last_error: Optional[str] = None
        self.last_result: Optional[str] = None
        self._guard = FlightGuard("apply task")
        self._task: Optional[asyncio.Task] = None

    # --- Inputs ---

    def set_catalog_id(self, value: Optional[str]) -> None:
        self.catalog_id = normalize_catalog_id(value)
        # The probe must see the new id before anything reads its state.
        self.probe.set_catalog_id(self.catalog_id)
        self._notify()

    def set_install_path(self, value: Optional[str]) -> None:
        self.install_path = (value or "").strip()
        self._notify()

    def set_language(self, value: Optional[str]) -> None:
        self.language = value or None

    # --- State ---

    @property
    def in_progress(self) -> bool:
        return self.session is not None and self.session.in_progress

    @property
    def initiated(self) -> bool:
        return self.session is not None and self.session.initiated

    @property
    def can_start(self) -> bool:
        return bool(
            self.catalog_id
            and self.install_path
            and not self.initiated
            and not self._guard.busy
            and not self.probe.is_checking
        )

    @property
    def status_message(self) -> str:
        if self.last_error is not None:
            return _("Error: {error}").format(error=self.last_error)
        return self.progress.snapshot.message

    # --- Actions ---

    def trigger(self) -> Optional[asyncio.Task]:
        """Starts the apply-task, or returns None when a precondition fails."""
        if not self.can_start or not self._guard.try_enter():
            return None

        session = CrackSession(self.catalog_id, self.install_path, self.language)
        session.initiated = True
        session.in_progress = True
        self.session = session
        self.last_error = None
        self.last_result = None
        self.progress.reset(0, _("Started"))
        self._notify()

        self._task = asyncio.ensure_future(self._run(session))
        return self._task

    async def _run(self, session: CrackSession) -> None:
        logger.info(
            "Applying to App ID %s at %s", session.catalog_id, session.install_path
        )
        try:
            result = await self._apply_task(
                session.catalog_id, session.install_path, session.language
            )
        except Exception as e:
            session.last_error = str(e) or type(e).__name__
            self.last_error = session.last_error
            logger.error("Cracking failed: %s", describe_error(e))
        else:
            session.result = result
            self.last_result = result
            logger.info("Cracking completed: %s", result)
            self.notification.show()
        finally:
            session.in_progress = False
            session.initiated = False
            self.session = None
            self._guard.leave()
            self._task = None
            logger.info("Crack process finished")
            self._notify()

    async def wait(self) -> None:
        """Waits for the running apply-task, if any, to settle."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self)
