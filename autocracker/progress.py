import logging
from typing import Any, Callable, Dict, Optional

from .events import EventHub, Subscription
from .models import ProgressSnapshot

logger = logging.getLogger(__name__)

PROGRESS_TOPIC = "crack-progress"


class ProgressBridge:
    """
    Holds the latest progress snapshot pushed by the apply-task.

    activate() takes one subscription on the progress topic no matter how
    often it is called; deactivate() releases it exactly once. Each event
    replaces the snapshot outright. If the stream goes quiet the snapshot
    simply stops changing.
    """

    def __init__(
        self,
        hub: EventHub,
        topic: str = PROGRESS_TOPIC,
        on_change: Optional[Callable[[ProgressSnapshot], None]] = None,
    ):
        self.hub = hub
        self.topic = topic
        self.on_change = on_change
        self.snapshot = ProgressSnapshot()
        self._subscription: Optional[Subscription] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def activate(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self.hub.listen(self.topic, self._on_event)

    def deactivate(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            subscription.release()

    def reset(self, percent: float = 0, message: str = "") -> None:
        self._replace(ProgressSnapshot(percent, message))

    def _on_event(self, payload: Dict[str, Any]) -> None:
        logger.debug("Received %s: %s", self.topic, payload)
        self._replace(ProgressSnapshot.from_payload(payload))

    def _replace(self, snapshot: ProgressSnapshot) -> None:
        self.snapshot = snapshot
        if self.on_change:
            self.on_change(snapshot)

    def __enter__(self) -> "ProgressBridge":
        self.activate()
        return self

    def __exit__(self, *exc_info) -> None:
        self.deactivate()
