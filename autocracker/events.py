import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class Subscription:
    """Handle returned by EventHub.listen(). Releasing it twice is a no-op."""

    def __init__(self, hub: "EventHub", topic: str, listener: Listener):
        self._hub = hub
        self.topic = topic
        self._listener = listener
        self.released = False

    def release(self) -> bool:
        """Detaches the listener. Returns False if it was already released."""
        if self.released:
            return False
        self.released = True
        self._hub._detach(self.topic, self._listener)
        logger.debug("Released listener on '%s'", self.topic)
        return True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class EventHub:
    """Named push-streams: the backend emits, the client listens."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def listen(self, topic: str, listener: Listener) -> Subscription:
        self._listeners.setdefault(topic, []).append(listener)
        logger.debug("Listening on '%s'", topic)
        return Subscription(self, topic, listener)

    def emit(self, topic: str, payload: Dict[str, Any]) -> int:
        """Delivers payload to every current listener, returns the count."""
        listeners = list(self._listeners.get(topic, ()))
        for listener in listeners:
            listener(payload)
        return len(listeners)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    def _detach(self, topic: str, listener: Listener) -> None:
        listeners = self._listeners.get(topic, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(topic, None)
