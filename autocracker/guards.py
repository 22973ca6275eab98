from enum import Enum


class FlightState(Enum):
    IDLE = "idle"
    BUSY = "busy"


class FlightGuard:
    """
    Two-state latch replacing bare "in flight" booleans.

    try_enter() tests and sets in one step; everything runs on one event loop,
    so nothing can interleave between the test and the set.
    """

    def __init__(self, name: str = "operation"):
        self.name = name
        self.state = FlightState.IDLE

    @property
    def busy(self) -> bool:
        return self.state is FlightState.BUSY

    def try_enter(self) -> bool:
        if self.state is FlightState.BUSY:
            return False
        self.state = FlightState.BUSY
        return True

    def leave(self) -> None:
        self.state = FlightState.IDLE

    def __repr__(self) -> str:
        return f"FlightGuard({self.name!r}, {self.state.value})"
