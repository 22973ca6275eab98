from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def normalize_catalog_id(value: Optional[str]) -> str:
    """Returns the trimmed text of a catalog id, or "" when unset."""
    if value is None:
        return ""
    return str(value).strip()


def is_literal_catalog_id(text: str) -> bool:
    """A purely numeric, positive value is usable as a catalog id directly."""
    text = normalize_catalog_id(text)
    return text.isdigit() and int(text) > 0


@dataclass(frozen=True)
class Game:
    """One search result entry."""

    catalog_id: str
    display_name: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Game":
        return cls(str(payload["appid"]), str(payload.get("name", "")))


class ProtectionStatus(Enum):
    IDLE = "idle"
    CHECKING = "checking"
    PROTECTED = "protected"
    CLEAR = "clear"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ProtectionStatus.PROTECTED,
            ProtectionStatus.CLEAR,
            ProtectionStatus.EXHAUSTED,
        )


@dataclass
class RetryBudget:
    """Bounded attempt counter consumed by the protection probe."""

    max_attempts: int = 3
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def consume(self) -> int:
        """Takes one attempt and returns its 1-indexed number."""
        if self.exhausted:
            raise RuntimeError("retry budget already exhausted")
        self.attempts += 1
        return self.attempts

    def reset(self) -> None:
        self.attempts = 0


@dataclass
class ProtectionState:
    status: ProtectionStatus = ProtectionStatus.IDLE
    message: str = ""
    budget: RetryBudget = field(default_factory=RetryBudget)

    @property
    def attempts(self) -> int:
        return self.budget.attempts


@dataclass(frozen=True)
class ProgressSnapshot:
    percent: float = 0
    message: str = ""

    @property
    def clamped_percent(self) -> float:
        """Percent limited to 0..100; the stream may deliver anything."""
        try:
            value = float(self.percent)
        except (TypeError, ValueError):
            return 0.0
        if value != value:
            return 0.0
        return max(0.0, min(100.0, value))

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProgressSnapshot":
        percent = payload.get("percent", payload.get("progress", 0))
        return cls(percent, str(payload.get("message", "")))


@dataclass
class CrackSession:
    catalog_id: str
    install_path: str
    language: Optional[str] = None
    in_progress: bool = False
    initiated: bool = False
    last_error: Optional[str] = None
    result: Optional[str] = None
