"""Data model for the bridge control plane.

All mutable state for one controlled app instance lives on a ``BridgeContext``.
Nothing here is a module-level singleton: a second session gets its own context.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .clock import Clock, SystemClock

if TYPE_CHECKING:
    from .browser_session import BrowserSession
    from .config import BridgeConfig
    from .launcher import AppLauncher
    from .transport import CdpTransport


@dataclass(frozen=True)
class Target:
    """A remote tab/page as reported by one listing call."""

    id: str
    type: str
    url: str
    title: str = ""
    ws_url: str | None = None

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> Target:
        # /json/list uses "id"; Target.getTargets uses "targetId".
        return cls(
            id=str(raw.get("id") or raw.get("targetId") or ""),
            type=str(raw.get("type") or ""),
            url=str(raw.get("url") or ""),
            title=str(raw.get("title") or ""),
            ws_url=raw.get("webSocketDebuggerUrl") or None,
        )

    @property
    def is_page(self) -> bool:
        return self.type == "page"


@dataclass
class ConnectionState:
    connected: bool = False
    port: int = 0
    current_url: str | None = None
    active_tab_id: str | None = None


class TabPurpose(str, Enum):
    PRIMARY = "primary"
    AUTONOMOUS_BROWSING = "autonomous-browsing"
    DATA_READ = "data-read"
    DATA_WRITE = "data-write"
    REFERENCE = "reference"
    UNCLASSIFIED = "unclassified"

    @classmethod
    def parse(cls, raw: str | TabPurpose) -> TabPurpose:
        if isinstance(raw, TabPurpose):
            return raw
        value = (raw or "").strip().lower().replace("_", "-")
        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"Unknown tab purpose: {raw}")


@dataclass
class TabContext:
    id: str
    url: str
    title: str
    purpose: TabPurpose
    domain: str
    last_activity: float
    content_summary: str | None = None
    task_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "purpose": self.purpose.value,
            "domain": self.domain,
        }
        if self.content_summary:
            out["contentSummary"] = self.content_summary
        if self.task_id:
            out["taskId"] = self.task_id
        return out


@dataclass
class HealthCache:
    healthy: bool = False
    checked_at: float | None = None

    def fresh(self, now: float, ttl: float) -> bool:
        return self.checked_at is not None and now - self.checked_at < ttl

    def store(self, healthy: bool, now: float) -> bool:
        self.healthy = healthy
        self.checked_at = now
        return healthy

    def invalidate(self) -> None:
        self.healthy = False
        self.checked_at = None


class TaskStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    COMPLETED = "completed"


@dataclass
class AgentStatus:
    status: TaskStatus
    steps: list[str] = field(default_factory=list)
    current_step: str = ""
    response: str = ""
    has_stop_button: bool = False
    is_stable: bool = False
    browsing_url: str = ""
    # Sanitized candidate answer, filled whatever the status; ``response`` only
    # carries it once the status is completed.
    extracted: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "steps": list(self.steps),
            "currentStep": self.current_step,
            "response": self.response,
            "hasStopButton": self.has_stop_button,
            "isStable": self.is_stable,
            "browsingUrl": self.browsing_url,
        }


@dataclass
class StabilityTracker:
    """Counts consecutive identical non-trivial response reads.

    The first read of a new text is the baseline and counts as one; each
    identical read after it adds one, any change starts over. Text shorter than
    ``floor`` never counts and clears the run. Reaching ``threshold`` marks the
    response stable.
    """

    threshold: int = 2
    floor: int = 50
    last_text: str = ""
    count: int = 0

    def observe(self, text: str) -> bool:
        if not text or len(text) < self.floor:
            # A gap breaks the run: the same answer afterwards starts over.
            self.count = 0
            self.last_text = ""
            return False
        if text == self.last_text:
            self.count += 1
        else:
            self.count = 1
            self.last_text = text
        return self.count >= self.threshold

    def reset(self) -> None:
        self.last_text = ""
        self.count = 0


@dataclass
class BridgeContext:
    """Single owner of every piece of per-session mutable state."""

    config: BridgeConfig
    transport: CdpTransport
    launcher: AppLauncher | None = None
    clock: Clock = field(default_factory=SystemClock)
    state: ConnectionState = field(default_factory=ConnectionState)
    health: HealthCache = field(default_factory=HealthCache)
    session: BrowserSession | None = None
    tabs: dict[str, TabContext] = field(default_factory=dict)
    last_target_id: str | None = None
    last_listing: list[Target] = field(default_factory=list)
    reconnect_attempts: int = 0
    reconnecting: bool = False
    stability: StabilityTracker = field(default_factory=StabilityTracker)

    def __post_init__(self) -> None:
        if not self.state.port:
            self.state.port = self.config.cdp_port
        self.stability.threshold = self.config.poll.stability_threshold
        self.stability.floor = self.config.poll.substantial_chars


__all__ = [
    "AgentStatus",
    "BridgeContext",
    "ConnectionState",
    "HealthCache",
    "StabilityTracker",
    "TabContext",
    "TabPurpose",
    "Target",
    "TaskStatus",
]
