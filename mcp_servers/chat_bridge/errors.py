"""Error types for the bridge control plane.

Transport failures surface as ``HttpClientError`` (see ``http_client``); the
classes here describe control-plane outcomes. ``is_transient_error`` decides
which failures ``ConnectionManager.with_retry`` may recover from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Lower-case substrings of error messages that indicate a broken or churned
# session rather than a bug in the operation itself.
TRANSIENT_ERROR_SIGNATURES: tuple[str, ...] = (
    "websocket",
    "closed",
    "not open",
    "disconnected",
    "readystate",
    "econnrefused",
    "econnreset",
    "etimedout",
    "epipe",
    "socket hang up",
    "connection refused",
    "connection reset",
    "broken pipe",
    "timed out",
    "protocol error",
    "target closed",
    "session closed",
    "execution context",
    "not found",
    "detached",
    "crashed",
    "inspected target navigated",
    "aborted",
)


class BridgeError(Exception):
    """Base class for control-plane errors."""


class TargetNotFoundError(BridgeError):
    def __init__(self, target_id: str) -> None:
        super().__init__(f"Target not found: {target_id}")
        self.target_id = target_id


class NotConnectedError(BridgeError):
    def __init__(self) -> None:
        super().__init__("Session closed: not connected. Call connect() first.")


class NoTargetError(BridgeError):
    def __init__(self, message: str = "No suitable tab found for reconnection") -> None:
        super().__init__(message)


class InputNotFoundError(BridgeError):
    def __init__(self) -> None:
        super().__init__("Could not find an input element. Navigate to the chat page first.")


class SubmissionVerificationFailure(BridgeError):
    """Every submission fallback ran and none could be verified.

    The prompt may still have been accepted; callers should poll.
    """

    def __init__(self, attempts: list[str]) -> None:
        super().__init__("Prompt submission could not be verified (tried: " + ", ".join(attempts) + ")")
        self.attempts = list(attempts)


class CloseGuardViolation(BridgeError):
    def __init__(self, count: int) -> None:
        super().__init__(
            f"Cannot close - {count} browsing tab(s) open. At least one external tab must stay open."
        )
        self.count = count


class LaunchError(BridgeError):
    def __init__(self, message: str, remediation: str = "") -> None:
        text = message if not remediation else f"{message}\n{remediation}"
        super().__init__(text)
        self.remediation = remediation


@dataclass
class SmartToolError(Exception):
    """Structured tool-level error with a suggestion for the calling agent."""

    tool: str
    action: str
    reason: str
    suggestion: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.tool}] {self.action} failed: {self.reason}. Suggestion: {self.suggestion}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "tool": self.tool,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


def is_transient_error(exc: BaseException) -> bool:
    """True if ``exc`` matches a known connection-churn signature."""
    message = str(exc).lower()
    if not message:
        message = type(exc).__name__.lower()
    return any(sig in message for sig in TRANSIENT_ERROR_SIGNATURES)


__all__ = [
    "BridgeError",
    "CloseGuardViolation",
    "InputNotFoundError",
    "LaunchError",
    "NoTargetError",
    "NotConnectedError",
    "SmartToolError",
    "SubmissionVerificationFailure",
    "TRANSIENT_ERROR_SIGNATURES",
    "TargetNotFoundError",
    "is_transient_error",
]
