"""Polling state machine that waits for the assistant to answer one prompt."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from . import page_scripts
from .clock import Clock
from .completion import CompletionDetector
from .config import PollPolicy
from .connection import ConnectionManager
from .errors import BridgeError
from .state import AgentStatus, TaskStatus

logger = logging.getLogger("mcp.chat_bridge.ask")


class AskState(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    COMPLETED = "completed"
    ERROR_RECOVERING = "error-recovering"


@dataclass(frozen=True)
class ContentSnapshot:
    """Number of content blocks and a prefix of the last one."""

    count: int = 0
    last_text: str = ""

    @classmethod
    def from_page(cls, raw: Any) -> ContentSnapshot:
        raw = raw if isinstance(raw, dict) else {}
        return cls(count=int(raw.get("count") or 0), last_text=str(raw.get("lastText") or ""))

    def is_newer_than(self, baseline: ContentSnapshot) -> bool:
        if self.count > baseline.count:
            return True
        return bool(self.last_text) and self.last_text != baseline.last_text


def _candidate(status: AgentStatus) -> str:
    return status.response or status.extracted


def read_snapshot(connection: ConnectionManager) -> ContentSnapshot:
    res = connection.with_retry(lambda: connection.evaluate(page_scripts.content_state_script()))
    return ContentSnapshot.from_page(res.value if res.ok else None)


@dataclass
class AskOutcome:
    status: TaskStatus
    response: str = ""
    steps: list[str] = field(default_factory=list)
    current_step: str = ""
    timed_out: bool = False
    failed: bool = False
    elapsed: float = 0.0

    def render(self) -> str:
        if self.response:
            return self.response
        reason = "max timeout reached" if self.timed_out else "connection could not be recovered"
        lines = [f"Task may still be in progress ({reason}).", f"Status: {self.status.value.upper()}"]
        if self.current_step:
            lines.append(f"Current: {self.current_step}")
        if self.steps:
            lines.append("")
            lines.append("Steps:")
            lines.extend(f"  • {step}" for step in self.steps)
        lines.append("")
        lines.append("Use bridge_poll to check progress or bridge_stop to cancel.")
        return "\n".join(lines)


class AskLoop:
    """Single-threaded poller driven by ``step()``.

    Each step sleeps one poll interval, makes sure the session is on the
    primary tab, reads the page and decides whether the answer is done. Poll
    errors never escape: they move the loop to ``error-recovering``, and after
    ``max_consecutive_errors`` a full reconnect is attempted before giving up
    with a partial outcome.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        detector: CompletionDetector,
        clock: Clock,
        policy: PollPolicy,
        *,
        timeout: float,
        baseline: ContentSnapshot,
    ) -> None:
        self.connection = connection
        self.detector = detector
        self.clock = clock
        self.policy = policy
        self.timeout = timeout
        self.baseline = baseline

        self.state = AskState.IDLE
        self.started_at = clock.now()
        self.last_activity = self.started_at
        self.saw_new_response = False
        self.previous_response = ""
        self.steps: list[str] = []
        self.consecutive_errors = 0
        self.last_status: AgentStatus | None = None

    @property
    def elapsed(self) -> float:
        return self.clock.now() - self.started_at

    def _set_state(self, state: AskState) -> None:
        if state is not self.state:
            logger.debug("Ask loop %s -> %s", self.state.value, state.value)
            self.state = state

    def _observe(self) -> AgentStatus:
        if not self.connection.is_on_primary_tab() and not self.connection.ensure_on_primary_tab():
            raise BridgeError("Primary app tab not available")

        if not self.saw_new_response and read_snapshot(self.connection).is_newer_than(self.baseline):
            self.saw_new_response = True

        status = self.detector.read_status()
        now = self.clock.now()
        candidate = _candidate(status)
        if candidate != self.previous_response:
            self.previous_response = candidate
            self.last_activity = now
        for step in status.steps:
            if step not in self.steps:
                self.steps.append(step)
                self.last_activity = now
        return status

    def _is_done(self, status: AgentStatus) -> bool:
        if not self.saw_new_response:
            return False
        if status.response and status.status is TaskStatus.COMPLETED:
            return True
        if status.response and status.is_stable and not status.has_stop_button:
            return True
        return self._idle_done(status)

    def _idle_done(self, status: AgentStatus) -> bool:
        """A long candidate answer that has not changed for ``idle_timeout`` seconds.

        Backstop for pages the markers never finish. With the default policy the
        stability rule usually completes such a page first.
        """
        idle = self.clock.now() - self.last_activity
        return (
            idle > self.policy.idle_timeout
            and len(_candidate(status)) > self.policy.idle_response_chars
            and not status.has_stop_button
        )

    def step(self) -> AskOutcome | None:
        """Run one poll; returns an outcome once the loop is finished."""
        self.clock.sleep(self.policy.interval)
        try:
            status = self._observe()
        except Exception as exc:  # noqa: BLE001
            return self._on_error(exc)

        self.consecutive_errors = 0
        self.last_status = status
        if self._is_done(status):
            self._set_state(AskState.COMPLETED)
            return self._outcome(status, response=_candidate(status))
        self._set_state(AskState.WORKING if status.status is TaskStatus.WORKING else AskState.IDLE)
        return None

    def _on_error(self, exc: Exception) -> AskOutcome | None:
        self.consecutive_errors += 1
        self._set_state(AskState.ERROR_RECOVERING)
        logger.info("Poll error %d/%d: %s", self.consecutive_errors, self.policy.max_consecutive_errors, exc)

        if self.connection.ensure_on_primary_tab():
            self.consecutive_errors = max(0, self.consecutive_errors - 1)
            return None

        if self.consecutive_errors >= self.policy.max_consecutive_errors:
            try:
                self.connection.ensure_connection()
                if not self.connection.ensure_on_primary_tab():
                    raise BridgeError("Primary app tab not available after reconnect")
            except Exception as recovery_error:  # noqa: BLE001
                logger.warning("Recovery failed, returning partial status: %s", recovery_error)
                return self.finish(failed=True)
            self.consecutive_errors = 0
        return None

    def run(self) -> AskOutcome:
        self._set_state(AskState.WORKING)
        while self.elapsed < self.timeout:
            outcome = self.step()
            if outcome is not None:
                return outcome
        logger.info("Ask timed out after %.1fs", self.elapsed)
        return self.finish(timed_out=True)

    def finish(self, *, timed_out: bool = False, failed: bool = False) -> AskOutcome:
        """Best-effort final read; never raises."""
        status = self.last_status
        try:
            status = self.detector.read_status()
        except Exception as exc:  # noqa: BLE001
            logger.info("Final status read failed: %s", exc)
        if status is None:
            return AskOutcome(
                status=TaskStatus.IDLE,
                steps=list(self.steps),
                timed_out=timed_out,
                failed=failed,
                elapsed=self.elapsed,
            )
        outcome = self._outcome(status, timed_out=timed_out, failed=failed)
        if len(outcome.response) <= self.policy.substantial_chars:
            outcome.response = ""
        return outcome

    def _outcome(
        self,
        status: AgentStatus,
        *,
        response: str | None = None,
        timed_out: bool = False,
        failed: bool = False,
    ) -> AskOutcome:
        steps = list(self.steps)
        for step in status.steps:
            if step not in steps:
                steps.append(step)
        return AskOutcome(
            status=status.status,
            response=status.response if response is None else response,
            steps=steps,
            current_step=status.current_step,
            timed_out=timed_out,
            failed=failed,
            elapsed=self.elapsed,
        )


__all__ = ["AskLoop", "AskOutcome", "AskState", "ContentSnapshot", "read_snapshot"]
