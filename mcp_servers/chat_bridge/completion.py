"""Completion detection: is the assistant idle, working or done, and what did it say?

One page read per poll yields ``PageSignals``. ``classify_status`` applies the
priority-ordered transition rules, ``extract_response`` pulls the answer text
out with a chain of strategies, and the context's ``StabilityTracker`` promotes
a response that stopped changing to ``completed`` when no stop control is
visible. The stability promotion is a heuristic that depends on the app's
markup; it can override the phrase markers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from . import page_scripts, rules
from .connection import ConnectionManager
from .errors import BridgeError
from .http_client import HttpClientError
from .state import AgentStatus, BridgeContext, TaskStatus

logger = logging.getLogger("mcp.chat_bridge.completion")


@dataclass
class PageSignals:
    has_stop_button: bool = False
    has_loading: bool = False
    has_thinking: bool = False
    in_progress: bool = False
    steps_completed: bool = False
    finished_marker: bool = False
    reviewed_sources: bool = False
    follow_up: bool = False
    body_text: str = ""
    main_text: str = ""
    blocks: list[str] = field(default_factory=list)

    @classmethod
    def from_page(cls, raw: dict[str, Any] | None) -> PageSignals:
        """Derive signals from ``status_read_script`` output."""
        raw = raw if isinstance(raw, dict) else {}
        body = str(raw.get("bodyText") or "")
        main = str(raw.get("mainText") or body)
        blocks: list[str] = []
        for item in raw.get("blocks") or []:
            if not isinstance(item, dict) or item.get("chrome"):
                continue
            text = str(item.get("text") or "").strip()
            if text:
                blocks.append(text)
        return cls(
            has_stop_button=bool(raw.get("hasStopButton")),
            has_loading=bool(raw.get("hasLoading")),
            has_thinking=rules.THINKING_PATTERN.search(body) is not None,
            in_progress=any(phrase in body for phrase in rules.IN_PROGRESS_PHRASES),
            steps_completed=rules.STEPS_COMPLETED_PATTERN.search(body) is not None,
            finished_marker=rules.FINISHED_MARKER in body,
            reviewed_sources=rules.REVIEWED_SOURCES_PATTERN.search(body) is not None,
            follow_up=any(phrase in body for phrase in rules.FOLLOW_UP_PHRASES),
            body_text=body,
            main_text=main,
            blocks=blocks,
        )


def classify_status(signals: PageSignals, extracted: str = "", *, floor: int = 50) -> TaskStatus:
    """Apply the transition rules in priority order."""
    if signals.has_stop_button:
        return TaskStatus.WORKING
    if signals.has_loading or signals.has_thinking:
        return TaskStatus.WORKING
    if signals.in_progress and not signals.follow_up:
        return TaskStatus.WORKING
    if signals.steps_completed or signals.finished_marker:
        return TaskStatus.COMPLETED
    if signals.reviewed_sources and not signals.in_progress:
        return TaskStatus.COMPLETED
    # Checked before the follow-up rule: in-progress phrases beside a follow-up
    # box and a full answer read as working. Stability promotion in
    # CompletionDetector.read_status completes such a page once it stops changing.
    if signals.in_progress:
        return TaskStatus.WORKING
    if signals.follow_up and len(extracted) >= floor:
        return TaskStatus.COMPLETED
    return TaskStatus.IDLE


def _after_last_marker(text: str, pattern: re.Pattern[str]) -> str:
    matches = list(pattern.finditer(text))
    if not matches:
        return ""
    tail = text[matches[-1].end() :].strip()
    tail = rules.LEADING_ARROWS.sub("", tail)
    end = len(tail)
    for marker in rules.RESPONSE_END_MARKERS:
        idx = tail.find(marker)
        if idx != -1 and idx < end:
            end = idx
    return tail[:end].strip()


def _from_blocks(blocks: list[str]) -> str:
    kept = [
        text
        for text in blocks
        if len(text) > rules.CONTENT_BLOCK_MIN_CHARS and not text.startswith(rules.UI_CHROME_PREFIXES)
    ]
    return "\n\n".join(kept[-rules.FALLBACK_BLOCK_COUNT :])


def extract_response(signals: PageSignals, *, floor: int = 50) -> str:
    """First strategy yielding ``floor`` characters wins.

    Strategies: text after the last "N steps completed" marker, text after the
    last "Reviewed N sources" marker, then the last few content blocks. When
    none is long enough the last non-empty candidate is returned.
    """
    candidates = (
        lambda: _after_last_marker(signals.main_text, rules.STEPS_COMPLETED_PATTERN),
        lambda: _after_last_marker(signals.main_text, rules.REVIEWED_SOURCES_PATTERN),
        lambda: _from_blocks(signals.blocks),
    )
    fallback = ""
    for candidate in candidates:
        text = candidate()
        if len(text) >= floor:
            return text
        if text:
            fallback = text
    return fallback


def sanitize_response(text: str, *, cap: int = 8000) -> str:
    if not text:
        return ""
    for pattern in rules.BOILERPLATE_PATTERNS:
        text = pattern.sub("", text)
    text = rules.EMOJI_PATTERN.sub("", text)
    text = rules.LINE_LEADING_ARROWS.sub("", text)
    text = rules.BLANK_LINE_RUN.sub("\n\n", text)
    return text.strip()[:cap]


def extract_steps(body: str) -> list[str]:
    """Visible step descriptions, de-duplicated, most recent last."""
    found: list[str] = []
    for pattern in rules.STEP_PATTERNS:
        found.extend(m.group(0).strip()[: rules.STEP_MAX_CHARS] for m in pattern.finditer(body))
    unique = list(dict.fromkeys(step for step in found if step))
    return unique[-rules.STEP_HISTORY :]


class CompletionDetector:
    def __init__(self, ctx: BridgeContext, connection: ConnectionManager, tabs: Any = None) -> None:
        self.ctx = ctx
        self.connection = connection
        self.tabs = tabs

    def _browsing_url(self) -> str:
        if self.tabs is None:
            return ""
        try:
            return self.tabs.autonomous_url()
        except (HttpClientError, BridgeError) as exc:
            logger.debug("Browsing URL unavailable: %s", exc)
            return ""

    def read_signals(self) -> PageSignals:
        res = self.connection.with_retry(lambda: self.connection.evaluate(page_scripts.status_read_script()))
        if not res.ok:
            raise BridgeError(f"Status read failed: {res.exception}")
        return PageSignals.from_page(res.value)

    def read_status(self) -> AgentStatus:
        poll = self.ctx.config.poll
        browsing_url = self._browsing_url()
        signals = self.read_signals()

        extracted = sanitize_response(
            extract_response(signals, floor=poll.substantial_chars),
            cap=poll.response_cap,
        )
        status = classify_status(signals, extracted, floor=poll.substantial_chars)
        stable = self.ctx.stability.observe(extracted)
        if stable and not signals.has_stop_button and status is not TaskStatus.COMPLETED:
            logger.debug("Response stable for %d reads; treating as completed", self.ctx.stability.count)
            status = TaskStatus.COMPLETED

        steps = extract_steps(signals.body_text)
        return AgentStatus(
            status=status,
            steps=steps,
            current_step=steps[-1] if steps else "",
            response=extracted if status is TaskStatus.COMPLETED else "",
            has_stop_button=signals.has_stop_button,
            is_stable=stable,
            browsing_url=browsing_url,
            extracted=extracted,
        )

    def reset(self) -> None:
        """Forget the previous response; call before every new prompt."""
        self.ctx.stability.reset()

    def stop(self) -> bool:
        """Click the app's stop control; the connection is left as is."""
        res = self.connection.evaluate(page_scripts.stop_script())
        stopped = bool(res.ok and res.value)
        logger.info("Stop requested: %s", "clicked" if stopped else "no stop control")
        return stopped


__all__ = [
    "CompletionDetector",
    "PageSignals",
    "classify_status",
    "extract_response",
    "extract_steps",
    "sanitize_response",
]
