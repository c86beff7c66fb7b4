"""Orchestration of the bridge operations exposed as MCP tools."""

from __future__ import annotations

import base64
import io
import logging
from typing import Any

from . import page_scripts, rules
from .ask_loop import AskLoop, AskOutcome, read_snapshot
from .clock import Clock
from .completion import CompletionDetector
from .config import BridgeConfig
from .connection import ConnectionManager, find_primary_target
from .errors import BridgeError, SubmissionVerificationFailure
from .http_client import HttpClientError
from .launcher import AppLauncher
from .state import AgentStatus, BridgeContext, TabPurpose, TaskStatus
from .submission import PromptSubmitter
from .tab_registry import TabRegistry
from .transport import CdpTransport

logger = logging.getLogger("mcp.chat_bridge.service")

HOME_SETTLE = 1.5
NEW_CHAT_SETTLE = 2.0
MODE_MENU_SETTLE = 0.3


def normalize_prompt(text: str) -> str:
    """Flatten markdown-ish prompts and phrase browsing requests as browser tasks."""
    prompt = rules.BULLET_PREFIX.sub("", text or "")
    prompt = " ".join(prompt.split())
    if not prompt:
        return ""

    url_match = rules.URL_PATTERN.search(prompt)
    wants_browser = (
        url_match is not None
        or rules.BROWSING_ACTION_PATTERN.search(prompt) is not None
        or rules.SITE_REFERENCE_PATTERN.search(prompt) is not None
    )
    if not wants_browser or rules.ALREADY_AGENTIC_PATTERN.match(prompt):
        return prompt
    if url_match is not None:
        url = url_match.group(0)
        rest = " ".join(prompt.replace(url, "", 1).split())
        return f"Use your browser to navigate to {url} and {rest or 'tell me what you find there'}"
    joiner = "" if prompt.lower().startswith("go") else "go and "
    return f"Use your browser to {joiner}{prompt}"


def render_status(status: AgentStatus) -> str:
    if status.status is TaskStatus.COMPLETED and status.response:
        return status.response
    lines = [f"Status: {status.status.value.upper()}"]
    if status.browsing_url:
        lines.append(f"Browsing: {status.browsing_url}")
    if status.current_step:
        lines.append(f"Current: {status.current_step}")
    if status.steps:
        lines.append("")
        lines.append("Steps:")
        lines.extend(f"  • {step}" for step in status.steps)
    if status.status is TaskStatus.WORKING:
        lines.append("")
        lines.append("[Use bridge_stop to interrupt, or bridge_screenshot to see the current page]")
    return "\n".join(lines)


def image_size(data: str) -> tuple[int, int] | None:
    """Pixel size of a base64 screenshot, or None if it cannot be decoded."""
    from PIL import Image, UnidentifiedImageError

    try:
        with Image.open(io.BytesIO(base64.b64decode(data))) as img:
            return img.size
    except (ValueError, OSError, UnidentifiedImageError):
        return None


class BridgeService:
    def __init__(self, ctx: BridgeContext) -> None:
        self.ctx = ctx
        self.connection = ConnectionManager(ctx)
        self.tabs = TabRegistry(ctx, self.connection)
        self.detector = CompletionDetector(ctx, self.connection, self.tabs)
        self.submitter = PromptSubmitter(self.connection, ctx.clock)

    @classmethod
    def from_config(cls, config: BridgeConfig, clock: Clock | None = None) -> BridgeService:
        kwargs: dict[str, Any] = {}
        if clock is not None:
            kwargs["clock"] = clock
        ctx = BridgeContext(
            config=config,
            transport=CdpTransport(config),
            launcher=AppLauncher(config, clock),
            **kwargs,
        )
        return cls(ctx)

    @property
    def config(self) -> BridgeConfig:
        return self.ctx.config

    @property
    def clock(self) -> Clock:
        return self.ctx.clock

    def _launcher(self) -> AppLauncher:
        if self.ctx.launcher is None:
            raise BridgeError("No launcher configured for this session")
        return self.ctx.launcher

    # ─────────────────────────────────────────────────────────────────────────
    # connect
    # ─────────────────────────────────────────────────────────────────────────

    def connect(self) -> str:
        """Start the app if needed, keep a single page tab and open the app home."""
        started = self._launcher().ensure_running()
        pages = [t for t in self.connection.list_targets() if t.is_page]
        for extra in pages[1:]:
            try:
                self.connection.close_target(extra.id)
            except HttpClientError as exc:
                logger.info("Could not close tab %s: %s", extra.id, exc)

        page = next((t for t in self.connection.list_targets() if t.is_page), None)
        if page is None:
            target = self.connection.new_target(self.config.app_url)
            self.clock.sleep(NEW_CHAT_SETTLE)
            self.connection.connect(target.id)
            return f"{started.message}\nCreated a new tab and opened {self.config.app_url}"

        self.connection.connect(page.id)
        nav = self.connection.navigate_with_retry(self.config.app_url)
        if not nav["success"]:
            raise BridgeError(f"Could not open {self.config.app_url}: {nav.get('error')}")
        self.clock.sleep(HOME_SETTLE)
        closed = max(0, len(pages) - 1)
        return f"{started.message}\nConnected to {self.config.app_domain} (cleaned {closed} old tabs)"

    # ─────────────────────────────────────────────────────────────────────────
    # ask / poll / stop
    # ─────────────────────────────────────────────────────────────────────────

    def _recover_for_ask(self) -> None:
        try:
            self.connection.pre_operation_check()
            return
        except (HttpClientError, BridgeError) as exc:
            logger.info("Pre-ask check failed (%s); relaunching", exc)
        launcher = self._launcher()
        launcher.ensure_running()
        page = next((t for t in self.connection.list_targets() if t.is_page), None)
        if page is None:
            logger.info("No page tab after relaunch; restarting the app")
            launcher.restart()
            page = next((t for t in self.connection.list_targets() if t.is_page), None)
        if page is None:
            raise BridgeError("Failed to establish a connection to the app")
        self.connection.connect(page.id)

    def _open_new_chat(self) -> None:
        self.connection.ensure_connection()
        try:
            self.connection.navigate(self.config.app_url, wait_load=True)
            self.clock.sleep(NEW_CHAT_SETTLE)
            return
        except (HttpClientError, BridgeError) as exc:
            logger.info("New chat navigation failed (%s); re-attaching", exc)
        targets = self.connection.list_targets()
        main = next((t for t in targets if t.is_page and self.config.is_app_url(t.url)), None)
        if main is not None:
            self.connection.connect(main.id)
        else:
            page = next((t for t in targets if t.is_page), None)
            if page is None:
                raise BridgeError("No tab available for a new chat")
            self.connection.connect(page.id)
            self.connection.navigate(self.config.app_url, wait_load=True)
        self.clock.sleep(HOME_SETTLE)

    def _go_to_primary(self) -> None:
        main = find_primary_target(self.connection.list_targets(), self.ctx)
        if main is not None and main.id != self.ctx.state.active_tab_id:
            self.connection.connect(main.id)
        if not self.connection.is_on_primary_tab():
            self.connection.navigate(self.config.app_url, wait_load=True)
            self.clock.sleep(NEW_CHAT_SETTLE)

    def ask(self, prompt: str, new_chat: bool = False, timeout: float | None = None) -> AskOutcome:
        text = normalize_prompt(prompt)
        if not text:
            raise BridgeError("prompt cannot be empty")

        self._recover_for_ask()
        if new_chat:
            self._open_new_chat()
        else:
            self._go_to_primary()

        self.detector.reset()
        baseline = read_snapshot(self.connection)
        try:
            self.submitter.submit(text)
        except SubmissionVerificationFailure as exc:
            # The prompt may have been accepted anyway; polling tells.
            logger.warning("%s; polling anyway", exc)

        loop = AskLoop(
            self.connection,
            self.detector,
            self.clock,
            self.config.poll,
            timeout=timeout if timeout and timeout > 0 else self.config.ask_timeout,
            baseline=baseline,
        )
        return loop.run()

    def poll(self) -> AgentStatus:
        self.connection.ensure_on_primary_tab()
        return self.detector.read_status()

    def stop(self) -> bool:
        return self.detector.stop()

    def screenshot(self) -> tuple[str, str]:
        """Base64 PNG of the current page plus a one-line caption."""
        data = self.connection.with_retry(lambda: self.connection.screenshot("png"))
        size = image_size(data)
        caption = f"Screenshot {size[0]}x{size[1]}" if size else "Screenshot"
        return data, caption

    # ─────────────────────────────────────────────────────────────────────────
    # tabs
    # ─────────────────────────────────────────────────────────────────────────

    def tabs_list(self) -> str:
        return self.tabs.summary()

    def switch_tab(self, tab_id: str | None = None, domain: str | None = None) -> str:
        if tab_id:
            self.connection.connect(tab_id)
            return f"Switched to tab: {tab_id}"
        if domain:
            tab = self.tabs.find_by_domain(domain) or self.tabs.find_by_url_substring(domain)
            if tab is None:
                raise BridgeError(f"No tab found for domain: {domain}")
            self.connection.connect(tab.id)
            return f"Switched to {tab.domain} ({tab.url})"
        raise BridgeError("Specify domain or tabId to switch")

    def close_tab(self, tab_id: str | None = None, domain: str | None = None) -> str:
        if not tab_id and not domain:
            raise BridgeError("Specify domain or tabId to close")
        self.tabs.refresh()
        self.tabs.check_close_allowed()

        if tab_id:
            tab = self.ctx.tabs.get(tab_id)
            if tab is None:
                if any(t.id == tab_id for t in self.ctx.last_listing):
                    raise BridgeError("Cannot close the primary app tab")
                raise BridgeError(f"No browsing tab with id: {tab_id}")
        else:
            tab = self.tabs.find_by_domain(domain or "")
            if tab is None:
                raise BridgeError(f"No tab found for domain: {domain}")
        if tab.purpose is TabPurpose.PRIMARY:
            raise BridgeError("Cannot close the primary app tab")

        if not self.tabs.close(tab.id):
            raise BridgeError(f"Failed to close tab {tab.id}")
        return f"Closed {tab.domain} ({tab.id})"

    def tabs_action(self, action: str = "list", domain: str | None = None, tab_id: str | None = None) -> str:
        action = (action or "list").strip().lower()
        if action == "list":
            return self.tabs_list()
        if action == "switch":
            return self.switch_tab(tab_id, domain)
        if action == "close":
            return self.close_tab(tab_id, domain)
        raise BridgeError(f"Unknown action: {action}. Use: list, switch, close")

    # ─────────────────────────────────────────────────────────────────────────
    # mode / upload
    # ─────────────────────────────────────────────────────────────────────────

    def current_mode(self) -> str:
        res = self.connection.safe_evaluate(page_scripts.mode_read_script())
        mode = str(res.value or "search") if res.ok else "search"
        return mode if mode in rules.MODES else "search"

    def describe_modes(self) -> str:
        current = self.current_mode()
        lines = [f"Current mode: {current}", "", "Available modes:"]
        for name, description in rules.MODES.items():
            marker = "→" if name == current else " "
            lines.append(f"{marker} {name}: {description}")
        return "\n".join(lines)

    def switch_mode(self, mode: str) -> str:
        mode = (mode or "").strip().lower()
        if mode not in rules.MODES:
            raise BridgeError(f"Invalid mode: {mode}. Use: {', '.join(rules.MODES)}")
        if not self.config.is_app_url(self.ctx.state.current_url or ""):
            self.connection.navigate(self.config.app_url, wait_load=True)

        res = self.connection.safe_evaluate(page_scripts.mode_click_script(mode))
        clicked = res.value if res.ok and isinstance(res.value, dict) else {}
        if not clicked.get("success"):
            raise BridgeError(f"Failed to switch mode: {clicked.get('error') or res.exception}")
        if clicked.get("needsSelect"):
            self.clock.sleep(MODE_MENU_SETTLE)
            res = self.connection.safe_evaluate(page_scripts.mode_select_script(mode))
            selected = res.value if res.ok and isinstance(res.value, dict) else {}
            if not selected.get("success"):
                # Leave the page usable: the mode menu is still open.
                try:
                    self.connection.press_key("Escape")
                except (HttpClientError, BridgeError) as exc:
                    logger.info("Could not dismiss the mode menu: %s", exc)
                raise BridgeError(f"Failed to switch mode: {selected.get('error') or res.exception}")
        return f"Switched to {mode} mode"

    def mode(self, mode: str | None = None) -> str:
        return self.switch_mode(mode) if mode else self.describe_modes()

    def upload(self, paths: list[str], selector: str | None = None) -> dict[str, Any]:
        if not paths:
            raise BridgeError("No files given")
        outcome = self.connection.upload_files(list(paths), selector)
        if not outcome.get("success") and not selector and not outcome.get("missing"):
            outcome["detectedInputs"] = self.connection.file_inputs()
        return outcome

    def close(self) -> None:
        self.connection.disconnect()


__all__ = ["BridgeService", "image_size", "normalize_prompt", "render_status"]
