"""Connection management with health caching and reconnect-with-retry.

``ConnectionManager`` owns the single page session of a ``BridgeContext``.
Every page operation that must survive connection churn runs through
``with_retry``: transient failures (matched by message signature) trigger a
backoff, a reconnect and one retry, then a cold-start recovery; anything else
propagates untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path
from typing import Any, TypeVar

from . import page_scripts, rules
from .browser_session import BrowserSession, EvalResult
from .errors import (
    BridgeError,
    LaunchError,
    NoTargetError,
    NotConnectedError,
    TargetNotFoundError,
    is_transient_error,
)
from .http_client import HttpClientError
from .state import BridgeContext, Target

logger = logging.getLogger("mcp.chat_bridge.connection")

T = TypeVar("T")

CDP_DOMAINS = ("Page", "Runtime", "DOM", "Network")
NON_RETRYABLE_NAVIGATION_ERRORS = ("net::ERR_NAME_NOT_RESOLVED", "net::ERR_INVALID_URL")
SIDECAR_MARKER = "sidecar"
BLANK_URLS = ("", "about:blank")


def find_primary_target(targets: list[Target], ctx: BridgeContext) -> Target | None:
    """The main app page: an app URL that is not the sidecar panel."""
    return next(
        (t for t in targets if t.is_page and ctx.config.is_app_url(t.url) and SIDECAR_MARKER not in t.url),
        None,
    )


def select_target(targets: list[Target], ctx: BridgeContext) -> Target | None:
    """Best page to attach to: the app page first, then any non-blank page."""
    primary = next((t for t in targets if t.is_page and ctx.config.is_app_url(t.url)), None)
    if primary is not None:
        return primary
    return next((t for t in targets if t.is_page and t.url not in BLANK_URLS), None)


class ConnectionManager:
    def __init__(self, ctx: BridgeContext) -> None:
        self.ctx = ctx

    @property
    def is_connected(self) -> bool:
        return self.ctx.state.connected and self.ctx.session is not None

    def _require_session(self) -> BrowserSession:
        session = self.ctx.session
        if session is None:
            raise NotConnectedError()
        return session

    def list_targets(self) -> list[Target]:
        targets = self.ctx.transport.list_targets()
        self.ctx.last_listing = targets
        return targets

    # ─────────────────────────────────────────────────────────────────────────
    # Connect / disconnect
    # ─────────────────────────────────────────────────────────────────────────

    def connect(self, target_id: str | None = None) -> str:
        ctx = self.ctx
        self.disconnect()

        targets = self.list_targets()
        if target_id:
            target = next((t for t in targets if t.id == target_id), None)
            if target is None:
                raise TargetNotFoundError(target_id)
        else:
            target = select_target(targets, ctx)
            if target is None:
                raise NoTargetError("No page available to connect to")

        session = ctx.transport.open_session(target.id, target)
        try:
            session.enable_domains(*CDP_DOMAINS)
        except HttpClientError:
            session.close()
            raise

        try:
            session.set_viewport(*ctx.config.viewport)
        except HttpClientError as exc:
            logger.debug("Viewport normalization skipped: %s", exc)

        url = target.url
        with suppress(HttpClientError):
            url = session.get_url() or target.url

        ctx.session = session
        ctx.state.connected = True
        ctx.state.active_tab_id = target.id
        ctx.state.current_url = url
        ctx.last_target_id = target.id
        ctx.reconnect_attempts = 0
        ctx.health.store(True, ctx.clock.now())
        logger.info("Connected to tab %s: %s", target.id, url)
        return f"Connected to tab: {url}"

    def disconnect(self) -> None:
        ctx = self.ctx
        session = ctx.session
        ctx.session = None
        ctx.state.connected = False
        ctx.state.active_tab_id = None
        if session is not None:
            with suppress(Exception):
                session.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Health
    # ─────────────────────────────────────────────────────────────────────────

    def health_check(self) -> bool:
        """``1+1`` probe; the result is cached for ``retry.health_ttl`` seconds."""
        ctx = self.ctx
        now = ctx.clock.now()
        if ctx.health.fresh(now, ctx.config.retry.health_ttl):
            return ctx.health.healthy

        session = ctx.session
        if session is None:
            return ctx.health.store(False, now)
        try:
            probe = session.evaluate("1+1", timeout=ctx.config.retry.probe_timeout)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Health probe failed: %s", exc)
            return ctx.health.store(False, now)
        return ctx.health.store(probe.ok, now)

    def invalidate_health(self) -> None:
        self.ctx.health.invalidate()

    def _active_tab_stale(self) -> bool:
        active = self.ctx.state.active_tab_id
        listing = self.ctx.last_listing
        if not active or not listing:
            return False
        return all(t.id != active for t in listing)

    def reconnect(self) -> str:
        """Drop the session and attach again, relaunching the app if it is gone."""
        ctx = self.ctx
        self.disconnect()

        try:
            ctx.transport.version()
        except HttpClientError as exc:
            if ctx.launcher is None:
                raise
            logger.info("App unreachable (%s); starting it", exc)
            try:
                ctx.launcher.ensure_running()
            except LaunchError as launch_exc:
                raise LaunchError(
                    f"Cannot connect to the app on port {ctx.config.cdp_port}: {launch_exc}",
                    launch_exc.remediation,
                ) from launch_exc
            ctx.clock.sleep(ctx.config.retry.relaunch_settle)

        targets = self.list_targets()
        last = ctx.last_target_id
        if last and any(t.id == last for t in targets):
            return self.connect(last)

        target = select_target(targets, ctx)
        if target is None:
            raise NoTargetError()
        return self.connect(target.id)

    def pre_operation_check(self) -> None:
        ctx = self.ctx
        if ctx.session is None:
            self.reconnect()
            return
        stale = self._active_tab_stale()
        if not stale and ctx.health.healthy and ctx.health.fresh(ctx.clock.now(), ctx.config.retry.health_ttl):
            return
        if stale or not self.health_check():
            self.invalidate_health()
            self.reconnect()

    def ensure_connection(self) -> None:
        if not self.health_check():
            self.invalidate_health()
            self.reconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Retry
    # ─────────────────────────────────────────────────────────────────────────

    def with_retry(self, operation: Callable[[], T]) -> T:
        """Run ``operation``, recovering from transient connection failures."""
        ctx = self.ctx
        policy = ctx.config.retry

        polls = 0
        while ctx.reconnecting and polls < policy.reconnect_wait_max_polls:
            ctx.clock.sleep(policy.reconnect_wait_interval)
            polls += 1

        try:
            self.pre_operation_check()
        except Exception as exc:  # noqa: BLE001
            # The operation itself decides whether the connection is usable.
            logger.debug("Pre-operation check failed: %s", exc)

        try:
            result = operation()
        except Exception as exc:  # noqa: BLE001
            if not is_transient_error(exc) or ctx.reconnect_attempts >= policy.max_attempts:
                raise
            return self._recover(operation, exc)
        ctx.reconnect_attempts = 0
        return result

    def _recover(self, operation: Callable[[], T], error: Exception) -> T:
        ctx = self.ctx
        policy = ctx.config.retry
        ctx.reconnect_attempts += 1
        ctx.reconnecting = True
        self.invalidate_health()
        delay = policy.backoff(ctx.reconnect_attempts)
        logger.info(
            "Transient error (%s); reconnect attempt %d/%d after %.2fs",
            error,
            ctx.reconnect_attempts,
            policy.max_attempts,
            delay,
        )
        try:
            ctx.clock.sleep(delay)
            self.reconnect()
            ctx.reconnecting = False
            result = operation()
        except Exception as retry_error:  # noqa: BLE001
            ctx.reconnecting = False
            if ctx.reconnect_attempts < policy.max_attempts:
                recovered, value = self._cold_start(operation)
                if recovered:
                    return value
            raise retry_error
        ctx.reconnect_attempts = 0
        return result

    def _cold_start(self, operation: Callable[[], T]) -> tuple[bool, Any]:
        ctx = self.ctx
        if ctx.launcher is None:
            return False, None
        logger.info("Reconnect failed; attempting cold-start recovery")
        try:
            ctx.launcher.ensure_running()
            ctx.clock.sleep(ctx.config.retry.cold_start_settle)
            targets = self.list_targets()
            target = next((t for t in targets if t.is_page and ctx.config.is_app_url(t.url)), None)
            if target is None:
                target = next((t for t in targets if t.is_page), None)
            if target is None:
                return False, None
            self.connect(target.id)
            value = operation()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cold-start recovery failed: %s", exc)
            return False, None
        ctx.reconnect_attempts = 0
        return True, value

    # ─────────────────────────────────────────────────────────────────────────
    # Page operations
    # ─────────────────────────────────────────────────────────────────────────

    def evaluate(self, expression: str, *, timeout: float | None = None) -> EvalResult:
        return self._require_session().evaluate(expression, timeout=timeout)

    def safe_evaluate(self, expression: str) -> EvalResult:
        return self.with_retry(lambda: self._require_session().evaluate(expression))

    def navigate(self, url: str, wait_load: bool = True) -> dict[str, Any]:
        result = self._require_session().navigate(url, wait_load=wait_load)
        if not result.get("errorText"):
            self.ctx.state.current_url = url
        return result

    def _navigate_checked(self, url: str) -> None:
        result = self.navigate(url, wait_load=True)
        if result.get("errorText"):
            raise HttpClientError(str(result["errorText"]))

    def navigate_with_retry(self, url: str, max_retries: int = 3, retry_delay: float = 1.0) -> dict[str, Any]:
        last_error = ""
        for attempt in range(1, max_retries + 1):
            try:
                self.with_retry(lambda: self._navigate_checked(url))
            except (HttpClientError, BridgeError) as exc:
                last_error = str(exc)
                if any(code in last_error for code in NON_RETRYABLE_NAVIGATION_ERRORS):
                    return {"success": False, "url": url, "attempts": attempt, "error": last_error}
                logger.info("Navigation to %s failed (attempt %d/%d): %s", url, attempt, max_retries, exc)
                if attempt < max_retries:
                    self.ctx.clock.sleep(retry_delay * attempt)
                continue
            return {"success": True, "url": url, "attempts": attempt}
        return {"success": False, "url": url, "attempts": max_retries, "error": last_error}

    def screenshot(self, format: str = "png") -> str:
        return self._require_session().screenshot(format)

    def press_key(self, key: str) -> None:
        self._require_session().press_key(key)

    def current_url(self) -> str:
        return self._require_session().get_url()

    def is_on_primary_tab(self) -> bool:
        if self.ctx.session is None:
            return False
        try:
            return self.ctx.config.is_app_url(self.current_url())
        except (HttpClientError, BridgeError):
            return False

    def ensure_on_primary_tab(self) -> bool:
        """Re-attach to the main app tab if autonomous browsing moved the session."""
        if self.is_on_primary_tab():
            return True
        try:
            targets = self.list_targets()
            target = find_primary_target(targets, self.ctx)
            if target is None:
                target = next((t for t in targets if t.is_page and self.ctx.config.is_app_url(t.url)), None)
            if target is None:
                return False
            self.connect(target.id)
        except (HttpClientError, BridgeError) as exc:
            logger.info("Could not return to the primary tab: %s", exc)
            return False
        self.invalidate_health()
        return True

    def new_target(self, url: str = "about:blank") -> Target:
        return self.ctx.transport.new_target(url)

    def close_target(self, target_id: str) -> bool:
        closed = self.ctx.transport.close_target(target_id)
        if closed and target_id == self.ctx.state.active_tab_id:
            self.disconnect()
        return closed

    # ─────────────────────────────────────────────────────────────────────────
    # File inputs
    # ─────────────────────────────────────────────────────────────────────────

    def upload_files(self, paths: list[str], selector: str | None = None) -> dict[str, Any]:
        resolved = [str(Path(p).expanduser().resolve()) for p in paths]
        missing = [p for p in resolved if not Path(p).is_file()]
        if missing:
            return {
                "success": False,
                "message": f"File not found: {', '.join(missing)}",
                "inputFound": False,
                "missing": missing,
            }

        def attach() -> dict[str, Any]:
            session = self._require_session()
            if selector:
                if session.set_file_input_files(selector, resolved):
                    return self._uploaded(resolved)
                return {
                    "success": False,
                    "message": f"No element found matching selector: {selector}",
                    "inputFound": False,
                }
            for candidate in rules.FILE_INPUT_SELECTORS:
                try:
                    attached = session.set_file_input_files(candidate, resolved)
                except HttpClientError as exc:
                    logger.debug("File input selector %s failed: %s", candidate, exc)
                    continue
                if attached:
                    return self._uploaded(resolved)
            return {
                "success": False,
                "message": "No file input element found on the page. Try providing a specific selector.",
                "inputFound": False,
            }

        return self.with_retry(attach)

    @staticmethod
    def _uploaded(paths: list[str]) -> dict[str, Any]:
        return {"success": True, "message": f"{len(paths)} file(s) uploaded", "inputFound": True}

    def file_inputs(self) -> dict[str, Any]:
        res = self.safe_evaluate(page_scripts.file_inputs_script())
        data = res.value if isinstance(res.value, dict) else {}
        count = int(data.get("count") or 0)
        selectors = [str(s) for s in data.get("selectors") or []]
        return {"found": count > 0, "count": count, "selectors": selectors}


__all__ = ["ConnectionManager", "find_primary_target", "select_target"]
