"""Page-level session over one CDP connection."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from .http_client import HttpClientError


class Connection(Protocol):
    timeout: float

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None: ...

    def close(self) -> None: ...


@dataclass
class EvalResult:
    """Outcome of ``Runtime.evaluate``: a JSON value or the page-side exception text."""

    value: Any = None
    exception: str | None = None

    @property
    def ok(self) -> bool:
        return self.exception is None


_KEY_CODES = {
    "Enter": 13,
    "Tab": 9,
    "Escape": 27,
    "Backspace": 8,
    "Delete": 46,
    "ArrowUp": 38,
    "ArrowDown": 40,
    "ArrowLeft": 37,
    "ArrowRight": 39,
}


class BrowserSession:
    """
    High-level session for a specific tab.

    Wraps a CdpConnection with the operations the control plane needs.
    Use as context manager for automatic cleanup.
    """

    def __init__(self, connection: Connection, tab_id: str, tab_url: str = ""):
        self.conn = connection
        self.tab_id = tab_id
        self.tab_url = tab_url
        self._enabled: set[str] = set()

    def __enter__(self) -> BrowserSession:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    def enable_domains(self, *domains: str) -> None:
        """Enable CDP domains once per connection (``Page``, ``Runtime``, ``DOM``, ``Network``)."""
        failures: list[str] = []
        for domain in domains:
            if domain in self._enabled:
                continue
            try:
                self.conn.send(f"{domain}.enable")
            except HttpClientError as exc:
                failures.append(f"{domain}: {exc}")
                continue
            self._enabled.add(domain)
        if failures:
            raise HttpClientError("Failed to enable CDP domain(s): " + "; ".join(failures))

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.conn.send(method, params)

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    def evaluate(self, expression: str, *, timeout: float | None = None) -> EvalResult:
        """Evaluate JavaScript by value, reporting page exceptions instead of raising."""
        params: dict[str, Any] = {
            "expression": expression,
            "returnByValue": True,
            "awaitPromise": True,
        }
        if timeout is not None:
            params["timeout"] = int(timeout * 1000)
        result = self.conn.send("Runtime.evaluate", params)

        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            text = exc.get("description") or details.get("text") or "JavaScript exception"
            return EvalResult(exception=str(text))

        value = result.get("result")
        if not isinstance(value, dict):
            return EvalResult()
        # undefined has no "value" field; null comes back as an object subtype.
        if value.get("type") == "undefined":
            return EvalResult()
        if value.get("type") == "object" and value.get("subtype") == "null":
            return EvalResult()
        return EvalResult(value=value.get("value"))

    def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
        """Evaluate JavaScript and return its value; page exceptions raise."""
        res = self.evaluate(expression, timeout=timeout)
        if res.exception is not None:
            raise HttpClientError(f"JavaScript error: {res.exception}")
        return res.value

    def get_url(self) -> str:
        return self.eval_js("window.location.href") or ""

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    def navigate(self, url: str, wait_load: bool = True, timeout: float = 15.0) -> dict[str, Any]:
        """Navigate to URL; returns the raw ``Page.navigate`` result (may carry ``errorText``)."""
        result = self.conn.send("Page.navigate", {"url": url})
        if result.get("errorText"):
            return result
        if wait_load and self.conn.wait_for_event("Page.loadEventFired", timeout) is None:
            raise HttpClientError("Page load timed out")
        self.tab_url = url
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Input & viewport
    # ─────────────────────────────────────────────────────────────────────────

    def press_key(self, key: str) -> None:
        code = _KEY_CODES.get(key, ord(key[0].upper()) if len(key) == 1 else 0)
        for event_type in ("keyDown", "keyUp"):
            self.conn.send(
                "Input.dispatchKeyEvent",
                {"type": event_type, "key": key, "code": key, "windowsVirtualKeyCode": code},
            )

    def set_viewport(self, width: int, height: int) -> str:
        """Normalize window size; returns which method took effect."""
        try:
            window = self.conn.send("Browser.getWindowForTarget", {"targetId": self.tab_id})
            self.conn.send(
                "Browser.setWindowBounds",
                {
                    "windowId": window.get("windowId"),
                    "bounds": {"width": width, "height": height, "windowState": "normal"},
                },
            )
            return "window"
        except HttpClientError:
            pass
        self.conn.send(
            "Emulation.setDeviceMetricsOverride",
            {"width": width, "height": height, "deviceScaleFactor": 1, "mobile": False},
        )
        return "emulation"

    # ─────────────────────────────────────────────────────────────────────────
    # Screenshots & files
    # ─────────────────────────────────────────────────────────────────────────

    def screenshot(self, format: str = "png") -> str:
        """Capture screenshot, return base64 data."""
        result = self.conn.send("Page.captureScreenshot", {"format": format, "fromSurface": True})
        return result.get("data", "")

    def query_selector(self, selector: str) -> int | None:
        doc = self.conn.send("DOM.getDocument", {"depth": 0})
        root = (doc.get("root") or {}).get("nodeId")
        if not root:
            return None
        found = self.conn.send("DOM.querySelector", {"nodeId": root, "selector": selector})
        node_id = found.get("nodeId")
        return int(node_id) if node_id else None

    def set_file_input_files(self, selector: str, paths: list[str]) -> bool:
        """Attach local files to the file input matching ``selector``."""
        node_id = self.query_selector(selector)
        if node_id is None:
            return False
        self.conn.send("DOM.setFileInputFiles", {"nodeId": node_id, "files": list(paths)})
        sel = json.dumps(selector)
        self.evaluate(
            "(() => {"
            f"const input = document.querySelector({sel});"
            "if (input) {"
            "input.dispatchEvent(new Event('change', { bubbles: true }));"
            "input.dispatchEvent(new Event('input', { bubbles: true }));"
            "}"
            "})()"
        )
        return True


__all__ = ["BrowserSession", "Connection", "EvalResult"]
