"""CDP transport: target discovery plus per-target page sessions."""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any

from .browser_session import BrowserSession
from .config import BridgeConfig
from .http_client import HttpClientError, http_get_json, http_ok
from .session_cdp import CdpConnection
from .state import Target

logger = logging.getLogger("mcp.chat_bridge.transport")


class CdpTransport:
    """Thin wrapper around the ``/json/*`` endpoints and the browser websocket."""

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config

    def _url(self, path: str) -> str:
        return f"{self.config.http_base}{path}"

    def version(self) -> dict[str, Any]:
        payload = http_get_json(self._url("/json/version"), timeout=self.config.http_timeout)
        if not isinstance(payload, dict):
            raise HttpClientError("Unexpected /json/version payload")
        return payload

    def list_targets(self) -> list[Target]:
        payload = http_get_json(self._url("/json/list"), timeout=self.config.http_timeout)
        if not isinstance(payload, list):
            raise HttpClientError("Unexpected /json/list payload")
        return [Target.from_json(item) for item in payload if isinstance(item, dict)]

    def open_session(self, target_id: str, target: Target | None = None) -> BrowserSession:
        """Open a websocket session to the given target.

        Pass ``target`` when it comes from a fresh listing to skip the lookup.
        """
        if target is None or target.id != target_id:
            target = next((t for t in self.list_targets() if t.id == target_id), None)
        if target is None:
            raise HttpClientError(f"Target {target_id} not found")
        ws_url = target.ws_url or f"ws://{self.config.cdp_host}:{self.config.cdp_port}/devtools/page/{target_id}"
        conn = CdpConnection(ws_url, timeout=self.config.cdp_timeout)
        return BrowserSession(conn, target_id, target.url)

    def new_target(self, url: str = "about:blank") -> Target:
        quoted = urllib.parse.quote(url, safe=":/?&=#%")
        payload = http_get_json(self._url(f"/json/new?{quoted}"), timeout=self.config.http_timeout, method="PUT")
        if not isinstance(payload, dict) or not payload.get("id"):
            raise HttpClientError("Failed to create new tab")
        return Target.from_json(payload)

    def close_target(self, target_id: str) -> bool:
        """Close a target; browser websocket first, ``/json/close`` as fallback."""
        try:
            browser_ws = self.version().get("webSocketDebuggerUrl")
            if browser_ws:
                conn = CdpConnection(str(browser_ws), timeout=3.0)
                try:
                    result = conn.send("Target.closeTarget", {"targetId": target_id})
                finally:
                    conn.close()
                return bool(result.get("success", True))
        except HttpClientError as exc:
            logger.info("close_target via websocket failed for %s: %s", target_id, exc)
        # /json/close answers with plain text, not JSON.
        return http_ok(self._url(f"/json/close/{target_id}"), timeout=self.config.http_timeout)


__all__ = ["CdpTransport"]
