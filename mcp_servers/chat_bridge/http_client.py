from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def _request(url: str, method: str = "GET") -> Request:
    return Request(url, method=method, headers={"User-Agent": "mcp-chat-bridge/1.0"})


def http_get_json(url: str, timeout: float = 2.0, *, method: str = "GET") -> Any:
    """Fetch JSON from a CDP discovery endpoint (``/json/*``)."""
    try:
        with urlopen(_request(url, method), timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (OSError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc


def http_ok(url: str, timeout: float = 0.4) -> bool:
    """Return True if ``url`` answers with HTTP 200."""
    try:
        with urlopen(_request(url), timeout=timeout) as resp:
            return resp.status == 200
    except (OSError, TimeoutError, URLError):
        return False


__all__ = ["HttpClientError", "http_get_json", "http_ok"]
