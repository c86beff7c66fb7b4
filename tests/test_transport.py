from __future__ import annotations

import json
from typing import Any

import pytest
import websocket

from mcp_servers.chat_bridge import transport as transport_mod
from mcp_servers.chat_bridge.config import BridgeConfig
from mcp_servers.chat_bridge.http_client import HttpClientError
from mcp_servers.chat_bridge.session_cdp import CdpConnection
from mcp_servers.chat_bridge.state import Target


class FakeWebSocket:
    def __init__(self, frames: list[Any]) -> None:
        self.frames = list(frames)
        self.sent: list[dict[str, Any]] = []
        self.sock = None

    def settimeout(self, value: float) -> None:
        pass

    def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def recv(self) -> str:
        if not self.frames:
            raise websocket.WebSocketTimeoutException("timed out")
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame if isinstance(frame, str) else json.dumps(frame)


def _connection(monkeypatch, frames: list[Any]) -> tuple[CdpConnection, FakeWebSocket]:
    ws = FakeWebSocket(frames)
    monkeypatch.setattr(websocket, "create_connection", lambda *args, **kwargs: ws)
    return CdpConnection("ws://127.0.0.1:9223/devtools/page/A", timeout=1.0), ws


def test_send_skips_events_and_queues_them(monkeypatch) -> None:
    conn, ws = _connection(
        monkeypatch,
        [
            {"method": "Page.loadEventFired", "params": {"timestamp": 1}},
            "not json",
            {"id": 1, "result": {"frameId": "F"}},
        ],
    )

    assert conn.send("Page.navigate", {"url": "https://app.example/"}) == {"frameId": "F"}
    assert ws.sent == [{"id": 1, "method": "Page.navigate", "params": {"url": "https://app.example/"}}]
    assert conn.wait_for_event("Page.loadEventFired", timeout=0.1) == {"timestamp": 1}


def test_protocol_error_is_raised(monkeypatch) -> None:
    conn, _ = _connection(monkeypatch, [{"id": 1, "error": {"code": -32000, "message": "Cannot navigate"}}])
    with pytest.raises(HttpClientError, match=r"Protocol error \(-32000\): Cannot navigate"):
        conn.send("Page.navigate", {"url": "bad"})


def test_closed_socket_is_transient(monkeypatch) -> None:
    from mcp_servers.chat_bridge.errors import is_transient_error

    conn, _ = _connection(monkeypatch, [websocket.WebSocketConnectionClosedException("gone")])
    with pytest.raises(HttpClientError) as excinfo:
        conn.send("Runtime.evaluate", {"expression": "1+1"})
    assert str(excinfo.value).startswith("WebSocket closed")
    assert is_transient_error(excinfo.value)


def test_connect_failure_is_wrapped(monkeypatch) -> None:
    def refuse(*args, **kwargs):  # noqa: ANN002, ANN003
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(websocket, "create_connection", refuse)
    with pytest.raises(HttpClientError, match="WebSocket connect failed"):
        CdpConnection("ws://127.0.0.1:1/devtools/page/A")


def test_list_targets_parses_listing(monkeypatch) -> None:
    listing = [
        {"id": "A", "type": "page", "url": "https://app.example/", "title": "App", "webSocketDebuggerUrl": "ws://x/A"},
        {"id": "W", "type": "service_worker", "url": "https://app.example/sw.js"},
        "junk",
    ]
    seen: list[str] = []

    def fake_get_json(url: str, timeout: float = 2.0, *, method: str = "GET") -> Any:
        seen.append(url)
        return listing

    monkeypatch.setattr(transport_mod, "http_get_json", fake_get_json)
    targets = transport_mod.CdpTransport(BridgeConfig(binary_path="comet")).list_targets()

    assert seen == ["http://127.0.0.1:9223/json/list"]
    assert targets[0] == Target(id="A", type="page", url="https://app.example/", title="App", ws_url="ws://x/A")
    assert [t.is_page for t in targets] == [True, False]


def test_new_target_uses_put(monkeypatch) -> None:
    calls: list[tuple[str, str]] = []

    def fake_get_json(url: str, timeout: float = 2.0, *, method: str = "GET") -> Any:
        calls.append((url, method))
        return {"id": "N", "type": "page", "url": "https://app.example/"}

    monkeypatch.setattr(transport_mod, "http_get_json", fake_get_json)
    target = transport_mod.CdpTransport(BridgeConfig(binary_path="comet")).new_target("https://app.example/")

    assert target.id == "N"
    assert calls == [("http://127.0.0.1:9223/json/new?https://app.example/", "PUT")]


def test_close_target_falls_back_to_http(monkeypatch) -> None:
    def no_browser_ws(url: str, timeout: float = 2.0, *, method: str = "GET") -> Any:
        raise HttpClientError("connection refused")

    closed: list[str] = []
    monkeypatch.setattr(transport_mod, "http_get_json", no_browser_ws)
    monkeypatch.setattr(transport_mod, "http_ok", lambda url, timeout=0.4: closed.append(url) or True)

    assert transport_mod.CdpTransport(BridgeConfig(binary_path="comet")).close_target("B") is True
    assert closed == ["http://127.0.0.1:9223/json/close/B"]


def test_target_from_json_accepts_target_id() -> None:
    target = Target.from_json({"targetId": "T", "type": "page", "url": "about:blank"})
    assert target.id == "T"
    assert target.ws_url is None
