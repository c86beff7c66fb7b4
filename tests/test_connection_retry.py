from __future__ import annotations

import pytest
from conftest import FakeLauncher, page

from mcp_servers.chat_bridge.config import RetryPolicy
from mcp_servers.chat_bridge.connection import ConnectionManager
from mcp_servers.chat_bridge.errors import NoTargetError, NotConnectedError, TargetNotFoundError
from mcp_servers.chat_bridge.http_client import HttpClientError


def test_connect_prefers_app_page(ctx, transport) -> None:
    transport.targets.insert(0, page("X", "https://shop.example/item"))
    manager = ConnectionManager(ctx)

    message = manager.connect()

    assert message == "Connected to tab: https://app.example/chat"
    assert ctx.state.active_tab_id == "A"
    assert ctx.last_target_id == "A"
    assert transport.sessions["A"].enabled == ["Page", "Runtime", "DOM", "Network"]


def test_connect_unknown_target_raises(ctx) -> None:
    manager = ConnectionManager(ctx)
    with pytest.raises(TargetNotFoundError):
        manager.connect("missing")
    assert not manager.is_connected


def test_connect_without_pages_raises(ctx, transport) -> None:
    transport.targets = [page("blank", "about:blank")]
    with pytest.raises(NoTargetError):
        ConnectionManager(ctx).connect()


def test_evaluate_without_session_raises_transient_error(ctx) -> None:
    from mcp_servers.chat_bridge.errors import is_transient_error

    manager = ConnectionManager(ctx)
    with pytest.raises(NotConnectedError) as excinfo:
        manager.evaluate("1")
    assert is_transient_error(excinfo.value)


def test_health_check_is_cached_within_ttl(ctx, transport, clock) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    session = transport.sessions["A"]

    # connect() stores a fresh healthy result.
    assert manager.health_check() is True
    assert session.probes == 0

    clock.advance(2.5)
    assert manager.health_check() is True
    assert manager.health_check() is True
    assert session.probes == 1

    clock.advance(2.5)
    session.probe_error = HttpClientError("WebSocket closed")
    assert manager.health_check() is False
    assert session.probes == 2


def test_backoff_sequence_is_capped() -> None:
    policy = RetryPolicy()
    delays = [policy.backoff(n) for n in range(1, 11)]
    assert delays[0] == pytest.approx(0.3)
    assert delays[1] == pytest.approx(0.39)
    assert delays[2] == pytest.approx(0.507)
    assert delays[7] == pytest.approx(0.3 * 1.3**7)
    assert delays[8:] == [2.0, 2.0]
    assert delays == sorted(delays)


def test_non_transient_error_propagates_without_reconnect(ctx, transport) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()

    def operation() -> None:
        raise ValueError("bad selector syntax")

    with pytest.raises(ValueError):
        manager.with_retry(operation)
    assert transport.opened == ["A"]
    assert ctx.reconnect_attempts == 0


def test_transient_error_reconnects_and_resets_counter(ctx, transport, clock) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    ctx.reconnect_attempts = 3
    calls = {"n": 0}

    def operation() -> int:
        calls["n"] += 1
        if calls["n"] == 1:
            raise HttpClientError("WebSocket closed: eof")
        return 42

    assert manager.with_retry(operation) == 42
    assert calls["n"] == 2
    assert ctx.reconnect_attempts == 0
    assert not ctx.reconnecting
    assert transport.opened == ["A", "A"]
    assert clock.sleeps == [pytest.approx(0.3 * 1.3**3)]


def test_cold_start_recovery_after_failed_retry(ctx, transport, clock) -> None:
    launcher = FakeLauncher(transport)
    ctx.launcher = launcher  # type: ignore[assignment]
    manager = ConnectionManager(ctx)
    manager.connect()
    calls = {"n": 0}

    def operation() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise HttpClientError("Target closed")
        return "ok"

    assert manager.with_retry(operation) == "ok"
    assert launcher.calls == 1
    assert clock.sleeps == [pytest.approx(0.3), pytest.approx(1.5)]
    assert ctx.reconnect_attempts == 0


def test_retry_reraises_when_recovery_fails(ctx) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()

    def operation() -> None:
        raise HttpClientError("socket hang up")

    with pytest.raises(HttpClientError, match="socket hang up"):
        manager.with_retry(operation)


def test_exhausted_retry_attempts_raise_immediately(ctx, transport, clock) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    ctx.reconnect_attempts = ctx.config.retry.max_attempts

    def operation() -> None:
        raise HttpClientError("WebSocket is not open")

    with pytest.raises(HttpClientError):
        manager.with_retry(operation)
    assert transport.opened == ["A"]
    assert clock.sleeps == []


def test_with_retry_waits_for_concurrent_reconnect(ctx, clock) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    ctx.reconnecting = True

    assert manager.with_retry(lambda: "done") == "done"
    assert clock.sleeps == [pytest.approx(0.3)] * 20


def test_pre_operation_check_reconnects_when_active_tab_vanished(ctx, transport) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    transport.targets = [page("B", "https://app.example/other")]
    manager.list_targets()

    manager.pre_operation_check()

    assert ctx.state.active_tab_id == "B"


def test_reconnect_relaunches_unreachable_app(ctx, transport, clock) -> None:
    launcher = FakeLauncher(transport)
    ctx.launcher = launcher  # type: ignore[assignment]
    manager = ConnectionManager(ctx)
    manager.connect()
    transport.down = True

    manager.reconnect()

    assert launcher.calls == 1
    assert clock.sleeps == [pytest.approx(2.0)]
    assert manager.is_connected


def test_navigate_with_retry_stops_on_dns_failure(ctx, transport) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    session = transport.sessions["A"]
    session.nav_results = [{"errorText": "net::ERR_NAME_NOT_RESOLVED"}]

    result = manager.navigate_with_retry("https://nope.invalid/")

    assert result["success"] is False
    assert result["attempts"] == 1
    assert "ERR_NAME_NOT_RESOLVED" in result["error"]
    assert session.navigations == ["https://nope.invalid/"]


def test_navigate_with_retry_retries_other_failures(ctx, transport, clock) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()
    session = transport.sessions["A"]
    session.nav_results = [{"errorText": "net::ERR_CONNECTION_FAILED"}]

    result = manager.navigate_with_retry("https://app.example/")

    assert result == {"success": True, "url": "https://app.example/", "attempts": 2}
    assert pytest.approx(1.0) in clock.sleeps
    assert ctx.state.current_url == "https://app.example/"


def test_ensure_on_primary_tab_returns_to_app(ctx, transport) -> None:
    transport.targets.insert(0, page("X", "https://shop.example/item"))
    manager = ConnectionManager(ctx)
    manager.connect("X")
    assert not manager.is_on_primary_tab()

    assert manager.ensure_on_primary_tab() is True
    assert ctx.state.active_tab_id == "A"


def test_closing_active_target_disconnects(ctx, transport) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()

    assert manager.close_target("A") is True
    assert not manager.is_connected
    assert transport.sessions["A"].closed


def test_upload_files_tries_selector_priority(ctx, transport, tmp_path) -> None:
    doc = tmp_path / "report.pdf"
    doc.write_bytes(b"%PDF-1.4")
    manager = ConnectionManager(ctx)
    manager.connect()
    session = transport.sessions["A"]
    session.file_selectors = {'[class*="dropzone"] input[type="file"]'}

    result = manager.upload_files([str(doc)])

    assert result["success"] is True
    assert session.files == [('[class*="dropzone"] input[type="file"]', [str(doc.resolve())])]


def test_upload_files_reports_missing_file(ctx, tmp_path) -> None:
    manager = ConnectionManager(ctx)
    manager.connect()

    result = manager.upload_files([str(tmp_path / "absent.txt")])

    assert result["success"] is False
    assert "File not found" in result["message"]


def test_upload_files_rejects_unmatched_selector(ctx, tmp_path) -> None:
    doc = tmp_path / "notes.txt"
    doc.write_text("hi")
    manager = ConnectionManager(ctx)
    manager.connect()

    result = manager.upload_files([str(doc)], selector="#attach")

    assert result == {"success": False, "message": "No element found matching selector: #attach", "inputFound": False}


def test_file_inputs_reports_page_inputs(ctx, transport) -> None:
    transport.responder = lambda expression: {"count": 2, "selectors": ["#upload", 'input[name="doc"]']}
    manager = ConnectionManager(ctx)
    manager.connect()

    assert manager.file_inputs() == {"found": True, "count": 2, "selectors": ["#upload", 'input[name="doc"]']}


def test_file_inputs_tolerates_script_failure(ctx, transport) -> None:
    from mcp_servers.chat_bridge.browser_session import EvalResult

    transport.responder = lambda expression: EvalResult(exception="TypeError: document is null")
    manager = ConnectionManager(ctx)
    manager.connect()

    assert manager.file_inputs() == {"found": False, "count": 0, "selectors": []}


def test_press_key_goes_to_active_session(ctx, transport) -> None:
    manager = ConnectionManager(ctx)
    with pytest.raises(NotConnectedError):
        manager.press_key("Escape")

    manager.connect()
    manager.press_key("Escape")
    assert transport.sessions["A"].keys == ["Escape"]
