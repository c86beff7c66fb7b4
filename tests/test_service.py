from __future__ import annotations

import base64
import io
from typing import Any

import pytest
from conftest import FakeLauncher, page

from mcp_servers.chat_bridge import page_scripts
from mcp_servers.chat_bridge.errors import BridgeError, SubmissionVerificationFailure
from mcp_servers.chat_bridge.service import BridgeService, image_size, normalize_prompt, render_status
from mcp_servers.chat_bridge.state import AgentStatus, TaskStatus

ANSWER = "Rust 1.0 was released in May 2015 after several years of public development and RFCs."


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("What is 2+2?", "What is 2+2?"),
        ("- first point\n- second point", "first point second point"),
        (
            "Summarize https://example.com/post please",
            "Use your browser to navigate to https://example.com/post and Summarize please",
        ),
        ("https://example.com/post", "Use your browser to navigate to https://example.com/post and tell me what you find there"),
        ("go to github.com and star the repo", "Use your browser to go to github.com and star the repo"),
        ("check the weather website", "Use your browser to go and check the weather website"),
        ("Use your browser to open example.com", "Use your browser to open example.com"),
        ("   \n  ", ""),
    ],
)
def test_normalize_prompt(raw: str, expected: str) -> None:
    assert normalize_prompt(raw) == expected


def test_render_status_working() -> None:
    status = AgentStatus(
        status=TaskStatus.WORKING,
        steps=["Searching flights", "Clicking search"],
        current_step="Clicking search",
        browsing_url="https://shop.example/",
    )
    text = render_status(status)
    assert text.splitlines()[:3] == ["Status: WORKING", "Browsing: https://shop.example/", "Current: Clicking search"]
    assert "  • Searching flights" in text
    assert "bridge_stop" in text


def test_render_status_completed_is_the_answer() -> None:
    assert render_status(AgentStatus(status=TaskStatus.COMPLETED, response=ANSWER)) == ANSWER


def test_image_size_reads_png_header() -> None:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (3, 2), "white").save(buf, format="PNG")
    data = base64.b64encode(buf.getvalue()).decode()

    assert image_size(data) == (3, 2)
    assert image_size(base64.b64encode(b"not an image").decode()) is None


def test_connect_keeps_single_tab_and_opens_home(ctx, transport, clock) -> None:
    transport.targets.append(page("B", "https://shop.example/item"))
    launcher = FakeLauncher(transport)
    ctx.launcher = launcher  # type: ignore[assignment]
    service = BridgeService(ctx)

    message = service.connect()

    assert launcher.calls == 1
    assert transport.closed == ["B"]
    assert "cleaned 1 old tabs" in message
    assert transport.sessions["A"].navigations == ["https://app.example/"]
    assert clock.sleeps == [pytest.approx(1.5)]


def test_connect_opens_tab_when_none_left(ctx, transport) -> None:
    transport.targets = []
    ctx.launcher = FakeLauncher(transport)  # type: ignore[assignment]
    service = BridgeService(ctx)

    message = service.connect()

    assert "Created a new tab" in message
    assert ctx.state.connected
    assert transport.targets[0].url == "https://app.example/"


def test_ask_polls_even_when_submission_is_unverified(ctx, transport, monkeypatch) -> None:
    snapshots = [{"count": 1, "lastText": "old"}, {"count": 2, "lastText": "Rust 1.0"}]

    def responder(expression: str) -> Any:
        if "lastText" in expression:
            return snapshots.pop(0) if len(snapshots) > 1 else snapshots[0]
        return None

    transport.responder = responder
    service = BridgeService(ctx)
    sent: list[str] = []

    def submit(text: str) -> str:
        sent.append(text)
        raise SubmissionVerificationFailure(["key-commit", "submit-control", "form-submit"])

    monkeypatch.setattr(service.submitter, "submit", submit)
    monkeypatch.setattr(
        service.detector, "read_status", lambda: AgentStatus(status=TaskStatus.COMPLETED, response=ANSWER)
    )

    outcome = service.ask("- When was Rust 1.0 released?", timeout=10)

    assert sent == ["When was Rust 1.0 released?"]
    assert outcome.response == ANSWER
    assert ctx.state.active_tab_id == "A"


def test_ask_rejects_empty_prompt(ctx) -> None:
    with pytest.raises(BridgeError, match="empty"):
        BridgeService(ctx).ask(" \n\t ")


def test_screenshot_caption_has_size(ctx, transport) -> None:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (4, 3)).save(buf, format="PNG")
    data = base64.b64encode(buf.getvalue()).decode()
    service = BridgeService(ctx)
    service.connection.connect()
    transport.sessions["A"].shot = data

    assert service.screenshot() == (data, "Screenshot 4x3")


def test_describe_modes_marks_current(ctx, transport, monkeypatch) -> None:
    monkeypatch.setattr(page_scripts, "mode_read_script", lambda: "MODE_READ")
    transport.responder = lambda expression: "research" if expression == "MODE_READ" else None

    text = BridgeService(ctx).mode()

    assert text.splitlines()[0] == "Current mode: research"
    assert "→ research: Deep research with comprehensive analysis" in text
    assert "  search: Basic web search" in text


def test_switch_mode_opens_dropdown_then_selects(ctx, transport, clock, monkeypatch) -> None:
    monkeypatch.setattr(page_scripts, "mode_click_script", lambda mode: f"CLICK:{mode}")
    monkeypatch.setattr(page_scripts, "mode_select_script", lambda mode: f"SELECT:{mode}")
    answers = {
        "CLICK:labs": {"success": True, "method": "dropdown-open", "needsSelect": True},
        "SELECT:labs": {"success": True},
    }
    transport.responder = answers.get
    service = BridgeService(ctx)
    service.connection.connect()

    assert service.mode("labs") == "Switched to labs mode"
    assert clock.sleeps == [pytest.approx(0.3)]


def test_switch_mode_rejects_unknown(ctx) -> None:
    with pytest.raises(BridgeError, match="Invalid mode"):
        BridgeService(ctx).switch_mode("turbo")


def test_switch_mode_reports_page_failure(ctx, transport, monkeypatch) -> None:
    monkeypatch.setattr(page_scripts, "mode_click_script", lambda mode: "CLICK")
    transport.responder = lambda expression: {"success": False, "error": "Mode button not found"}
    service = BridgeService(ctx)
    service.connection.connect()

    with pytest.raises(BridgeError, match="Mode button not found"):
        service.switch_mode("learn")


def test_upload_requires_paths(ctx) -> None:
    with pytest.raises(BridgeError):
        BridgeService(ctx).upload([])


def test_stop_reports_no_control(ctx, transport) -> None:
    transport.responder = lambda expression: False
    service = BridgeService(ctx)
    service.connection.connect()
    assert service.stop() is False


def test_switch_mode_dismisses_menu_when_option_missing(ctx, transport, monkeypatch) -> None:
    monkeypatch.setattr(page_scripts, "mode_click_script", lambda mode: f"CLICK:{mode}")
    monkeypatch.setattr(page_scripts, "mode_select_script", lambda mode: f"SELECT:{mode}")
    answers = {
        "CLICK:labs": {"success": True, "method": "dropdown-open", "needsSelect": True},
        "SELECT:labs": {"success": False, "error": "Option not found: labs"},
    }
    transport.responder = answers.get
    service = BridgeService(ctx)
    service.connection.connect()

    with pytest.raises(BridgeError, match="Option not found"):
        service.switch_mode("labs")
    assert transport.sessions["A"].keys == ["Escape"]


def test_upload_without_input_lists_detected_inputs(ctx, transport, tmp_path) -> None:
    doc = tmp_path / "brief.pdf"
    doc.write_bytes(b"%PDF-1.4")
    transport.responder = lambda expression: {"count": 1, "selectors": ["#hidden-upload"]}
    service = BridgeService(ctx)
    service.connection.connect()

    outcome = service.upload([str(doc)])

    assert outcome["success"] is False
    assert outcome["detectedInputs"] == {"found": True, "count": 1, "selectors": ["#hidden-upload"]}


def test_upload_of_missing_file_skips_input_scan(ctx, transport, tmp_path) -> None:
    service = BridgeService(ctx)
    service.connection.connect()

    outcome = service.upload([str(tmp_path / "absent.pdf")])

    assert outcome["missing"] == [str((tmp_path / "absent.pdf").resolve())]
    assert "detectedInputs" not in outcome
    assert transport.sessions["A"].evaluations == []


def test_ask_recovery_restarts_app_without_pages(ctx, transport) -> None:
    launcher = FakeLauncher(transport)
    ctx.launcher = launcher
    transport.targets = []
    launcher.on_restart = lambda: transport.targets.append(page("R", "https://app.example/"))
    service = BridgeService(ctx)

    service._recover_for_ask()

    assert launcher.restarts == 1
    assert ctx.state.active_tab_id == "R"


def test_ask_recovery_gives_up_after_restart(ctx, transport) -> None:
    launcher = FakeLauncher(transport)
    ctx.launcher = launcher
    transport.targets = []

    with pytest.raises(BridgeError, match="Failed to establish"):
        BridgeService(ctx)._recover_for_ask()
    assert launcher.restarts == 1
