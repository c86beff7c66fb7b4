"""
Bridge tool handlers: connect, ask, poll, stop, screenshot, tabs, mode, upload.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...errors import SmartToolError
from ...service import render_status
from ..types import ToolResult

if TYPE_CHECKING:
    from ...service import BridgeService


def _optional_str(args: dict[str, Any], key: str) -> str | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise SmartToolError(
            tool="bridge",
            action="validate",
            reason=f"{key} must be a string",
            suggestion=f"Pass {key} as a string",
        )
    return value.strip() or None


def handle_connect(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    return ToolResult.text(service.connect())


def handle_ask(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    prompt = args.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise SmartToolError(
            tool="bridge_ask",
            action="validate",
            reason="prompt cannot be empty",
            suggestion="Pass the question or task as prompt",
        )
    timeout = args.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise SmartToolError(
            tool="bridge_ask",
            action="validate",
            reason="timeout must be a positive number of seconds",
            suggestion="Omit timeout to use the default",
        )
    outcome = service.ask(prompt, new_chat=bool(args.get("newChat")), timeout=timeout)
    result = ToolResult.text(outcome.render())
    result.data = {
        "status": outcome.status.value,
        "timedOut": outcome.timed_out,
        "failed": outcome.failed,
        "elapsed": round(outcome.elapsed, 2),
        "steps": outcome.steps,
    }
    return result


def handle_poll(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    status = service.poll()
    result = ToolResult.text(render_status(status))
    result.data = status.to_dict()
    return result


def handle_stop(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    stopped = service.stop()
    return ToolResult.text("Agent stopped" if stopped else "No active agent to stop")


def handle_screenshot(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    data, caption = service.screenshot()
    if not data:
        return ToolResult.error("Screenshot data is empty", tool="bridge_screenshot")
    return ToolResult.with_image(caption, data, "image/png")


def handle_tabs(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    action = _optional_str(args, "action") or "list"
    text = service.tabs_action(action, domain=_optional_str(args, "domain"), tab_id=_optional_str(args, "tabId"))
    result = ToolResult.text(text)
    if action.lower() == "list":
        result.data = [tab.to_dict() for tab in service.ctx.tabs.values()]
    return result


def handle_mode(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    return ToolResult.text(service.mode(_optional_str(args, "mode")))


def handle_upload(service: BridgeService, args: dict[str, Any]) -> ToolResult:
    paths = args.get("paths")
    if isinstance(paths, str):
        paths = [paths]
    if not isinstance(paths, list) or not paths or not all(isinstance(p, str) and p for p in paths):
        raise SmartToolError(
            tool="bridge_upload",
            action="validate",
            reason="paths must be a non-empty list of file paths",
            suggestion='Pass paths=["/abs/path/file.pdf"]',
        )
    outcome = service.upload(paths, _optional_str(args, "selector"))
    if not outcome.get("success"):
        return ToolResult.error(
            str(outcome.get("message")),
            tool="bridge_upload",
            suggestion="Check the paths, or pass a selector for the file input",
            details=outcome,
        )
    return ToolResult.json(outcome)


BRIDGE_HANDLERS: dict[str, tuple] = {
    "bridge_connect": (handle_connect, False),
    "bridge_ask": (handle_ask, True),
    "bridge_poll": (handle_poll, True),
    "bridge_stop": (handle_stop, True),
    "bridge_screenshot": (handle_screenshot, True),
    "bridge_tabs": (handle_tabs, True),
    "bridge_mode": (handle_mode, True),
    "bridge_upload": (handle_upload, True),
}
