"""Tool schema definitions."""

from __future__ import annotations

from typing import Any

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

CONNECT_TOOL: dict[str, Any] = {
    "name": "bridge_connect",
    "description": """Connect to the assistant app (starts it with the debug port if needed).
Closes extra page tabs, keeps one and opens the app home page.""",
    "inputSchema": _EMPTY_SCHEMA,
}

ASK_TOOL: dict[str, Any] = {
    "name": "bridge_ask",
    "description": """Send a prompt to the assistant and wait for the complete answer (blocking).
Good for tasks that need a real browser (login walls, dynamic pages, forms) or deep research.
If the timeout is reached, returns the current status instead; follow up with bridge_poll.""",
    "inputSchema": {
        "type": "object",
        "properties": {
            "prompt": {"type": "string", "description": "Question or task; focus on goals and context"},
            "newChat": {"type": "boolean", "default": False, "description": "Start a fresh conversation"},
            "timeout": {
                "type": "number",
                "description": "Max wait in seconds (default: MCP_BRIDGE_ASK_TIMEOUT, 120)",
            },
        },
        "required": ["prompt"],
    },
}

POLL_TOOL: dict[str, Any] = {
    "name": "bridge_poll",
    "description": "Check the assistant's status and progress. Returns the answer once it is complete.",
    "inputSchema": _EMPTY_SCHEMA,
}

STOP_TOOL: dict[str, Any] = {
    "name": "bridge_stop",
    "description": "Stop the assistant's current task (clicks its stop control).",
    "inputSchema": _EMPTY_SCHEMA,
}

SCREENSHOT_TOOL: dict[str, Any] = {
    "name": "bridge_screenshot",
    "description": "Capture a PNG screenshot of the current page.",
    "inputSchema": _EMPTY_SCHEMA,
}

TABS_TOOL: dict[str, Any] = {
    "name": "bridge_tabs",
    "description": """View and manage the tabs the assistant opened while browsing.
USAGE:
- List: bridge_tabs(action="list")
- Switch: bridge_tabs(action="switch", domain="github.com") or tabId="ABC123"
- Close: bridge_tabs(action="close", domain="github.com") or tabId="ABC123"
Closing is refused while only one browsing tab is open; the app tab is never closed.""",
    "inputSchema": {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["list", "switch", "close"],
                "default": "list",
                "description": "Tab action",
            },
            "domain": {"type": "string", "description": "For switch/close: domain to match"},
            "tabId": {"type": "string", "description": "For switch/close: specific tab id"},
        },
    },
}

MODE_TOOL: dict[str, Any] = {
    "name": "bridge_mode",
    "description": """Show or switch the assistant's mode.
Modes: search (basic), research (deep research), labs (analytics/visualization), learn (educational).
Call without mode to see the current one.""",
    "inputSchema": {
        "type": "object",
        "properties": {
            "mode": {
                "type": "string",
                "enum": ["search", "research", "labs", "learn"],
                "description": "Mode to switch to (omit to read the current mode)",
            },
        },
    },
}

UPLOAD_TOOL: dict[str, Any] = {
    "name": "bridge_upload",
    "description": """Attach local files to a file input on the current page.
Without a selector the file input is detected automatically.""",
    "inputSchema": {
        "type": "object",
        "properties": {
            "paths": {"type": "array", "items": {"type": "string"}, "description": "Absolute file paths"},
            "selector": {"type": "string", "description": "CSS selector of the file input"},
        },
        "required": ["paths"],
    },
}

BRIDGE_TOOL_DEFINITIONS: list[dict[str, Any]] = [
    CONNECT_TOOL,
    ASK_TOOL,
    POLL_TOOL,
    STOP_TOOL,
    SCREENSHOT_TOOL,
    TABS_TOOL,
    MODE_TOOL,
    UPLOAD_TOOL,
]
