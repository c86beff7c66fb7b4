"""Redaction of tool arguments for logs.

Prompts and file paths can carry private data; logs keep their shape only.
"""

from __future__ import annotations

from typing import Any

_SUMMARIZED_KEYS = {"prompt"}
_PATH_KEYS = {"paths"}


def redact_tool_arguments(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(arguments, dict):
        return {}
    safe: dict[str, Any] = {}
    for key, value in arguments.items():
        if key in _SUMMARIZED_KEYS and isinstance(value, str):
            safe[key] = f"<{len(value)} chars>"
        elif key in _PATH_KEYS and isinstance(value, list):
            safe[key] = f"<{len(value)} file(s)>"
        else:
            safe[key] = value
    return safe
