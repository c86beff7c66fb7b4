"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str  # "text" or "image"
    text: str | None = None
    data: str | None = None  # base64 for images
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP content format."""
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for tests and logging; not part of the MCP wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=text or "")])

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        if tool:
            payload["tool"] = tool
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details
        lines = [f"Error: {message}"]
        if suggestion:
            lines.append(f"Suggestion: {suggestion}")
        return cls(content=[ToolContent(type="text", text="\n".join(lines))], is_error=True, data=payload)

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        text = json.dumps(data, ensure_ascii=False, indent=2, default=str)
        return cls(content=[ToolContent(type="text", text=text)], data=data)

    @classmethod
    def with_image(cls, text: str, data_b64: str, mime_type: str = "image/png") -> ToolResult:
        """Text plus image content. Omits the image if data is empty."""
        content = [ToolContent(type="text", text=text or "")]
        if data_b64:
            content.append(ToolContent(type="image", data=data_b64, mime_type=mime_type))
        return cls(content=content)

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]
