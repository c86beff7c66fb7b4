"""
Tool registry with dispatch table for the MCP server.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .types import ToolResult

if TYPE_CHECKING:
    from ..service import BridgeService

logger = logging.getLogger("mcp.chat_bridge.registry")

HandlerFunc = Callable[["BridgeService", dict[str, Any]], ToolResult]


class ToolRegistry:
    """Registry for tool handlers with an app-reachability gate."""

    def __init__(self) -> None:
        # name -> (handler, requires_app)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register(self, name: str, handler: HandlerFunc, requires_app: bool = True) -> None:
        self._handlers[name] = (handler, requires_app)

    def register_many(self, handlers: dict[str, tuple[HandlerFunc, bool]]) -> None:
        self._handlers.update(handlers)

    def get(self, name: str) -> tuple[HandlerFunc, bool] | None:
        return self._handlers.get(name)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, service: BridgeService, arguments: dict[str, Any]) -> ToolResult:
        """
        Dispatch tool call to the registered handler.

        Raises:
            KeyError: If tool not found
        """
        handler_info = self._handlers.get(name)
        if handler_info is None:
            raise KeyError(f"Unknown tool: {name}")

        handler, requires_app = handler_info
        # Fail fast instead of letting every page operation time out.
        if requires_app:
            launcher = service.ctx.launcher
            if launcher is not None and not launcher.cdp_ready(timeout=0.6):
                logger.info("tool=%s refused: CDP endpoint not reachable", name)
                return ToolResult.error(
                    f"App not reachable on CDP port {service.config.cdp_port}",
                    tool=name,
                    suggestion="Call bridge_connect first (it starts the app with the debug port)",
                )
        return handler(service, arguments)

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)


def create_default_registry() -> ToolRegistry:
    from .handlers import BRIDGE_HANDLERS

    registry = ToolRegistry()
    registry.register_many(BRIDGE_HANDLERS)
    return registry
