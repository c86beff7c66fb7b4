"""
Tool handlers.

All handlers follow the signature: (service, arguments) -> ToolResult
"""

from .bridge import BRIDGE_HANDLERS

__all__ = ["BRIDGE_HANDLERS"]
