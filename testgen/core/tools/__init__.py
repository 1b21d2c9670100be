"""External tool client and helpers."""

from testgen.core.tools.tool_client import ToolCall, ToolClient, ToolHelpers, ToolResult

__all__ = ["ToolCall", "ToolClient", "ToolHelpers", "ToolResult"]
