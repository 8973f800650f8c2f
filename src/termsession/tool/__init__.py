"""Tool system — base classes, registry, and output shaping."""

from termsession.tool.base import BaseTool, ToolResult, ToolOk, ToolError
from termsession.tool.registry import ToolRegistry
from termsession.tool.truncation import truncate_output

__all__ = [
    "BaseTool",
    "ToolResult",
    "ToolOk",
    "ToolError",
    "ToolRegistry",
    "truncate_output",
]
