"""Tools package for Tern."""

from tern.tools.builtin import register_builtin_tools
from tern.tools.registry import Tool, ToolContext, ToolDescriptor, ToolRegistry
from tern.tools.schema import EmptyInput, OpenToolInput, ToolInput, ToolSchema, ValidatedArguments

__all__ = [
    "EmptyInput",
    "OpenToolInput",
    "Tool",
    "ToolContext",
    "ToolDescriptor",
    "ToolInput",
    "ToolRegistry",
    "ToolSchema",
    "ValidatedArguments",
    "register_builtin_tools",
]
