"""External tool capabilities."""

from .client import (
    TOOL_NAMESPACE_SEP,
    McpToolService,
    ToolServiceError,
    namespaced_tool_name,
    select_tools,
    split_namespaced_tool_name,
)

__all__ = [
    "McpToolService",
    "TOOL_NAMESPACE_SEP",
    "ToolServiceError",
    "namespaced_tool_name",
    "select_tools",
    "split_namespaced_tool_name",
]
