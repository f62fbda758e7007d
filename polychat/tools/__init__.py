"""
Tool support: declaring tools, resolving them by name and executing them.
"""
from .models import Halt, ToolCall, ToolDefinition, ToolParameter, ToolResult
from .tool import FunctionTool, Tool, function_tool
from .tool_executor import ToolExecutor
from .tool_registry import ToolRegistry

__all__ = [
    'Halt',
    'ToolCall',
    'ToolDefinition',
    'ToolParameter',
    'ToolResult',
    'Tool',
    'FunctionTool',
    'function_tool',
    'ToolExecutor',
    'ToolRegistry',
]
