"""
Tool registry: the set of tools bound to one chat.
"""
from typing import Dict, Iterable, List, Optional

from ..exceptions import AIToolError, ToolNotFoundError
from ..utils.logger import LoggerInterface, LoggerFactory
from .models import ToolDefinition
from .tool import Tool


class ToolRegistry:
    """
    Name -> Tool mapping for a conversation.

    Registering a tool under a name that is already taken replaces the
    earlier tool.
    """

    def __init__(self, tools: Optional[Iterable[Tool]] = None,
                 logger: Optional[LoggerInterface] = None):
        """
        Initialize the tool registry.

        Args:
            tools: Tools to register up front
            logger: Logger instance
        """
        self._logger = logger or LoggerFactory.create(name="tool_registry")
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Register a tool.

        Raises:
            AIToolError: If the object is not a Tool or has no name
        """
        if not isinstance(tool, Tool):
            raise AIToolError(f"Expected a Tool instance, got {type(tool).__name__}")
        if not tool.name:
            raise AIToolError("Tool has no name")
        if tool.name in self._tools:
            self._logger.debug(f"Replacing tool: {tool.name}")
        self._tools[tool.name] = tool
        self._logger.debug(f"Tool registered: {tool.name}")

    def clear(self) -> None:
        self._tools.clear()

    def resolve(self, tool_name: str) -> Tool:
        """
        Look up a tool by the name the model used.

        Raises:
            ToolNotFoundError: If no tool with that name is bound
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{tool_name}' is not available", tool_name=tool_name)
        return tool

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def get_tool_names(self) -> List[str]:
        return list(self._tools.keys())

    def tools(self) -> List[Tool]:
        return list(self._tools.values())

    def definitions(self) -> List[ToolDefinition]:
        """Provider-facing declarations of all registered tools."""
        return [tool.to_definition() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __bool__(self) -> bool:
        return bool(self._tools)
