"""
Tool executor: validates arguments and runs tools with a timeout.
"""
from typing import Any, Dict, Optional, Union
import asyncio
import functools
import inspect

from pydantic import ValidationError

from ..exceptions import ErrorHandler
from ..utils.logger import LoggerInterface, LoggerFactory
from .models import Halt, ToolResult
from .tool import Tool

# Default timeout for tool execution in seconds
DEFAULT_TOOL_TIMEOUT = 30.0


class ToolExecutor:
    """
    Executes tools on behalf of the conversation engine.

    Failures never propagate: validation errors, timeouts and exceptions
    raised by the tool come back as ToolResult(success=False). A Halt
    returned by the tool is passed through unchanged.
    """

    def __init__(self, logger: Optional[LoggerInterface] = None,
                 timeout: float = DEFAULT_TOOL_TIMEOUT):
        """
        Initialize the tool executor.

        Args:
            logger: Logger instance
            timeout: Execution timeout in seconds
        """
        self._logger = logger or LoggerFactory.create(name="tool_executor")
        self.timeout = timeout

    async def _run(self, tool: Tool, arguments: Dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(tool.execute) or getattr(tool, "is_async", False):
            return await asyncio.wait_for(tool.execute(**arguments), timeout=self.timeout)

        # Sync tools run in the default executor so they do not block the loop
        loop = asyncio.get_running_loop()
        result = await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(tool.execute, **arguments)),
            timeout=self.timeout,
        )
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout=self.timeout)
        return result

    async def invoke(self, tool: Tool, arguments: Dict[str, Any]) -> Union[ToolResult, Halt]:
        """
        Validate `arguments` against the tool's schema and execute it.

        Args:
            tool: Resolved tool
            arguments: Arguments sent by the model

        Returns:
            ToolResult, or the Halt the tool returned
        """
        tool_name = tool.name
        if "_raw_args" in arguments:
            return ToolResult(success=False, tool_name=tool_name,
                              error=f"Invalid JSON arguments: {arguments['_raw_args']}")
        try:
            validated = tool.validate_arguments(arguments)
        except ValidationError as e:
            self._logger.warning(f"Invalid arguments for tool '{tool_name}': {e}")
            return ToolResult(success=False, tool_name=tool_name,
                              error=f"Invalid arguments: {e.errors(include_url=False)}")

        self._logger.debug(f"Executing tool '{tool_name}' with {list(validated)}")
        try:
            result = await self._run(tool, validated)
        except asyncio.TimeoutError:
            self._logger.error(f"Tool '{tool_name}' timed out after {self.timeout}s")
            return ToolResult(success=False, tool_name=tool_name,
                              error=f"Tool timed out after {self.timeout} seconds")
        except Exception as e:
            summary = ErrorHandler.handle_error(e, self._logger)
            return ToolResult(success=False, tool_name=tool_name,
                              error=f"{summary['error_type']}: {summary['message']}")

        if isinstance(result, Halt):
            self._logger.info(f"Tool '{tool_name}' halted the conversation")
            return result
        self._logger.info(f"Tool '{tool_name}' executed successfully.")
        return ToolResult(success=True, result=result, tool_name=tool_name)
