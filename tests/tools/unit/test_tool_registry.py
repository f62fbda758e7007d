# tests/tools/unit/test_tool_registry.py
"""
Unit tests for the ToolRegistry class.
"""
import pytest
from unittest.mock import MagicMock

from polychat.exceptions import AIToolError, ToolNotFoundError
from polychat.tools.tool import Tool, function_tool
from polychat.tools.tool_registry import ToolRegistry
from polychat.utils.logger import LoggerInterface


@function_tool
def echo(text: str):
    """Echo the text back."""
    return text


@function_tool
def shout(text: str):
    """Upper-case the text."""
    return text.upper()


class TestToolRegistry:

    @pytest.fixture
    def mock_logger(self):
        return MagicMock(spec=LoggerInterface)

    @pytest.fixture
    def registry(self, mock_logger):
        return ToolRegistry(logger=mock_logger)

    def test_register_and_resolve(self, registry):
        registry.register(echo)
        assert registry.resolve("echo") is echo
        assert registry.has_tool("echo")
        assert len(registry) == 1
        assert registry

    def test_initial_tools(self, mock_logger):
        registry = ToolRegistry([echo, shout], logger=mock_logger)
        assert registry.get_tool_names() == ["echo", "shout"]
        assert registry.tools() == [echo, shout]

    def test_same_name_replaces(self, registry, mock_logger):
        replacement = Tool(name="echo", description="other echo")
        registry.register(echo)
        registry.register(replacement)
        assert registry.resolve("echo") is replacement
        assert len(registry) == 1

    def test_resolve_unknown(self, registry):
        with pytest.raises(ToolNotFoundError) as exc_info:
            registry.resolve("missing")
        assert exc_info.value.tool_name == "missing"

    def test_register_rejects_non_tools(self, registry):
        with pytest.raises(AIToolError):
            registry.register(lambda: None)

    def test_definitions(self, registry):
        registry.register(echo)
        definitions = registry.definitions()
        assert [d.name for d in definitions] == ["echo"]
        assert definitions[0].description == "Echo the text back."
        assert definitions[0].parameters_schema["required"] == ["text"]

    def test_clear(self, registry):
        registry.register(echo)
        registry.clear()
        assert not registry
        assert registry.get_tool_names() == []
