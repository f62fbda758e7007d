"""
Models for tool-related functionality.
"""
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ToolCall(BaseModel):
    """Model for a tool call requested by the AI. Never mutated after creation."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolParameter(BaseModel):
    """A single declared tool parameter."""
    type: str = Field("string", description="JSON schema type of the parameter.")
    description: Optional[str] = None
    required: bool = True
    enum: Optional[List[Any]] = None
    items: Optional[Dict[str, Any]] = Field(None, description="Item schema when type is 'array'.")

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.type == "array":
            schema["items"] = self.items or {"type": "string"}
        return schema


class ToolDefinition(BaseModel):
    """Provider-facing declaration of a tool."""
    name: str = Field(..., description="Unique name of the tool.")
    description: str = Field("", description="Description of what the tool does.")
    parameters_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for the tool's input parameters.")
    builtin: Optional[str] = Field(
        None, description="Provider-native tool key (e.g. 'google_search'); no local execution.")

    model_config = ConfigDict(extra='ignore')


class ToolResult(BaseModel):
    """Model for a tool execution result."""
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    tool_name: Optional[str] = None


class Halt(BaseModel):
    """
    Returned by a tool to stop the ask loop.

    The content is recorded as the tool result and handed back to the caller
    without another provider round trip.
    """
    content: Any = None

    def __str__(self) -> str:
        return str(self.content)
