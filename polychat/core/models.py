# polychat/core/models.py
"""
Core Pydantic models shared by the conversation engine and provider adapters.
"""
import base64
import json
import mimetypes
import os
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..tools.models import ToolCall, ToolDefinition


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StopReason(str, Enum):
    """Provider finish reasons mapped onto one vocabulary."""
    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    CONTENT_FILTER = "content_filter"
    OTHER = "other"


class AttachmentType(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    AUDIO = "audio"
    TEXT = "text"


def _attachment_type(mime_type: str) -> AttachmentType:
    if mime_type.startswith("image/"):
        return AttachmentType.IMAGE
    if mime_type == "application/pdf":
        return AttachmentType.PDF
    if mime_type.startswith("audio/"):
        return AttachmentType.AUDIO
    return AttachmentType.TEXT


class Attachment(BaseModel):
    """A file sent alongside a user message, inline or by URL."""
    model_config = ConfigDict(frozen=True)

    type: AttachmentType
    mime_type: str
    data: Optional[bytes] = None
    url: Optional[str] = None
    filename: Optional[str] = None

    @model_validator(mode='after')
    def _check_source(self) -> 'Attachment':
        if self.data is None and self.url is None:
            raise ValueError("Attachment needs either data or a url")
        return self

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, filename: Optional[str] = None) -> 'Attachment':
        return cls(type=_attachment_type(mime_type), mime_type=mime_type, data=data, filename=filename)

    @classmethod
    def from_path(cls, path: str, mime_type: Optional[str] = None) -> 'Attachment':
        """Read a local file; the MIME type is guessed from its extension when not given."""
        mime_type = mime_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            data = f.read()
        return cls.from_bytes(data, mime_type, filename=os.path.basename(path))

    @classmethod
    def from_url(cls, url: str, mime_type: Optional[str] = None) -> 'Attachment':
        mime_type = mime_type or mimetypes.guess_type(url)[0] or "application/octet-stream"
        return cls(type=_attachment_type(mime_type), mime_type=mime_type, url=url,
                   filename=url.rstrip("/").rsplit("/", 1)[-1] or None)

    def encoded(self) -> str:
        """Base64 encoding of the inline data."""
        if self.data is None:
            raise ValueError(f"Attachment {self.url} has no inline data")
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        if self.url is not None and self.data is None:
            return self.url
        return f"data:{self.mime_type};base64,{self.encoded()}"

    def text(self) -> str:
        if self.data is None:
            raise ValueError(f"Attachment {self.url} has no inline data")
        return self.data.decode("utf-8", errors="replace")


class Message(BaseModel):
    """
    One entry of a conversation.

    Finalized messages are immutable; the engine swaps its in-flight
    placeholder for a new instance (model_copy) when a response finishes.
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    content: Any = Field(default=None, description="Text, or parsed JSON when a response schema is set.")
    attachments: List[Attachment] = Field(default_factory=list)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    model_id: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = Field(default=None, description="Id of the ToolCall this tool message answers.")

    @model_validator(mode='after')
    def _check_role_fields(self) -> 'Message':
        if self.tool_calls and self.role != Role.ASSISTANT:
            raise ValueError("Only assistant messages may carry tool calls")
        if self.tool_call_id is not None and self.role != Role.TOOL:
            raise ValueError("Only tool messages may reference a tool call")
        return self

    @property
    def is_tool_call(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_tool_result(self) -> bool:
        return self.tool_call_id is not None

    def text(self) -> str:
        """Content as a string; structured content is dumped as JSON."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content)


class TokenUsage(BaseModel):
    """Model for token usage statistics."""
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @property
    def total_tokens(self) -> Optional[int]:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)


class ChatRequest(BaseModel):
    """Provider-independent description of one completion request."""
    model: str
    messages: List[Message] = Field(default_factory=list)
    tools: List[ToolDefinition] = Field(default_factory=list)
    response_schema: Optional[Dict[str, Any]] = Field(default=None, description="JSON schema for structured output.")
    params: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    stream: bool = False


class ProviderResponse(BaseModel):
    """Standardized response object returned by provider adapters."""
    content: Optional[str] = Field(default=None, description="Primary text content of the response.")
    tool_calls: List[ToolCall] = Field(default_factory=list, description="Tool calls requested by the model.")
    stop_reason: Optional[StopReason] = Field(default=None, description="Why the model stopped generating.")
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: Optional[str] = Field(default=None, description="Identifier of the model that generated the response.")
    raw_response: Optional[Any] = Field(default=None, exclude=True)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ToolCallFragment(BaseModel):
    """Part of a tool call as it arrives over a stream, keyed by index."""
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = Field(default=None, description="Partial JSON text to append.")
    done: bool = False


class StreamDelta(BaseModel):
    """One incremental unit of a streamed response."""
    content: Optional[str] = None
    tool_call: Optional[ToolCallFragment] = None
    stop_reason: Optional[StopReason] = None
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None
    is_final: bool = False

    @property
    def is_empty(self) -> bool:
        return (not self.content and self.tool_call is None and self.stop_reason is None
                and self.usage is None and self.model is None and not self.is_final)


class ModelPricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_per_million: Optional[float] = None
    output_per_million: Optional[float] = None


class ModelInfo(BaseModel):
    """Read-only capability metadata for a model."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    provider: str
    type: str = "chat"
    context_window: Optional[int] = None
    max_output_tokens: Optional[int] = None
    capabilities: List[str] = Field(default_factory=list)
    pricing: ModelPricing = Field(default_factory=ModelPricing)
    aliases: List[str] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Model-level request defaults.")
    unchecked: bool = Field(default=False, description="Created without a registry lookup.")

    @classmethod
    def unchecked_model(cls, model_id: str, provider: str) -> 'ModelInfo':
        """Stand-in used when the caller opts out of registry lookup."""
        return cls(id=model_id, name=model_id, provider=provider, unchecked=True)

    def supports(self, capability: str) -> bool:
        return self.unchecked or capability in self.capabilities

    @property
    def supports_vision(self) -> bool:
        return self.supports("vision")

    @property
    def supports_functions(self) -> bool:
        return self.supports("function_calling")

    @property
    def supports_structured_output(self) -> bool:
        return self.supports("structured_output")

    @property
    def supports_streaming(self) -> bool:
        return self.supports("streaming")
