"""
Anthropic provider implementation (Messages API).
"""
from typing import List, Dict, Any, Optional

from ...exceptions import ErrorKind, UnsupportedCapabilityError
from ...tools.models import ToolCall
from ..models import (
    AttachmentType, ChatRequest, Message, ModelInfo, ProviderResponse, Role, StopReason,
    StreamDelta, TokenUsage, ToolCallFragment,
)
from ..streaming import StreamAccumulator, StreamEvent
from .base_provider import BaseProvider

DEFAULT_API_VERSION = "2023-06-01"


class AnthropicProvider(BaseProvider):
    """Provider implementation for Anthropic Claude models."""

    PROVIDER_NAME = "anthropic"
    DEFAULT_API_BASE = "https://api.anthropic.com"

    # System messages are lifted into the top-level `system` field
    _ROLE_MAP = {
        "user": "user",
        "assistant": "assistant",
        "tool": "user",
    }

    ALLOWED_PARAMETERS = {
        "temperature", "max_tokens", "top_p", "top_k", "stop",
    }

    PARAMETER_MAPPING = {
        "stop": "stop_sequences",
    }

    # max_tokens is required by the API
    DEFAULT_PARAMETERS = {
        "max_tokens": 4096,
    }

    STOP_REASON_MAP = {
        "end_turn": StopReason.STOP,
        "stop_sequence": StopReason.STOP,
        "pause_turn": StopReason.STOP,
        "max_tokens": StopReason.MAX_TOKENS,
        "tool_use": StopReason.TOOL_USE,
        "refusal": StopReason.CONTENT_FILTER,
    }

    ERROR_TYPE_MAP = {
        "overloaded_error": ErrorKind.OVERLOADED,
        "rate_limit_error": ErrorKind.RATE_LIMIT,
        "api_error": ErrorKind.SERVER,
        "authentication_error": ErrorKind.AUTHENTICATION,
        "permission_error": ErrorKind.AUTHENTICATION,
        "not_found_error": ErrorKind.MODEL_NOT_FOUND,
        "invalid_request_error": ErrorKind.BAD_REQUEST,
        "request_too_large": ErrorKind.BAD_REQUEST,
    }

    def __init__(self, model: ModelInfo, **kwargs):
        super().__init__(model, **kwargs)
        if model.max_output_tokens:
            self.parameter_manager.update_defaults({"max_tokens": model.max_output_tokens})

    def auth_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.credential_manager.get_api_key() or "",
            "anthropic-version": self.provider_config.get("api_version", DEFAULT_API_VERSION),
        }

    def completion_url(self, request: ChatRequest) -> str:
        return f"{self.api_base}/v1/messages"

    # --- Request ---

    @staticmethod
    def _source(attachment) -> Dict[str, Any]:
        if attachment.data is None:
            return {"type": "url", "url": attachment.url}
        return {"type": "base64", "media_type": attachment.mime_type, "data": attachment.encoded()}

    def _content_blocks(self, message: Message) -> Any:
        if not message.attachments:
            return message.text()

        blocks: List[Dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.text()})
        for attachment in message.attachments:
            if attachment.type == AttachmentType.IMAGE:
                blocks.append({"type": "image", "source": self._source(attachment)})
            elif attachment.type == AttachmentType.PDF:
                blocks.append({"type": "document", "source": self._source(attachment)})
            elif attachment.type == AttachmentType.AUDIO:
                raise UnsupportedCapabilityError("audio input", self.model_id, provider=self.PROVIDER_NAME)
            else:
                blocks.append({"type": "text",
                               "text": f"<file name='{attachment.filename}'>{attachment.text()}</file>"})
        return blocks

    def format_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """
        Convert conversation messages (without system messages).

        Consecutive tool results are merged into one user message of
        tool_result blocks.
        """
        formatted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == Role.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.text(),
                }
                previous = formatted[-1] if formatted else None
                if (previous is not None and previous["role"] == "user"
                        and isinstance(previous["content"], list)
                        and all(b.get("type") == "tool_result" for b in previous["content"])):
                    previous["content"].append(block)
                else:
                    formatted.append({"role": "user", "content": [block]})
            elif message.tool_calls:
                blocks: List[Dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.text()})
                blocks.extend({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                              for call in message.tool_calls)
                formatted.append({"role": "assistant", "content": blocks})
            else:
                formatted.append({"role": self.map_role(message.role), "content": self._content_blocks(message)})
        return formatted

    def build_request(self, request: ChatRequest) -> Dict[str, Any]:
        if request.response_schema:
            raise UnsupportedCapabilityError("structured output", request.model, provider=self.PROVIDER_NAME)

        system = [m.text() for m in request.messages if m.role == Role.SYSTEM]
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": self.format_messages([m for m in request.messages if m.role != Role.SYSTEM]),
            "stream": request.stream,
        }
        if system:
            payload["system"] = "\n\n".join(system)
        tools = self._function_tools(request)
        if tools:
            payload["tools"] = [{
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters_schema,
            } for t in tools]
        return self._with_params(payload, request)

    # --- Response ---

    @staticmethod
    def _usage(usage: Optional[Dict[str, Any]]) -> TokenUsage:
        usage = usage or {}
        return TokenUsage(input_tokens=usage.get("input_tokens"),
                          output_tokens=usage.get("output_tokens"))

    def parse_response(self, body: Dict[str, Any]) -> ProviderResponse:
        blocks = body.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        tool_calls = [
            ToolCall(id=b["id"], name=b["name"], arguments=b.get("input") or {})
            for b in blocks if b.get("type") == "tool_use"
        ]
        return ProviderResponse(
            content=text or None,
            tool_calls=tool_calls,
            stop_reason=self.map_stop_reason(body.get("stop_reason")),
            usage=self._usage(body.get("usage")),
            model=body.get("model"),
            raw_response=body,
        )

    def parse_stream_chunk(self, event: StreamEvent, accumulator: StreamAccumulator) -> Optional[StreamDelta]:
        data = self._load_event(event)
        if data is None:
            return None
        event_type = data.get("type") or event.event

        if event_type == "error" or event.event == "error":
            raise self.error_from_response(None, data)
        if event_type == "message_start":
            message = data.get("message") or {}
            return StreamDelta(model=message.get("model"), usage=self._usage(message.get("usage")))
        if event_type == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                return StreamDelta(tool_call=ToolCallFragment(
                    index=data.get("index", 0), id=block.get("id"), name=block.get("name")))
            if block.get("text"):
                return StreamDelta(content=block["text"])
            return None
        if event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return StreamDelta(content=delta.get("text"))
            if delta.get("type") == "input_json_delta":
                return StreamDelta(tool_call=ToolCallFragment(
                    index=data.get("index", 0), arguments=delta.get("partial_json")))
            return None
        if event_type == "content_block_stop":
            index = data.get("index", 0)
            if accumulator.has_tool_call(index):
                return StreamDelta(tool_call=ToolCallFragment(index=index, done=True))
            return None
        if event_type == "message_delta":
            delta = data.get("delta") or {}
            usage = data.get("usage")
            return StreamDelta(stop_reason=self.map_stop_reason(delta.get("stop_reason")),
                               usage=self._usage(usage) if usage else None)
        if event_type == "message_stop":
            return StreamDelta(is_final=True)
        # ping and unknown events
        return None
