"""
OpenAI provider implementation (Chat Completions API).
"""
from typing import List, Dict, Any, Optional
import copy
import re

from ...exceptions import ErrorKind
from ...tools.models import ToolCall, ToolDefinition
from ..models import (
    AttachmentType, ChatRequest, Message, ProviderResponse, Role, StopReason,
    StreamDelta, TokenUsage, ToolCallFragment,
)
from ..streaming import StreamAccumulator, StreamEvent
from .base_provider import BaseProvider

REASONING_MODEL_PATTERN = re.compile(r"^(o\d|gpt-5)")


class OpenAIProvider(BaseProvider):
    """
    Provider implementation for OpenAI models.

    Always uses /chat/completions; the Responses API is never selected.
    """

    PROVIDER_NAME = "openai"
    DEFAULT_API_BASE = "https://api.openai.com/v1"

    # Role mapping for OpenAI API
    _ROLE_MAP = {
        "system": "system",
        "user": "user",
        "assistant": "assistant",
        "tool": "tool",
    }

    # Set of parameters allowed by OpenAI API
    ALLOWED_PARAMETERS = {
        "temperature", "max_tokens", "top_p", "frequency_penalty",
        "presence_penalty", "stop", "seed", "reasoning_effort",
    }

    PARAMETER_MAPPING = {
        "max_tokens": "max_completion_tokens",
    }

    STOP_REASON_MAP = {
        "stop": StopReason.STOP,
        "length": StopReason.MAX_TOKENS,
        "tool_calls": StopReason.TOOL_USE,
        "function_call": StopReason.TOOL_USE,
        "content_filter": StopReason.CONTENT_FILTER,
    }

    ERROR_TYPE_MAP = {
        "server_error": ErrorKind.SERVER,
        "rate_limit_exceeded": ErrorKind.RATE_LIMIT,
        "insufficient_quota": ErrorKind.RATE_LIMIT,
        "invalid_api_key": ErrorKind.AUTHENTICATION,
        "authentication_error": ErrorKind.AUTHENTICATION,
        "model_not_found": ErrorKind.MODEL_NOT_FOUND,
        "context_length_exceeded": ErrorKind.CONTEXT_LENGTH_EXCEEDED,
        "invalid_request_error": ErrorKind.BAD_REQUEST,
    }

    def auth_headers(self) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.credential_manager.get_api_key()}"}
        organization = self.credential_manager.get_credential("organization_id")
        if organization:
            headers["OpenAI-Organization"] = organization
        project = self.credential_manager.get_credential("project_id")
        if project:
            headers["OpenAI-Project"] = project
        return headers

    def completion_url(self, request: ChatRequest) -> str:
        return f"{self.api_base}/chat/completions"

    def normalize_temperature(self, temperature: Optional[float], model_id: str) -> Optional[float]:
        """
        Reasoning models (o1, o3, gpt-5 ...) only accept temperature 1 and
        search-preview models accept none at all.
        """
        if temperature is None:
            return None
        if REASONING_MODEL_PATTERN.match(model_id) and abs(temperature - 1.0) > 1e-9:
            self.logger.debug(f"Model {model_id} requires temperature=1.0, setting that instead")
            return 1.0
        if "-search" in model_id:
            self.logger.debug(f"Model {model_id} does not accept a temperature, removing it")
            return None
        return temperature

    # --- Request ---

    def _format_content(self, message: Message) -> Any:
        if not message.attachments:
            return message.text()

        parts: List[Dict[str, Any]] = []
        if message.content:
            parts.append({"type": "text", "text": message.text()})
        for attachment in message.attachments:
            if attachment.type == AttachmentType.IMAGE:
                parts.append({"type": "image_url", "image_url": {"url": attachment.data_url()}})
            elif attachment.type == AttachmentType.PDF:
                parts.append({"type": "file", "file": {
                    "filename": attachment.filename or "document.pdf",
                    "file_data": attachment.data_url(),
                }})
            elif attachment.type == AttachmentType.AUDIO:
                parts.append({"type": "input_audio", "input_audio": {
                    "data": attachment.encoded(),
                    "format": attachment.mime_type.split("/")[-1],
                }})
            else:
                parts.append({"type": "text",
                              "text": f"<file name='{attachment.filename}'>{attachment.text()}</file>"})
        return parts

    def format_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        formatted = []
        for message in messages:
            if message.role == Role.TOOL:
                formatted.append({
                    "role": "tool",
                    "content": message.text(),
                    "tool_call_id": message.tool_call_id,
                })
            elif message.tool_calls:
                formatted.append({
                    "role": "assistant",
                    "content": message.text() or None,
                    "tool_calls": [{
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": self._arguments_json(call.arguments)},
                    } for call in message.tool_calls],
                })
            else:
                formatted.append({"role": self.map_role(message.role), "content": self._format_content(message)})
        return formatted

    @staticmethod
    def format_tool(tool: ToolDefinition) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema,
            },
        }

    @classmethod
    def _close_objects(cls, node: Any) -> bool:
        """
        Set additionalProperties: false on every object node of a schema.

        Returns False when the schema cannot be used in strict mode (an object
        allowing extra properties, or one with optional properties).
        """
        if isinstance(node, list):
            return all([cls._close_objects(item) for item in node])
        if not isinstance(node, dict):
            return True
        compatible = True
        if node.get("type") == "object" or "properties" in node:
            node.setdefault("additionalProperties", False)
            if node["additionalProperties"] is not False:
                compatible = False
            if set(node.get("properties") or {}) - set(node.get("required") or []):
                compatible = False
        for key in ("properties", "$defs", "definitions"):
            for child in (node.get(key) or {}).values():
                compatible = cls._close_objects(child) and compatible
        for key in ("items", "anyOf", "allOf", "oneOf"):
            if key in node:
                compatible = cls._close_objects(node[key]) and compatible
        return compatible

    @classmethod
    def format_schema(cls, schema: Dict[str, Any]) -> Dict[str, Any]:
        """
        Wrap a JSON schema as a json_schema response_format.

        Strict mode is used unless the schema says `strict: false` or does not
        meet OpenAI's strict rules (every property required).
        """
        schema = copy.deepcopy(schema)
        strict = schema.pop("strict", True) is not False
        if strict:
            closed = copy.deepcopy(schema)
            strict = cls._close_objects(closed)
            if strict:
                schema = closed
        return {
            "type": "json_schema",
            "json_schema": {
                "name": schema.get("title", "response"),
                "schema": schema,
                "strict": strict,
            },
        }

    def build_request(self, request: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": self.format_messages(request.messages),
            "stream": request.stream,
        }
        tools = self._function_tools(request)
        if tools:
            payload["tools"] = [self.format_tool(t) for t in tools]
        if request.response_schema:
            payload["response_format"] = self.format_schema(request.response_schema)
        if request.stream:
            payload["stream_options"] = {"include_usage": True}
        payload = self._with_params(payload, request)
        if "temperature" in payload:
            temperature = self.normalize_temperature(payload["temperature"], request.model)
            if temperature is None:
                del payload["temperature"]
            else:
                payload["temperature"] = temperature
        return payload

    # --- Response ---

    @staticmethod
    def _usage(usage: Optional[Dict[str, Any]]) -> TokenUsage:
        usage = usage or {}
        return TokenUsage(input_tokens=usage.get("prompt_tokens"),
                          output_tokens=usage.get("completion_tokens"))

    def parse_response(self, body: Dict[str, Any]) -> ProviderResponse:
        choices = body.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        tool_calls = [
            ToolCall(
                id=call.get("id") or self._synthesize_call_id(),
                name=(call.get("function") or {}).get("name", ""),
                arguments=self._parse_arguments((call.get("function") or {}).get("arguments")),
            )
            for call in message.get("tool_calls") or []
        ]
        return ProviderResponse(
            content=message.get("content"),
            tool_calls=tool_calls,
            stop_reason=self.map_stop_reason(choice.get("finish_reason")),
            usage=self._usage(body.get("usage")),
            model=body.get("model"),
            raw_response=body,
        )

    def parse_stream_chunk(self, event: StreamEvent, accumulator: StreamAccumulator) -> List[StreamDelta]:
        if event.data.strip() == "[DONE]":
            return [StreamDelta(is_final=True)]
        data = self._load_event(event)
        if data is None:
            return []
        if event.event == "error" or data.get("error"):
            raise self.error_from_response(None, data)

        deltas = []
        for choice in data.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                deltas.append(StreamDelta(content=delta["content"]))
            for call in delta.get("tool_calls") or []:
                function = call.get("function") or {}
                deltas.append(StreamDelta(tool_call=ToolCallFragment(
                    index=call.get("index", 0),
                    id=call.get("id"),
                    name=function.get("name"),
                    arguments=function.get("arguments"),
                )))
            if choice.get("finish_reason"):
                deltas.append(StreamDelta(stop_reason=self.map_stop_reason(choice["finish_reason"])))

        metadata: Dict[str, Any] = {}
        if data.get("model") and accumulator.model is None:
            metadata["model"] = data["model"]
        if data.get("usage"):
            metadata["usage"] = self._usage(data["usage"])
        if metadata:
            deltas.append(StreamDelta(**metadata))
        return deltas
