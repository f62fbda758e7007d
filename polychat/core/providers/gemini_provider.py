"""
Google Gemini provider implementation (generateContent API).
"""
from typing import List, Dict, Any, Optional
import json

from ...exceptions import ErrorKind
from ...tools.models import ToolCall, ToolDefinition
from ..models import (
    AttachmentType, ChatRequest, Message, ProviderResponse, Role, StopReason,
    StreamDelta, TokenUsage, ToolCallFragment,
)
from ..streaming import StreamAccumulator, StreamEvent
from .base_provider import BaseProvider

# JSON schema keys the Gemini API rejects
UNSUPPORTED_SCHEMA_KEYS = {"additionalProperties", "$schema", "$id", "$defs", "strict", "examples"}


def strip_unsupported_schema_keys(schema: Any) -> Any:
    """Recursively drop schema keys Gemini does not accept."""
    if isinstance(schema, dict):
        return {k: strip_unsupported_schema_keys(v) for k, v in schema.items()
                if k not in UNSUPPORTED_SCHEMA_KEYS}
    if isinstance(schema, list):
        return [strip_unsupported_schema_keys(item) for item in schema]
    return schema


class GeminiProvider(BaseProvider):
    """Provider implementation for Google Gemini models."""

    PROVIDER_NAME = "gemini"
    DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    _ROLE_MAP = {
        "user": "user",
        "assistant": "model",
        "tool": "user",
    }

    ALLOWED_PARAMETERS = {
        "temperature", "max_tokens", "top_p", "top_k", "stop", "candidate_count",
    }

    # Sampling parameters live under generationConfig
    PARAMETER_MAPPING = {
        "temperature": "generationConfig.temperature",
        "max_tokens": "generationConfig.maxOutputTokens",
        "top_p": "generationConfig.topP",
        "top_k": "generationConfig.topK",
        "stop": "generationConfig.stopSequences",
        "candidate_count": "generationConfig.candidateCount",
    }

    STOP_REASON_MAP = {
        "STOP": StopReason.STOP,
        "MAX_TOKENS": StopReason.MAX_TOKENS,
        "SAFETY": StopReason.CONTENT_FILTER,
        "RECITATION": StopReason.CONTENT_FILTER,
        "BLOCKLIST": StopReason.CONTENT_FILTER,
        "PROHIBITED_CONTENT": StopReason.CONTENT_FILTER,
        "SPII": StopReason.CONTENT_FILTER,
    }

    ERROR_TYPE_MAP = {
        "RESOURCE_EXHAUSTED": ErrorKind.RATE_LIMIT,
        "UNAVAILABLE": ErrorKind.OVERLOADED,
        "INTERNAL": ErrorKind.SERVER,
        "DEADLINE_EXCEEDED": ErrorKind.TIMEOUT,
        "INVALID_ARGUMENT": ErrorKind.BAD_REQUEST,
        "FAILED_PRECONDITION": ErrorKind.BAD_REQUEST,
        "UNAUTHENTICATED": ErrorKind.AUTHENTICATION,
        "PERMISSION_DENIED": ErrorKind.AUTHENTICATION,
        "NOT_FOUND": ErrorKind.MODEL_NOT_FOUND,
    }

    def auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.credential_manager.get_api_key() or ""}

    def completion_url(self, request: ChatRequest) -> str:
        if request.stream:
            return f"{self.api_base}/models/{request.model}:streamGenerateContent?alt=sse"
        return f"{self.api_base}/models/{request.model}:generateContent"

    # --- Request ---

    def _user_parts(self, message: Message) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        if message.content:
            parts.append({"text": message.text()})
        for attachment in message.attachments:
            if attachment.type == AttachmentType.TEXT and attachment.data is not None:
                parts.append({"text": f"<file name='{attachment.filename}'>{attachment.text()}</file>"})
            elif attachment.data is None:
                parts.append({"fileData": {"mimeType": attachment.mime_type, "fileUri": attachment.url}})
            else:
                parts.append({"inlineData": {"mimeType": attachment.mime_type, "data": attachment.encoded()}})
        return parts or [{"text": ""}]

    def format_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """
        Convert conversation messages (without system messages) to `contents`.

        Gemini identifies function responses by name, so tool results are
        matched back to their call; consecutive results share one content.
        """
        names = self._tool_names(messages)
        contents: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == Role.TOOL:
                name = names.get(message.tool_call_id, message.tool_call_id or "")
                part = {"functionResponse": {
                    "name": name,
                    "response": {"name": name, "content": message.content},
                }}
                previous = contents[-1] if contents else None
                if previous is not None and all("functionResponse" in p for p in previous["parts"]):
                    previous["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
            elif message.role == Role.ASSISTANT:
                parts: List[Dict[str, Any]] = []
                if message.content:
                    parts.append({"text": message.text()})
                parts.extend({"functionCall": {"name": call.name, "args": call.arguments}}
                             for call in message.tool_calls)
                contents.append({"role": "model", "parts": parts or [{"text": ""}]})
            else:
                contents.append({"role": self.map_role(message.role), "parts": self._user_parts(message)})
        return contents

    def _function_tools(self, request: ChatRequest) -> List[ToolDefinition]:
        return [t for t in request.tools if not t.builtin]

    @staticmethod
    def format_function(tool: ToolDefinition) -> Dict[str, Any]:
        declaration: Dict[str, Any] = {"name": tool.name, "description": tool.description}
        if (tool.parameters_schema or {}).get("properties"):
            declaration["parameters"] = strip_unsupported_schema_keys(tool.parameters_schema)
        return declaration

    def format_tools(self, request: ChatRequest) -> List[Dict[str, Any]]:
        tools: List[Dict[str, Any]] = []
        functions = self._function_tools(request)
        if functions:
            tools.append({"functionDeclarations": [self.format_function(t) for t in functions]})
        tools.extend({t.builtin: {}} for t in request.tools if t.builtin)
        return tools

    def build_request(self, request: ChatRequest) -> Dict[str, Any]:
        system = [m.text() for m in request.messages if m.role == Role.SYSTEM]
        payload: Dict[str, Any] = {
            "contents": self.format_messages([m for m in request.messages if m.role != Role.SYSTEM]),
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system)}]}
        tools = self.format_tools(request)
        if tools:
            payload["tools"] = tools
        if request.response_schema:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": strip_unsupported_schema_keys(request.response_schema),
            }
        return self._with_params(payload, request)

    # --- Response ---

    @staticmethod
    def _usage(metadata: Optional[Dict[str, Any]]) -> TokenUsage:
        metadata = metadata or {}
        output = metadata.get("candidatesTokenCount")
        if metadata.get("thoughtsTokenCount") is not None:
            output = (output or 0) + metadata["thoughtsTokenCount"]
        return TokenUsage(input_tokens=metadata.get("promptTokenCount"), output_tokens=output)

    @staticmethod
    def _parts(body: Dict[str, Any]) -> List[Dict[str, Any]]:
        candidates = body.get("candidates") or [{}]
        return (candidates[0].get("content") or {}).get("parts") or []

    @staticmethod
    def _finish_reason(body: Dict[str, Any]) -> Optional[str]:
        candidates = body.get("candidates") or [{}]
        return candidates[0].get("finishReason")

    def parse_response(self, body: Dict[str, Any]) -> ProviderResponse:
        parts = self._parts(body)
        text = "".join(p["text"] for p in parts if "text" in p and not p.get("thought"))
        tool_calls = [
            ToolCall(id=self._synthesize_call_id(),
                     name=p["functionCall"]["name"],
                     arguments=p["functionCall"].get("args") or {})
            for p in parts if "functionCall" in p
        ]
        stop_reason = StopReason.TOOL_USE if tool_calls else self.map_stop_reason(self._finish_reason(body))
        return ProviderResponse(
            content=text or None,
            tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=self._usage(body.get("usageMetadata")),
            model=body.get("modelVersion") or self.model_id,
            raw_response=body,
        )

    def parse_stream_chunk(self, event: StreamEvent, accumulator: StreamAccumulator) -> List[StreamDelta]:
        data = self._load_event(event)
        if data is None:
            return []
        if event.event == "error" or data.get("error"):
            raise self.error_from_response(None, data)

        deltas: List[StreamDelta] = []
        next_index = accumulator.tool_call_count
        for part in self._parts(data):
            if "text" in part and part["text"] and not part.get("thought"):
                deltas.append(StreamDelta(content=part["text"]))
            elif "functionCall" in part:
                call = part["functionCall"]
                # Gemini sends each call whole and without an id
                deltas.append(StreamDelta(tool_call=ToolCallFragment(
                    index=next_index,
                    id=self._synthesize_call_id(),
                    name=call.get("name"),
                    arguments=json.dumps(call.get("args") or {}),
                    done=True,
                )))
                next_index += 1

        metadata: Dict[str, Any] = {}
        finish_reason = self._finish_reason(data)
        if finish_reason:
            has_calls = next_index > 0
            metadata["stop_reason"] = StopReason.TOOL_USE if has_calls else self.map_stop_reason(finish_reason)
        if data.get("usageMetadata"):
            metadata["usage"] = self._usage(data["usageMetadata"])
        if data.get("modelVersion") and accumulator.model is None:
            metadata["model"] = data["modelVersion"]
        if metadata:
            deltas.append(StreamDelta(**metadata))
        return deltas
