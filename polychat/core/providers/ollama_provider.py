"""
Ollama provider implementation (native /api/chat endpoint).
"""
from typing import List, Dict, Any, Optional
import json

from ...exceptions import ErrorKind, InvalidRequestError, UnsupportedCapabilityError
from ...tools.models import ToolCall
from ..models import (
    AttachmentType, ChatRequest, Message, ProviderResponse, Role, StopReason,
    StreamDelta, TokenUsage, ToolCallFragment,
)
from ..streaming import StreamAccumulator, StreamEvent
from .base_provider import BaseProvider
from .openai_provider import OpenAIProvider


class OllamaProvider(BaseProvider):
    """Provider implementation for local Ollama models."""

    PROVIDER_NAME = "ollama"
    DEFAULT_API_BASE = "http://localhost:11434"
    REQUIRES_API_KEY = False
    STREAM_FORMAT = "ndjson"

    ALLOWED_PARAMETERS = {
        "temperature", "max_tokens", "top_p", "top_k", "stop", "seed", "num_ctx",
    }

    # Sampling parameters live under `options`
    PARAMETER_MAPPING = {
        "temperature": "options.temperature",
        "max_tokens": "options.num_predict",
        "top_p": "options.top_p",
        "top_k": "options.top_k",
        "stop": "options.stop",
        "seed": "options.seed",
        "num_ctx": "options.num_ctx",
    }

    STOP_REASON_MAP = {
        "stop": StopReason.STOP,
        "length": StopReason.MAX_TOKENS,
    }

    def auth_headers(self) -> Dict[str, str]:
        # Only needed for hosted Ollama behind an authenticating proxy
        api_key = self.credential_manager.get_api_key()
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    def completion_url(self, request: ChatRequest) -> str:
        return f"{self.api_base}/api/chat"

    # --- Request ---

    def _format_user(self, message: Message) -> Dict[str, Any]:
        text = message.text()
        images = []
        for attachment in message.attachments:
            if attachment.type == AttachmentType.IMAGE:
                if attachment.data is None:
                    raise InvalidRequestError("Ollama needs inline image data, not URLs",
                                              provider=self.PROVIDER_NAME)
                images.append(attachment.encoded())
            elif attachment.type == AttachmentType.TEXT:
                text += f"\n\n<file name='{attachment.filename}'>{attachment.text()}</file>"
            else:
                raise UnsupportedCapabilityError(f"{attachment.type.value} input", self.model_id,
                                                 provider=self.PROVIDER_NAME)
        formatted: Dict[str, Any] = {"role": self.map_role(message.role), "content": text}
        if images:
            formatted["images"] = images
        return formatted

    def format_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        names = self._tool_names(messages)
        formatted = []
        for message in messages:
            if message.role == Role.TOOL:
                formatted.append({
                    "role": "tool",
                    "content": message.text(),
                    "tool_name": names.get(message.tool_call_id, ""),
                })
            elif message.tool_calls:
                formatted.append({
                    "role": "assistant",
                    "content": message.text(),
                    "tool_calls": [{"function": {"name": call.name, "arguments": call.arguments}}
                                   for call in message.tool_calls],
                })
            else:
                formatted.append(self._format_user(message))
        return formatted

    def build_request(self, request: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": self.format_messages(request.messages),
            "stream": request.stream,
        }
        tools = self._function_tools(request)
        if tools:
            payload["tools"] = [OpenAIProvider.format_tool(t) for t in tools]
        if request.response_schema:
            payload["format"] = request.response_schema
        return self._with_params(payload, request)

    # --- Response ---

    @staticmethod
    def _usage(body: Dict[str, Any]) -> TokenUsage:
        return TokenUsage(input_tokens=body.get("prompt_eval_count"), output_tokens=body.get("eval_count"))

    def _tool_calls(self, message: Dict[str, Any]) -> List[ToolCall]:
        return [
            ToolCall(id=self._synthesize_call_id(),
                     name=(call.get("function") or {}).get("name", ""),
                     arguments=self._parse_arguments((call.get("function") or {}).get("arguments")))
            for call in message.get("tool_calls") or []
        ]

    def parse_response(self, body: Dict[str, Any]) -> ProviderResponse:
        message = body.get("message") or {}
        tool_calls = self._tool_calls(message)
        stop_reason = StopReason.TOOL_USE if tool_calls else self.map_stop_reason(body.get("done_reason"))
        return ProviderResponse(
            content=message.get("content") or None,
            tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=self._usage(body),
            model=body.get("model"),
            raw_response=body,
        )

    def parse_stream_chunk(self, event: StreamEvent, accumulator: StreamAccumulator) -> List[StreamDelta]:
        data = self._load_event(event)
        if data is None:
            return []
        if data.get("error"):
            raise self.error_from_response(None, data)

        deltas: List[StreamDelta] = []
        message = data.get("message") or {}
        if message.get("content"):
            deltas.append(StreamDelta(content=message["content"]))
        next_index = accumulator.tool_call_count
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            arguments = function.get("arguments")
            deltas.append(StreamDelta(tool_call=ToolCallFragment(
                index=next_index,
                id=self._synthesize_call_id(),
                name=function.get("name"),
                arguments=arguments if isinstance(arguments, str) else json.dumps(arguments or {}),
                done=True,
            )))
            next_index += 1

        if data.get("done"):
            stop_reason = StopReason.TOOL_USE if next_index > 0 else self.map_stop_reason(data.get("done_reason"))
            deltas.append(StreamDelta(
                stop_reason=stop_reason,
                usage=self._usage(data),
                model=data.get("model"),
                is_final=True,
            ))
        return deltas

    def classify_error(self, status: Optional[int], body: Any) -> ErrorKind:
        kind = super().classify_error(status, body)
        if kind == ErrorKind.UNKNOWN and "not found" in self.error_message(body).lower():
            return ErrorKind.MODEL_NOT_FOUND
        return kind
