"""
Conversation engine.

A Chat owns the message history of one conversation, sends it to the
provider adapter for its model and runs the tool loop until the model
answers without tool calls or a tool halts.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union
import inspect
import json

import httpx
from pydantic import BaseModel

from ..config import UnifiedConfig
from ..exceptions import ErrorHandler, ToolNotFoundError, UnsupportedCapabilityError
from ..tools.models import Halt, ToolCall, ToolResult
from ..tools.tool import FunctionTool, Tool
from ..tools.tool_executor import ToolExecutor
from ..tools.tool_registry import ToolRegistry
from ..utils.logger import LoggerInterface, LoggerFactory
from .interfaces import ChatObserverInterface
from .model_registry import ModelRegistry
from .models import Attachment, AttachmentType, ChatRequest, Message, ModelInfo, ProviderResponse, Role, StreamDelta
from .observers import BaseChatObserver
from .provider_factory import ProviderFactory
from .providers.base_provider import BaseProvider

DeltaCallback = Callable[[StreamDelta], Union[None, Awaitable[None]]]
AttachmentSource = Union[Attachment, str]


class Chat:
    """
    A single conversation with one model at a time.

    Configuration methods return the chat so they can be chained::

        chat = Chat("claude-sonnet-4").with_instructions("Be brief").with_tool(weather)
        reply = await chat.ask("Weather in Berlin?")

    A Chat is single-flight: do not run overlapping ask/complete calls on the
    same instance.
    """

    def __init__(self,
                 model: Optional[Union[str, ModelInfo]] = None,
                 provider: Optional[str] = None,
                 *,
                 messages: Optional[Iterable[Message]] = None,
                 tools: Optional[Iterable[Any]] = None,
                 observer: Optional[ChatObserverInterface] = None,
                 assume_model_exists: bool = False,
                 config: Optional[UnifiedConfig] = None,
                 registry: Optional[ModelRegistry] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 logger: Optional[LoggerInterface] = None):
        """
        Initialize the chat.

        Args:
            model: Model id or alias (config default_model when omitted), or a ModelInfo
            provider: Restrict model lookup to one provider
            messages: Existing history to continue from
            tools: Tools to bind (Tool instances, Tool classes or plain functions)
            observer: Persistence collaborator receiving lifecycle hooks
            assume_model_exists: Skip the registry lookup; requires `provider`
            config: Configuration instance (defaults to the shared one)
            registry: Model registry (defaults to the packaged models.yml)
            http_client: Client shared with the adapter; the chat creates and owns one otherwise
            logger: Logger instance

        Raises:
            ModelNotFoundError: If the model is not in the registry
            AICredentialsError: If the provider's API key is not configured
        """
        self._config = config or UnifiedConfig.get_instance()
        self._logger = logger or LoggerFactory.create(name="chat")
        self._registry = registry or ModelRegistry.default()
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient()

        self._messages: List[Message] = list(messages or [])
        self._tools = ToolRegistry(logger=self._logger)
        self._executor = ToolExecutor(logger=self._logger, timeout=self._config.tool_timeout)
        self._observer: ChatObserverInterface = observer or BaseChatObserver()
        self._schema: Optional[Dict[str, Any]] = None
        self._params: Dict[str, Any] = {}
        self._headers: Dict[str, str] = {}
        self._callbacks: Dict[str, Optional[Callable[..., Any]]] = {
            "new_message": None,
            "end_message": None,
            "tool_call": None,
            "tool_result": None,
        }

        self.model: ModelInfo
        self.provider: BaseProvider
        self.with_model(model, provider=provider, assume_exists=assume_model_exists)
        if tools:
            self.with_tools(*tools)

    def __repr__(self) -> str:
        return f"<Chat model={self.model.id} provider={self.model.provider} messages={len(self._messages)}>"

    # --- Configuration ---

    def with_model(self, model: Optional[Union[str, ModelInfo]] = None,
                   provider: Optional[str] = None,
                   assume_exists: bool = False) -> 'Chat':
        """Switch models, re-resolving the provider adapter. History is kept."""
        if isinstance(model, ModelInfo):
            self.model = model
        else:
            self.model = self._registry.resolve(model or self._config.default_model,
                                                provider=provider, assume_exists=assume_exists)
        self.provider = ProviderFactory.create(
            self.model.provider,
            self.model,
            config=self._config,
            http_client=self._http_client,
        )
        self._logger.info(f"Chat using model {self.model.id} ({self.model.provider})")
        return self

    def with_instructions(self, instructions: str, replace: bool = False) -> 'Chat':
        """Add a system message; with replace=True earlier system messages are dropped."""
        if replace:
            self._messages = [m for m in self._messages if m.role != Role.SYSTEM]
        self.add_message(role=Role.SYSTEM, content=instructions)
        return self

    def with_tool(self, tool: Any) -> 'Chat':
        """
        Bind a tool.

        Accepts a Tool instance, a Tool subclass or a plain function.

        Raises:
            UnsupportedCapabilityError: If the model cannot call functions, or a
                provider-native tool belongs to another provider
        """
        tool = self._as_tool(tool)
        if tool.builtin:
            if tool.provider and tool.provider != self.model.provider:
                raise UnsupportedCapabilityError(f"the {tool.name} tool", self.model.id,
                                                 provider=self.model.provider)
        else:
            self._require(self.model.supports_functions, "function calling")
        self._tools.register(tool)
        return self

    def with_tools(self, *tools: Any, replace: bool = False) -> 'Chat':
        if replace:
            self._tools.clear()
        for tool in tools:
            self.with_tool(tool)
        return self

    def with_temperature(self, temperature: float) -> 'Chat':
        self._params["temperature"] = temperature
        return self

    def with_params(self, **params: Any) -> 'Chat':
        """Extra request fields, merged into the provider payload as given."""
        self._params.update(params)
        return self

    def with_headers(self, headers: Optional[Dict[str, str]] = None, **extra: str) -> 'Chat':
        self._headers.update(headers or {})
        self._headers.update(extra)
        return self

    def with_schema(self, schema: Optional[Union[Dict[str, Any], Type[BaseModel]]]) -> 'Chat':
        """
        Request structured output matching a JSON schema (or a pydantic model's schema).

        Passing None turns structured output off again.
        """
        if schema is None:
            self._schema = None
            return self
        self._require(self.model.supports_structured_output, "structured output")
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            schema = schema.model_json_schema()
        self._schema = dict(schema)
        return self

    def with_observer(self, observer: ChatObserverInterface) -> 'Chat':
        self._observer = observer
        return self

    def on_new_message(self, callback: Callable[[], Any]) -> 'Chat':
        self._callbacks["new_message"] = callback
        return self

    def on_end_message(self, callback: Callable[[Message], Any]) -> 'Chat':
        self._callbacks["end_message"] = callback
        return self

    def on_tool_call(self, callback: Callable[[ToolCall], Any]) -> 'Chat':
        self._callbacks["tool_call"] = callback
        return self

    def on_tool_result(self, callback: Callable[[Union[ToolResult, Halt]], Any]) -> 'Chat':
        self._callbacks["tool_result"] = callback
        return self

    # --- History ---

    @property
    def messages(self) -> List[Message]:
        """A copy of the history."""
        return list(self._messages)

    @property
    def tools(self) -> List[Tool]:
        return self._tools.tools()

    def add_message(self, message: Optional[Message] = None, **fields: Any) -> Message:
        """Append a Message, or build one from keyword fields."""
        if message is None:
            message = Message(**fields)
        self._messages.append(message)
        return message

    def reset_messages(self) -> 'Chat':
        self._messages = []
        return self

    # --- Conversation ---

    async def ask(self, content: Any = None,
                  attachments: Optional[Iterable[AttachmentSource]] = None,
                  on_delta: Optional[DeltaCallback] = None) -> Union[Message, Halt]:
        """
        Send a user message and complete the conversation.

        Args:
            content: User text
            attachments: Attachment objects, local paths or URLs
            on_delta: Streaming callback (sync or async); streams when given

        Returns:
            The final assistant Message, or the Halt a tool returned

        Raises:
            UnsupportedCapabilityError: If an attachment needs vision the model lacks
            AIProviderError: The classified provider failure
        """
        files = [self._as_attachment(a) for a in attachments or []]
        for attachment in files:
            if attachment.type in (AttachmentType.IMAGE, AttachmentType.PDF):
                self._require(self.model.supports_vision, f"{attachment.type.value} input")

        checkpoint = len(self._messages)
        self.add_message(role=Role.USER, content=content, attachments=files)
        try:
            return await self.complete(on_delta=on_delta)
        except BaseException:
            # A failed ask leaves the history exactly as it was before the call
            del self._messages[checkpoint:]
            raise

    async def complete(self, on_delta: Optional[DeltaCallback] = None) -> Union[Message, Halt]:
        """
        Run completion rounds until the model stops calling tools.

        If any round or tool fails (or the call is cancelled), every message
        added by this call is removed again and the observer's abort hook
        fires for the assistant messages that had already ended.

        Returns:
            The final assistant Message, or the first Halt returned by a tool
        """
        if on_delta is not None:
            self._require(self.model.supports_streaming, "streaming")

        checkpoint = len(self._messages)
        ended: List[Any] = []
        try:
            while True:
                message, handle = await self._complete_round(on_delta)
                ended.append(handle)
                if not message.tool_calls:
                    return message
                halt = await self._handle_tool_calls(message)
                if halt is not None:
                    return halt
        except BaseException:
            self._rollback(checkpoint, ended)
            raise

    def _rollback(self, checkpoint: int, handles: List[Any]) -> None:
        dropped = len(self._messages) - checkpoint
        del self._messages[checkpoint:]
        for handle in handles:
            self._observer.on_message_abort(handle)
        if dropped:
            self._logger.warning(f"Rolled back {dropped} messages after a failed completion")

    def _build_request(self, history: List[Message], stream: bool) -> ChatRequest:
        return ChatRequest(
            model=self.model.id,
            messages=history,
            tools=self._tools.definitions(),
            response_schema=self._schema,
            params=dict(self._params),
            headers=dict(self._headers),
            stream=stream,
        )

    async def _complete_round(self, on_delta: Optional[DeltaCallback]) -> Tuple[Message, Any]:
        history = list(self._messages)
        handle = self._observer.on_message_start()
        self._fire("new_message")
        placeholder = Message(role=Role.ASSISTANT, content="", model_id=self.model.id)
        self._messages.append(placeholder)

        async def forward(delta: StreamDelta) -> None:
            self._observer.on_message_delta(handle, delta)
            result = on_delta(delta)
            if inspect.isawaitable(result):
                await result

        try:
            request = self._build_request(history, stream=on_delta is not None)
            response = await self.provider.complete(request, on_delta=forward if on_delta else None)
            message = self._finalize(placeholder, response)
        except BaseException as e:
            self._discard(placeholder)
            self._observer.on_message_abort(handle)
            ErrorHandler.handle_error(e, self._logger)
            raise

        self._observer.on_message_end(handle, message)
        self._fire("end_message", message)
        return message, handle

    def _finalize(self, placeholder: Message, response: ProviderResponse) -> Message:
        message = placeholder.model_copy(update={
            "content": self._parse_content(response.content),
            "input_tokens": response.usage.input_tokens or 0,
            "output_tokens": response.usage.output_tokens or 0,
            "model_id": response.model or self.model.id,
            "tool_calls": list(response.tool_calls),
        })
        self._messages[self._index_of(placeholder)] = message
        self._logger.debug(
            f"Assistant message: {len(message.text())} chars, {len(message.tool_calls)} tool calls, "
            f"tokens in={message.input_tokens} out={message.output_tokens}")
        return message

    def _parse_content(self, content: Optional[str]) -> Any:
        if self._schema is None or not content:
            return content
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            self._logger.warning("Structured output requested but the response is not valid JSON")
            return content

    def _index_of(self, message: Message) -> int:
        for i, m in enumerate(self._messages):
            if m is message:
                return i
        raise ValueError("Message is not part of this chat")

    def _discard(self, placeholder: Message) -> None:
        self._messages = [m for m in self._messages if m is not placeholder]

    async def _handle_tool_calls(self, message: Message) -> Optional[Halt]:
        halt: Optional[Halt] = None
        for call in message.tool_calls:
            self._fire("new_message")
            self._fire("tool_call", call)
            result = await self._invoke(call)
            self._fire("tool_result", result)

            tool_message = self.add_message(role=Role.TOOL, content=self._tool_content(result),
                                            tool_call_id=call.id)
            self._fire("end_message", tool_message)
            if isinstance(result, Halt) and halt is None:
                halt = result
        return halt

    async def _invoke(self, call: ToolCall) -> Union[ToolResult, Halt]:
        self._logger.info(f"Model called tool '{call.name}' ({call.id})")
        try:
            tool = self._tools.resolve(call.name)
        except ToolNotFoundError as e:
            self._logger.warning(str(e))
            return ToolResult(success=False, error=str(e), tool_name=call.name)
        if tool.builtin:
            return ToolResult(success=False, tool_name=call.name,
                              error=f"Tool '{call.name}' runs on the provider and cannot be called locally")
        return await self._executor.invoke(tool, call.arguments)

    @staticmethod
    def _tool_content(result: Union[ToolResult, Halt]) -> Any:
        if isinstance(result, Halt):
            return result.content
        if not result.success:
            return json.dumps({"error": result.error})
        return result.result

    # --- Helpers ---

    def _require(self, supported: bool, capability: str) -> None:
        if not supported:
            raise UnsupportedCapabilityError(capability, self.model.id, provider=self.model.provider)

    def _fire(self, event: str, *args: Any) -> None:
        callback = self._callbacks[event]
        if callback is not None:
            callback(*args)

    @staticmethod
    def _as_tool(tool: Any) -> Tool:
        if isinstance(tool, Tool):
            return tool
        if isinstance(tool, type) and issubclass(tool, Tool):
            return tool()
        if callable(tool):
            return FunctionTool(tool)
        raise TypeError(f"Cannot use {tool!r} as a tool")

    @staticmethod
    def _as_attachment(source: AttachmentSource) -> Attachment:
        if isinstance(source, Attachment):
            return source
        if source.startswith(("http://", "https://")):
            return Attachment.from_url(source)
        return Attachment.from_path(source)

    # --- Resources ---

    async def aclose(self) -> None:
        """Close the HTTP client if the chat created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> 'Chat':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
