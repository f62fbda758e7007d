"""
Base provider implementation.

Subclasses describe one provider's wire format (build_request, parse_response,
parse_stream_chunk, completion_url and auth headers); this class runs the HTTP
exchange with httpx, classifies failures and applies retries.
"""
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Union, Iterable
import abc
import inspect
import json
import uuid

import httpx

from ...config import UnifiedConfig
from ...exceptions import (
    AIConfigError, AINetworkError, AIProviderError, AITimeoutError, AIUnknownError,
    ErrorKind, InvalidRequestError, ModelNotFoundError, error_for_kind,
)
from ...tools.models import ToolDefinition
from ...utils.logger import LoggerInterface, LoggerFactory
from ...utils.retry import RetryExecutor, RetryPolicy
from ..models import ChatRequest, Message, ModelInfo, ProviderResponse, Role, StopReason, StreamDelta
from ..streaming import NDJSONDecoder, SSEDecoder, StreamAccumulator, StreamEvent, iter_stream_deltas
from .credential_manager import CredentialManager
from .parameter_manager import ParameterManager, deep_merge

DeltaCallback = Callable[[StreamDelta], Union[None, Awaitable[None]]]

CONTEXT_LENGTH_PHRASES = (
    "context length",
    "context_length",
    "context window",
    "maximum context",
    "prompt is too long",
    "input is too long",
    "too many tokens",
)


class BaseProvider(abc.ABC):
    """Base implementation for provider adapters."""

    PROVIDER_NAME: str = ""
    DEFAULT_API_BASE: str = ""
    REQUIRES_API_KEY: bool = True
    STREAM_FORMAT: str = "sse"

    _ROLE_MAP: Dict[str, str] = {
        "system": "system",
        "user": "user",
        "assistant": "assistant",
        "tool": "tool",
    }

    ALLOWED_PARAMETERS: Set[str] = set()
    DEFAULT_PARAMETERS: Dict[str, Any] = {}
    PARAMETER_MAPPING: Dict[str, str] = {}

    # Provider finish reason -> shared vocabulary
    STOP_REASON_MAP: Dict[str, StopReason] = {}
    # Error type/code/status strings found in error bodies -> ErrorKind
    ERROR_TYPE_MAP: Dict[str, ErrorKind] = {}

    def __init__(self,
                 model: ModelInfo,
                 provider_config: Optional[Dict[str, Any]] = None,
                 config: Optional[UnifiedConfig] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 logger: Optional[LoggerInterface] = None):
        """
        Initialize the provider.

        Args:
            model: Resolved model metadata
            provider_config: Provider configuration; read from UnifiedConfig when omitted
            config: Configuration instance (defaults to the shared one)
            http_client: Client to send requests with; one is created on first use otherwise
            logger: Logger instance
        """
        self.model = model
        self.model_id = model.id
        self.config = config or UnifiedConfig.get_instance()
        self.logger = logger or LoggerFactory.create(name=f"{self.PROVIDER_NAME or 'base'}_provider")

        if provider_config is None:
            try:
                provider_config = self.config.get_provider_config(self.PROVIDER_NAME)
            except AIConfigError:
                self.logger.warning(f"No configuration for provider '{self.PROVIDER_NAME}', using defaults")
                provider_config = {}
        self.provider_config = provider_config

        self._initialize_helpers()
        self._initialize_credentials()

        self._http_client = http_client
        self._owns_client = http_client is None
        self.retry_executor = RetryExecutor(RetryPolicy.from_config(self.config), logger=self.logger)

        self.logger.debug(f"Initialized {self.__class__.__name__} for model {self.model_id}")

    def _initialize_helpers(self) -> None:
        self.parameter_manager = ParameterManager(
            default_parameters=self.DEFAULT_PARAMETERS,
            model_parameters=self.model.parameters,
            allowed_parameters=set(self.ALLOWED_PARAMETERS),
            parameter_mapping=self.PARAMETER_MAPPING,
            logger=self.logger,
        )
        self.credential_manager = CredentialManager(
            provider_name=self.PROVIDER_NAME,
            provider_config=self.provider_config,
            logger=self.logger,
        )

    def _initialize_credentials(self) -> None:
        """Fail early when a required API key is missing."""
        if self.REQUIRES_API_KEY and self.provider_config.get("requires_api_key", True):
            self.credential_manager.load_credentials(["api_key"])

    # --- Endpoint and headers ---

    @property
    def api_base(self) -> str:
        base = self.credential_manager.get_credential("api_base") or self.DEFAULT_API_BASE
        return base.rstrip("/")

    def auth_headers(self) -> Dict[str, str]:
        return {}

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self.auth_headers())
        headers.update(self.provider_config.get("headers") or {})
        return headers

    @abc.abstractmethod
    def completion_url(self, request: ChatRequest) -> str:
        """Full URL for a completion request."""

    # --- Wire format ---

    @abc.abstractmethod
    def build_request(self, request: ChatRequest) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    def parse_response(self, body: Dict[str, Any]) -> ProviderResponse:
        ...

    @abc.abstractmethod
    def parse_stream_chunk(self, event: StreamEvent, accumulator: StreamAccumulator
                           ) -> Union[StreamDelta, Iterable[StreamDelta], None]:
        ...

    def stream_decoder(self) -> Union[SSEDecoder, NDJSONDecoder]:
        return NDJSONDecoder() if self.STREAM_FORMAT == "ndjson" else SSEDecoder()

    def map_role(self, role: Role) -> str:
        return self._ROLE_MAP.get(role.value, "user")

    def map_stop_reason(self, reason: Optional[str]) -> Optional[StopReason]:
        if not reason:
            return None
        return self.STOP_REASON_MAP.get(reason, StopReason.OTHER)

    def _request_params(self, request: ChatRequest) -> Dict[str, Any]:
        return self.parameter_manager.prepare_request_payload(request.params)

    def _with_params(self, payload: Dict[str, Any], request: ChatRequest) -> Dict[str, Any]:
        return deep_merge(payload, self._request_params(request))

    def _function_tools(self, request: ChatRequest) -> List[ToolDefinition]:
        """Locally executed tools; provider-native tools are rejected unless overridden."""
        builtins = [t.name for t in request.tools if t.builtin]
        if builtins:
            raise InvalidRequestError(
                f"Provider-native tools {builtins} are not available on {self.PROVIDER_NAME}",
                provider=self.PROVIDER_NAME)
        return list(request.tools)

    @staticmethod
    def _tool_names(messages: List[Message]) -> Dict[str, str]:
        """Map tool call ids to tool names across the history."""
        return {call.id: call.name for m in messages for call in m.tool_calls}

    @staticmethod
    def _arguments_json(arguments: Dict[str, Any]) -> str:
        if set(arguments) == {"_raw_args"}:
            return str(arguments["_raw_args"])
        return json.dumps(arguments)

    def _parse_arguments(self, raw: Any) -> Dict[str, Any]:
        if raw is None or raw == "":
            return {}
        if isinstance(raw, dict):
            return raw
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            self.logger.warning(f"Could not parse tool arguments: {raw!r}")
            return {"_raw_args": raw}
        return parsed if isinstance(parsed, dict) else {"_raw_args": raw}

    @staticmethod
    def _synthesize_call_id() -> str:
        return f"call_{uuid.uuid4().hex[:24]}"

    def _load_event(self, event: StreamEvent) -> Optional[Dict[str, Any]]:
        try:
            data = event.json()
        except json.JSONDecodeError:
            self.logger.warning(f"Skipping malformed stream event: {event.data[:200]!r}")
            return None
        return data if isinstance(data, dict) else None

    # --- Errors ---

    def _error_codes(self, body: Any) -> List[str]:
        if not isinstance(body, dict):
            return []
        error = body.get("error", body)
        if not isinstance(error, dict):
            return []
        return [error[key] for key in ("code", "type", "status") if isinstance(error.get(key), str)]

    @staticmethod
    def _body_status(body: Any) -> Optional[int]:
        """HTTP-style status some providers embed in error bodies ({"error": {"code": 529}})."""
        error = body.get("error") if isinstance(body, dict) else None
        code = error.get("code") if isinstance(error, dict) else None
        if isinstance(code, int) and not isinstance(code, bool) and 400 <= code < 600:
            return code
        return None

    def error_message(self, body: Any) -> str:
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
            if body.get("message"):
                return str(body["message"])
        if isinstance(body, str) and body.strip():
            return body.strip()[:500]
        return "Unknown error"

    def _is_context_length_error(self, body: Any) -> bool:
        if "context_length_exceeded" in self._error_codes(body):
            return True
        message = self.error_message(body).lower()
        return any(phrase in message for phrase in CONTEXT_LENGTH_PHRASES)

    def classify_error(self, status: Optional[int], body: Any) -> ErrorKind:
        """
        Classify a failure.

        HTTP status takes precedence; for statuses that say nothing specific
        (and for in-band stream errors, which have none) the body's error
        type decides.
        """
        if status is None:
            status = self._body_status(body)
        if status in (401, 403):
            return ErrorKind.AUTHENTICATION
        if status == 404:
            return ErrorKind.MODEL_NOT_FOUND
        if status == 429:
            return ErrorKind.RATE_LIMIT
        if status in (503, 529):
            return ErrorKind.OVERLOADED
        if status is not None and status >= 500:
            return ErrorKind.SERVER
        if status in (400, 413, 422):
            if self._is_context_length_error(body):
                return ErrorKind.CONTEXT_LENGTH_EXCEEDED
            return ErrorKind.BAD_REQUEST

        for code in self._error_codes(body):
            if code in self.ERROR_TYPE_MAP:
                return self.ERROR_TYPE_MAP[code]
        if self._is_context_length_error(body):
            return ErrorKind.CONTEXT_LENGTH_EXCEEDED
        return ErrorKind.UNKNOWN

    def error_from_response(self, status: Optional[int], body: Any) -> AIProviderError:
        kind = self.classify_error(status, body)
        error = error_for_kind(kind, self.error_message(body), provider=self.PROVIDER_NAME,
                               status_code=status, body=body)
        if isinstance(error, ModelNotFoundError):
            error.model_id = self.model_id
        self.logger.warning(f"{self.PROVIDER_NAME} error ({kind.value}): {error}")
        return error

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    # --- HTTP ---

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> ProviderResponse:
        try:
            response = await self._client().post(url, json=payload, headers=headers,
                                                 timeout=self.config.request_timeout)
        except httpx.TimeoutException as e:
            raise AITimeoutError(f"Request timed out: {e}", provider=self.PROVIDER_NAME) from e
        except httpx.TransportError as e:
            raise AINetworkError(f"Connection failed: {e}", provider=self.PROVIDER_NAME) from e

        if response.status_code >= 400:
            raise self.error_from_response(response.status_code, self._decode_body(response))
        try:
            body = response.json()
        except ValueError as e:
            raise AIUnknownError("Response body is not valid JSON", provider=self.PROVIDER_NAME,
                                 status_code=response.status_code, body=response.text) from e
        if isinstance(body, dict) and body.get("error"):
            raise self.error_from_response(None, body)
        return self.parse_response(body)

    async def _stream(self, url: str, payload: Dict[str, Any], headers: Dict[str, str],
                      accumulator: StreamAccumulator) -> AsyncIterator[StreamDelta]:
        try:
            async with self._client().stream("POST", url, json=payload, headers=headers,
                                             timeout=self.config.request_timeout) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self.error_from_response(response.status_code, self._decode_body(response))
                async for delta in iter_stream_deltas(response.aiter_bytes(), self, accumulator,
                                                      self.stream_decoder()):
                    yield delta
        except httpx.TimeoutException as e:
            raise AITimeoutError(f"Stream timed out: {e}", provider=self.PROVIDER_NAME) from e
        except httpx.TransportError as e:
            raise AINetworkError(f"Stream connection failed: {e}", provider=self.PROVIDER_NAME) from e

    async def complete(self, request: ChatRequest,
                       on_delta: Optional[DeltaCallback] = None) -> ProviderResponse:
        """
        Run one completion, retrying transient failures.

        When request.stream is set every delta is passed to `on_delta`; once text
        or a tool call fragment has been delivered, a later failure is not
        retried.

        Raises:
            AIProviderError: The classified failure
        """
        payload = self.build_request(request)
        url = self.completion_url(request)
        headers = self.headers()
        headers.update(request.headers)
        label = f"{self.PROVIDER_NAME}:{request.model}"
        self.logger.debug(f"Sending {label} request (stream={request.stream}) to {url}")

        if not request.stream:
            async def attempt() -> ProviderResponse:
                return await self._post(url, payload, headers)

            return await self.retry_executor.run(attempt, name=label)

        delivered = False

        async def attempt_stream() -> ProviderResponse:
            nonlocal delivered
            accumulator = StreamAccumulator(logger=self.logger)
            async for delta in self._stream(url, payload, headers, accumulator):
                if on_delta is None or delta.is_empty:
                    continue
                # Metadata alone (model, usage) does not stop a retry
                if delta.content or delta.tool_call is not None:
                    delivered = True
                result = on_delta(delta)
                if inspect.isawaitable(result):
                    await result
            return accumulator.to_response()

        return await self.retry_executor.run(attempt_stream, name=label,
                                             can_retry=lambda: not delivered)
