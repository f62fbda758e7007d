"""
Exception hierarchy for the polychat framework.

Provider errors are classified into an ErrorKind so that the retry executor and
the conversation engine can decide what to do without knowing which provider
raised them.
"""
from enum import Enum
from typing import Any, Dict, Optional, Type


class ErrorKind(str, Enum):
    """Shared classification of provider failures."""
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    OVERLOADED = "overloaded"
    SERVER = "server"
    BAD_REQUEST = "bad_request"
    MODEL_NOT_FOUND = "model_not_found"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class AIError(Exception):
    """Base class for all framework errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class AIConfigError(AIError):
    """Raised for missing or invalid configuration."""

    def __init__(self, message: str, config_name: Optional[str] = None):
        super().__init__(message, config_name=config_name)
        self.config_name = config_name


class AICredentialsError(AIError):
    """Raised when a provider cannot be set up because credentials are missing."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message, provider=provider)
        self.provider = provider


class AIToolError(AIError):
    """Raised for tool registration and lookup problems."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message, tool_name=tool_name)
        self.tool_name = tool_name


class ToolNotFoundError(AIToolError):
    """Raised when the model asks for a tool that is not bound to the chat."""


class AIProviderError(AIError):
    """
    Base class for errors returned by (or while talking to) a provider.

    Attributes:
        provider: Provider name ("openai", "anthropic", ...)
        status_code: HTTP status, when there was one
        body: Decoded response body, when there was one
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False

    def __init__(self,
                 message: str,
                 provider: Optional[str] = None,
                 status_code: Optional[int] = None,
                 body: Any = None):
        super().__init__(message, provider=provider, status_code=status_code)
        self.provider = provider
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{prefix}{self.message}{status}"


class AIAuthenticationError(AIProviderError):
    kind = ErrorKind.AUTHENTICATION


class AIRateLimitError(AIProviderError):
    kind = ErrorKind.RATE_LIMIT
    retryable = True


class AIOverloadedError(AIProviderError):
    kind = ErrorKind.OVERLOADED
    retryable = True


class AIServerError(AIProviderError):
    kind = ErrorKind.SERVER
    retryable = True


class InvalidRequestError(AIProviderError):
    """Malformed request, or a capability the model does not have."""
    kind = ErrorKind.BAD_REQUEST


class UnsupportedCapabilityError(InvalidRequestError):
    """Raised before any request is sent when the model lacks a capability."""

    def __init__(self, capability: str, model_id: str, provider: Optional[str] = None):
        super().__init__(f"Model '{model_id}' does not support {capability}", provider=provider)
        self.capability = capability
        self.model_id = model_id


class ModelNotFoundError(AIProviderError):
    kind = ErrorKind.MODEL_NOT_FOUND

    def __init__(self, message: str, model_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.model_id = model_id


class ContextLengthExceededError(AIProviderError):
    kind = ErrorKind.CONTEXT_LENGTH_EXCEEDED


class AINetworkError(AIProviderError):
    kind = ErrorKind.NETWORK
    retryable = True


class AITimeoutError(AINetworkError):
    kind = ErrorKind.TIMEOUT


class AIUnknownError(AIProviderError):
    """Fallback for responses that could not be classified."""
    kind = ErrorKind.UNKNOWN


_ERROR_CLASSES: Dict[ErrorKind, Type[AIProviderError]] = {
    ErrorKind.AUTHENTICATION: AIAuthenticationError,
    ErrorKind.RATE_LIMIT: AIRateLimitError,
    ErrorKind.OVERLOADED: AIOverloadedError,
    ErrorKind.SERVER: AIServerError,
    ErrorKind.BAD_REQUEST: InvalidRequestError,
    ErrorKind.MODEL_NOT_FOUND: ModelNotFoundError,
    ErrorKind.CONTEXT_LENGTH_EXCEEDED: ContextLengthExceededError,
    ErrorKind.NETWORK: AINetworkError,
    ErrorKind.TIMEOUT: AITimeoutError,
    ErrorKind.UNKNOWN: AIUnknownError,
}


def error_for_kind(kind: ErrorKind,
                   message: str,
                   provider: Optional[str] = None,
                   status_code: Optional[int] = None,
                   body: Any = None) -> AIProviderError:
    """Instantiate the exception class registered for an ErrorKind."""
    error_class = _ERROR_CLASSES.get(kind, AIUnknownError)
    return error_class(message, provider=provider, status_code=status_code, body=body)


class ErrorHandler:
    """Standardized logging and summarizing of framework errors."""

    @staticmethod
    def handle_error(error: Exception, logger: Any = None) -> Dict[str, Any]:
        """
        Log an error and return a structured summary of it.

        Args:
            error: The exception to handle
            logger: Optional logger (LoggerInterface) to report to

        Returns:
            Dictionary with error type, message, kind and retryability
        """
        response = {
            "error_type": type(error).__name__,
            "message": str(error),
            "kind": getattr(error, "kind", ErrorKind.UNKNOWN).value,
            "retryable": bool(getattr(error, "retryable", False)),
        }
        if isinstance(error, AIProviderError):
            response["provider"] = error.provider
            response["status_code"] = error.status_code

        if logger is not None:
            logger.error(f"{response['error_type']}: {response['message']}")
        return response
