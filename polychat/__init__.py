"""
polychat: one chat interface over OpenAI, Anthropic, Gemini and Ollama.
"""
from .config import configure, get_config
from .core import (
    Attachment, BaseChatObserver, Chat, InMemoryMessageStore, Message, ModelInfo,
    ModelRegistry, Role, StopReason, StreamDelta,
)
from .exceptions import (
    AIAuthenticationError, AIConfigError, AICredentialsError, AIError, AINetworkError,
    AIOverloadedError, AIProviderError, AIRateLimitError, AIServerError, AITimeoutError,
    AIToolError, AIUnknownError, ContextLengthExceededError, ErrorKind, InvalidRequestError,
    ModelNotFoundError, UnsupportedCapabilityError,
)
from .tools import FunctionTool, Halt, Tool, ToolParameter, ToolResult, function_tool

__version__ = "0.1.0"

__all__ = [
    'configure',
    'get_config',
    'Attachment',
    'BaseChatObserver',
    'Chat',
    'InMemoryMessageStore',
    'Message',
    'ModelInfo',
    'ModelRegistry',
    'Role',
    'StopReason',
    'StreamDelta',
    'AIAuthenticationError',
    'AIConfigError',
    'AICredentialsError',
    'AIError',
    'AINetworkError',
    'AIOverloadedError',
    'AIProviderError',
    'AIRateLimitError',
    'AIServerError',
    'AITimeoutError',
    'AIToolError',
    'AIUnknownError',
    'ContextLengthExceededError',
    'ErrorKind',
    'InvalidRequestError',
    'ModelNotFoundError',
    'UnsupportedCapabilityError',
    'FunctionTool',
    'Halt',
    'Tool',
    'ToolParameter',
    'ToolResult',
    'function_tool',
]
