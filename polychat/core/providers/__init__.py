"""
Provider adapters.
"""
from .base_provider import BaseProvider
from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider
from .gemini_provider import GeminiProvider
from .ollama_provider import OllamaProvider
from .gemini_tools import GoogleSearchTool, UrlContextTool

from .parameter_manager import ParameterManager
from .credential_manager import CredentialManager

__all__ = [
    'BaseProvider',
    'OpenAIProvider',
    'AnthropicProvider',
    'GeminiProvider',
    'OllamaProvider',
    'GoogleSearchTool',
    'UrlContextTool',
    'ParameterManager',
    'CredentialManager',
]
