"""
Factory for creating provider instances.
"""
from typing import Optional, Dict, Any, List, Type

import httpx

from ..config.unified_config import UnifiedConfig
from ..utils.logger import LoggerFactory, LoggerInterface
from .models import ModelInfo
from .providers.base_provider import BaseProvider
from .providers.openai_provider import OpenAIProvider
from .providers.anthropic_provider import AnthropicProvider
from .providers.gemini_provider import GeminiProvider
from .providers.ollama_provider import OllamaProvider


class ProviderFactory:
    """
    Maps provider ids to adapter classes.

    A chat resolves its adapter once, when its model is set.
    """

    _providers: Dict[str, Type[BaseProvider]] = {
        'openai': OpenAIProvider,
        'anthropic': AnthropicProvider,
        'gemini': GeminiProvider,
        'ollama': OllamaProvider,
    }

    @classmethod
    def get_provider_class(cls, provider_type: str) -> Type[BaseProvider]:
        """
        Raises:
            ValueError: If the provider type is not supported
        """
        provider_class = cls._providers.get(provider_type)
        if provider_class is None:
            raise ValueError(f"Unsupported provider type: {provider_type}")
        return provider_class

    @classmethod
    def create(
        cls,
        provider_type: str,
        model: ModelInfo,
        provider_config: Optional[Dict[str, Any]] = None,
        config: Optional[UnifiedConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: Optional[LoggerInterface] = None
    ) -> BaseProvider:
        """
        Create a provider instance.

        Args:
            provider_type: Type of provider (e.g., 'openai', 'anthropic')
            model: Resolved model metadata
            provider_config: Provider configuration; read from config when omitted
            config: Configuration instance
            http_client: Shared HTTP client
            logger: Logger instance

        Returns:
            Provider instance

        Raises:
            ValueError: If the provider type is not supported
            AICredentialsError: If the provider needs an API key that is not configured
        """
        provider_class = cls.get_provider_class(provider_type)
        logger = logger or LoggerFactory.create(name=f"{provider_type}_provider")
        logger.debug(f"Creating {provider_class.__name__} for model {model.id}")
        return provider_class(
            model=model,
            provider_config=provider_config,
            config=config,
            http_client=http_client,
            logger=logger,
        )

    @classmethod
    def register_provider(cls, provider_type: str, provider_class: Type[BaseProvider]) -> None:
        """
        Register a new provider type.

        Args:
            provider_type: Type identifier for the provider
            provider_class: Provider class to register
        """
        cls._providers[provider_type] = provider_class

    @classmethod
    def available_providers(cls) -> List[str]:
        return list(cls._providers.keys())
