"""
Read-only lookup of model capability metadata.
"""
from typing import Iterable, Iterator, List, Optional
import yaml

from ..config import get_config
from ..exceptions import AIConfigError, ModelNotFoundError
from ..utils.logger import LoggerFactory, LoggerInterface
from .models import ModelInfo


class ModelRegistry:
    """
    Resolves model ids and aliases to ModelInfo.

    Exact ids win over aliases. When no provider is given, ties between
    providers are broken by PROVIDER_PRIORITY.
    """

    PROVIDER_PRIORITY = ("openai", "anthropic", "gemini", "ollama")

    _default_instance: Optional['ModelRegistry'] = None

    def __init__(self, models: Optional[Iterable[ModelInfo]] = None,
                 logger: Optional[LoggerInterface] = None):
        self._models: List[ModelInfo] = list(models or [])
        self._logger = logger or LoggerFactory.create(name="model_registry")

    @classmethod
    def from_file(cls, path: str, logger: Optional[LoggerInterface] = None) -> 'ModelRegistry':
        """
        Load a registry from a YAML file with a top-level `models` list.

        Raises:
            AIConfigError: If the file is missing or malformed
        """
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise AIConfigError(f"Could not load model registry from {path}: {e}", config_name="models") from e

        entries = data.get("models") or []
        registry = cls([ModelInfo(**entry) for entry in entries], logger=logger)
        registry._logger.debug(f"Loaded {len(registry)} models from {path}")
        return registry

    @classmethod
    def default(cls) -> 'ModelRegistry':
        """Registry built from the configured models.yml, loaded once."""
        if cls._default_instance is None:
            cls._default_instance = cls.from_file(get_config().models_file)
        return cls._default_instance

    @classmethod
    def reset_default(cls) -> None:
        cls._default_instance = None

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[ModelInfo]:
        return iter(self._models)

    def _priority(self, model: ModelInfo) -> int:
        try:
            return self.PROVIDER_PRIORITY.index(model.provider)
        except ValueError:
            return len(self.PROVIDER_PRIORITY)

    def _first(self, candidates: List[ModelInfo]) -> Optional[ModelInfo]:
        if not candidates:
            return None
        # sorted() is stable, so file order breaks ties within a provider
        return sorted(candidates, key=self._priority)[0]

    def find(self, id_or_alias: str, provider: Optional[str] = None) -> ModelInfo:
        """
        Find a model by exact id, then by alias.

        Args:
            id_or_alias: Model id or alias
            provider: Restrict the search to one provider

        Returns:
            The matching ModelInfo

        Raises:
            ModelNotFoundError: If neither an id nor an alias matches
        """
        scoped = [m for m in self._models if provider is None or m.provider == provider]

        model = self._first([m for m in scoped if m.id == id_or_alias])
        if model is None:
            model = self._first([m for m in scoped if id_or_alias in m.aliases])
        if model is None:
            where = f" for provider '{provider}'" if provider else ""
            raise ModelNotFoundError(f"Unknown model: {id_or_alias}{where}",
                                     model_id=id_or_alias, provider=provider)
        return model

    def resolve(self, model_id: str, provider: Optional[str] = None,
                assume_exists: bool = False) -> ModelInfo:
        """
        Resolve a model for a chat.

        With assume_exists the registry is bypassed and every capability is
        assumed; a provider is then required.
        """
        if assume_exists:
            if not provider:
                raise AIConfigError("A provider must be given when assume_model_exists is set",
                                    config_name="models")
            self._logger.debug(f"Using unchecked model {model_id} for provider {provider}")
            return ModelInfo.unchecked_model(model_id, provider)
        return self.find(model_id, provider)

    def all(self) -> List[ModelInfo]:
        return list(self._models)

    def chat_models(self) -> List[ModelInfo]:
        return [m for m in self._models if m.type == "chat"]

    def by_provider(self, provider: str) -> List[ModelInfo]:
        return [m for m in self._models if m.provider == provider]
