"""
Unified Configuration Manager for polychat

Loads provider credentials/endpoints and global request settings from YAML
files, environment variables (including a .env file) and programmatic
overrides.
"""
from typing import Dict, Any, Optional, Type
import copy
import os
import yaml
from dotenv import load_dotenv

from ..exceptions import AIConfigError
from ..utils.logger import LoggerFactory, LoggerInterface


class SingletonMeta(type):
    """A metaclass that creates a Singleton base class when called."""
    _instances: Dict[Type, Any] = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            instance = super().__call__(*args, **kwargs)
            cls._instances[cls] = instance
        return cls._instances[cls]

    @classmethod
    def clear_instance(cls, target_class):
        """Clear the singleton instance for testing purposes."""
        if target_class in cls._instances:
            del cls._instances[target_class]


class UnifiedConfig(metaclass=SingletonMeta):
    """
    Configuration manager for the framework.

    Settings resolution order (lowest to highest): built-in defaults,
    settings.yml, POLYCHAT_* environment variables, configure() overrides.
    """

    CONFIG_FILES = {
        "providers": "providers.yml",
        "settings": "settings.yml",
    }

    MODELS_FILE = "models.yml"

    DEFAULT_SETTINGS: Dict[str, Any] = {
        "default_model": "gpt-4.1-nano",
        "request_timeout": 120.0,
        "max_retries": 3,
        "retry_interval": 0.1,
        "retry_backoff_factor": 2.0,
        "retry_interval_randomness": 0.5,
        "max_retry_interval": 30.0,
        "tool_timeout": 30.0,
        "log_level": "WARNING",
    }

    @classmethod
    def get_instance(cls,
                     config_dir: Optional[str] = None,
                     logger: Optional[LoggerInterface] = None) -> 'UnifiedConfig':
        """
        Get the singleton instance of the configuration manager.

        Args:
            config_dir: Optional directory containing configuration files
            logger: Optional logger instance

        Returns:
            UnifiedConfig instance
        """
        return cls.__call__(config_dir=config_dir, logger=logger)

    @classmethod
    def reset_instance(cls):
        """Reset the singleton instance (for testing purposes)."""
        SingletonMeta.clear_instance(cls)

    def __init__(self, config_dir: Optional[str] = None,
                 logger: Optional[LoggerInterface] = None):
        load_dotenv()

        self._logger = logger or LoggerFactory.create(name="unified_config")
        self._config_dir = config_dir or os.path.dirname(os.path.abspath(__file__))
        self._logger.debug(f"Using configuration directory: {self._config_dir}")

        self._config: Dict[str, Any] = {}
        self._settings: Dict[str, Any] = {}
        self._setting_overrides: Dict[str, Any] = {}
        self._provider_overrides: Dict[str, Dict[str, Any]] = {}
        self._load_config()
        LoggerFactory.configure(level=self.log_level)

    def _load_config(self) -> None:
        """Load all configuration files."""
        for config_key, filename in self.CONFIG_FILES.items():
            filepath = os.path.join(self._config_dir, filename)
            if not os.path.exists(filepath):
                self._logger.warning(f"Configuration file not found: {filepath}")
                self._config[config_key] = {}
                continue
            try:
                with open(filepath, 'r') as f:
                    self._config[config_key] = yaml.safe_load(f) or {}
                self._logger.debug(f"Loaded configuration from {filename}")
            except yaml.YAMLError as e:
                raise AIConfigError(f"Invalid YAML in {filename}: {e}", config_name=config_key) from e

        self._settings = dict(self.DEFAULT_SETTINGS)
        self._settings.update(self._config.get("settings", {}).get("settings", {}) or {})
        self._apply_env_settings()
        self._settings.update(self._setting_overrides)

    def _apply_env_settings(self) -> None:
        """Apply POLYCHAT_<SETTING> environment variables."""
        for key, default in self.DEFAULT_SETTINGS.items():
            raw = os.environ.get(f"POLYCHAT_{key.upper()}")
            if raw is None:
                continue
            try:
                self._settings[key] = type(default)(raw)
            except ValueError as e:
                raise AIConfigError(f"Invalid value for POLYCHAT_{key.upper()}: {raw!r}",
                                    config_name="settings") from e

    def reload(self) -> None:
        """Reload all configuration files, keeping programmatic overrides."""
        self._logger.debug("Reloading configuration")
        self._load_config()

    def configure(self, **settings: Any) -> 'UnifiedConfig':
        """
        Override global settings.

        Raises:
            AIConfigError: If a setting name is unknown
        """
        unknown = set(settings) - set(self.DEFAULT_SETTINGS)
        if unknown:
            raise AIConfigError(f"Unknown settings: {sorted(unknown)}", config_name="settings")
        self._setting_overrides.update(settings)
        self._settings.update(settings)
        if "log_level" in settings:
            LoggerFactory.configure(level=self.log_level)
        self._logger.debug(f"Applied setting overrides: {sorted(settings)}")
        return self

    def set_provider_option(self, provider: str, key: str, value: Any) -> None:
        """Override a single provider option (api_key, api_base, ...)."""
        self._provider_overrides.setdefault(provider, {})[key] = value

    # --- Providers ---

    def get_provider_names(self):
        return list(self._config.get("providers", {}).get("providers", {}).keys())

    def get_provider_config(self, provider: str) -> Dict[str, Any]:
        """
        Get configuration for a specific provider.

        Args:
            provider: Provider name

        Returns:
            Provider configuration (a copy, with overrides applied)

        Raises:
            AIConfigError: If provider configuration is not found
        """
        providers = self._config.get("providers", {}).get("providers", {})
        if provider not in providers and provider not in self._provider_overrides:
            raise AIConfigError(f"Provider configuration not found: {provider}", config_name="providers")
        merged = copy.deepcopy(providers.get(provider) or {})
        merged.update(self._provider_overrides.get(provider, {}))
        return merged

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """
        Get API key for a specific provider: explicit value first, then the
        environment variable named by `api_key_env`.
        """
        try:
            provider_config = self.get_provider_config(provider_name)
        except AIConfigError:
            return None
        if provider_config.get("api_key"):
            return provider_config["api_key"]
        env_var = provider_config.get("api_key_env")
        return os.environ.get(env_var) if env_var else None

    def get_api_base(self, provider_name: str) -> Optional[str]:
        """Get the API base override for a provider, if one is configured."""
        try:
            provider_config = self.get_provider_config(provider_name)
        except AIConfigError:
            return None
        if provider_config.get("api_base"):
            return provider_config["api_base"]
        env_var = provider_config.get("api_base_env")
        return os.environ.get(env_var) if env_var else None

    # --- Settings ---

    def get_setting(self, key: str) -> Any:
        if key not in self._settings:
            raise AIConfigError(f"Unknown setting: {key}", config_name="settings")
        return self._settings[key]

    @property
    def config_dir(self) -> str:
        return self._config_dir

    @property
    def models_file(self) -> str:
        """Path of the model registry data file."""
        return os.path.join(self._config_dir, self.MODELS_FILE)

    @property
    def default_model(self) -> str:
        return self._settings["default_model"]

    @property
    def request_timeout(self) -> float:
        return float(self._settings["request_timeout"])

    @property
    def max_retries(self) -> int:
        return int(self._settings["max_retries"])

    @property
    def retry_interval(self) -> float:
        return float(self._settings["retry_interval"])

    @property
    def retry_backoff_factor(self) -> float:
        return float(self._settings["retry_backoff_factor"])

    @property
    def retry_interval_randomness(self) -> float:
        return float(self._settings["retry_interval_randomness"])

    @property
    def max_retry_interval(self) -> float:
        return float(self._settings["max_retry_interval"])

    @property
    def tool_timeout(self) -> float:
        return float(self._settings["tool_timeout"])

    @property
    def log_level(self) -> str:
        return str(self._settings["log_level"])
