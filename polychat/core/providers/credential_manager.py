"""
Credential management for provider adapters.
Handles API keys, endpoint overrides and other per-provider settings.
"""
from typing import Dict, Any, Optional, List
import os
from ...utils.logger import LoggerInterface, LoggerFactory
from ...exceptions import AICredentialsError


class CredentialManager:
    """
    Resolves credentials for one provider.

    Each credential is looked up as a direct value in the provider config
    (`api_key`), then through the environment variable the config names
    (`api_key_env`).
    """

    def __init__(self,
                 provider_name: str,
                 provider_config: Dict[str, Any],
                 logger: Optional[LoggerInterface] = None):
        """
        Initialize the credential manager.

        Args:
            provider_name: Name of the provider (e.g., "openai", "anthropic")
            provider_config: Provider-specific configuration dictionary
            logger: Optional logger instance
        """
        self.provider_name = provider_name
        self.provider_config = provider_config
        self.logger = logger or LoggerFactory.create(name=f"{provider_name}_credentials")

        # Store credentials as they are loaded
        self.credentials: Dict[str, Any] = {}

    def get_credential(self, credential_name: str) -> Optional[Any]:
        """
        Get a specific credential by name.

        Args:
            credential_name: Name of the credential

        Returns:
            Credential value or None if not found
        """
        if credential_name in self.credentials:
            return self.credentials[credential_name]

        value = self.provider_config.get(credential_name)
        if value is not None:
            self.credentials[credential_name] = value
            return value

        env_var_name = self.provider_config.get(f"{credential_name}_env")
        if env_var_name:
            value = os.environ.get(env_var_name)
            if value:
                self.credentials[credential_name] = value
                return value

        return None

    def get_api_key(self) -> Optional[str]:
        return self.get_credential("api_key")

    def load_credentials(self, required_credentials: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Load all credentials needed for the provider.

        Args:
            required_credentials: List of credential names that are required

        Returns:
            Dictionary of loaded credentials

        Raises:
            AICredentialsError: If a required credential is not found
        """
        required_credentials = ["api_key"] if required_credentials is None else required_credentials

        for name in required_credentials:
            if self.get_credential(name) is None:
                env_hint = self.provider_config.get(f"{name}_env")
                hint = f" (set {env_hint})" if env_hint else ""
                self.logger.error(f"Required credential '{name}' not found for provider '{self.provider_name}'")
                raise AICredentialsError(f"Missing required credential: {name}{hint}", provider=self.provider_name)

        return self.credentials
