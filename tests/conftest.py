"""
Shared fixtures for polychat tests.
"""
import inspect
from unittest.mock import MagicMock

import httpx
import pytest

from polychat.config.unified_config import UnifiedConfig
from polychat.core.model_registry import ModelRegistry
from polychat.utils.logger import LoggerInterface

_ENV_VARS = (
    "OPENAI_API_KEY", "OPENAI_API_BASE", "OPENAI_ORGANIZATION_ID", "OPENAI_PROJECT_ID",
    "ANTHROPIC_API_KEY", "ANTHROPIC_API_BASE",
    "GEMINI_API_KEY", "GEMINI_API_BASE",
    "OLLAMA_API_BASE",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Every test starts from a fresh configuration and model registry."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for key in UnifiedConfig.DEFAULT_SETTINGS:
        monkeypatch.delenv(f"POLYCHAT_{key.upper()}", raising=False)
    # Keep a developer's .env out of the tests
    monkeypatch.setattr("polychat.config.unified_config.load_dotenv", lambda *a, **kw: False)
    UnifiedConfig.reset_instance()
    ModelRegistry.reset_default()
    yield
    UnifiedConfig.reset_instance()
    ModelRegistry.reset_default()


@pytest.fixture
def config():
    """Shared config with test keys and instant retries."""
    cfg = UnifiedConfig.get_instance()
    cfg.configure(retry_interval=0.0, retry_interval_randomness=0.0, max_retries=2)
    cfg.set_provider_option("openai", "api_key", "test-openai-key")
    cfg.set_provider_option("anthropic", "api_key", "test-anthropic-key")
    cfg.set_provider_option("gemini", "api_key", "test-gemini-key")
    return cfg


@pytest.fixture
def registry(config):
    return ModelRegistry.default()


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return MagicMock(spec=LoggerInterface)


@pytest.fixture
def mock_http():
    """
    Build an AsyncClient whose requests are answered by `handler`.

    The returned client records every request in `client.requests`.
    """
    def factory(handler):
        requests = []

        async def record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            result = handler(request)
            if inspect.isawaitable(result):
                result = await result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        client.requests = requests
        return client

    return factory

