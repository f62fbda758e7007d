"""
Configuration access for polychat.
"""
from typing import Any

from .unified_config import UnifiedConfig


def get_config() -> UnifiedConfig:
    """Return the shared configuration instance."""
    return UnifiedConfig.get_instance()


def configure(**settings: Any) -> UnifiedConfig:
    """Override global settings on the shared configuration instance."""
    return get_config().configure(**settings)


__all__ = ['UnifiedConfig', 'get_config', 'configure']
