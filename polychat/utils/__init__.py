"""
Shared utilities: logging facade and retry executor.
"""
from .logger import LoggerFactory, LoggerInterface
from .retry import AttemptState, RetryExecutor, RetryPolicy

__all__ = [
    'LoggerFactory',
    'LoggerInterface',
    'AttemptState',
    'RetryExecutor',
    'RetryPolicy',
]
