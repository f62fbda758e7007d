"""
Logging facade used across the framework.

Components never talk to the logging module directly; they receive a
LoggerInterface (injectable, easy to replace with a MagicMock in tests) created
through LoggerFactory.
"""
import logging
import os
import sys
from typing import Any, Optional, Protocol, runtime_checkable

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ROOT_LOGGER_NAME = "polychat"


@runtime_checkable
class LoggerInterface(Protocol):
    """Interface for framework loggers."""

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def critical(self, message: str, *args: Any, **kwargs: Any) -> None: ...


class Logger:
    """LoggerInterface implementation delegating to a stdlib logger."""

    def __init__(self, name: str, level: Optional[int] = None):
        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(level)

    @property
    def name(self) -> str:
        return self._logger.name

    def set_level(self, level: int) -> None:
        self._logger.setLevel(level)

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        self._logger.debug(message, *args, **kwargs)

    def info(self, message: str, *args: Any, **kwargs: Any) -> None:
        self._logger.info(message, *args, **kwargs)

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        self._logger.warning(message, *args, **kwargs)

    def error(self, message: str, *args: Any, **kwargs: Any) -> None:
        self._logger.error(message, *args, **kwargs)

    def critical(self, message: str, *args: Any, **kwargs: Any) -> None:
        self._logger.critical(message, *args, **kwargs)


class LoggerFactory:
    """Creates named framework loggers under the 'polychat' hierarchy."""

    _configured = False

    @classmethod
    def configure(cls, level: Optional[str] = None, stream: Any = None) -> None:
        """
        Attach a console handler to the framework's root logger.

        Args:
            level: Level name; defaults to POLYCHAT_LOG_LEVEL or WARNING
            stream: Output stream (defaults to stderr)
        """
        level_name = (level or os.environ.get("POLYCHAT_LOG_LEVEL", "WARNING")).upper()
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(getattr(logging, level_name, logging.WARNING))
        if not root.handlers:
            handler = logging.StreamHandler(stream or sys.stderr)
            handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
            root.addHandler(handler)
        cls._configured = True

    @classmethod
    def create(cls, name: Optional[str] = None, level: Optional[int] = None) -> LoggerInterface:
        """
        Create a logger.

        Args:
            name: Component name; prefixed with 'polychat.' unless already
            level: Optional explicit level for this logger

        Returns:
            A LoggerInterface implementation
        """
        if not cls._configured:
            cls.configure()
        full_name = name or ROOT_LOGGER_NAME
        if not full_name.startswith(ROOT_LOGGER_NAME):
            full_name = f"{ROOT_LOGGER_NAME}.{full_name}"
        return Logger(full_name, level=level)
