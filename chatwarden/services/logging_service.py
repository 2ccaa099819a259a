# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/logging_service.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Logging Service Implementation.

Configures text or JSON (python-json-logger) output on the root logger, with
an optional rotating log file. Modules keep using ``logging.getLogger(__name__)``;
this service only decides where records go and at which level.
"""

# Standard
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Dict, List, Optional

# Third-Party
from pythonjsonlogger import jsonlogger

# First-Party
from chatwarden.config import Settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

text_formatter = logging.Formatter(TEXT_FORMAT)
json_formatter = jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s")


class LoggingService:
    """Installs chatwarden log handlers on the root logger.

    Examples:
        >>> from chatwarden.config import Settings
        >>> service = LoggingService()
        >>> service.configure(Settings(_env_file=None, log_level="DEBUG"))
        >>> service.level
        'DEBUG'
        >>> isinstance(service.get_logger("chatwarden.test"), logging.Logger)
        True
        >>> service.shutdown()
    """

    def __init__(self) -> None:
        """Initialize logging service."""
        self._handlers: List[logging.Handler] = []
        self._loggers: Dict[str, logging.Logger] = {}
        self._level = "INFO"

    @property
    def level(self) -> str:
        """Current log level name."""
        return self._level

    def configure(self, settings: Settings) -> None:
        """Attach console (and optionally file) handlers.

        Calling it again replaces the handlers installed earlier.

        Args:
            settings: Application settings carrying the log options.
        """
        self.shutdown()
        root = logging.getLogger()
        formatter = json_formatter if settings.log_format == "json" else text_formatter

        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        self._handlers.append(stream)

        if settings.log_to_file and settings.log_file:
            try:
                self._handlers.append(self._file_handler(settings))
            except OSError as e:
                logging.getLogger(__name__).warning(f"Failed to initialize file logging: {e}")

        for handler in self._handlers:
            root.addHandler(handler)
        self.set_level(settings.log_level)
        logging.getLogger(__name__).info("Logging service initialized (%s, level=%s)", settings.log_format, settings.log_level)

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a logger at the service level.

        Args:
            name: Logger name

        Returns:
            Logger instance
        """
        if name not in self._loggers:
            logger = logging.getLogger(name)
            logger.setLevel(getattr(logging, self._level))
            self._loggers[name] = logger
        return self._loggers[name]

    def set_level(self, level: str) -> None:
        """Set minimum log level on the root logger and every tracked logger.

        Args:
            level: Level name, e.g. ``"INFO"``.
        """
        self._level = level.upper()
        numeric = getattr(logging, self._level)
        logging.getLogger().setLevel(numeric)
        for logger in self._loggers.values():
            logger.setLevel(numeric)

    def shutdown(self) -> None:
        """Detach and close handlers installed by this service."""
        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers.clear()

    @staticmethod
    def _file_handler(settings: Settings) -> RotatingFileHandler:
        """Build the rotating JSON file handler.

        Args:
            settings: Application settings.

        Returns:
            RotatingFileHandler: Handler writing JSON records.
        """
        if settings.log_folder:
            os.makedirs(settings.log_folder, exist_ok=True)
            log_path = os.path.join(settings.log_folder, settings.log_file or "chatwarden.log")
        else:
            log_path = settings.log_file or "chatwarden.log"
        handler = RotatingFileHandler(log_path, maxBytes=1024 * 1024, backupCount=5)
        handler.setFormatter(json_formatter)
        return handler


logging_service: Optional[LoggingService] = None


def get_logging_service() -> LoggingService:
    """Return the process-wide logging service, creating it on first use.

    Returns:
        LoggingService: Shared instance.
    """
    global logging_service  # pylint: disable=global-statement
    if logging_service is None:
        logging_service = LoggingService()
    return logging_service
