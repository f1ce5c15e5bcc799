"""
Robustness module for reflectip.

Structured logging helpers and the error taxonomy shared by the communicators
and the race orchestrator.
"""

import json
import logging
import logging.handlers
from enum import Enum
from typing import Any


class ContextFormatter(logging.Formatter):
    """Formatter that renders the ``context`` extra as JSON."""

    def format(self, record):
        if hasattr(record, "context") and not isinstance(record.context, str):
            record.context = json.dumps(record.context, default=str)
        elif not hasattr(record, "context"):
            record.context = "{}"
        return super().format(record)


LOG_FORMAT = json.dumps(
    {
        "timestamp": "%(asctime)s",
        "level": "%(levelname)s",
        "component": "%(name)s",
        "message": "%(message)s",
        "context": "%(context)s",
    }
)


def setup_logging(log_level: str = "INFO", log_file: str | None = None):
    """
    Set up structured logging for the ``reflectip`` logger tree.

    Calling it again replaces the handlers installed by a previous call.
    """
    logger = logging.getLogger("reflectip")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = ContextFormatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = logging.getLogger("reflectip")


class ErrorType(Enum):
    NETWORK = "network"
    PROTOCOL = "protocol"
    CONFIG = "config"
    ARGUMENT = "argument"
    GENERAL = "general"


class ReflectionError(Exception):
    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.GENERAL,
        context: dict[str, Any] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.context = context or {}


class InvalidArgumentError(ReflectionError, ValueError):
    """Bad caller input: empty oracle set, unsupported family or scheme."""

    def __init__(self, message: str, context: dict[str, Any] = None):
        super().__init__(message, ErrorType.ARGUMENT, context)


class UnsupportedSchemeError(InvalidArgumentError):
    pass


class NoAddressForFamilyError(ReflectionError):
    """The resolver returned no record for the requested address family."""

    def __init__(self, message: str, context: dict[str, Any] = None):
        super().__init__(message, ErrorType.NETWORK, context)


class ReflectionTimeoutError(ReflectionError, TimeoutError):
    """A send, receive or per-query deadline expired."""

    def __init__(self, message: str, context: dict[str, Any] = None):
        super().__init__(message, ErrorType.NETWORK, context)


class MalformedResponseError(ReflectionError):
    def __init__(self, message: str, context: dict[str, Any] = None):
        super().__init__(message, ErrorType.PROTOCOL, context)


class UnsupportedFamilyError(ReflectionError):
    """STUN mapped address carries a family code other than IPv4/IPv6."""

    def __init__(self, message: str, context: dict[str, Any] = None):
        super().__init__(message, ErrorType.PROTOCOL, context)


class NoConsensusError(ReflectionError):
    """Every oracle failed or returned no address."""

    def __init__(self, message: str = "cannot obtain an address from any oracle", context: dict[str, Any] = None):
        super().__init__(message, ErrorType.GENERAL, context)


def log_with_context(message: str, level: str = "info", context: dict[str, Any] = None):
    """
    Log with additional context.
    """
    extra = {"context": context or {}}
    getattr(logger, level)(message, extra=extra)
