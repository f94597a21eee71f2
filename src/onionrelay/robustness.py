"""
Error taxonomy and logging helpers for onionrelay.

Every failure the overlay reports is an ``OnionError`` subclass carrying an
``ErrorType`` and a context dict, so the HTTP layer can map it to a status
code and the structured logger can print the context alongside the message.
Nothing here retries: failures are raised once and reported once.
"""

import json
import logging
import logging.handlers
from collections.abc import Callable
from enum import Enum
from functools import wraps
from typing import Any

logger = logging.getLogger("onionrelay")
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


class ContextFormatter(logging.Formatter):
    """Formatter that serialises ``record.context`` as JSON."""

    def format(self, record):
        record.context_json = json.dumps(getattr(record, "context", {}), default=str)
        return super().format(record)


LOG_FORMAT = json.dumps(
    {
        "timestamp": "%(asctime)s",
        "level": "%(levelname)s",
        "component": "%(name)s",
        "message": "%(message)s",
        "context": "%(context_json)s",
    }
)


def setup_logging(log_level: str = "INFO", log_file: str | None = None):
    """
    Set up structured logging on the ``onionrelay`` logger.

    A console handler is always attached; a rotating file handler is added
    when ``log_file`` is given. Calling this again replaces the handlers
    installed by the previous call instead of stacking them.
    """
    root = logging.getLogger("onionrelay")
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_onionrelay", False) or isinstance(handler, logging.NullHandler):
            root.removeHandler(handler)
            handler.close()

    formatter = ContextFormatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._onionrelay = True
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        file_handler._onionrelay = True
        root.addHandler(file_handler)

    return root


class ErrorType(Enum):
    NETWORK = "network"
    CRYPTO = "crypto"
    CONFIG = "config"
    PROTOCOL = "protocol"
    GENERAL = "general"


class OnionError(Exception):
    def __init__(self, message: str, error_type: ErrorType = ErrorType.GENERAL, context: dict[str, Any] = None):
        super().__init__(message)
        self.error_type = error_type
        self.context = context or {}


class MalformedLayer(OnionError):
    """Layer too short, or its wrapped key or body failed to decrypt."""

    def __init__(self, message: str, context: dict[str, Any] = None):
        super().__init__(message, ErrorType.PROTOCOL, context)


class InsufficientParticipants(OnionError):
    """Fewer registered relays than a circuit needs."""

    def __init__(self, available: int, required: int):
        super().__init__(
            f"Insufficient nodes in the network: {available} registered, {required} required",
            ErrorType.PROTOCOL,
            {"available": available, "required": required},
        )
        self.available = available
        self.required = required


class ForwardingFailure(OnionError):
    """Next hop unreachable or answered with a non-success status."""

    def __init__(self, address: int, reason: str, status: int | None = None):
        super().__init__(
            f"Forwarding to {address} failed: {reason}",
            ErrorType.NETWORK,
            {"address": address, "status": status},
        )
        self.address = address
        self.status = status


class MissingMessage(OnionError):
    def __init__(self, message: str = "Missing message"):
        super().__init__(message, ErrorType.PROTOCOL)


class DuplicateNode(OnionError):
    def __init__(self, node_id: int):
        super().__init__("Node is already registered", ErrorType.PROTOCOL, {"node_id": node_id})
        self.node_id = node_id


def handle_exception(error_type: ErrorType = ErrorType.GENERAL, context: dict[str, Any] = None):
    """
    Decorator to handle exceptions in functions.

    ``OnionError`` is logged and re-raised untouched; anything else is logged
    and wrapped in an ``OnionError`` of ``error_type``.
    """

    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except OnionError as e:
                logger.error(
                    f"onionrelay error in {func.__name__}: {e}",
                    extra={"context": {**e.context, **(context or {})}},
                )
                raise
            except Exception as e:
                logger.error(f"Unhandled error in {func.__name__}: {e}", extra={"context": context or {}})
                raise OnionError(str(e), error_type, context) from e

        return wrapper

    return decorator


def log_with_context(message: str, level: str = "info", context: dict[str, Any] = None):
    """
    Log with additional context.
    """
    extra = {"context": context or {}}
    getattr(logger, level)(message, extra=extra)
