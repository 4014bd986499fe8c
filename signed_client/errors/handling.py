from __future__ import annotations

from ..logging_config import log_structured_error
from .internal import (
    AuthExpiredError,
    ConfigurationError,
    InternalError,
    NetworkError,
    ParsingError,
    StorageError,
    UpstreamError,
)


def classify_error(error: Exception) -> str:
    """Map an exception onto the structured-logging error type."""
    if isinstance(error, NetworkError | OSError | ConnectionError):
        return "network"
    if isinstance(error, AuthExpiredError):
        return "auth"
    if isinstance(error, ConfigurationError):
        return "config"
    if isinstance(error, StorageError):
        return "storage"
    if isinstance(error, UpstreamError):
        return "upstream"
    if isinstance(error, ParsingError):
        return "parsing"
    if isinstance(error, InternalError):
        return "internal"
    return "unknown"


def log_error(message: str, error: Exception, context: dict = None) -> None:
    """Log ``error`` under its category with ``message`` as the prefix.

    Args:
        message: What the client was doing when the error surfaced.
        error: The exception to report.
        context: Extra key/value data; credential-like keys are masked.
    """
    log_structured_error(
        error_type=classify_error(error),
        message=f"{message}: {str(error)}",
        exception=error,
        context=context,
    )
