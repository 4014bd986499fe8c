r"""
Logging configuration for the signed API client.

colorlog output on stderr, bearer-token redaction, and structured error
logging backed by an in-memory ErrorAggregator.
"""

import atexit
import logging
import os
import re
import sys
import threading
import time
from collections import defaultdict, deque
from typing import Any

import colorlog

_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*")
# Context keys whose values must never reach a log line
_SENSITIVE_KEYS = ("token", "secret", "signature", "authorization", "password")


class BearerRedactionFilter(logging.Filter):
    """Masks bearer tokens that slip into formatted log messages."""

    def filter(self, record):
        message = record.getMessage()
        if "Bearer" in message:
            record.msg = _BEARER_PATTERN.sub(r"\1***", message)
            record.args = ()
        return True


def redact_context(context: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``context`` with credential-like values masked."""
    if not context:
        return {}
    return {
        key: "***" if any(s in key.lower() for s in _SENSITIVE_KEYS) else value
        for key, value in context.items()
    }


class ErrorAggregator:
    """Per-category error counts for the lifetime of the process.

    Keeps the most recent ``max_entries`` occurrences per category and flags
    a category once its hourly rate passes the alert threshold. Refresh
    failures, exhausted network retries and storage faults all land here
    through ``log_structured_error``.
    """

    def __init__(self, max_entries: int = 1000, window_seconds: float = 3600.0):
        self.max_entries = max_entries
        self.window_seconds = window_seconds
        self.errors: dict[str, deque[dict[str, Any]]] = defaultdict(
            lambda: deque(maxlen=self.max_entries)
        )
        self.lock = threading.Lock()
        self.start_time = time.time()

    def record_error(self, error_type: str, message: str, context: dict[str, Any] = None) -> None:
        with self.lock:
            self.errors[error_type].append(
                {"timestamp": time.time(), "message": message, "context": redact_context(context)}
            )

    def get_error_summary(self) -> dict[str, Any]:
        """Counts, in-window counts and hourly rate per category."""
        with self.lock:
            now = time.time()
            hours = max((now - self.start_time) / 3600, 1)
            summary = {}
            for error_type, occurrences in self.errors.items():
                if not occurrences:
                    continue
                summary[error_type] = {
                    "total_count": len(occurrences),
                    "recent_count": sum(
                        1 for e in occurrences if now - e["timestamp"] < self.window_seconds
                    ),
                    "rate_per_hour": len(occurrences) / hours,
                    "last_occurrence": occurrences[-1],
                }
            return summary

    def should_alert(self, error_type: str, threshold_rate: float = 60.0) -> bool:
        stats = self.get_error_summary().get(error_type)
        return stats is not None and stats["rate_per_hour"] > threshold_rate

    def reset(self) -> None:
        with self.lock:
            self.errors.clear()
            self.start_time = time.time()

    def log_summary_report(self) -> None:
        summary = self.get_error_summary()
        if not summary:
            logging.info("No errors recorded in current session")
            return

        logging.warning("🚨 ERROR SUMMARY REPORT")
        for error_type, stats in sorted(summary.items()):
            logging.warning(
                f"  {error_type}: {stats['total_count']} total, "
                f"{stats['recent_count']} in window, "
                f"{stats['rate_per_hour']:.1f}/hour "
                f"last={stats['last_occurrence']['message']}"
            )


error_aggregator = ErrorAggregator()


def log_structured_error(
    error_type: str,
    message: str,
    exception: Exception = None,
    context: dict[str, Any] = None,
    level: int = logging.ERROR,
) -> None:
    """Log ``[TYPE] message | Exception: ... | Context: k=v`` and record it.

    Args:
        error_type: Category from ``classify_error`` (network, auth, config, ...).
        message: Descriptive error message.
        exception: The exception that occurred, if any.
        context: Extra key/value data; credential-like keys are masked.
        level: Logging level (default: ERROR).
    """
    parts = [f"[{error_type.upper()}] {message}"]
    if exception is not None:
        parts.append(f"Exception: {type(exception).__name__}: {exception}")
    safe_context = redact_context(context)
    if safe_context:
        parts.append("Context: " + " ".join(f"{k}={v}" for k, v in safe_context.items()))
    logging.log(level, " | ".join(parts))

    error_aggregator.record_error(error_type, message, context)
    if error_aggregator.should_alert(error_type):
        rate = error_aggregator.get_error_summary()[error_type]["rate_per_hour"]
        logging.critical(f"🚨 HIGH ERROR RATE ALERT: {error_type} occurring at {rate:.1f}/hour")


class LoggerConfigurator:
    """Configures colorlog output once per process.

    Level comes from ``API_LOG_LEVEL`` when set, otherwise ``DEBUG=true``
    selects DEBUG and anything else INFO.
    """

    LOG_COLORS = {
        "DEBUG": "cyan",
        "INFO": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "magenta",
    }

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr
        self._configured = False

    @staticmethod
    def resolve_level() -> int:
        explicit = os.environ.get("API_LOG_LEVEL", "").upper()
        if explicit in logging.getLevelNamesMapping():
            return logging.getLevelNamesMapping()[explicit]
        debug_env = os.environ.get("DEBUG", "").lower()
        return logging.DEBUG if debug_env in ("true", "1", "yes") else logging.INFO

    def configure(self):
        if self._configured:
            return
        log_level = self.resolve_level()

        formatter = colorlog.ColoredFormatter(
            "%(asctime)s %(log_color)s%(levelname)-8s%(reset)s %(message_log_color)s%(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors=self.LOG_COLORS,
            secondary_log_colors={"message": {"ERROR": "red", "CRITICAL": "magenta"}},
            reset=True,
        )
        handler = logging.StreamHandler(self.stream)
        handler.setFormatter(formatter)
        handler.addFilter(BearerRedactionFilter())

        logging.basicConfig(level=log_level, handlers=[handler])
        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        for h in root_logger.handlers:
            h.setFormatter(formatter)
            if not any(isinstance(f, BearerRedactionFilter) for f in h.filters):
                h.addFilter(BearerRedactionFilter())

        # aiohttp client chatter is noise at DEBUG
        logging.getLogger("aiohttp").setLevel(max(log_level, logging.INFO))

        atexit.register(self._log_final_error_summary)
        self._configured = True

    def _log_final_error_summary(self):
        try:
            logging.debug("📊 Final error summary before shutdown:")
            error_aggregator.log_summary_report()
        except Exception as e:
            logging.error(f"Failed to log final error summary: {e}")
