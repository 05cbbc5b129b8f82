"""Logging configuration for the application and server loggers."""

import io
import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Optional, Union

from weblaunch.domain.correlation_id import CorrelationLoggerAdapter

LOGGER_NAME = "weblaunch"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

SENSITIVE_PATTERNS = [
    re.compile(r"(?i)(authorization|token|key|signature|password|secret|api[_-]?key)"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}\b"),
]

LogDestination = Union[IO[str], str, Path, logging.Handler, None]


def redact_sensitive(value: str) -> str:
    """Redact sensitive data from log values."""
    if not value:
        return value

    for pattern in SENSITIVE_PATTERNS:
        if pattern.search(value):
            return "[REDACTED]"

    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure correlation_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter with stable key ordering for structured logging."""

    extra_keys = [
        "client",
        "method",
        "route",
        "status_code",
        "duration_ms",
        "error_type",
        "host",
        "port",
        "directory",
        "destination",
        "path",
        "use_json",
        "log_level",
        "signal",
        "state",
        "timeout",
        "template",
        "templates",
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with stable key ordering."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        if hasattr(record, "event"):
            log_data["event"] = record.event

        for key in self.extra_keys:
            if hasattr(record, key):
                value = getattr(record, key)
                if isinstance(value, str):
                    value = redact_sensitive(value)
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, sort_keys=True, default=str)


def resolve_level(level: Union[str, int]) -> int:
    """Translate text level names into logging module numeric levels."""
    if isinstance(level, int):
        return level
    resolved = getattr(logging, str(level).upper(), None)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def describe_destination(destination: LogDestination) -> str:
    """Return a printable name for a log destination."""
    if destination is None:
        return "stdout"
    if isinstance(destination, (str, Path)):
        return str(destination)
    if isinstance(destination, logging.Handler):
        return getattr(destination, "baseFilename", None) or describe_destination(
            getattr(destination, "stream", None)
        )
    if destination is sys.stdout:
        return "stdout"
    if destination is sys.stderr:
        return "stderr"
    return getattr(destination, "name", type(destination).__name__)


def is_standard_stream(stream: object) -> bool:
    """Return True for the interpreter's stdout/stderr streams."""
    return any(
        stream is candidate
        for candidate in (sys.stdout, sys.stderr, sys.__stdout__, sys.__stderr__)
    )


def _is_owned_file(stream: object) -> bool:
    if is_standard_stream(stream):
        return False
    return isinstance(stream, (io.TextIOWrapper, io.BufferedWriter))


def _build_handler(
    destination: LogDestination, level: int, use_json: bool = True
) -> logging.Handler:
    """Create a stream or rotating file handler for ``destination``."""
    if isinstance(destination, (str, Path)) and str(destination).lower() not in {
        "stdout",
        "stderr",
    }:
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    elif isinstance(destination, str) and destination.lower() == "stderr":
        handler = logging.StreamHandler(sys.stderr)
    elif destination is None or isinstance(destination, str):
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler(destination)
    handler.setLevel(level)

    if use_json:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    handler.addFilter(CorrelationIdFilter())
    return handler


def _replace_handlers(logger: logging.Logger, handler: logging.Handler) -> None:
    # Handlers borrowed from another logger are detached but left open.
    for existing in list(logger.handlers):
        if existing.get_name() == logger.name:
            existing.close()
    logger.handlers.clear()
    logger.addHandler(handler)


def configure_logging(
    level: Union[str, int] = "INFO",
    destination: LogDestination = None,
    use_json: bool = True,
    name: str = LOGGER_NAME,
) -> CorrelationLoggerAdapter:
    """Configure and return the named logger with the requested handler.

    ``destination`` may also be a handler already attached to another logger;
    it is then shared as-is and never closed by this logger.
    """
    logger = logging.getLogger(name)
    numeric_level = resolve_level(level)
    logger.setLevel(numeric_level)
    logger.propagate = False

    if isinstance(destination, logging.Handler):
        handler = destination
    else:
        handler = _build_handler(destination, numeric_level, use_json)
        handler.set_name(name)
    _replace_handlers(logger, handler)
    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": describe_destination(destination),
            "use_json": use_json,
            "log_level": logging.getLevelName(numeric_level),
        },
    )
    return adapter


class AppLogger:
    """Process-wide application logger with an explicit lifecycle.

    The entry point constructs one instance, calls :meth:`initialize` once at
    startup and :meth:`close` at exit, and passes the instance to every
    component that logs. There is no locking: re-initializing while other
    threads are logging is unsupported.
    """

    def __init__(self, name: str = LOGGER_NAME) -> None:
        self.name = name
        self.logger = logging.getLogger(name)
        self.adapter = CorrelationLoggerAdapter(self.logger, {})
        self.destination: LogDestination = None

    def initialize(
        self,
        level: Union[str, int] = "INFO",
        output: LogDestination = None,
        use_json: bool = True,
    ) -> CorrelationLoggerAdapter:
        """Set level and output sink. Safe to call repeatedly; last call wins."""
        self.destination = output
        self.adapter = configure_logging(level, output, use_json, name=self.name)
        return self.adapter

    def use_test_defaults(self) -> CorrelationLoggerAdapter:
        """Switch to verbose plain-text output on stdout."""
        return self.initialize(logging.DEBUG, "stdout", use_json=False)

    @property
    def handler(self) -> Optional[logging.Handler]:
        """The current output handler, for loggers that should share this sink."""
        return self.logger.handlers[0] if self.logger.handlers else None

    @property
    def stream(self) -> Optional[IO[str]]:
        """The stream behind the current output handler, if any."""
        for handler in self.logger.handlers:
            if isinstance(handler, logging.StreamHandler):
                return handler.stream
        return None

    def get(self, component: str) -> CorrelationLoggerAdapter:
        """Return an adapter for a component logger below this one."""
        return CorrelationLoggerAdapter(
            logging.getLogger(f"{self.name}.{component}"), {}
        )

    def close(self) -> None:
        """Close the output sink when it is a file this logger owns."""
        for handler in list(self.logger.handlers):
            if isinstance(handler, logging.FileHandler):
                handler.close()
                self.logger.removeHandler(handler)
            elif isinstance(handler, logging.StreamHandler) and _is_owned_file(
                handler.stream
            ):
                handler.flush()
                handler.stream.close()
                handler.close()
                self.logger.removeHandler(handler)
