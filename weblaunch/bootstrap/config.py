"""Server configuration, default resolution and CLI argument parsing."""

import argparse
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Callable, Iterable, Mapping, Optional, Union

from fastapi import FastAPI

from weblaunch.bootstrap.settings import LaunchSettings
from weblaunch.domain.errors import ConfigError

DEFAULT_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DESTINATION = "stdout"
DEFAULT_INDEX_PATH = "assets/index.html"
DEFAULT_TEMPLATES_PATH = "assets/templates/*"
DEFAULT_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)
DEFAULT_SHUTDOWN_TIMEOUT = 10.0
UNCATCHABLE_SIGNALS = frozenset(
    getattr(signal, name) for name in ("SIGKILL", "SIGSTOP") if hasattr(signal, name)
)

LOG_LEVEL_CHOICES = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

LogOutput = Union[IO[str], str, Path, logging.Handler]
RoutesRegister = Callable[[FastAPI], None]
FuncMap = Mapping[str, Callable[..., Any]]


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value is not None else None


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value is not None else None


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _checked_signals(signals: Iterable[Any]) -> tuple[signal.Signals, ...]:
    checked = []
    for signum in signals:
        try:
            sig = signal.Signals(signum)
        except ValueError as error:
            raise ConfigError(
                f"server configuration error: unknown signal {signum!r}"
            ) from error
        if sig in UNCATCHABLE_SIGNALS:
            raise ConfigError(
                f"server configuration error: signal {sig.name} cannot be caught"
            )
        checked.append(sig)
    return tuple(checked)


@dataclass
class ServerConfig:
    """Construction-time settings for one web server instance.

    Only ``filesystem`` is required; every other field left as ``None`` (or
    zero/empty) is filled in by :func:`resolve_config`.
    """

    filesystem: Optional[Path] = None
    port: Optional[int] = None
    host: Optional[str] = None
    log_output: Optional[LogOutput] = None
    log_level: Optional[Union[str, int]] = None
    index_path: Optional[str] = None
    templates_path: Optional[str] = None
    routes_register: Optional[RoutesRegister] = None
    shutdown_signals: Optional[Iterable[signal.Signals]] = None
    custom_funcs: Optional[FuncMap] = None
    shutdown_timeout: Optional[float] = None


def resolve_config(config: ServerConfig) -> ServerConfig:
    """Fill every unset field of ``config`` with its default, in place.

    Raises :class:`ConfigError` when no filesystem root was supplied or a
    shutdown signal cannot be caught. Calling it on an already resolved config
    changes nothing.
    """
    if config.filesystem is None:
        raise ConfigError("server configuration error: no filesystem configuration")
    if not isinstance(config.filesystem, Path):
        config.filesystem = Path(config.filesystem)
    if not config.port:
        config.port = DEFAULT_PORT
    if not config.host:
        config.host = DEFAULT_HOST
    if config.log_output is None:
        config.log_output = sys.stdout
    if not config.log_level:
        config.log_level = DEFAULT_LOG_LEVEL
    if not config.index_path:
        config.index_path = DEFAULT_INDEX_PATH
    if not config.templates_path:
        config.templates_path = DEFAULT_TEMPLATES_PATH
    if not config.shutdown_signals:
        config.shutdown_signals = DEFAULT_SHUTDOWN_SIGNALS
    else:
        config.shutdown_signals = _checked_signals(config.shutdown_signals)
    if not config.shutdown_timeout:
        config.shutdown_timeout = DEFAULT_SHUTDOWN_TIMEOUT
    return config


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments; unset flags stay ``None``."""
    parser = argparse.ArgumentParser(description="Templated web server launcher")
    parser.add_argument("--config", help="Path to a YAML settings file")
    parser.add_argument("--directory", help="Root directory for index and templates")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVEL_CHOICES,
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        help="stdout, stderr or a file path",
    )
    parser.add_argument(
        "--index-path",
        help=f"Index document relative to the directory (default: {DEFAULT_INDEX_PATH})",
    )
    parser.add_argument(
        "--templates-path",
        help=f"Template glob relative to the directory (default: {DEFAULT_TEMPLATES_PATH})",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        help="Seconds to wait for in-flight requests during shutdown",
    )
    return parser.parse_args(argv)


def merge_launch_settings(
    args: argparse.Namespace, settings: LaunchSettings
) -> argparse.Namespace:
    """Combine CLI flags, file settings and environment defaults.

    Precedence is flag, then file, then ``WEBLAUNCH_*`` environment variable,
    then the built-in default.
    """
    server = settings.server
    log = settings.log
    env_level = os.getenv("WEBLAUNCH_LOG_LEVEL")
    return argparse.Namespace(
        directory=_first_set(args.directory, server.directory, "."),
        host=_first_set(args.host, server.host, DEFAULT_HOST),
        port=_first_set(
            args.port, server.port, _env_int("WEBLAUNCH_PORT"), DEFAULT_PORT
        ),
        log_level=str(
            _first_set(args.log_level, log.level, env_level, DEFAULT_LOG_LEVEL)
        ).upper(),
        log_destination=_first_set(
            args.log_destination,
            log.destination,
            os.getenv("WEBLAUNCH_LOG_DESTINATION"),
            DEFAULT_LOG_DESTINATION,
        ),
        index_path=_first_set(args.index_path, server.index_path, DEFAULT_INDEX_PATH),
        templates_path=_first_set(
            args.templates_path, server.templates_path, DEFAULT_TEMPLATES_PATH
        ),
        shutdown_timeout=_first_set(
            args.shutdown_timeout,
            server.shutdown_timeout,
            _env_float("WEBLAUNCH_SHUTDOWN_TIMEOUT"),
            DEFAULT_SHUTDOWN_TIMEOUT,
        ),
    )
