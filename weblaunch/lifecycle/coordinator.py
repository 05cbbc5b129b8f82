"""Background server start and signal-driven graceful shutdown."""

import logging
import os
import signal
import threading
from typing import Callable, Iterable, Optional

import uvicorn
from fastapi import FastAPI

from weblaunch.bootstrap.config import ServerConfig, resolve_config
from weblaunch.bootstrap.logging_setup import AppLogger
from weblaunch.bootstrap.socket_factory import create_server_socket
from weblaunch.domain.correlation_id import CorrelationLoggerAdapter
from weblaunch.domain.errors import ListenBindError, ShutdownTimeoutError
from weblaunch.lifecycle.state import (
    LIFECYCLE_LOGGER,
    CompletionHandle,
    InvalidTransition,
    LifecycleState,
    ServerLifecycle,
    ShutdownToken,
)
from weblaunch.rendering.templates import TemplateRenderer
from weblaunch.web.app_factory import create_app

FatalHandler = Callable[[BaseException], None]


def exit_process(_error: BaseException) -> None:
    """Flush logging and terminate the whole process with status 1."""
    logging.shutdown()
    os._exit(1)  # pylint: disable=protected-access


def _signal_name(signum: Optional[int]) -> str:
    if signum is None:
        return "-"
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class LifecycleCoordinator:
    """Starts one server in the background and shuts it down on a signal.

    :meth:`start` runs the accept loop on the ``weblaunch-accept`` thread and
    waits for the shutdown token on the ``weblaunch-shutdown`` thread. When the
    token fires, the server is asked to exit and given
    ``config.shutdown_timeout`` seconds to drain. A drain that overruns is
    logged and abandoned; nothing is killed.
    """

    def __init__(
        self,
        config: ServerConfig,
        logger: Optional[AppLogger] = None,
        token: Optional[ShutdownToken] = None,
        on_fatal: Optional[FatalHandler] = None,
    ) -> None:
        self.config = config
        self.log: CorrelationLoggerAdapter = (
            logger.get("lifecycle") if logger is not None else LIFECYCLE_LOGGER
        )
        self.token = token if token is not None else ShutdownToken()
        self.on_fatal = on_fatal if on_fatal is not None else exit_process
        self.lifecycle = ServerLifecycle()
        self.completion = CompletionHandle()
        self.app: Optional[FastAPI] = None
        self.server: Optional[uvicorn.Server] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._watcher_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> LifecycleState:
        """Current lifecycle state of the managed server."""
        return self.lifecycle.state

    def start(self) -> CompletionHandle:
        """Start serving in the background and return the completion handle.

        Configuration and template errors are raised here, before any thread
        is started. Only the first successful call starts a server.
        """
        if self.lifecycle.state is not LifecycleState.IDLE:
            raise InvalidTransition("server already started")

        config = resolve_config(self.config)
        renderer = TemplateRenderer(
            config.filesystem, config.templates_path, config.custom_funcs
        )
        self.app = create_app(config, renderer)

        self.lifecycle.transition(LifecycleState.STARTING)
        self.server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=config.host,
                port=config.port,
                log_config=None,
                access_log=False,
            )
        )
        self._subscribe_signals(config.shutdown_signals)

        self._accept_thread = threading.Thread(
            target=self._serve, name="weblaunch-accept", daemon=True
        )
        self._watcher_thread = threading.Thread(
            target=self._watch_for_shutdown, name="weblaunch-shutdown", daemon=True
        )
        self._accept_thread.start()
        self._watcher_thread.start()
        return self.completion

    def _subscribe_signals(self, signals: Iterable[signal.Signals]) -> None:
        names = [_signal_name(signum) for signum in signals]
        if threading.current_thread() is not threading.main_thread():
            self.log.warning(
                "Signal handlers can only be installed from the main thread",
                extra={"event": "signals_not_installed", "signal": ",".join(names)},
            )
            return
        for signum in signals:
            signal.signal(signum, self._handle_signal)
        self.log.debug(
            "Shutdown signals subscribed",
            extra={"event": "signals_installed", "signal": ",".join(names)},
        )

    def _handle_signal(self, signum: int, _frame) -> None:
        self.token.trigger(signum)

    def _serve(self) -> None:
        config = self.config
        try:
            server_socket = create_server_socket(config.host, config.port)
        except ListenBindError as error:
            self.log.critical(
                "Error starting the server",
                extra={
                    "event": "bind_failed",
                    "host": config.host,
                    "port": config.port,
                    "error_type": type(error).__name__,
                },
            )
            self.on_fatal(error)
            return

        self.lifecycle.advance(LifecycleState.STARTING, LifecycleState.RUNNING)
        self.log.info(
            "Server listening for connections",
            extra={"event": "server_listening", "host": config.host, "port": config.port},
        )
        try:
            self.server.run(sockets=[server_socket])
        except Exception as error:  # pylint: disable=broad-except
            self.log.critical(
                "Server loop failed",
                exc_info=error,
                extra={"event": "serve_failed", "error_type": type(error).__name__},
            )
            self.on_fatal(error)
        finally:
            server_socket.close()

    def _watch_for_shutdown(self) -> None:
        try:
            self.token.wait()
            self.log.info(
                "Shutting down the server",
                extra={
                    "event": "shutdown_started",
                    "signal": _signal_name(self.token.signum),
                },
            )
            self.lifecycle.transition(LifecycleState.SHUTTING_DOWN)

            timeout = self.config.shutdown_timeout
            self.server.should_exit = True
            self._accept_thread.join(timeout)

            if self._accept_thread.is_alive():
                error = ShutdownTimeoutError(timeout)
                self.log.error(
                    "Server forced to shutdown: %s",
                    error,
                    extra={
                        "event": "shutdown_timed_out",
                        "timeout": timeout,
                        "error_type": type(error).__name__,
                    },
                )
                self.lifecycle.transition(LifecycleState.SHUTDOWN_TIMED_OUT)
            else:
                self.log.info(
                    "Server stopped gracefully", extra={"event": "server_stopped"}
                )
                self.lifecycle.transition(LifecycleState.STOPPED)

            self.log.info("Server exiting", extra={"event": "server_exiting"})
        finally:
            self.completion._set()  # pylint: disable=protected-access


def start_server(
    config: ServerConfig,
    logger: Optional[AppLogger] = None,
    token: Optional[ShutdownToken] = None,
) -> CompletionHandle:
    """Start the server described by ``config`` and return without blocking.

    Wait on the returned handle to learn when the signal-triggered shutdown
    attempt has concluded.
    """
    return LifecycleCoordinator(config, logger=logger, token=token).start()
