"""Integration tests for in-process start and signal-driven shutdown."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import logging
import os
import signal
import socket
import threading
from typing import TYPE_CHECKING

import pytest
import requests

from tests.conftest import TEST_SIGNAL
from tests.utils.http import port_is_open, reserve_port, wait_for, wait_for_port_closed
from weblaunch.bootstrap.config import ServerConfig
from weblaunch.domain.errors import (
    ConfigError,
    ListenBindError,
    TemplateCompileError,
)
from weblaunch.lifecycle.coordinator import LifecycleCoordinator, start_server
from weblaunch.lifecycle.state import InvalidTransition, LifecycleState, ShutdownToken

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration


def _messages(caplog) -> list[str]:
    return [record.getMessage() for record in caplog.records]


def test_start_returns_before_shutdown_and_serves(start_coordinator) -> None:
    """start() hands back an unfired handle while the index is served."""
    running = start_coordinator()
    coordinator = running["coordinator"]

    response = requests.get(f"{running['base_url']}/", timeout=5)

    assert response.status_code == 200
    assert "weblaunch index" in response.text
    assert coordinator.state is LifecycleState.RUNNING
    assert not coordinator.completion.done()


def test_signal_triggers_graceful_shutdown(start_coordinator, caplog) -> None:
    """A subscribed signal stops the server and fires the handle."""
    caplog.set_level(logging.DEBUG, logger="weblaunch")
    running = start_coordinator()
    coordinator = running["coordinator"]

    os.kill(os.getpid(), TEST_SIGNAL)

    assert coordinator.completion.wait(timeout=10)
    assert coordinator.state is LifecycleState.STOPPED
    assert wait_for_port_closed(running["host"], running["port"])
    messages = _messages(caplog)
    assert "Shutting down the server" in messages
    assert "Server stopped gracefully" in messages
    assert messages.index("Server stopped gracefully") < messages.index("Server exiting")
    shutdown = next(r for r in caplog.records if r.getMessage() == "Shutting down the server")
    assert shutdown.signal == TEST_SIGNAL.name


def test_repeated_signals_are_absorbed(start_coordinator) -> None:
    """A second signal during shutdown neither crashes nor re-runs shutdown."""
    running = start_coordinator()
    coordinator = running["coordinator"]

    os.kill(os.getpid(), TEST_SIGNAL)
    os.kill(os.getpid(), TEST_SIGNAL)

    assert coordinator.completion.wait(timeout=10)
    assert coordinator.state is LifecycleState.STOPPED


def test_caller_token_triggers_shutdown(start_coordinator) -> None:
    """A caller-supplied token stops the server without any signal."""
    token = ShutdownToken()
    running = start_coordinator(token=token)
    coordinator = running["coordinator"]

    assert coordinator.token is token
    token.trigger()

    assert coordinator.completion.wait(timeout=10)
    assert coordinator.state is LifecycleState.STOPPED
    assert not port_is_open(running["host"], running["port"])


def test_shutdown_deadline_overrun_is_reported(start_coordinator, caplog) -> None:
    """An in-flight request outliving the deadline ends in the timed-out state."""
    caplog.set_level(logging.INFO, logger="weblaunch")
    entered = threading.Event()

    def register(app) -> None:
        @app.get("/slow")
        async def slow() -> dict:
            entered.set()
            await asyncio.sleep(2.0)
            return {"done": True}

    running = start_coordinator(routes_register=register, shutdown_timeout=0.3)
    coordinator = running["coordinator"]
    client = threading.Thread(
        target=lambda: requests.get(f"{running['base_url']}/slow", timeout=10),
        daemon=True,
    )
    client.start()
    assert entered.wait(timeout=5)

    coordinator.token.trigger()

    assert coordinator.completion.wait(timeout=5)
    assert coordinator.state is LifecycleState.SHUTDOWN_TIMED_OUT
    messages = _messages(caplog)
    assert any(m.startswith("Server forced to shutdown:") for m in messages)
    assert "Server stopped gracefully" not in messages
    assert "Server exiting" in messages
    client.join(timeout=5)


def test_routes_registered_once_before_listening(start_coordinator) -> None:
    """The route callback runs exactly once, before the port accepts connections."""
    calls = []

    def register(app) -> None:
        calls.append(port_is_open(host, port))

        @app.get("/extra")
        async def extra() -> dict:
            return {"extra": True}

    host = "127.0.0.1"
    port = reserve_port(host)
    running = start_coordinator(routes_register=register, port=port)

    response = requests.get(f"{running['base_url']}/extra", timeout=5)

    assert calls == [False]
    assert response.json() == {"extra": True}


def test_missing_filesystem_fails_before_binding(start_coordinator) -> None:
    """A config error is raised synchronously with nothing started."""
    calls = []

    with pytest.raises(ConfigError):
        start_coordinator(filesystem=None, routes_register=calls.append)

    assert calls == []


def test_template_compile_error_fails_start(start_coordinator) -> None:
    """A template pattern with no matches aborts start."""
    with pytest.raises(TemplateCompileError):
        start_coordinator(templates_path="missing/*.html", wait=False)


def test_bind_failure_is_fatal(start_coordinator, caplog) -> None:
    """An occupied port reaches the fatal handler and never runs."""
    caplog.set_level(logging.INFO, logger="weblaunch")
    failures: list[BaseException] = []
    fatal = threading.Event()

    def on_fatal(error: BaseException) -> None:
        failures.append(error)
        fatal.set()

    with socket.create_server(("127.0.0.1", 0)) as occupied:
        port = occupied.getsockname()[1]
        running = start_coordinator(port=port, on_fatal=on_fatal, wait=False)

        assert fatal.wait(timeout=5)

    assert isinstance(failures[0], ListenBindError)
    assert failures[0].port == port
    assert running["coordinator"].state is LifecycleState.STARTING
    assert "Error starting the server" in _messages(caplog)


def test_second_start_is_rejected(start_coordinator) -> None:
    """A coordinator starts a server at most once."""
    running = start_coordinator()

    with pytest.raises(InvalidTransition):
        running["coordinator"].start()


def test_start_server_without_signal_access(site_directory: "Path") -> None:
    """Off the main thread no handlers are installed; the token still works."""
    host = "127.0.0.1"
    port = reserve_port(host)
    token = ShutdownToken()
    outcome = {}

    def launch() -> None:
        outcome["handle"] = start_server(
            ServerConfig(filesystem=site_directory, host=host, port=port),
            token=token,
        )

    launcher = threading.Thread(target=launch)
    launcher.start()
    launcher.join(timeout=5)
    assert wait_for(lambda: port_is_open(host, port))

    token.trigger()

    assert outcome["handle"].wait(timeout=10)
    assert wait_for_port_closed(host, port)


def test_uncatchable_signal_fails_before_starting(site_directory: "Path") -> None:
    """An uncatchable shutdown signal is rejected while the server is still idle."""
    calls = []
    coordinator = LifecycleCoordinator(
        ServerConfig(
            filesystem=site_directory,
            port=reserve_port(),
            shutdown_signals=[signal.SIGKILL],
            routes_register=calls.append,
        )
    )

    with pytest.raises(ConfigError, match="SIGKILL"):
        coordinator.start()

    assert coordinator.state is LifecycleState.IDLE
    assert calls == []
