"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import io
import logging
import signal
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port
from tests.utils.site import write_site
from weblaunch.bootstrap.config import ServerConfig
from weblaunch.lifecycle.coordinator import LifecycleCoordinator

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
TEST_SIGNAL = signal.SIGUSR1


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("weblaunch")
    old_propagate = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = old_propagate


@pytest.fixture()
def site_directory(tmp_path: Path) -> Path:
    """Provide a directory holding an index page and templates."""

    return write_site(tmp_path / "site")


class RunningCoordinator(TypedDict):
    """An in-process server started by ``start_coordinator``."""

    coordinator: LifecycleCoordinator
    base_url: str
    host: str
    port: int
    log_output: io.StringIO


@pytest.fixture()
def start_coordinator(
    site_directory: Path,
) -> Generator[Callable[..., RunningCoordinator], None, None]:
    """Start in-process servers listening for SIGUSR1 and stop them afterwards."""

    previous_handler = signal.getsignal(TEST_SIGNAL)
    started: list[LifecycleCoordinator] = []

    def _start(
        wait: bool = True, token=None, on_fatal=None, **overrides
    ) -> RunningCoordinator:
        host = "127.0.0.1"
        port = reserve_port(host)
        log_output = io.StringIO()
        fields = {
            "filesystem": site_directory,
            "host": host,
            "port": port,
            "log_output": log_output,
            "shutdown_signals": [TEST_SIGNAL],
            "shutdown_timeout": 5.0,
        }
        fields.update(overrides)
        host, port = fields["host"], fields["port"]
        coordinator = LifecycleCoordinator(
            ServerConfig(**fields), token=token, on_fatal=on_fatal
        )
        coordinator.start()
        started.append(coordinator)
        if wait:
            wait_for_port(host, port)
        return {
            "coordinator": coordinator,
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "log_output": log_output,
        }

    yield _start

    for coordinator in started:
        coordinator.token.trigger()
        coordinator.completion.wait(timeout=10)
    signal.signal(TEST_SIGNAL, previous_handler)


def _launch_server(
    port: int,
    directory: Path,
    extra_args: list[str] | None = None,
    log_file: Path | None = None,
    host: str = "127.0.0.1",
) -> Generator[ServerProcessInfo, None, None]:
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--directory",
        str(directory),
        "--host",
        host,
        "--port",
        str(port),
    ]
    if log_file:
        args.extend(["--log-destination", str(log_file)])
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            # If startup failed, print stdout/stderr to help debug
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=15)
            except subprocess.TimeoutExpired:
                process.kill()


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path | None


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the CLI server in a background process for integration tests."""

    directory = write_site(tmp_path_factory.mktemp("server-site"))
    log_file = directory / "logs" / "server.log"
    yield from _launch_server(reserve_port(), directory, log_file=log_file)
