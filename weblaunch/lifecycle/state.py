"""Server lifecycle state, shutdown token and completion handle."""

import enum
import logging
import threading
from typing import Optional

from weblaunch.domain.correlation_id import component_logger

LIFECYCLE_LOGGER = component_logger("lifecycle")


class LifecycleState(enum.Enum):
    """Phases a server passes through between start and exit."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    SHUTDOWN_TIMED_OUT = "shutdown_timed_out"


_TRANSITIONS = {
    LifecycleState.IDLE: {LifecycleState.STARTING},
    LifecycleState.STARTING: {LifecycleState.RUNNING, LifecycleState.SHUTTING_DOWN},
    LifecycleState.RUNNING: {LifecycleState.SHUTTING_DOWN},
    LifecycleState.SHUTTING_DOWN: {
        LifecycleState.STOPPED,
        LifecycleState.SHUTDOWN_TIMED_OUT,
    },
    LifecycleState.STOPPED: set(),
    LifecycleState.SHUTDOWN_TIMED_OUT: set(),
}

TERMINAL_STATES = frozenset(
    {LifecycleState.STOPPED, LifecycleState.SHUTDOWN_TIMED_OUT}
)


class InvalidTransition(RuntimeError):
    """Raised when a lifecycle transition is not allowed from the current state."""


class ServerLifecycle:
    """Tracks the lifecycle state of one server under a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LifecycleState.IDLE

    @property
    def state(self) -> LifecycleState:
        """Current lifecycle state."""
        with self._lock:
            return self._state

    def _move(self, target: LifecycleState) -> None:
        current = self._state
        if target not in _TRANSITIONS[current]:
            raise InvalidTransition(f"cannot move from {current.value} to {target.value}")
        self._state = target

    def _log_change(self, target: LifecycleState) -> None:
        if LIFECYCLE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            LIFECYCLE_LOGGER.debug(
                "Lifecycle state changed",
                extra={"event": "state_changed", "state": target.value},
            )

    def transition(self, target: LifecycleState) -> None:
        """Move to ``target``, raising :class:`InvalidTransition` if not allowed."""
        with self._lock:
            self._move(target)
        self._log_change(target)

    def advance(self, expected: LifecycleState, target: LifecycleState) -> bool:
        """Move to ``target`` only if the current state is ``expected``."""
        with self._lock:
            if self._state is not expected:
                return False
            self._move(target)
        self._log_change(target)
        return True

    def is_terminal(self) -> bool:
        """Return True once shutdown has concluded either way."""
        return self.state in TERMINAL_STATES


class ShutdownToken:
    """One-shot trigger that starts a graceful shutdown.

    Signal handlers trigger it; the shutdown watcher waits on it. Only the
    first trigger is recorded, later ones are ignored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._signum: Optional[int] = None

    def trigger(self, signum: Optional[int] = None) -> bool:
        """Fire the token. Returns False when it had already fired."""
        with self._lock:
            if self._event.is_set():
                return False
            self._signum = signum
            self._event.set()
            return True

    @property
    def is_triggered(self) -> bool:
        """Whether the token has fired."""
        return self._event.is_set()

    @property
    def signum(self) -> Optional[int]:
        """The signal number that fired the token, if any."""
        return self._signum

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the token fires or ``timeout`` elapses."""
        return self._event.wait(timeout)


class CompletionHandle:
    """Single-use completion signal returned by ``start_server``.

    It fires once the shutdown watcher has finished, whether the shutdown
    completed in time or not. It carries no result.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def _set(self) -> None:
        self._event.set()

    def done(self) -> bool:
        """Return True once the watcher has exited."""
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the watcher exits; False if ``timeout`` elapsed first."""
        return self._event.wait(timeout)
