"""Scoped release guarantee for held locks.

The guard is entered only after a lock has been acquired. Leaving its scope
by any route (normal return, exception, SIGINT, SIGTERM/SIGHUP, interpreter
exit) runs the cleanup exactly once.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any


def _default_signals() -> tuple[signal.Signals, ...]:
    names = ("SIGTERM", "SIGHUP")
    return tuple(getattr(signal, name) for name in names if hasattr(signal, name))


class LifecycleGuard:
    """Context manager that releases a resource on every exit path.

    Termination signals are converted to ``SystemExit(128 + signum)`` while
    the scope is active so the ``with`` block unwinds normally. SIGINT keeps
    its default ``KeyboardInterrupt`` behavior. An ``atexit`` hook backs up
    the scope for shutdowns that skip unwinding; it is removed on exit.

    Example:
        with LifecycleGuard(mutex.release, name="mutex:deploy"):
            run_deployment()
    """

    def __init__(
        self,
        cleanup: Callable[[], Any],
        *,
        name: str = "lock",
        logger: logging.Logger | None = None,
        handle_signals: bool = True,
        signals: tuple[int, ...] | None = None,
    ):
        self.cleanup = cleanup
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.handle_signals = handle_signals
        self.signals = _default_signals() if signals is None else signals
        self._previous_handlers: dict[int, Any] = {}
        self._done = False
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def __enter__(self) -> LifecycleGuard:
        if self._active:
            raise RuntimeError(f"Lifecycle guard for {self.name} is already active")
        self._done = False
        self._active = True
        atexit.register(self._run_cleanup)
        if self.handle_signals:
            self._install_signal_handlers()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is not None and not issubclass(exc_type, SystemExit):
                self.logger.warning(f"Releasing {self.name} after {exc_type.__name__}")
            self._run_cleanup()
        finally:
            self._restore_signal_handlers()
            atexit.unregister(self._run_cleanup)
            self._active = False
        return False

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("Not in main thread; signal handlers for %s not installed", self.name)
            return
        for signum in self.signals:
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._on_signal)
            except (OSError, ValueError) as e:
                self.logger.debug("Cannot handle signal %s: %s", signum, e)

    def _restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_handlers.items():
            try:
                signal.signal(signum, previous)
            except (OSError, ValueError, TypeError) as e:
                self.logger.debug("Cannot restore handler for signal %s: %s", signum, e)
        self._previous_handlers.clear()

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        del frame
        self.logger.warning(f"Received {signal.Signals(signum).name}; releasing {self.name} before exit")
        raise SystemExit(128 + signum)

    def _run_cleanup(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            self.cleanup()
        except BaseException as e:
            # Includes a second Ctrl-C or termination signal arriving mid-release
            self.logger.error(f"Cleanup for {self.name} failed: {type(e).__name__}: {e}")
