"""
Process-exit integration.

ShutdownHooks installs one asyncio signal handler per signal and fans each
signal out to every registered callback. Handlers are installed on the first
registration and removed with the last one, which restores the default
SIGINT/SIGTERM behaviour.
"""

import asyncio
import signal
import sys
from typing import Any, Callable, List, Optional, Sequence

from kafka_gateway.common.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHooks:
    """Dispatches termination signals to registered callbacks."""

    def __init__(self, signals: Sequence[signal.Signals] = DEFAULT_SIGNALS):
        self.signals = tuple(signals)
        self._callbacks: List[Callable[[], Any]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def register(self, callback: Callable[[], Any]) -> None:
        if callback in self._callbacks:
            return
        self._callbacks.append(callback)
        if self._loop is None:
            self._install()

    def unregister(self, callback: Callable[[], Any]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return
        if not self._callbacks:
            self._uninstall()

    def is_registered(self, callback: Callable[[], Any]) -> bool:
        return callback in self._callbacks

    @property
    def installed(self) -> bool:
        return self._loop is not None

    def clear(self) -> None:
        """Drop every callback and remove the signal handlers."""
        self._callbacks.clear()
        self._uninstall()

    def _install(self) -> None:
        # Signal handlers are not supported on Windows
        if sys.platform == "win32":
            logger.debug("Signal handlers not supported on Windows")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, signal handlers not installed")
            return

        installed = []
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self._dispatch, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Signal handling not available in this context (e.g. not main thread)
                for done in installed:
                    loop.remove_signal_handler(done)
                logger.debug("Signal handlers unavailable in this context")
                return
            installed.append(sig)
        self._loop = loop

    def _uninstall(self) -> None:
        loop, self._loop = self._loop, None
        if loop is None or loop.is_closed():
            return
        for sig in self.signals:
            try:
                loop.remove_signal_handler(sig)
            except (ValueError, RuntimeError):
                pass

    def _dispatch(self, sig: signal.Signals) -> None:
        logger.info(
            f"Received signal {sig.name}, running shutdown hooks",
            extra={"signal": sig.name},
        )
        for callback in list(self._callbacks):
            callback()


shutdown_hooks = ShutdownHooks()
