"""
Signal-driven cleanup for cluster lifecycles.

Guarantees that a cluster started in the foreground is torn down when the
invoking process exits, whatever the exit reason (SIGINT, SIGTERM, SIGHUP,
an exception or a normal return).
"""
import asyncio
import signal
from typing import Awaitable, Callable, List, Optional

from .logging import logger

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class CleanupGuard:
    """
    Runs a cleanup coroutine exactly once when a guarded block ends.

    While installed, the handled signals cancel the guarded task instead of
    killing the process, so every pending await unwinds and the cleanup runs
    on the way out. Signals that arrive while cleanup is running are ignored.

    Usage:
        async with CleanupGuard(orchestrator.stop) as guard:
            await run_cluster()
        if guard.interrupted_by:
            ...
    """

    def __init__(self, cleanup: Callable[[], Awaitable[None]]):
        self._cleanup = cleanup
        self._cleanup_started = False
        self._installed: List[signal.Signals] = []
        self._task: Optional[asyncio.Task] = None
        self.interrupted_by: Optional[signal.Signals] = None
        self.logger = logger.getChild("cleanup")

    @property
    def cleanup_started(self) -> bool:
        return self._cleanup_started

    def install(self, task: Optional[asyncio.Task] = None):
        """Route the handled signals to cancellation of task."""
        loop = asyncio.get_running_loop()
        self._task = task or asyncio.current_task()

        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Not the main thread, or a platform without the signal
                self.logger.debug(f"Cannot handle {sig.name}: {e}")

        self.logger.debug("Registered signal handlers for cluster cleanup")

    def uninstall(self):
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def _handle_signal(self, sig: signal.Signals):
        if self._cleanup_started:
            self.logger.info(f"Received {sig.name}, cleanup already in progress")
            return

        self.logger.info(f"Received {sig.name}, initiating cleanup...")
        if self.interrupted_by is None:
            self.interrupted_by = sig
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run_cleanup(self):
        """Run the cleanup coroutine unless it already ran."""
        if self._cleanup_started:
            return
        self._cleanup_started = True

        try:
            await self._cleanup()
        except Exception as e:
            self.logger.error(f"Error during cluster cleanup: {e}")
        finally:
            self.uninstall()

    async def __aenter__(self) -> "CleanupGuard":
        self.install()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.run_cleanup()

        if exc_type is asyncio.CancelledError and self.interrupted_by is not None:
            # The cancellation came from our own signal handler
            uncancel = getattr(self._task, "uncancel", None)
            if uncancel is not None:
                uncancel()
            return True
        return False

    @property
    def exit_code(self) -> Optional[int]:
        """Shell-style exit code for the interrupting signal, if any."""
        if self.interrupted_by is None:
            return None
        return 128 + int(self.interrupted_by)
