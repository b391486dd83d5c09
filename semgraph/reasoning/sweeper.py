"""
Session Sweeper - Periodic Expiry as a Background Task.

Runs SessionManager.clear_expired on a fixed interval inside the host's
event loop. The task handle is cancellable; the expiry logic itself stays in
the manager, where it can be tested with an injected clock.
"""

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime

from semgraph.reasoning.session_manager import SessionManager
from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


class SweeperError(Exception):
    """Raised when the sweeper cannot be scheduled."""
    pass


class SessionSweeper:
    """
    Scheduled background sweep of expired sessions.

    Usage:
        sweeper = SessionSweeper(manager, interval_seconds=3600)
        sweeper.start()          # inside a running event loop
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        manager: SessionManager,
        interval_seconds: float = 60 * 60,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the sweeper.

        Args:
            manager: Session manager to sweep
            interval_seconds: Delay between sweeps
            clock: Optional source of "now" (defaults to the manager's clock)
        """
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self.sweeps = 0
        self.removed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "asyncio.Task[None]":
        """
        Schedule the sweep loop on the running event loop.

        Returns:
            The task handle (the existing one if already running)
        """
        if self._task is not None and not self._task.done():
            return self._task

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SweeperError("Session sweeper needs a running event loop") from e

        self._task = loop.create_task(self._run(), name="session-sweeper")
        logger.info(f"Started session sweeper (every {self.interval_seconds:.0f}s)")
        return self._task

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped session sweeper")

    def sweep_once(self) -> int:
        """Run one expiry pass now; returns the number of sessions removed."""
        now = self._clock() if self._clock is not None else None
        removed = self.manager.clear_expired(now)
        self.sweeps += 1
        self.removed += removed
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Session sweep failed")
