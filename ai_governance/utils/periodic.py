"""Cancellable periodic background task.

Each component that needs housekeeping (cache sweeps, usage-log purges) owns
one PeriodicTask. It is started from a running event loop and must be stopped
explicitly on shutdown.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a callable every ``interval_seconds`` until stopped.

    The callable may be sync or async. Exceptions raised by one run are
    logged and do not stop subsequent runs.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[None] | None],
        interval_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self.name = name
        self._func = func
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (no-op if already running).

        Raises:
            RuntimeError: If called without a running event loop.
        """
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug("periodic.started", extra={"task": self.name, "interval_s": self._interval})

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("periodic.stopped", extra={"task": self.name})

    async def run_once(self) -> None:
        result = self._func()
        if inspect.isawaitable(result):
            await result

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception as exc:
                logger.error(
                    "periodic.run_failed",
                    extra={
                        "task": self.name,
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
