"""Periodic access-token refresh."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5 * 60


@dataclass
class TokenRefreshScheduler:
    """Runs ``refresh`` every ``interval`` seconds until stopped."""

    refresh: Callable[[], Awaitable[None]]
    interval: float = DEFAULT_INTERVAL_SECONDS
    _stop: asyncio.Event = field(default_factory=asyncio.Event)
    _task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Return true while the refresh loop is active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the refresh loop on the running event loop."""
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.refresh()
            except Exception:
                logger.exception("Token refresh failed")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
