"""Coalescing scheduler running at most one rebuild at a time."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from aioroomcast.errors import RebuildFailed

logger = logging.getLogger(__name__)


class RebuildState(Enum):
    """State of a rebuild scheduler."""

    IDLE = "idle"
    REBUILDING = "rebuilding"


class RebuildScheduler:
    """
    Runs rebuilds one at a time and coalesces triggers.

    A trigger while idle starts a rebuild. A trigger while a rebuild runs only
    sets the pending bit; once the running rebuild ends, the bit is cleared and
    exactly one more rebuild runs. Since every rebuild reads the current state
    when it starts, any burst of triggers converges within two rebuilds.

    State and pending bit are only read and written between awaits, so no lock
    is needed on a single event loop.
    """

    def __init__(self, name: str, rebuild: Callable[[], Awaitable[None]]) -> None:
        """
        Initialize the scheduler.

        Args:
            name: Name used in log messages (the room id).
            rebuild: Coroutine function performing one rebuild.
        """
        self._rebuild = rebuild
        self._logger = logger.getChild(name)
        self._state = RebuildState.IDLE
        self._pending = False
        self._closed = False
        self._runs = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> RebuildState:
        """Current state."""
        return self._state

    @property
    def pending(self) -> bool:
        """Whether another rebuild will run after the current one."""
        return self._pending

    @property
    def runs(self) -> int:
        """Number of rebuilds started so far."""
        return self._runs

    @property
    def closed(self) -> bool:
        """Whether the scheduler was closed."""
        return self._closed

    def trigger(self) -> None:
        """Request a rebuild."""
        if self._closed:
            return
        if self._state is RebuildState.REBUILDING:
            self._pending = True
            return
        self._state = RebuildState.REBUILDING
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def wait_idle(self) -> None:
        """Wait until no rebuild is running or pending."""
        while (task := self._task) is not None:
            await asyncio.wait([task])
            if self._task is task:
                break

    async def close(self) -> None:
        """Stop accepting triggers and cancel a running rebuild."""
        self._closed = True
        self._pending = False
        task = self._task
        if task is None:
            return
        task.cancel()
        await asyncio.wait([task])
        # A task cancelled before its first step never reaches the finally clause
        self._task = None
        self._state = RebuildState.IDLE

    async def _run(self) -> None:
        try:
            while True:
                self._runs += 1
                try:
                    await self._rebuild()
                except RebuildFailed as err:
                    self._logger.error("HLS rebuild failed: %s", err)
                except Exception:
                    self._logger.exception("Unexpected error during HLS rebuild")
                if not self._pending or self._closed:
                    break
                self._pending = False
                self._logger.debug("Running pending HLS rebuild")
        finally:
            self._state = RebuildState.IDLE
            self._pending = False
            self._task = None
