"""
Progress Coordinator

One ticker per adapter that, while work remains:
- logs remaining counts per registered key
- awaits each registered flush callback (periodic bulk-save)
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from ..config import get_settings
from ..core.logging import get_logger

logger = get_logger(__name__)

FlushCallback = Callable[[], Awaitable[None]]


@dataclass
class _ProgressEntry:
    remaining: int
    flush: Optional[FlushCallback] = None


class ProgressCoordinator:
    """
    Tracks remaining work per key and ticks every `interval_seconds`.

    The ticker starts on the first key with remaining work and stops
    once every key reports zero.
    """

    def __init__(self, name: str = "", interval_seconds: Optional[float] = None):
        self.name = name
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else get_settings().progress_interval_seconds
        )
        self._entries: Dict[str, _ProgressEntry] = {}
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _has_work(self) -> bool:
        return any(entry.remaining > 0 for entry in self._entries.values())

    def _ensure_ticker(self):
        if self._has_work() and not self.running:
            self._task = asyncio.create_task(self._run())

    def register(self, key: str, remaining: int, flush: Optional[FlushCallback] = None):
        self._entries[key] = _ProgressEntry(remaining=remaining, flush=flush)
        self._ensure_ticker()

    def update(self, key: str, remaining: int):
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.remaining = remaining
        self._ensure_ticker()

    async def unregister(self, key: str):
        """Drop a key and flush it one last time."""
        entry = self._entries.pop(key, None)
        if entry is not None and entry.flush is not None:
            await self._flush(key, entry.flush)
        if not self._has_work():
            await self.stop()

    async def stop(self):
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _flush(self, key: str, flush: FlushCallback):
        try:
            await flush()
        except Exception as e:
            logger.error("progress_flush_failed", coordinator=self.name, key=key, error=str(e))

    def log_progress(self):
        logger.info(
            "progress",
            coordinator=self.name,
            remaining={key: entry.remaining for key, entry in self._entries.items()},
        )

    async def tick(self):
        """One tick: log, then flush every key."""
        self.log_progress()
        for key, entry in list(self._entries.items()):
            if entry.flush is not None:
                await self._flush(key, entry.flush)

    async def _run(self):
        while self._has_work():
            await asyncio.sleep(self.interval_seconds)
            if not self._entries:
                break
            await self.tick()
