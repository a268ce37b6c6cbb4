"""Short reconnection window after a player drops.

A username that disconnected moments ago may rejoin once even if its slot
still looks occupied, so a client that reconnects faster than the server
notices the old socket closing is not locked out of its own room.
"""
from typing import Callable, Dict, Optional
import asyncio
import logging
import time

import config

logger = logging.getLogger(__name__)


class GraceEntry:
    def __init__(self, disconnected_at: float):
        self.disconnected_at = disconnected_at
        self.claimed = False


class ReconnectionTable:
    def __init__(self, window: float = config.RECONNECT_GRACE_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.window = window
        self.clock = clock
        self.entries: Dict[str, GraceEntry] = {}  # lowercase username -> entry
        self._sweep_task: Optional[asyncio.Task] = None

    def record(self, username: str):
        key = username.lower()
        self.entries[key] = GraceEntry(self.clock())
        logger.debug("Grace period opened for '%s'", key)

    def is_active(self, username: str) -> bool:
        entry = self.entries.get(username.lower())
        return entry is not None and self.clock() - entry.disconnected_at < self.window

    def claim(self, username: str) -> bool:
        """Mark an active entry as used. Returns False if none or already claimed."""
        key = username.lower()
        entry = self.entries.get(key)
        if entry is None or entry.claimed or self.clock() - entry.disconnected_at >= self.window:
            return False
        entry.claimed = True
        logger.info("Reconnection slot for '%s' claimed", key)
        self._release_later(key, entry)
        return True

    def _release_later(self, key: str, entry: GraceEntry):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: the periodic sweep will drop it
        loop.call_later(config.RECONNECT_CLAIM_RELEASE_SECONDS, self._release, key, entry)

    def _release(self, key: str, entry: GraceEntry):
        # A newer disconnect may have replaced the entry meanwhile
        if self.entries.get(key) is entry:
            del self.entries[key]

    def sweep(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self.entries.items()
                   if now - entry.disconnected_at >= self.window]
        for key in expired:
            del self.entries[key]
        return len(expired)

    def start_sweep_loop(self):
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop_sweep_loop(self):
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self):
        while True:
            try:
                await asyncio.sleep(config.RECONNECT_SWEEP_INTERVAL)
                removed = self.sweep()
                if removed:
                    logger.debug("Swept %d expired reconnection entries", removed)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in reconnection sweep loop")
