"""Request-correlation table: resolved IP → single-use reply future.

Invariant: at most one pending entry per address. An entry leaves the table
when the reply is delivered, when the waiter gives up, or when a newer
request for the same address replaces it, so the table never grows past the
number of addresses probed concurrently.
"""

from __future__ import annotations

import asyncio
import threading


class ReplyTable:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._waiting: dict[str, asyncio.Future[None]] = {}

    def register(self, address: str) -> asyncio.Future[None]:
        """Create the pending entry for ``address``, cancelling any stale one."""
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        with self._lock:
            stale = self._waiting.get(address)
            self._waiting[address] = future
        if stale is not None and not stale.done():
            stale.cancel()
        return future

    def deliver(self, address: str) -> bool:
        """Resolve and remove the entry for ``address``.

        Returns ``False`` when nobody is waiting (late or unexpected reply).
        """
        with self._lock:
            future = self._waiting.pop(address, None)
        if future is None or future.done():
            return False
        future.set_result(None)
        return True

    def discard(self, address: str, future: asyncio.Future[None]) -> None:
        """Drop ``future`` if it is still the entry for ``address``."""
        with self._lock:
            if self._waiting.get(address) is future:
                del self._waiting[address]

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._waiting)

    def __len__(self) -> int:
        with self._lock:
            return len(self._waiting)
