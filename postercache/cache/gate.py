"""
Admission gate for the browser backend.

Design:
- Bounds the number of concurrent fetches against the browser backend
- capacity must equal the number of independent browser sessions; the
  default of 1 makes the gate the sole serializer of backend access
- FIFO: a released slot is handed directly to the oldest waiter, so a newer
  caller can never overtake a queued one
- A waiter that times out or is cancelled never holds a slot afterwards
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from postercache.cache.errors import GateTimeout
from postercache.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GateToken:
    """Proof of a granted slot; pass it back to release()."""

    token_id: int
    acquired_at: float = field(default_factory=time.monotonic)


class AdmissionGate:
    """Counting gate with FIFO hand-off.

    Example:
        gate = AdmissionGate(capacity=1)
        token = await gate.acquire(timeout=30.0)
        try:
            await fetcher.fetch(key)
        finally:
            gate.release(token)

    Args:
        capacity: Maximum concurrently granted slots (>= 1).
    """

    def __init__(self, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self._capacity = capacity
        self._in_use = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._outstanding: set[int] = set()
        self._ids = itertools.count(1)
        self._closed = False

        self._granted_total = 0
        self._timeouts = 0
        self._peak_in_use = 0

        logger.debug("AdmissionGate initialized", capacity=capacity)

    async def acquire(self, timeout: float | None = None) -> GateToken:
        """Wait for a slot.

        Args:
            timeout: Seconds to wait before giving up. None waits indefinitely.

        Returns:
            Token for release().

        Raises:
            RuntimeError: If the gate is closed.
            GateTimeout: If no slot was granted within timeout.
        """
        if self._closed:
            raise RuntimeError("AdmissionGate is closed")

        if self._in_use < self._capacity and not self._waiters:
            self._in_use += 1
            return self._grant()

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        logger.debug(
            "Waiting for admission slot",
            in_use=self._in_use,
            waiting=len(self._waiters),
        )

        try:
            if timeout is None:
                await waiter
            else:
                await asyncio.wait_for(waiter, timeout=timeout)
        except TimeoutError:
            self._abandon(waiter)
            self._timeouts += 1
            raise GateTimeout(timeout) from None
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

        # The slot was transferred by release(); _in_use already counts it
        return self._grant()

    def release(self, token: GateToken) -> None:
        """Return a slot, handing it to the oldest waiter if any.

        Raises:
            ValueError: If the token is unknown or already released.
        """
        if token.token_id not in self._outstanding:
            raise ValueError("Unknown or already released gate token")

        self._outstanding.discard(token.token_id)
        self._pass_slot()

    @asynccontextmanager
    async def slot(self, timeout: float | None = None) -> AsyncIterator[GateToken]:
        """Hold a slot for the duration of the block."""
        token = await self.acquire(timeout=timeout)
        try:
            yield token
        finally:
            self.release(token)

    def close(self) -> None:
        """Reject further acquires and fail queued waiters."""
        self._closed = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(RuntimeError("AdmissionGate is closed"))
        logger.debug("AdmissionGate closed")

    def _grant(self) -> GateToken:
        token = GateToken(token_id=next(self._ids))
        self._outstanding.add(token.token_id)
        self._granted_total += 1
        self._peak_in_use = max(self._peak_in_use, self._in_use)
        return token

    def _pass_slot(self) -> None:
        """Transfer a freed slot to the next live waiter, or free it."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._in_use -= 1

    def _abandon(self, waiter: asyncio.Future[None]) -> None:
        """Clean up after a waiter that gave up."""
        if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
            # Slot was handed over in the same instant; pass it on
            self._pass_slot()
            return

        if not waiter.done():
            waiter.cancel()
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    @property
    def capacity(self) -> int:
        """Maximum concurrently granted slots."""
        return self._capacity

    @property
    def in_use(self) -> int:
        """Slots currently granted."""
        return self._in_use

    @property
    def waiting(self) -> int:
        """Callers queued for a slot."""
        return sum(1 for w in self._waiters if not w.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self) -> dict[str, Any]:
        """Get gate statistics for monitoring."""
        return {
            "capacity": self._capacity,
            "in_use": self._in_use,
            "waiting": self.waiting,
            "peak_in_use": self._peak_in_use,
            "granted_total": self._granted_total,
            "timeouts": self._timeouts,
            "closed": self._closed,
        }
