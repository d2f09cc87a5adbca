"""
Single-flight fetch orchestration.

On a full cache miss, concurrent lookups of the same key share one
invocation of the browser fetcher. Duplicate concurrent invocations against
the non-reentrant browser session are never issued.

Per-key states: IDLE -> IN_FLIGHT -> RESOLVED -> IDLE. A registry entry
exists only while a key is IN_FLIGHT; it is removed in the same step that
resolves the waiters, so no RESOLVED entry lingers.

Each invocation runs in its own task and callers await a shielded future:
one caller giving up never cancels a fetch other callers are waiting on.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from postercache.cache.errors import (
    FetchFailed,
    FetchTimeout,
    GateTimeout,
    StoreUnavailable,
)
from postercache.cache.gate import AdmissionGate
from postercache.cache.record import Record
from postercache.cache.tier import CacheTier
from postercache.crawler.poster_fetcher import PosterNotFoundError
from postercache.utils.logging import get_logger

if TYPE_CHECKING:
    from postercache.crawler.poster_fetcher import PosterFetcher
    from postercache.storage.poster_store import PosterStore

logger = get_logger(__name__)


class FlightState(str, Enum):
    """Lifecycle of a key in the orchestrator."""

    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    RESOLVED = "resolved"


@dataclass
class Flight:
    """One coalesced fetch and the callers waiting on it.

    Attributes:
        key: Lookup key being fetched.
        future: Shared outcome; resolved exactly once.
        waiters: Callers currently awaiting the outcome.
        admitted: Whether the gate has granted this flight a slot.
    """

    key: str
    future: asyncio.Future[Record]
    state: FlightState = FlightState.IN_FLIGHT
    waiters: int = 0
    admitted: bool = False
    started_at: float = field(default_factory=time.monotonic)
    task: asyncio.Task[None] | None = None


def _classify_failure(exc: BaseException) -> str:
    if isinstance(exc, PosterNotFoundError):
        return "not_found"
    if isinstance(exc, TimeoutError):
        return "timeout"
    return "error"


class FetchOrchestrator:
    """Coalesce cache misses into single browser fetches.

    Args:
        tier: Hot tier; written first on success.
        gate: Admission gate bounding concurrent fetches.
        fetcher: Browser fetch capability.
        store: Durable store; written after the tier. Failures are absorbed.
        fetch_timeout: Upper bound in seconds for one fetcher call.
    """

    def __init__(
        self,
        tier: CacheTier,
        gate: AdmissionGate,
        fetcher: PosterFetcher,
        *,
        store: PosterStore | None = None,
        fetch_timeout: float | None = None,
    ) -> None:
        self._tier = tier
        self._gate = gate
        self._fetcher = fetcher
        self._store = store
        self._fetch_timeout = fetch_timeout
        self._in_flight: dict[str, Flight] = {}
        self._closed = False

        self._invocations = 0
        self._coalesced = 0
        self._failures = 0
        self._withdrawn = 0

    async def fetch(self, key: str, *, timeout: float | None = None) -> Record:
        """Resolve a missed key through the browser fetcher.

        Args:
            key: Normalized lookup key.
            timeout: Seconds this caller is willing to wait. Expiry affects
                only this caller.

        Returns:
            Copy of the cached record.

        Raises:
            FetchFailed: The shared invocation failed.
            GateTimeout: Timed out before the flight was admitted.
            FetchTimeout: Timed out while the fetch was running.
        """
        if self._closed:
            raise RuntimeError("FetchOrchestrator is closed")

        flight = self._in_flight.get(key)
        if flight is None:
            # A flight may have published while the caller awaited the store.
            # The caller already counted this miss.
            if key in self._tier:
                record = self._tier.lookup(key)
                if record is not None:
                    return record
            flight = self._start_flight(key)
        else:
            self._coalesced += 1
            logger.debug("Joined in-flight fetch", key=key, waiters=flight.waiters + 1)

        flight.waiters += 1
        try:
            if timeout is None:
                record = await asyncio.shield(flight.future)
            else:
                record = await asyncio.wait_for(asyncio.shield(flight.future), timeout=timeout)
        except TimeoutError:
            if flight.future.done() and not flight.future.cancelled():
                return flight.future.result().copy()
            admitted = flight.admitted
            self._abandon(flight)
            if admitted:
                raise FetchTimeout(key, timeout) from None
            raise GateTimeout(timeout, key=key) from None
        except asyncio.CancelledError:
            self._abandon(flight)
            raise

        return record.copy()

    def _start_flight(self, key: str) -> Flight:
        loop = asyncio.get_running_loop()
        flight = Flight(key=key, future=loop.create_future())
        self._in_flight[key] = flight
        flight.task = asyncio.create_task(self._run(flight), name=f"fetch:{key}")
        return flight

    def _abandon(self, flight: Flight) -> None:
        """A caller stopped waiting before the flight resolved."""
        flight.waiters -= 1
        if flight.waiters > 0 or flight.admitted or flight.future.done():
            return

        # Nobody is waiting and no slot was granted: leave the gate queue
        self._withdrawn += 1
        if self._in_flight.get(flight.key) is flight:
            del self._in_flight[flight.key]
        flight.state = FlightState.IDLE
        flight.future.cancel()
        if flight.task is not None:
            flight.task.cancel()
        logger.debug("Withdrew unadmitted fetch", key=flight.key)

    async def _run(self, flight: Flight) -> None:
        key = flight.key
        try:
            token = await self._gate.acquire()
        except RuntimeError as e:
            # Gate closed during shutdown
            self._resolve(flight, None, FetchFailed(key, reason="error", cause=str(e)))
            return

        flight.admitted = True
        self._invocations += 1
        started = time.monotonic()
        logger.info("Fetching poster", key=key, waiters=flight.waiters)

        record: Record | None = None
        error: FetchFailed | None = None
        try:
            value = await self._invoke(key)
            evicted: list[Record] = []
            record = self._tier.insert(
                key, value, exclude=self.in_flight_keys(), evicted=evicted
            )
            await self._persist(record, *evicted)
        except FetchFailed as e:
            error = e
        except asyncio.CancelledError:
            error = FetchFailed(key, reason="error", cause="cancelled")
            raise
        except Exception as e:
            error = FetchFailed(key, reason=_classify_failure(e), cause=str(e))
        finally:
            self._gate.release(token)
            self._resolve(flight, record, error)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if error is None:
            logger.info("Poster fetched", key=key, elapsed_ms=elapsed_ms)
        else:
            logger.warning(
                "Poster fetch failed",
                key=key,
                reason=error.reason,
                cause=error.details.get("cause"),
                elapsed_ms=elapsed_ms,
            )

    async def _invoke(self, key: str) -> str:
        """Call the fetcher and validate its result."""
        if self._fetch_timeout is None:
            value = await self._fetcher.fetch(key)
        else:
            value = await asyncio.wait_for(self._fetcher.fetch(key), timeout=self._fetch_timeout)

        if not isinstance(value, str) or not value.strip():
            raise FetchFailed(key, reason="empty")
        return value.strip()

    async def _persist(self, record: Record, *evicted: Record) -> None:
        """Save the fetched record and the counters of any entry it displaced."""
        if self._store is None:
            return
        try:
            if evicted:
                await self._store.upsert_many([*evicted, record])
            else:
                await self._store.upsert(record)
        except StoreUnavailable:
            # Logged by the store; the tier already holds the value
            pass

    def _resolve(self, flight: Flight, record: Record | None, error: FetchFailed | None) -> None:
        """Publish the outcome and return the key to IDLE in one step."""
        if self._in_flight.get(flight.key) is flight:
            del self._in_flight[flight.key]
        flight.state = FlightState.RESOLVED

        if error is not None:
            self._failures += 1

        if not flight.future.done():
            if error is not None:
                flight.future.set_exception(error)
                # Mark retrieved; every waiter may already have abandoned
                flight.future.exception()
            else:
                flight.future.set_result(record)

        flight.state = FlightState.IDLE

    def state_of(self, key: str) -> FlightState:
        """Current state of a key."""
        flight = self._in_flight.get(key)
        return flight.state if flight is not None else FlightState.IDLE

    def in_flight_keys(self) -> frozenset[str]:
        """Keys with an unresolved fetch; eviction must not remove these."""
        return frozenset(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def close(self) -> None:
        """Cancel running flights and fail their waiters."""
        self._closed = True
        flights = list(self._in_flight.values())
        tasks = [f.task for f in flights if f.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for flight in flights:
            if not flight.future.done():
                self._resolve(
                    flight, None, FetchFailed(flight.key, reason="error", cause="shutdown")
                )
        self._in_flight.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get orchestrator statistics for monitoring."""
        return {
            "in_flight": len(self._in_flight),
            "invocations": self._invocations,
            "coalesced": self._coalesced,
            "failures": self._failures,
            "withdrawn": self._withdrawn,
        }
