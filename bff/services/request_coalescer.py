"""
Request coalescing for duplicate in-flight mutations.

When a client sends the same logical mutating request twice before the first
one finishes (double submit, network retry), both callers share a single
upstream call and receive the same result or the same exception.

Deduplication is process-local and best-effort: separate instances of the
service do not coordinate.

Usage:
    key = fingerprint("complete_registration", auth_header, tenant_name)
    result = await coalescer.run(key, lambda: auth_service.complete_registration(...))
"""

import asyncio
import hashlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from bff.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def fingerprint(operation: str, actor: str | None, disambiguator: str | None = None) -> str:
    """
    Deterministic key for a logical operation.

    The actor (usually the raw Authorization header) is hashed so that
    credentials are never kept as map keys.
    """
    actor_digest = hashlib.sha256((actor or "").encode("utf-8")).hexdigest()[:32]
    return f"{operation}:{actor_digest}:{disambiguator or ''}"


@dataclass
class PendingRequest:
    key: str
    task: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)
    waiters: int = 1


class EvictionPolicy(Protocol):
    def evict(self, entries: dict[str, PendingRequest], now: float) -> list[str]:
        """Remove entries from ``entries`` in place and return the evicted keys."""
        ...


class TTLEviction:
    """Drop entries older than ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 60.0):
        self.ttl_seconds = ttl_seconds

    def evict(self, entries: dict[str, PendingRequest], now: float) -> list[str]:
        expired = [key for key, entry in entries.items() if now - entry.created_at > self.ttl_seconds]
        for key in expired:
            del entries[key]
        return expired


class MaxEntriesEviction:
    """Clear the whole map once it grows past ``max_entries``."""

    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries

    def evict(self, entries: dict[str, PendingRequest], now: float) -> list[str]:
        if len(entries) <= self.max_entries:
            return []
        evicted = list(entries)
        entries.clear()
        return evicted


class CompositeEviction:
    """Apply several policies in order."""

    def __init__(self, *policies: EvictionPolicy):
        self.policies = policies

    def evict(self, entries: dict[str, PendingRequest], now: float) -> list[str]:
        evicted: list[str] = []
        for policy in self.policies:
            evicted.extend(policy.evict(entries, now))
        return evicted


class RequestCoalescer:
    """
    Fingerprint-keyed map of in-flight calls.

    Entries are removed as soon as their call settles (success or failure);
    the eviction policy only deals with entries that somehow outlive that.
    """

    def __init__(
        self,
        eviction_policy: EvictionPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._pending: dict[str, PendingRequest] = {}
        self._policy = eviction_policy or CompositeEviction(TTLEviction(), MaxEntriesEviction())
        self._clock = clock
        self.coalesced_count = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Await the in-flight call registered under ``key``, or start one.

        ``factory`` is only invoked when no call is in flight for the key.
        Cancelling one waiter does not cancel the shared call.
        """
        self.sweep()

        entry = self._pending.get(key)
        if entry is not None:
            entry.waiters += 1
            self.coalesced_count += 1
            logger.info(
                "Duplicate request detected, awaiting in-flight call",
                operation=key.split(":", 1)[0],
                waiters=entry.waiters,
            )
            return await asyncio.shield(entry.task)

        task = asyncio.ensure_future(factory())
        entry = PendingRequest(key=key, task=task, created_at=self._clock())
        self._pending[key] = entry
        task.add_done_callback(lambda _: self._release(entry))

        return await asyncio.shield(task)

    def sweep(self) -> list[str]:
        """Apply the eviction policy now. Returns the evicted keys."""
        evicted = self._policy.evict(self._pending, self._clock())
        if evicted:
            logger.warning(
                "Evicted stale pending requests",
                evicted=len(evicted),
                remaining=len(self._pending),
            )
        return evicted

    async def run_periodic_sweep(self, interval_seconds: float) -> None:
        """Sweep forever; meant to run as a background task and be cancelled on shutdown."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def _release(self, entry: PendingRequest) -> None:
        # Mark the outcome retrieved; every waiter may already have been cancelled
        if not entry.task.cancelled():
            entry.task.exception()
        # A newer entry may have replaced this one after eviction
        if self._pending.get(entry.key) is entry:
            del self._pending[entry.key]


def default_coalescer(ttl_seconds: float, max_entries: int) -> RequestCoalescer:
    return RequestCoalescer(CompositeEviction(TTLEviction(ttl_seconds), MaxEntriesEviction(max_entries)))
