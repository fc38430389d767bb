"""Tagged resource cache.

Keeps a read-only, time-bounded view of every port and floating IP that
carries the ownership tag, joined by the floating IP's associated port.
Reads refresh the view lazily when it is missing, older than the TTL, or
invalidated; there is no background refresh task.

Consistency rules:
1. A snapshot is immutable and replaced in a single assignment, so readers
   never see a partially built view.
2. Refreshes are serialised by a lock; readers waiting on a refresh reuse
   its result instead of issuing another one.
3. invalidate() bumps a generation counter. A snapshot built under an older
   generation is never served, even when the refresh that produced it
   finished after the invalidation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from lbnet.providers.base import NetworkProvider
from lbnet.schemas import FloatingIP, ManagedPort


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A managed port and the floating IP bound to it, if any."""
    port: ManagedPort
    floating_ip: FloatingIP | None = None


@dataclass(frozen=True)
class CacheSnapshot:
    """Point-in-time view of all tagged ports keyed by port ID."""
    entries: Mapping[str, CacheEntry]
    refreshed_at: float
    generation: int

    @property
    def ports(self) -> list[ManagedPort]:
        return [entry.port for entry in self.entries.values()]


class TaggedResourceCache:
    """Lazily refreshed cache of tagged ports and floating IPs.

    Usage:
        cache = TaggedResourceCache(provider, ttl=30.0, tag=MANAGED_PORT_TAG)

        ports = await cache.get_ports()
        port, fip = await cache.get_port_by_id(port_id)

        # After a mutation, force the next read to hit the provider
        cache.invalidate()
    """

    def __init__(
        self,
        provider: NetworkProvider,
        ttl: float,
        tag: str,
        use_floating_ips: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.ttl = ttl
        self.tag = tag
        self.use_floating_ips = use_floating_ips
        self._clock = clock
        self._snapshot: CacheSnapshot | None = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> CacheSnapshot | None:
        """The current snapshot, which may be stale."""
        return self._snapshot

    def is_fresh(self, snapshot: CacheSnapshot | None = None) -> bool:
        """Check whether a snapshot may be served without refreshing."""
        if snapshot is None:
            snapshot = self._snapshot
        if snapshot is None:
            return False
        if snapshot.generation != self._generation:
            return False
        return self._clock() - snapshot.refreshed_at < self.ttl

    def invalidate(self) -> None:
        """Mark the current snapshot stale. Performs no I/O."""
        self._generation += 1
        logger.debug(f"Port cache invalidated (generation {self._generation})")

    async def refresh(self) -> CacheSnapshot:
        """Rebuild the snapshot from the provider unconditionally.

        On failure the previous snapshot stays in place and the provider
        error propagates.
        """
        async with self._lock:
            return await self._rebuild()

    async def _current(self) -> CacheSnapshot:
        snapshot = self._snapshot
        if self.is_fresh(snapshot):
            return snapshot

        async with self._lock:
            # Another reader may have refreshed while we waited
            snapshot = self._snapshot
            if self.is_fresh(snapshot):
                return snapshot
            return await self._rebuild()

    async def _rebuild(self) -> CacheSnapshot:
        generation = self._generation
        started_at = self._clock()

        ports = [port async for port in self.provider.list_ports(tags=[self.tag])]
        ports = [port for port in ports if self.tag in port.tags]

        fip_by_port: dict[str, FloatingIP] = {}
        if self.use_floating_ips:
            async for fip in self.provider.list_floating_ips(tags=[self.tag]):
                if self.tag not in fip.tags or not fip.is_attached:
                    continue
                fip_by_port[fip.port_id] = fip

        entries = {
            port.id: CacheEntry(port=port, floating_ip=fip_by_port.get(port.id))
            for port in ports
        }

        snapshot = CacheSnapshot(
            entries=MappingProxyType(entries),
            refreshed_at=started_at,
            generation=generation,
        )
        self._snapshot = snapshot

        logger.debug(
            f"Port cache refreshed: {len(entries)} port(s), "
            f"{len(fip_by_port)} attached floating IP(s)"
        )
        return snapshot

    async def get_ports(self) -> list[ManagedPort]:
        """Return all managed ports, refreshing if needed."""
        snapshot = await self._current()
        return snapshot.ports

    async def get_port_by_id(self, port_id: str) -> tuple[ManagedPort | None, FloatingIP | None]:
        """Return a managed port and its floating IP.

        An unknown port yields (None, None); it is not an error. The
        floating IP is None when the port has none or floating IPs are
        disabled.
        """
        snapshot = await self._current()
        entry = snapshot.entries.get(port_id)
        if entry is None:
            return None, None
        return entry.port, entry.floating_ip
