"""Tests for the tagged resource cache.

These tests verify that:
1. Reads are served from the snapshot within the TTL
2. Expired or invalidated snapshots are refreshed on the next read
3. Floating IPs are joined to ports by their associated port ID
4. Only tagged resources appear in a snapshot
5. A failed refresh keeps the previous snapshot
6. Concurrent readers share a single refresh
"""

import asyncio

import pytest

from lbnet.cache import CacheSnapshot, TaggedResourceCache
from lbnet.config import MANAGED_PORT_TAG as TAG
from lbnet.errors import ProviderCallError


def _make_cache(provider, clock, use_floating_ips=False, ttl=30.0) -> TaggedResourceCache:
    return TaggedResourceCache(
        provider, ttl=ttl, tag=TAG, use_floating_ips=use_floating_ips, clock=clock
    )


# --- Staleness policy ---

@pytest.mark.asyncio
async def test_first_read_refreshes(provider, clock):
    """Test that a cold cache is populated on the first read."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)

    assert cache.snapshot is None
    ports = await cache.get_ports()

    assert [p.id for p in ports] == ["port-a"]
    assert isinstance(cache.snapshot, CacheSnapshot)
    assert provider.call_count("list_ports") == 1


@pytest.mark.asyncio
async def test_reads_within_ttl_use_snapshot(provider, clock):
    """Test that reads inside the TTL do not hit the provider."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)

    await cache.get_ports()
    provider.add_port("port-b")
    clock.advance(29.0)
    ports = await cache.get_ports()

    assert [p.id for p in ports] == ["port-a"]
    assert provider.call_count("list_ports") == 1


@pytest.mark.asyncio
async def test_expired_snapshot_is_refreshed(provider, clock):
    """Test that a read after the TTL refreshes the snapshot."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)

    await cache.get_ports()
    provider.add_port("port-b")
    clock.advance(30.0)
    ports = await cache.get_ports()

    assert sorted(p.id for p in ports) == ["port-a", "port-b"]
    assert provider.call_count("list_ports") == 2


@pytest.mark.asyncio
async def test_invalidate_forces_refresh(provider, clock):
    """Test that a read right after invalidate() sees current provider state."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)

    await cache.get_ports()
    provider.add_port("port-b")
    cache.invalidate()
    ports = await cache.get_ports()

    assert sorted(p.id for p in ports) == ["port-a", "port-b"]


@pytest.mark.asyncio
async def test_invalidate_performs_no_io(provider, clock):
    """Test that invalidation is lazy and batches multiple calls."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)
    await cache.get_ports()

    cache.invalidate()
    cache.invalidate()
    cache.invalidate()

    assert provider.call_count("list_ports") == 1
    await cache.get_ports()
    assert provider.call_count("list_ports") == 2


@pytest.mark.asyncio
async def test_invalidate_during_refresh_is_not_lost(provider, clock):
    """Test that a refresh racing with invalidate() cannot satisfy later reads."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)

    # Invalidate while the refresh is listing ports
    provider.on_list = cache.invalidate
    await cache.get_ports()
    provider.on_list = None

    assert not cache.is_fresh()
    provider.add_port("port-b")
    ports = await cache.get_ports()

    assert sorted(p.id for p in ports) == ["port-a", "port-b"]


# --- Join and filtering ---

@pytest.mark.asyncio
async def test_floating_ips_joined_by_port_id(provider, clock):
    """Test that floating IPs are associated through their port_id."""
    provider.add_port("port-a", "10.0.0.5")
    provider.add_port("port-b", "10.0.0.6")
    provider.add_floating_ip("fip-1", "203.0.113.9", port_id="port-b")
    cache = _make_cache(provider, clock, use_floating_ips=True)

    port_a, fip_a = await cache.get_port_by_id("port-a")
    port_b, fip_b = await cache.get_port_by_id("port-b")

    assert port_a.id == "port-a"
    assert fip_a is None
    assert port_b.id == "port-b"
    assert fip_b.id == "fip-1"
    assert fip_b.floating_ip_address == "203.0.113.9"


@pytest.mark.asyncio
async def test_floating_ips_ignored_when_disabled(provider, clock):
    """Test that no floating IPs are listed or returned when disabled."""
    provider.add_port("port-a")
    provider.add_floating_ip("fip-1", port_id="port-a")
    cache = _make_cache(provider, clock, use_floating_ips=False)

    port, fip = await cache.get_port_by_id("port-a")

    assert port.id == "port-a"
    assert fip is None
    assert provider.call_count("list_floating_ips") == 0


@pytest.mark.asyncio
async def test_untagged_resources_never_listed(provider, clock):
    """Test that ports and floating IPs without the ownership tag are excluded."""
    provider.add_port("port-a")
    provider.add_port("foreign", tags=["someone-else"])
    provider.add_port("untagged", tags=[])
    provider.add_floating_ip("fip-foreign", port_id="port-a", tags=["someone-else"])
    cache = _make_cache(provider, clock, use_floating_ips=True)

    ports = await cache.get_ports()
    port, fip = await cache.get_port_by_id("port-a")
    foreign, _ = await cache.get_port_by_id("foreign")

    assert [p.id for p in ports] == ["port-a"]
    assert fip is None
    assert foreign is None


@pytest.mark.asyncio
async def test_unknown_port_is_not_an_error(provider, clock):
    """Test that looking up an unknown port returns (None, None)."""
    cache = _make_cache(provider, clock, use_floating_ips=True)

    assert await cache.get_port_by_id("missing") == (None, None)


# --- Failure handling ---

@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_snapshot(provider, clock):
    """Test that a refresh failure propagates and leaves the old snapshot."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)
    await cache.get_ports()
    previous = cache.snapshot

    provider.fail("list_ports")
    cache.invalidate()
    with pytest.raises(ProviderCallError):
        await cache.get_ports()

    assert cache.snapshot is previous


@pytest.mark.asyncio
async def test_failed_floating_ip_listing_fails_refresh(provider, clock):
    """Test that a partial floating IP listing does not produce a snapshot."""
    provider.add_port("port-a")
    provider.add_floating_ip("fip-1", port_id="port-a")
    provider.add_floating_ip("fip-2")
    provider.fail_list_after("floatingips", 1)
    cache = _make_cache(provider, clock, use_floating_ips=True)

    with pytest.raises(ProviderCallError):
        await cache.get_ports()

    assert cache.snapshot is None


# --- Concurrency ---

@pytest.mark.asyncio
async def test_concurrent_reads_share_one_refresh(provider, clock):
    """Test that concurrent readers of a cold cache trigger a single refresh."""
    provider.add_port("port-a")
    provider.list_delay = 0.01
    cache = _make_cache(provider, clock)

    results = await asyncio.gather(*(cache.get_ports() for _ in range(5)))

    assert all([p.id for p in ports] == ["port-a"] for ports in results)
    assert provider.call_count("list_ports") == 1


@pytest.mark.asyncio
async def test_explicit_refresh_replaces_snapshot(provider, clock):
    """Test that refresh() always rebuilds, even within the TTL."""
    provider.add_port("port-a")
    cache = _make_cache(provider, clock)
    first = await cache.refresh()

    provider.add_port("port-b")
    second = await cache.refresh()

    assert second is not first
    assert set(second.entries) == {"port-a", "port-b"}
    assert set(first.entries) == {"port-a"}
