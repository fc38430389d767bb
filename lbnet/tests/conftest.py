"""Shared pytest fixtures for port manager tests."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

from lbnet.cache import TaggedResourceCache
from lbnet.config import MANAGED_PORT_TAG
from lbnet.errors import ProviderCallError
from lbnet.port_manager import L3PortManager
from lbnet.providers.base import FLOATING_IPS, PORTS, NetworkProvider
from lbnet.schemas import FixedIP, FloatingIP, ManagedPort, Subnet


TAG = MANAGED_PORT_TAG


class FakeNetworkProvider(NetworkProvider):
    """In-memory network provider with failure injection.

    Failures are registered per operation name (e.g. "create_port",
    "tag_ports", "delete_floating_ip") and optionally per resource ID.
    Deleting a port detaches its floating IPs, like Neutron does.
    """

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.ports: dict[str, ManagedPort] = {}
        self.floating_ips: dict[str, FloatingIP] = {}
        self.subnets = {
            "subnet-1": Subnet(id="subnet-1", network_id="net-1", cidr="10.0.0.0/24"),
        }
        self.calls: list[tuple[str, str | None]] = []
        self.created_ports: list[dict] = []
        self.list_delay = 0.0
        self.on_list: Callable[[], None] | None = None
        self._failures: dict[tuple[str, str | None], ProviderCallError] = {}
        self._list_fail_after: dict[str, int] = {}
        self._counter = 0

    @property
    def name(self) -> str:
        return "fake"

    # --- Test helpers ---

    def fail(self, operation: str, resource_id: str | None = None, status_code: int = 500) -> None:
        """Make an operation fail, for all resources or only for one."""
        self._failures[(operation, resource_id)] = ProviderCallError(
            f"{operation} failed: HTTP {status_code}",
            operation=operation,
            resource_id=resource_id,
            status_code=status_code,
        )

    def fail_list_after(self, collection: str, items: int) -> None:
        """Make listing a collection fail after yielding some items."""
        self._list_fail_after[collection] = items

    def add_port(self, port_id: str, ip_address: str | None = "10.0.0.5", tags: list[str] | None = None) -> ManagedPort:
        fixed_ips = [FixedIP(subnet_id="subnet-1", ip_address=ip_address)] if ip_address else []
        port = ManagedPort(
            id=port_id,
            network_id="net-1",
            fixed_ips=fixed_ips,
            tags=[TAG] if tags is None else tags,
        )
        self.ports[port_id] = port
        return port

    def add_floating_ip(
        self,
        fip_id: str,
        address: str = "203.0.113.9",
        port_id: str | None = None,
        tags: list[str] | None = None,
    ) -> FloatingIP:
        fip = FloatingIP(
            id=fip_id,
            floating_ip_address=address,
            port_id=port_id,
            floating_network_id="ext-net",
            tags=[TAG] if tags is None else tags,
        )
        self.floating_ips[fip_id] = fip
        return fip

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, resource_id: str | None = None) -> None:
        self.calls.append((operation, resource_id))
        error = self._failures.get((operation, resource_id)) or self._failures.get((operation, None))
        if error is not None:
            raise ProviderCallError(
                error.message,
                operation=error.operation,
                resource_id=resource_id,
                status_code=error.status_code,
            )

    def _next_id(self) -> int:
        self._counter += 1
        return self._counter

    async def _iterate(self, collection: str, items: list) -> AsyncIterator:
        if self.on_list is not None:
            self.on_list()
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        fail_after = self._list_fail_after.get(collection)
        for index, item in enumerate(items):
            if fail_after is not None and index >= fail_after:
                raise ProviderCallError(f"list {collection} failed: HTTP 500", operation="list")
            if index and index % self.page_size == 0:
                await asyncio.sleep(0)
            yield item
        if fail_after is not None and fail_after >= len(items):
            raise ProviderCallError(f"list {collection} failed: HTTP 500", operation="list")

    @staticmethod
    def _matches(resource_tags: list[str], tags: list[str] | None) -> bool:
        return all(tag in resource_tags for tag in tags or [])

    # --- NetworkProvider implementation ---

    async def get_subnet(self, subnet_id: str) -> Subnet:
        self._record("get_subnet", subnet_id)
        if subnet_id not in self.subnets:
            raise ProviderCallError(f"subnet {subnet_id} not found", operation="get", status_code=404)
        return self.subnets[subnet_id]

    async def create_port(self, network_id, subnet_id, description="", port_security_enabled=False):
        self._record("create_port")
        number = self._next_id()
        self.created_ports.append({
            "network_id": network_id,
            "subnet_id": subnet_id,
            "description": description,
            "port_security_enabled": port_security_enabled,
        })
        port = ManagedPort(
            id=f"port-{number}",
            network_id=network_id,
            fixed_ips=[FixedIP(subnet_id=subnet_id, ip_address=f"10.0.0.{number + 10}")],
            description=description,
        )
        self.ports[port.id] = port
        return port

    async def get_port(self, port_id):
        self._record("get_port", port_id)
        return self.ports.get(port_id)

    async def delete_port(self, port_id):
        self._record("delete_port", port_id)
        self.ports.pop(port_id, None)
        for fip_id, fip in list(self.floating_ips.items()):
            if fip.port_id == port_id:
                self.floating_ips[fip_id] = fip.model_copy(update={"port_id": None})

    def list_ports(self, tags=None):
        self._record("list_ports")
        items = [p for p in self.ports.values() if self._matches(p.tags, tags)]
        return self._iterate(PORTS, items)

    async def create_floating_ip(self, floating_network_id, port_id, description=""):
        self._record("create_floating_ip", port_id)
        number = self._next_id()
        fip = FloatingIP(
            id=f"fip-{number}",
            floating_ip_address=f"203.0.113.{number}",
            port_id=port_id,
            floating_network_id=floating_network_id,
            description=description,
        )
        self.floating_ips[fip.id] = fip
        return fip

    async def delete_floating_ip(self, floating_ip_id):
        self._record("delete_floating_ip", floating_ip_id)
        self.floating_ips.pop(floating_ip_id, None)

    def list_floating_ips(self, tags=None):
        self._record("list_floating_ips")
        items = [f for f in self.floating_ips.values() if self._matches(f.tags, tags)]
        return self._iterate(FLOATING_IPS, items)

    async def replace_tags(self, resource_type, resource_id, tags):
        self._record(f"tag_{resource_type}", resource_id)
        store = self.ports if resource_type == PORTS else self.floating_ips
        store[resource_id] = store[resource_id].model_copy(update={"tags": list(tags)})


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def provider() -> FakeNetworkProvider:
    return FakeNetworkProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_manager(provider: FakeNetworkProvider, clock: FakeClock):
    """Factory building a port manager over the fake provider."""

    def _make(use_floating_ips: bool = False, ttl: float = 30.0) -> L3PortManager:
        cache = TaggedResourceCache(
            provider,
            ttl=ttl,
            tag=TAG,
            use_floating_ips=use_floating_ips,
            clock=clock,
        )
        return L3PortManager(
            provider,
            cache,
            network_id="net-1",
            subnet_id="subnet-1",
            floating_ip_network_id="ext-net",
            use_floating_ips=use_floating_ips,
            tag=TAG,
        )

    return _make
