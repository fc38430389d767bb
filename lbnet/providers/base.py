"""Base interface for network resource providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from lbnet.schemas import FloatingIP, ManagedPort, Subnet


# Resource type names as used by the tag assignment operation
PORTS = "ports"
FLOATING_IPS = "floatingips"


class NetworkProvider(ABC):
    """Abstract base class for network resource providers.

    Implementations raise ``lbnet.errors.ProviderCallError`` for every failed
    call, including calls whose response body cannot be parsed. Callers rely
    on this to roll back partially provisioned resources. No call is assumed
    to be idempotent on the provider side.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'openstack')."""
        ...

    @abstractmethod
    async def get_subnet(self, subnet_id: str) -> Subnet:
        """Look up a subnet.

        Args:
            subnet_id: ID of the subnet

        Returns:
            The subnet, including the network it belongs to
        """
        ...

    @abstractmethod
    async def create_port(
        self,
        network_id: str,
        subnet_id: str,
        description: str = "",
        port_security_enabled: bool = False,
    ) -> ManagedPort:
        """Create a port with one fixed IP on the given subnet.

        Args:
            network_id: Network to create the port on
            subnet_id: Subnet the fixed IP is allocated from
            description: Free-form description stored with the port
            port_security_enabled: Whether the provider filters traffic

        Returns:
            The created port
        """
        ...

    @abstractmethod
    async def get_port(self, port_id: str) -> ManagedPort | None:
        """Get a port by ID, or None if it does not exist.

        Used to check whether a port whose delete reported an error is in
        fact gone.
        """
        ...

    @abstractmethod
    async def delete_port(self, port_id: str) -> None:
        """Delete a port. Deleting a port that no longer exists succeeds."""
        ...

    @abstractmethod
    def list_ports(self, tags: list[str] | None = None) -> AsyncIterator[ManagedPort]:
        """Iterate over ports carrying all of the given tags.

        Results are fetched page by page. A failure while fetching a page
        is raised from the iterator; items yielded before it stay valid.
        """
        ...

    @abstractmethod
    async def create_floating_ip(
        self,
        floating_network_id: str,
        port_id: str,
        description: str = "",
    ) -> FloatingIP:
        """Allocate a floating IP on an external network and bind it to a port."""
        ...

    @abstractmethod
    async def delete_floating_ip(self, floating_ip_id: str) -> None:
        """Release a floating IP. Releasing an unknown one succeeds."""
        ...

    @abstractmethod
    def list_floating_ips(self, tags: list[str] | None = None) -> AsyncIterator[FloatingIP]:
        """Iterate over floating IPs carrying all of the given tags.

        Same paging contract as list_ports().
        """
        ...

    @abstractmethod
    async def replace_tags(self, resource_type: str, resource_id: str, tags: list[str]) -> None:
        """Replace all tags of a resource.

        Args:
            resource_type: PORTS or FLOATING_IPS
            resource_id: ID of the resource
            tags: The complete new tag list
        """
        ...

    async def close(self) -> None:
        """Release client resources. Default implementation does nothing."""
        return None
