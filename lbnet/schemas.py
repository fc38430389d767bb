"""Network resource and service protocol schemas.

The resource models mirror the subset of the Neutron port, floating IP and
subnet representations the port manager relies on. Unknown fields in
provider payloads are ignored. The request/response models define the data
exchanged between the controller and the port manager service.
"""

from typing import Any

from pydantic import BaseModel, Field


# --- Network resources ---

class FixedIP(BaseModel):
    """An address assigned to a port from one of its subnets."""
    subnet_id: str = ""
    ip_address: str


class ManagedPort(BaseModel):
    """A virtual port owned by the port manager."""
    id: str
    network_id: str = ""
    fixed_ips: list[FixedIP] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    description: str = ""


class FloatingIP(BaseModel):
    """A public address, optionally associated with a port."""
    id: str
    floating_ip_address: str = ""
    port_id: str | None = None  # None or "" means unattached
    floating_network_id: str = ""
    tags: list[str] = Field(default_factory=list)
    description: str = ""

    @property
    def is_attached(self) -> bool:
        return bool(self.port_id)


class Subnet(BaseModel):
    """Subnet lookup result; only the owning network is of interest."""
    id: str
    network_id: str
    cidr: str = ""


# --- Service protocol ---

class AvailablePortsResponse(BaseModel):
    """All managed port IDs currently known."""
    port_ids: list[str] = Field(default_factory=list)


class ProvisionPortResponse(BaseModel):
    """Result of provisioning a new managed port."""
    port_id: str


class CleanupPortsRequest(BaseModel):
    """Controller -> port manager: these ports are still in use."""
    used_port_ids: list[str] = Field(default_factory=list)


class CleanupPortsResponse(BaseModel):
    """Outcome of a reconciliation pass."""
    ports_found: int = 0
    ports_in_use: int = 0
    ports_deleted: list[str] = Field(default_factory=list)
    floating_ips_orphaned: list[str] = Field(default_factory=list)
    floating_ips_deleted: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ExternalAddressResponse(BaseModel):
    """Externally reachable address of a managed port."""
    port_id: str
    address: str
    metadata: str = ""


class InternalAddressResponse(BaseModel):
    """Address of a managed port inside the target network."""
    port_id: str
    address: str


class ErrorResponse(BaseModel):
    """Error body returned by the service."""
    detail: str
    error_type: str
    warnings: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
