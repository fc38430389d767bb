"""Managed L3 port lifecycle.

The port manager hands out ports (and optionally floating IPs) that back
load-balancer data-plane endpoints, and reclaims them when the controller
no longer references them. Ownership is recorded with a tag on every
resource; only tagged resources are ever listed, read or deleted.

Provisioning creates the port, tags it, and optionally creates and tags a
floating IP bound to it. A failure after any create step deletes what was
created in the same call before the error is raised. A failed compensating
delete is logged as a resource leak and attached to the raised error as a
warning; it never replaces the original error.

Known gap: tags can only be set after a resource exists. If the process dies
between creating a port and tagging it, the port is invisible to the
tag-filtered cache and will not be reclaimed here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from lbnet.cache import TaggedResourceCache
from lbnet.config import MANAGED_PORT_DESCRIPTION, MANAGED_PORT_TAG, Settings
from lbnet.errors import (
    FixedIPMissingError,
    FloatingIPMissingError,
    PortIsNilError,
    PortManagerError,
    ProviderCallError,
    TaggingError,
)
from lbnet.providers.base import FLOATING_IPS, PORTS, NetworkProvider
from lbnet.schemas import FloatingIP, ManagedPort


logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    """Statistics from a reconciliation pass."""
    ports_found: int = 0
    ports_in_use: int = 0
    ports_deleted: list[str] = field(default_factory=list)
    floating_ips_orphaned: list[str] = field(default_factory=list)
    floating_ips_deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ports_found": self.ports_found,
            "ports_in_use": self.ports_in_use,
            "ports_deleted": self.ports_deleted,
            "floating_ips_orphaned": self.floating_ips_orphaned,
            "floating_ips_deleted": self.floating_ips_deleted,
            "errors": self.errors,
        }


class L3PortManager:
    """Provisions, tracks and reclaims managed ports.

    Usage:
        manager = await create_port_manager(provider, settings)

        port_id = await manager.provision_port()
        address, _ = await manager.get_external_address(port_id)

        # Drop everything the controller no longer uses
        stats = await manager.clean_unused_ports(used_port_ids)
    """

    def __init__(
        self,
        provider: NetworkProvider,
        cache: TaggedResourceCache,
        network_id: str,
        subnet_id: str,
        floating_ip_network_id: str = "",
        use_floating_ips: bool = False,
        tag: str = MANAGED_PORT_TAG,
        description: str = MANAGED_PORT_DESCRIPTION,
    ):
        self.provider = provider
        self.cache = cache
        self.network_id = network_id
        self.subnet_id = subnet_id
        self.floating_ip_network_id = floating_ip_network_id
        self.use_floating_ips = use_floating_ips
        self.tag = tag
        self.description = description

    # --- Compensation helpers ---

    async def _delete_port_quietly(self, port_id: str) -> list[str]:
        """Delete a dysfunctional port, reporting failure as a leak warning.

        A failed delete (a timeout, say) may still have gone through, so the
        port is looked up before it is reported as leaked.
        """
        try:
            await self.provider.delete_port(port_id)
        except ProviderCallError as e:
            if await self._port_is_gone(port_id):
                logger.info(
                    f"Delete of port {port_id} reported an error but the port is gone",
                    extra={"port_id": port_id},
                )
                return []
            warning = f"resource leak: could not delete dysfunctional port {port_id}: {e.message}"
            logger.warning(warning, extra={"port_id": port_id, "operation": "delete"})
            return [warning]
        return []

    async def _port_is_gone(self, port_id: str) -> bool:
        try:
            return await self.provider.get_port(port_id) is None
        except ProviderCallError:
            return False

    async def _delete_floating_ip_quietly(self, floating_ip_id: str) -> list[str]:
        """Delete a dysfunctional floating IP, reporting failure as a leak warning."""
        try:
            await self.provider.delete_floating_ip(floating_ip_id)
        except ProviderCallError as e:
            warning = (
                f"resource leak: could not delete dysfunctional floating IP "
                f"{floating_ip_id}: {e.message}"
            )
            logger.warning(warning, extra={"floating_ip_id": floating_ip_id, "operation": "delete"})
            return [warning]
        return []

    @staticmethod
    def _attach_warnings(error: BaseException, warnings: list[str]) -> None:
        # Errors from outside the port manager cannot carry warnings; the
        # leak has already been logged by the failed delete.
        if isinstance(error, PortManagerError):
            error.warnings.extend(warnings)

    async def _tag(self, resource_type: str, resource_id: str) -> None:
        try:
            await self.provider.replace_tags(resource_type, resource_id, [self.tag])
        except ProviderCallError as e:
            raise TaggingError(
                f"Failed to tag {resource_type} {resource_id}: {e.message}",
                operation="tag",
                resource_type=resource_type,
                resource_id=resource_id,
                status_code=e.status_code,
                retriable=e.retriable,
            ) from e

    # --- Provisioning ---

    async def _provision_floating_ip(self, port_id: str) -> FloatingIP:
        fip = await self.provider.create_floating_ip(
            self.floating_ip_network_id,
            port_id,
            description=self.description,
        )

        try:
            await self._tag(FLOATING_IPS, fip.id)
        except Exception as e:
            self._attach_warnings(e, await self._delete_floating_ip_quietly(fip.id))
            raise

        return fip

    async def provision_port(self) -> str:
        """Create a new managed port and return its ID.

        With floating IPs enabled, the port is only returned once a tagged
        floating IP is bound to it. Any failure after the port was created,
        whatever its type, deletes the port again before it propagates.

        Raises:
            ProviderCallError: A create call failed or returned a malformed body
            TaggingError: Tagging the port or floating IP failed
        """
        port = await self.provider.create_port(
            self.network_id,
            self.subnet_id,
            description=self.description,
            port_security_enabled=False,
        )
        # The tag can only be set now that the port exists. A crash between
        # the create above and the tag below leaves an untracked port.

        try:
            await self._tag(PORTS, port.id)
            fip = await self._provision_floating_ip(port.id) if self.use_floating_ips else None
        except Exception as e:
            self._attach_warnings(e, await self._delete_port_quietly(port.id))
            raise

        if fip is not None:
            logger.info(
                f"Provisioned port {port.id} with floating IP {fip.floating_ip_address}",
                extra={"port_id": port.id, "floating_ip_id": fip.id},
            )
        else:
            logger.info(f"Provisioned port {port.id}", extra={"port_id": port.id})

        self.cache.invalidate()
        return port.id

    # --- Reconciliation ---

    async def delete_unused_floating_ips(self, stats: CleanupStats | None = None) -> CleanupStats:
        """Delete tagged floating IPs that are not attached to any port.

        Deletion failures are recorded and skipped. If listing fails part
        way, the floating IPs gathered so far are still deleted and the
        listing error is raised afterwards.
        """
        if stats is None:
            stats = CleanupStats()

        to_delete: list[str] = []
        list_error: ProviderCallError | None = None

        try:
            async for fip in self.provider.list_floating_ips(tags=[self.tag]):
                if self.tag not in fip.tags:
                    continue
                if not fip.is_attached:
                    to_delete.append(fip.id)
        except ProviderCallError as e:
            logger.warning(f"Listing floating IPs failed, sweeping partial result: {e.message}")
            list_error = e

        stats.floating_ips_orphaned.extend(to_delete)

        for fip_id in to_delete:
            logger.info(f"Deleting orphaned floating IP {fip_id}", extra={"floating_ip_id": fip_id})
            try:
                await self.provider.delete_floating_ip(fip_id)
            except ProviderCallError as e:
                message = (
                    f"Failed to delete orphaned floating IP {fip_id}: {e.message}. "
                    "The operation will be retried later."
                )
                logger.warning(message, extra={"floating_ip_id": fip_id, "operation": "delete"})
                stats.errors.append(message)
                continue
            stats.floating_ips_deleted.append(fip_id)

        if list_error is not None:
            list_error.warnings.extend(stats.errors)
            raise list_error

        return stats

    async def clean_unused_ports(self, used_port_ids: Iterable[str]) -> CleanupStats:
        """Delete managed ports the caller no longer uses.

        Individual deletion failures are recorded in the returned stats and
        do not stop the pass; the caller's next pass retries them. If any
        port was up for deletion, the cache is invalidated and orphaned
        floating IPs are swept.

        Args:
            used_port_ids: IDs of all ports still referenced by the caller

        Returns:
            CleanupStats describing what was deleted and what failed
        """
        ports = await self.cache.get_ports()
        used = set(used_port_ids)

        stats = CleanupStats(ports_found=len(ports))
        candidates: list[ManagedPort] = []
        for port in ports:
            if port.id in used:
                stats.ports_in_use += 1
            else:
                candidates.append(port)

        if not candidates:
            return stats

        logger.info(
            f"Cleaning up {len(candidates)} unused port(s), keeping {stats.ports_in_use}"
        )

        for port in candidates:
            try:
                await self.provider.delete_port(port.id)
            except ProviderCallError as e:
                message = (
                    f"Failed to delete unused port {port.id}: {e.message}. "
                    "The operation will be retried later."
                )
                logger.warning(message, extra={"port_id": port.id, "operation": "delete"})
                stats.errors.append(message)
                continue
            stats.ports_deleted.append(port.id)

        self.cache.invalidate()
        return await self.delete_unused_floating_ips(stats)

    # --- Lookups ---

    async def get_available_ports(self) -> list[str]:
        """Return the IDs of all managed ports."""
        ports = await self.cache.get_ports()
        return [port.id for port in ports]

    async def get_external_address(self, port_id: str) -> tuple[str, str]:
        """Resolve the externally reachable address of a managed port.

        Returns:
            (address, metadata). The metadata slot is reserved for
            provider-specific hints and is empty for this provider.

        Raises:
            PortIsNilError: The port is not a managed port
            FloatingIPMissingError: Floating IPs are enabled but the port has none
            FixedIPMissingError: Floating IPs are disabled and the port has no address
        """
        port, fip = await self.cache.get_port_by_id(port_id)
        if port is None:
            raise PortIsNilError(port_id)

        if self.use_floating_ips:
            # Provisioning never returns a port without its floating IP,
            # so a missing one is an error, not a pending allocation.
            if fip is None:
                raise FloatingIPMissingError(port_id)
            return fip.floating_ip_address, ""

        if not port.fixed_ips:
            raise FixedIPMissingError(port_id)
        return port.fixed_ips[0].ip_address, ""

    async def get_internal_address(self, port_id: str) -> str:
        """Return the first fixed IP of a managed port.

        Raises:
            PortIsNilError: The port is not a managed port
            FixedIPMissingError: The port has no address
        """
        port, _ = await self.cache.get_port_by_id(port_id)
        if port is None:
            raise PortIsNilError(port_id)
        if not port.fixed_ips:
            raise FixedIPMissingError(port_id)
        return port.fixed_ips[0].ip_address


async def create_port_manager(
    provider: NetworkProvider,
    config: Settings,
) -> L3PortManager:
    """Build a port manager for the configured subnet.

    The target network is looked up from the subnet once, here.

    Raises:
        ProviderCallError: The subnet lookup failed
    """
    subnet = await provider.get_subnet(config.subnet_id)
    logger.info(f"Managing ports on subnet {subnet.id} (network {subnet.network_id})")

    cache = TaggedResourceCache(
        provider,
        ttl=config.port_cache_ttl,
        tag=config.managed_tag,
        use_floating_ips=config.use_floating_ips,
    )
    return L3PortManager(
        provider,
        cache,
        network_id=subnet.network_id,
        subnet_id=config.subnet_id,
        floating_ip_network_id=config.floating_ip_network_id,
        use_floating_ips=config.use_floating_ips,
        tag=config.managed_tag,
        description=config.managed_description,
    )
