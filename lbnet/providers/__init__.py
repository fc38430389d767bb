"""Network resource providers for the port manager."""

from lbnet.providers.base import (
    FLOATING_IPS,
    PORTS,
    NetworkProvider,
)
from lbnet.providers.openstack import OpenStackNetworkProvider

__all__ = [
    # Base class and resource type names
    "NetworkProvider",
    "PORTS",
    "FLOATING_IPS",
    # Provider implementations
    "OpenStackNetworkProvider",
]
