"""Error types raised by the port manager.

Every error carries a ``warnings`` list. It holds secondary, non-fatal
problems that happened while handling the primary failure, most notably
compensating deletes that failed and left a resource behind. Warnings never
replace the primary error.
"""
from __future__ import annotations


class PortManagerError(Exception):
    """Base exception for port manager failures."""

    def __init__(self, message: str, warnings: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.warnings: list[str] = list(warnings or [])


class ProviderCallError(PortManagerError):
    """A call to the network resource provider failed."""

    def __init__(
        self,
        message: str,
        operation: str = "",
        resource_type: str = "",
        resource_id: str | None = None,
        status_code: int | None = None,
        retriable: bool = False,
        warnings: list[str] | None = None,
    ):
        super().__init__(message, warnings)
        self.operation = operation
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.status_code = status_code
        self.retriable = retriable


class TaggingError(ProviderCallError):
    """Assigning the ownership tag to a freshly created resource failed."""


class FloatingIPMissingError(PortManagerError):
    """A tracked port lacks the floating IP it is required to have."""

    def __init__(self, port_id: str):
        super().__init__(f"Expected floating IP was not found for port {port_id}")
        self.port_id = port_id


class FixedIPMissingError(PortManagerError):
    """A tracked port has no fixed IP address assigned."""

    def __init__(self, port_id: str):
        super().__init__(f"Port {port_id} has no IP address assigned")
        self.port_id = port_id


class PortIsNilError(PortManagerError):
    """The requested port is not among the managed ports."""

    def __init__(self, port_id: str):
        super().__init__(f"Port {port_id} is not a managed port")
        self.port_id = port_id
