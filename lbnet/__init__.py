"""Managed L3 port lifecycle for load-balancer data planes.

This package provides:
- A tagged resource cache joining managed ports with their floating IPs
- Crash-aware provisioning with compensating deletes
- Reconciliation of unused ports and orphaned floating IPs
- An HTTP service exposing the port manager to the controller
"""

from lbnet.version import __version__

__all__ = ["__version__"]
