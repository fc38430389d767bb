"""lbnet service - managed port lifecycle for the load-balancer controller.

The controller calls this service to:
- Provision ports (and floating IPs) for new data-plane endpoints
- Resolve the external and internal address of a managed port
- Reconcile: drop every managed port it no longer references
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from lbnet.config import settings
from lbnet.errors import (
    FixedIPMissingError,
    FloatingIPMissingError,
    PortIsNilError,
    PortManagerError,
    ProviderCallError,
)
from lbnet.logging_config import setup_logging
from lbnet.middleware import CorrelationIdMiddleware
from lbnet.port_manager import L3PortManager, create_port_manager
from lbnet.providers import OpenStackNetworkProvider
from lbnet.schemas import (
    AvailablePortsResponse,
    CleanupPortsRequest,
    CleanupPortsResponse,
    ErrorResponse,
    ExternalAddressResponse,
    InternalAddressResponse,
    ProvisionPortResponse,
)
from lbnet.version import __version__

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the provider and port manager on startup, close on shutdown."""
    logger.info(f"lbnet {__version__} starting...")
    logger.info(f"Network endpoint: {settings.network_endpoint}")
    logger.info(
        f"Subnet: {settings.subnet_id}, floating IPs: "
        f"{settings.floating_ip_network_id if settings.use_floating_ips else 'disabled'}"
    )

    provider = OpenStackNetworkProvider(
        endpoint=settings.network_endpoint,
        token=settings.auth_token,
        timeout=settings.request_timeout,
        page_size=settings.page_size,
    )
    try:
        app.state.port_manager = await create_port_manager(provider, settings)
        yield
    finally:
        await provider.close()
        logger.info("lbnet shutting down")


app = FastAPI(
    title="lbnet",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(CorrelationIdMiddleware)


def get_port_manager(request: Request) -> L3PortManager:
    """Return the port manager built during startup."""
    manager = getattr(request.app.state, "port_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Port manager not initialized")
    return manager


# --- Error mapping ---

def _error_response(status_code: int, error: PortManagerError, context: dict | None = None) -> JSONResponse:
    body = ErrorResponse(
        detail=error.message,
        error_type=type(error).__name__,
        warnings=error.warnings,
        context=context or {},
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(PortIsNilError)
async def port_is_nil_handler(request: Request, exc: PortIsNilError) -> JSONResponse:
    return _error_response(404, exc, {"port_id": exc.port_id})


@app.exception_handler(FloatingIPMissingError)
@app.exception_handler(FixedIPMissingError)
async def address_missing_handler(request: Request, exc: PortManagerError) -> JSONResponse:
    return _error_response(409, exc, {"port_id": getattr(exc, "port_id", None)})


@app.exception_handler(ProviderCallError)
async def provider_error_handler(request: Request, exc: ProviderCallError) -> JSONResponse:
    logger.error(f"Provider call failed: {exc.message}")
    return _error_response(
        502,
        exc,
        {
            "operation": exc.operation,
            "resource_type": exc.resource_type,
            "resource_id": exc.resource_id,
            "status_code": exc.status_code,
            "retriable": exc.retriable,
        },
    )


# --- Health Endpoints ---

@app.get("/health")
def health(request: Request):
    """Basic health check."""
    return {
        "status": "ok",
        "ready": getattr(request.app.state, "port_manager", None) is not None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# --- Port Endpoints ---

@app.get("/ports")
async def list_ports(request: Request) -> AvailablePortsResponse:
    """List all managed port IDs."""
    manager = get_port_manager(request)
    return AvailablePortsResponse(port_ids=await manager.get_available_ports())


@app.post("/ports", status_code=201)
async def provision_port(request: Request) -> ProvisionPortResponse:
    """Provision a new managed port."""
    manager = get_port_manager(request)
    port_id = await manager.provision_port()
    return ProvisionPortResponse(port_id=port_id)


@app.post("/ports/cleanup")
async def cleanup_ports(request: Request, body: CleanupPortsRequest) -> CleanupPortsResponse:
    """Delete managed ports that are not in the used set.

    Args:
        body: Contains the IDs of every port the controller still uses

    Returns:
        Deleted ports and floating IPs, plus non-fatal errors
    """
    manager = get_port_manager(request)
    logger.info(f"Reconciling ports, keeping {len(body.used_port_ids)} in use")
    stats = await manager.clean_unused_ports(body.used_port_ids)
    return CleanupPortsResponse(**stats.to_dict())


@app.get("/ports/{port_id}/external-address")
async def external_address(request: Request, port_id: str) -> ExternalAddressResponse:
    """Resolve the externally reachable address of a port."""
    manager = get_port_manager(request)
    address, metadata = await manager.get_external_address(port_id)
    return ExternalAddressResponse(port_id=port_id, address=address, metadata=metadata)


@app.get("/ports/{port_id}/internal-address")
async def internal_address(request: Request, port_id: str) -> InternalAddressResponse:
    """Resolve the address of a port inside the target network."""
    manager = get_port_manager(request)
    address = await manager.get_internal_address(port_id)
    return InternalAddressResponse(port_id=port_id, address=address)


@app.post("/cache/invalidate", status_code=204)
def invalidate_cache(request: Request) -> Response:
    """Force the next read to refresh from the network API."""
    get_port_manager(request).cache.invalidate()
    return Response(status_code=204)


# --- Entry point ---

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lbnet.main:app",
        host=settings.service_host,
        port=settings.service_port,
        reload=False,
    )
