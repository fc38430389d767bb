"""OpenStack Networking (Neutron) provider.

Talks to the Neutron v2.0 REST API with httpx. Only the calls needed for
managed port lifecycle are implemented:

- subnets: get
- ports: create, get, delete, list (paged, tag filtered)
- floating IPs: create, delete, list (paged, tag filtered)
- tags: replace all tags of a port or floating IP

The authentication token is supplied by the caller and sent verbatim in the
X-Auth-Token header; obtaining or renewing it is out of scope.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from lbnet.errors import ProviderCallError
from lbnet.providers.base import FLOATING_IPS, PORTS, NetworkProvider
from lbnet.schemas import FloatingIP, ManagedPort, Subnet


logger = logging.getLogger(__name__)

API_PREFIX = "/v2.0"

ModelT = TypeVar("ModelT", bound=BaseModel)


def translate_httpx_error(
    error: httpx.HTTPError,
    operation: str,
    resource_type: str,
    resource_id: str | None = None,
) -> ProviderCallError:
    """Turn an httpx exception into a ProviderCallError.

    Transport failures and 5xx responses are marked retriable, other
    HTTP errors are not.
    """
    target = f"{resource_type} {resource_id}" if resource_id else resource_type

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        message = f"{operation} {target} failed: HTTP {status_code}"
        if error.response.text:
            message += f": {error.response.text[:200]}"
        return ProviderCallError(
            message,
            operation=operation,
            resource_type=resource_type,
            resource_id=resource_id,
            status_code=status_code,
            retriable=status_code >= 500,
        )

    if isinstance(error, httpx.TimeoutException):
        message = f"{operation} {target} timed out: {error}"
    else:
        message = f"{operation} {target} failed: {error}"

    return ProviderCallError(
        message,
        operation=operation,
        resource_type=resource_type,
        resource_id=resource_id,
        retriable=True,
    )


MALFORMED_BODY_ERRORS = (ValidationError, ValueError, KeyError, TypeError, AttributeError)


def translate_parse_error(
    error: Exception,
    operation: str,
    resource_type: str,
    resource_id: str | None = None,
) -> ProviderCallError:
    """Turn an undecodable or unexpected response body into a ProviderCallError.

    The request itself succeeded, so repeating it is not expected to help;
    the error is not retriable.
    """
    target = f"{resource_type} {resource_id}" if resource_id else resource_type
    return ProviderCallError(
        f"{operation} {target} failed: malformed response ({type(error).__name__}: {error})",
        operation=operation,
        resource_type=resource_type,
        resource_id=resource_id,
        retriable=False,
    )


class OpenStackNetworkProvider(NetworkProvider):
    """Neutron-backed network resource provider.

    Usage:
        provider = OpenStackNetworkProvider(
            endpoint="https://network.example.com:9696",
            token=token,
        )
        port = await provider.create_port(network_id, subnet_id)
        await provider.close()
    """

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        timeout: float = 30.0,
        page_size: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.page_size = page_size

        headers = {"Accept": "application/json"}
        if token:
            headers["X-Auth-Token"] = token

        self._client = httpx.AsyncClient(
            base_url=self.endpoint,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "openstack"

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        resource_type: str,
        resource_id: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> httpx.Response | None:
        """Issue a request, raising ProviderCallError on failure.

        With allow_missing, a 404 response yields None instead of an error.
        """
        logger.debug(f"{method} {url} ({operation} {resource_type} {resource_id or ''})")
        try:
            response = await self._client.request(method, url, json=json, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if allow_missing and e.response.status_code == 404:
                return None
            raise translate_httpx_error(e, operation, resource_type, resource_id) from e
        except httpx.HTTPError as e:
            raise translate_httpx_error(e, operation, resource_type, resource_id) from e
        return response

    def _list_params(self, tags: list[str] | None) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if tags:
            # Neutron matches resources carrying all comma-separated tags
            params["tags"] = ",".join(tags)
        if self.page_size > 0:
            params["limit"] = self.page_size
        return params

    async def _paginate(
        self,
        collection: str,
        model: type[ModelT],
        params: dict[str, Any],
    ) -> AsyncIterator[ModelT]:
        """Yield every item of a collection, following Neutron's next links."""
        url: str | None = f"{API_PREFIX}/{collection}"
        query: dict[str, Any] | None = params
        page = 0

        while url:
            response = await self._request("GET", url, "list", collection, params=query)
            items, url = self._parse_page(response, collection, model)
            query = None
            page += 1
            logger.debug(f"list {collection}: page {page} returned {len(items)} item(s)")

            for item in items:
                yield item

            if not items:
                break

    @staticmethod
    def _parse(
        response: httpx.Response,
        key: str,
        model: type[ModelT],
        operation: str,
        resource_type: str,
        resource_id: str | None = None,
    ) -> ModelT:
        """Validate ``response.json()[key]`` as model.

        Raises:
            ProviderCallError: The body is not JSON or does not match the model
        """
        try:
            return model.model_validate(response.json()[key])
        except MALFORMED_BODY_ERRORS as e:
            raise translate_parse_error(e, operation, resource_type, resource_id) from e

    @staticmethod
    def _parse_page(
        response: httpx.Response,
        collection: str,
        model: type[ModelT],
    ) -> tuple[list[ModelT], str | None]:
        """Validate one list page and return its items and the next-page URL.

        The whole page is validated before any item is handed out, so a bad
        page fails like a failed request.
        """
        try:
            body = response.json()
            items = [model.model_validate(item) for item in body.get(collection, [])]
            # The next link carries the complete query including the marker
            next_url = None
            for link in body.get(f"{collection}_links", []):
                if link.get("rel") == "next":
                    next_url = link.get("href")
                    break
        except MALFORMED_BODY_ERRORS as e:
            raise translate_parse_error(e, "list", collection) from e
        return items, next_url

    async def get_subnet(self, subnet_id: str) -> Subnet:
        response = await self._request(
            "GET", f"{API_PREFIX}/subnets/{subnet_id}", "get", "subnets", subnet_id
        )
        return self._parse(response, "subnet", Subnet, "get", "subnets", subnet_id)

    async def create_port(
        self,
        network_id: str,
        subnet_id: str,
        description: str = "",
        port_security_enabled: bool = False,
    ) -> ManagedPort:
        payload = {
            "port": {
                "network_id": network_id,
                "description": description,
                "fixed_ips": [{"subnet_id": subnet_id}],
                "port_security_enabled": port_security_enabled,
            }
        }
        response = await self._request("POST", f"{API_PREFIX}/ports", "create", PORTS, json=payload)
        port = self._parse(response, "port", ManagedPort, "create", PORTS)
        logger.info(f"Created port {port.id} on network {network_id}")
        return port

    async def get_port(self, port_id: str) -> ManagedPort | None:
        response = await self._request(
            "GET", f"{API_PREFIX}/ports/{port_id}", "get", PORTS, port_id, allow_missing=True
        )
        if response is None:
            return None
        return self._parse(response, "port", ManagedPort, "get", PORTS, port_id)

    async def delete_port(self, port_id: str) -> None:
        response = await self._request(
            "DELETE", f"{API_PREFIX}/ports/{port_id}", "delete", PORTS, port_id, allow_missing=True
        )
        if response is None:
            logger.debug(f"Port {port_id} already deleted")
            return
        logger.info(f"Deleted port {port_id}")

    def list_ports(self, tags: list[str] | None = None) -> AsyncIterator[ManagedPort]:
        return self._paginate(PORTS, ManagedPort, self._list_params(tags))

    async def create_floating_ip(
        self,
        floating_network_id: str,
        port_id: str,
        description: str = "",
    ) -> FloatingIP:
        payload = {
            "floatingip": {
                "floating_network_id": floating_network_id,
                "port_id": port_id,
                "description": description,
            }
        }
        response = await self._request(
            "POST", f"{API_PREFIX}/floatingips", "create", FLOATING_IPS, json=payload
        )
        fip = self._parse(response, "floatingip", FloatingIP, "create", FLOATING_IPS)
        logger.info(f"Created floating IP {fip.id} ({fip.floating_ip_address}) for port {port_id}")
        return fip

    async def delete_floating_ip(self, floating_ip_id: str) -> None:
        response = await self._request(
            "DELETE",
            f"{API_PREFIX}/floatingips/{floating_ip_id}",
            "delete",
            FLOATING_IPS,
            floating_ip_id,
            allow_missing=True,
        )
        if response is None:
            logger.debug(f"Floating IP {floating_ip_id} already deleted")
            return
        logger.info(f"Deleted floating IP {floating_ip_id}")

    def list_floating_ips(self, tags: list[str] | None = None) -> AsyncIterator[FloatingIP]:
        return self._paginate(FLOATING_IPS, FloatingIP, self._list_params(tags))

    async def replace_tags(self, resource_type: str, resource_id: str, tags: list[str]) -> None:
        await self._request(
            "PUT",
            f"{API_PREFIX}/{resource_type}/{resource_id}/tags",
            "tag",
            resource_type,
            resource_id,
            json={"tags": list(tags)},
        )
        logger.debug(f"Tagged {resource_type} {resource_id} with {tags}")

    async def close(self) -> None:
        await self._client.aclose()
