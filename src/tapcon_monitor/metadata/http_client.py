"""HTTP client for the metadata service."""

import base64
import json
from typing import Any, Dict, List, Optional, Set

import httpx
from pydantic import ValidationError

from tapcon_monitor.config import Settings
from tapcon_monitor.models.principal import Principal
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.exceptions import MetadataAPIError, PrincipalNotFoundError
from tapcon_monitor.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

CONTAINER_API_PATH = "/openstack/latest/container_api"
AWS_API_PATH = "/latest/meta-data"


def encode_list(values: List[str]) -> str:
    """JSON encode a list of strings, then base64 it for a query parameter."""
    return base64.b64encode(json.dumps(values).encode("utf-8")).decode("ascii")


class HttpMetadataAPI:
    """
    Metadata service client over HTTP.

    Mutations are POSTs carrying their arguments as URL query parameters. The
    service answers ``true`` on success and anything else on failure.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        """
        Initialize the client.

        Args:
            settings: Application settings
            client: HTTP client to use instead of a new one
        """
        self.settings = settings
        self.base_url = settings.metadata_base_url
        self._client = client or httpx.AsyncClient(timeout=settings.metadata_timeout_s)
        self.metrics = get_metrics_collector()

    def _container_api_url(self, endpoint: str) -> str:
        return f"{self.base_url}{CONTAINER_API_PATH}/{endpoint}"

    def _aws_api_url(self, endpoint: str) -> str:
        return f"{self.base_url}{AWS_API_PATH}/{endpoint}"

    async def _request(
        self, operation: str, method: str, url: str, params: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, params=params)
        except httpx.HTTPError as e:
            self.metrics.record_metadata_call(operation, "failure")
            logger.warning(
                "Metadata request failed",
                extra={"operation": operation, "url": url, "error": str(e)},
            )
            raise MetadataAPIError(operation, str(e)) from e
        return response

    async def _post_ok(self, operation: str, params: Dict[str, Any]) -> None:
        response = await self._request(operation, "POST", self._container_api_url(operation), params)
        body = response.text.strip()
        if body.lower() != "true":
            self.metrics.record_metadata_call(operation, "failure")
            raise MetadataAPIError(
                operation, f"metadata server returned {response.status_code}: {body}"
            )
        self.metrics.record_metadata_call(operation, "success")

    async def _get_text(self, operation: str, url: str) -> str:
        response = await self._request(operation, "GET", url)
        if response.status_code != 200:
            self.metrics.record_metadata_call(operation, "failure")
            raise MetadataAPIError(operation, f"metadata server returned {response.status_code}")
        self.metrics.record_metadata_call(operation, "success")
        return response.text.strip()

    async def create_principal(self, principal: str) -> None:
        await self._post_ok("create_principal", {"principal": principal})

    async def delete_principal(self, principal: str) -> None:
        await self._post_ok("delete_principal", {"principal": principal})

    async def list_principals(self) -> Set[str]:
        """
        List every principal the service holds.

        Raises:
            MetadataAPIError: If the request fails or the body is not a JSON list
        """
        operation = "list_principals"
        body = await self._get_text(operation, self._container_api_url(operation))
        try:
            names = json.loads(body)
        except json.JSONDecodeError as e:
            raise MetadataAPIError(operation, f"invalid JSON: {e}") from e
        if names is None:
            return set()
        if not isinstance(names, list):
            raise MetadataAPIError(operation, "expected a JSON list")
        return {str(name) for name in names}

    async def show_principal(self, principal: str) -> Principal:
        """
        Fetch one principal.

        Raises:
            PrincipalNotFoundError: If the service does not know the principal
            MetadataAPIError: On any other failure
        """
        operation = "show_principal"
        response = await self._request(
            operation, "GET", self._container_api_url(operation), {"principal": principal}
        )
        if response.status_code == 404:
            self.metrics.record_metadata_call(operation, "not_found")
            raise PrincipalNotFoundError(principal)
        if response.status_code != 200:
            self.metrics.record_metadata_call(operation, "failure")
            raise MetadataAPIError(operation, f"metadata server returned {response.status_code}")

        try:
            result = Principal.model_validate_json(response.content)
        except ValidationError as e:
            self.metrics.record_metadata_call(operation, "failure")
            raise MetadataAPIError(operation, f"invalid principal: {e}") from e
        self.metrics.record_metadata_call(operation, "success")
        return result

    async def create_ip_alias(self, principal: str, ns_name: str, ip: str) -> None:
        await self._post_ok(
            "create_ip_alias", {"ns_name": ns_name, "principal": principal, "ip": ip}
        )

    async def delete_ip_alias(self, principal: str, ns_name: str, ip: str) -> None:
        await self._post_ok(
            "delete_ip_alias", {"ns_name": ns_name, "principal": principal, "ip": ip}
        )

    def _port_alias_params(
        self, principal: str, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> Dict[str, Any]:
        return {
            "ns_name": ns_name,
            "principal": principal,
            "ip": ip,
            "protocol": protocol,
            "port_min": str(port_min),
            "port_max": str(port_max),
        }

    async def create_port_alias(
        self, principal: str, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> None:
        await self._post_ok(
            "create_port_alias",
            self._port_alias_params(principal, ns_name, ip, protocol, port_min, port_max),
        )

    async def delete_port_alias(
        self, principal: str, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int
    ) -> None:
        await self._post_ok(
            "delete_port_alias",
            self._port_alias_params(principal, ns_name, ip, protocol, port_min, port_max),
        )

    async def post_proof(self, principal: str, statements: List[str]) -> None:
        await self._post_ok(
            "post_proofs", {"target": principal, "statements": encode_list(statements)}
        )

    async def post_proof_for_child(self, principal: str, statements: List[str]) -> None:
        await self._post_ok(
            "post_proofs_for_child", {"target": principal, "statements": encode_list(statements)}
        )

    async def link_proof(self, principal: str, dependencies: List[str]) -> None:
        await self._post_ok(
            "link_proofs", {"target": principal, "dependencies": encode_list(dependencies)}
        )

    async def link_proof_for_child(self, principal: str, dependencies: List[str]) -> None:
        await self._post_ok(
            "link_proofs_for_child",
            {"target": principal, "dependencies": encode_list(dependencies)},
        )

    async def create_ns(self, ns_name: str) -> None:
        await self._post_ok("create_ns", {"ns_name": ns_name})

    async def delete_ns(self, ns_name: str) -> None:
        await self._post_ok("delete_ns", {"ns_name": ns_name})

    async def join_ns(self, ns_name: str) -> None:
        await self._post_ok("join_ns", {"ns_name": ns_name})

    async def leave_ns(self, ns_name: str) -> None:
        await self._post_ok("leave_ns", {"ns_name": ns_name})

    async def my_public_ip(self) -> str:
        return await self._get_text("my_public_ip", self._aws_api_url("public-ipv4"))

    async def my_local_ip(self) -> str:
        return await self._get_text("my_local_ip", self._aws_api_url("local-ipv4"))

    async def my_ns(self) -> str:
        return await self._get_text("my_ns", self._container_api_url("query_iaas_ns"))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
