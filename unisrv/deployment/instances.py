"""
Workload lifecycle client.

Verifies container images, creates instances and stops them. Every failure
is raised as a rollout error so the orchestrator can decide whether it is
fatal.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import httpx

from unisrv.errors import ProvisionError, ResolutionError
from unisrv.registry import ImageReference, RegistryClient, RegistryError
from unisrv.resolve import resolve_network_id
from unisrv_sdk import UnisrvClient, UnisrvError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "dev"
DEFAULT_STOP_TIMEOUT_MS = 5000


@dataclass
class InstanceParams:
    """Parameters for one new instance."""

    container_image: str
    vcpu_count: int = 1
    memory_mb: int = 1024
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    name: Optional[str] = None
    network: Optional[str] = None


def parse_network_spec(spec: str) -> Tuple[Optional[str], str]:
    """
    Split a `[ip]@network` spec into (ip, network identifier).

    A bare network identifier means the IP is auto-assigned.
    """
    ip, sep, network = spec.partition("@")
    if not sep:
        return None, spec
    if not network:
        raise ProvisionError(
            f"Invalid network format: '{spec}'. Expected format: [ip]@<network_id/name>"
        )
    if not ip:
        return None, network
    try:
        ipaddress.IPv4Address(ip)
    except ValueError as e:
        raise ProvisionError(f"Invalid IP address '{ip}' in network spec '{spec}'") from e
    return ip, network


def next_free_ip(cidr: str, used: Iterable[str]) -> str:
    """
    First host address of `cidr` that is not already in use.

    Raises:
        ProvisionError: If the CIDR is invalid or every host address is taken
    """
    try:
        network = ipaddress.IPv4Network(cidr, strict=False)
    except ValueError as e:
        raise ProvisionError(f"Invalid CIDR format: {cidr}") from e

    taken = set()
    for ip in used:
        try:
            taken.add(ipaddress.IPv4Address(ip))
        except ValueError:
            logger.debug(f"Ignoring malformed address {ip!r} in network {cidr}")

    for host in network.hosts():
        if host not in taken:
            return str(host)
    raise ProvisionError(f"No free IP addresses left in network {cidr}")


class WorkloadClient:
    """Creates, verifies and stops instances through the API client."""

    def __init__(self, client: UnisrvClient, registry: Optional[RegistryClient] = None):
        self.client = client
        self._registry = registry
        self._owns_registry = registry is None

    @property
    def registry(self) -> RegistryClient:
        if self._registry is None:
            self._registry = RegistryClient()
        return self._registry

    async def verify_image(self, image_ref: str) -> Optional[str]:
        """
        Verify the image exists and return a pull token scoped to it.

        Returns:
            Scoped pull token, or None for anonymous registries

        Raises:
            ProvisionError: If the reference is malformed, credentials are
                missing or the registry rejects the image
        """
        try:
            reference = ImageReference.parse(image_ref)
            username, password = self.client.registry_credentials(reference.registry)
            return await self.registry.verify_and_get_token(image_ref, username, password)
        except (RegistryError, httpx.HTTPError) as e:
            raise ProvisionError(f"Image verification failed for {image_ref}: {e}") from e

    async def build_payload(
        self, params: InstanceParams, pull_token: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "region": DEFAULT_REGION,
            "vcpu_ratio": 1.0,
            "vcpu_count": params.vcpu_count,
            "memory_mb": params.memory_mb,
            "name": params.name,
            "configuration": {
                "container_image": params.container_image,
                "args": list(params.args),
                "env": dict(params.env),
            },
        }
        if pull_token:
            payload["registry_token"] = pull_token
        if params.network:
            payload["network"] = await self._network_config(params.network)
        return payload

    async def _network_config(self, spec: str) -> Dict[str, str]:
        ip, identifier = parse_network_spec(spec)
        try:
            networks = await self.client.list_networks()
            network_id = resolve_network_id(identifier, networks)
            if ip is None:
                detail = await self.client.get_network(network_id)
                ip = next_free_ip(detail.ipv4_cidr, (m.internal_ip for m in detail.instances))
                logger.debug(f"Auto-assigned {ip} in network {detail.name}")
        except (UnisrvError, ResolutionError, httpx.HTTPError) as e:
            raise ProvisionError(f"Failed to resolve network '{identifier}': {e}") from e
        return {"network_id": str(network_id), "instance_ip": ip}

    async def create_instance(
        self, params: InstanceParams, pull_token: Optional[str] = None
    ) -> UUID:
        """
        Create an instance.

        Args:
            params: Image, sizing, env, args, name and network
            pull_token: Scoped pull token from verify_image

        Returns:
            The new instance id

        Raises:
            ProvisionError: If the network cannot be resolved or the API refuses
        """
        payload = await self.build_payload(params, pull_token)
        try:
            instance_id = await self.client.create_instance(payload)
        except (UnisrvError, httpx.HTTPError) as e:
            raise ProvisionError(f"Failed to create instance {params.name or ''}: {e}") from e
        logger.info(f"Created instance {instance_id} ({params.name})")
        return instance_id

    async def stop_instance(
        self, instance_id: UUID, timeout_ms: int = DEFAULT_STOP_TIMEOUT_MS
    ) -> None:
        """Stop an instance. Errors propagate; callers decide whether they matter."""
        await self.client.stop_instance(instance_id, timeout_ms)
        logger.info(f"Stopped instance {instance_id}")

    async def close(self) -> None:
        """Close the registry client if this object created it."""
        if self._owns_registry and self._registry is not None:
            await self._registry.close()
            self._registry = None
