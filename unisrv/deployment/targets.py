"""
Target registry client: binds instance ports to a service's target group.
"""

import logging
from typing import Optional
from uuid import UUID

import httpx

from unisrv.errors import DecommissionError, RegistrationError
from unisrv.models import DEFAULT_TARGET_GROUP
from unisrv_sdk import UnisrvClient, UnisrvError

logger = logging.getLogger(__name__)


class TargetRegistry:
    """Registers and deregisters service targets."""

    def __init__(self, client: UnisrvClient):
        self.client = client

    async def create_target(
        self,
        service_id: UUID,
        instance_id: UUID,
        port: int,
        group: Optional[str] = DEFAULT_TARGET_GROUP,
    ) -> UUID:
        """
        Register `instance_id:port` as a target of the service.

        Returns:
            The new target id

        Raises:
            RegistrationError: If the API refuses the target
        """
        try:
            target_id = await self.client.create_target(service_id, instance_id, port, group)
        except (UnisrvError, httpx.HTTPError) as e:
            raise RegistrationError(
                f"Failed to add target for instance {instance_id} on port {port}: {e}"
            ) from e
        logger.info(
            f"Added target {target_id} ({instance_id}:{port}, group {group}) to service {service_id}"
        )
        return target_id

    async def remove_target(self, service_id: UUID, target_id: UUID) -> None:
        """
        Deregister a target.

        Raises:
            DecommissionError: If the API refuses the removal
        """
        try:
            await self.client.remove_target(service_id, target_id)
        except (UnisrvError, httpx.HTTPError) as e:
            raise DecommissionError(f"Failed to remove target {target_id}: {e}") from e
        logger.info(f"Removed target {target_id} from service {service_id}")
