"""
Tests for service target registration.
"""

from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest

from unisrv.deployment.targets import TargetRegistry
from unisrv.errors import DecommissionError, RegistrationError
from unisrv_sdk import APIError


@pytest.fixture
def api():
    client = Mock()
    client.create_target = AsyncMock(return_value=uuid4())
    client.remove_target = AsyncMock()
    return client


class TestTargetRegistry:
    @pytest.mark.asyncio
    async def test_create(self, api):
        service_id, instance_id = uuid4(), uuid4()

        target_id = await TargetRegistry(api).create_target(service_id, instance_id, 8080, "canary")

        assert target_id == api.create_target.return_value
        api.create_target.assert_awaited_once_with(service_id, instance_id, 8080, "canary")

    @pytest.mark.asyncio
    async def test_create_failure(self, api):
        api.create_target.side_effect = APIError("add target: port not exposed", 400)
        instance_id = uuid4()

        with pytest.raises(RegistrationError) as exc:
            await TargetRegistry(api).create_target(uuid4(), instance_id, 8080)

        assert str(exc.value) == (
            f"Failed to add target for instance {instance_id} on port 8080: "
            "add target: port not exposed"
        )

    @pytest.mark.asyncio
    async def test_remove_failure(self, api):
        api.remove_target.side_effect = APIError("delete target: not found", 404)
        target_id = uuid4()

        with pytest.raises(DecommissionError, match=f"Failed to remove target {target_id}"):
            await TargetRegistry(api).remove_target(uuid4(), target_id)
