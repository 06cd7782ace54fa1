"""
Tests for rollout helper functions.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from unisrv.deployment.helpers import (
    best_effort,
    generate_deploy_hex,
    instance_name,
    resolve_port,
    resolve_replicas,
)
from unisrv.errors import ValidationError
from unisrv.models import ServiceTarget


def target(port):
    return ServiceTarget(id=uuid4(), instance_id=uuid4(), instance_port=port)


class TestGenerateDeployHex:
    """Generation marker uniqueness."""

    def test_never_returns_used_marker(self):
        """With svc_default_ab12_0 present, ab12 is rejected and a fresh value drawn."""
        with patch("unisrv.deployment.helpers.secrets.token_hex", side_effect=["ab12", "ab12", "9f0e"]):
            result = generate_deploy_hex("svc", "default", ["svc_default_ab12_0"])

        assert result == "9f0e"

    def test_random_draws_skip_used_marker(self):
        for _ in range(200):
            assert generate_deploy_hex("svc", "default", ["svc_default_ab12_0"]) != "ab12"

    def test_format(self):
        result = generate_deploy_hex("svc", "default", [])
        assert len(result) == 4
        assert all(c in "0123456789abcdef" for c in result)

    def test_only_exact_prefix_collides(self):
        """Names in other groups or with longer markers do not block a candidate."""
        existing = ["svc_canary_ab12_0", "svc_default_ab123_0", "other_default_ab12_0"]
        with patch("unisrv.deployment.helpers.secrets.token_hex", return_value="ab12"):
            assert generate_deploy_hex("svc", "default", existing) == "ab12"

    def test_widens_when_attempts_exhausted(self):
        with patch(
            "unisrv.deployment.helpers.secrets.token_hex",
            side_effect=["ab12", "ab12", "ab12ef"],
        ) as token_hex:
            result = generate_deploy_hex(
                "svc", "default", ["svc_default_ab12_0"], max_attempts=2
            )

        assert result == "ab12ef"
        assert token_hex.call_args_list[-1].args == (3,)

    def test_instance_name(self):
        assert instance_name("svc", "default", "ab12", 3) == "svc_default_ab12_3"


class TestResolveReplicas:
    def test_requested_wins(self):
        assert resolve_replicas(4, [target(80)]) == 4

    def test_defaults_to_old_count(self):
        assert resolve_replicas(None, [target(80), target(80), target(80)]) == 3

    def test_minimum_one(self):
        assert resolve_replicas(None, []) == 1

    def test_zero_rejected(self):
        with pytest.raises(ValidationError):
            resolve_replicas(0, [])


class TestResolvePort:
    def test_shared_port(self):
        assert resolve_port(None, [target(8080), target(8080)], "default") == 8080

    def test_disagreement(self):
        with pytest.raises(ValidationError) as exc:
            resolve_port(None, [target(8080), target(9090)], "web")

        assert str(exc.value).startswith(
            "--port required: existing targets in group 'web' have different ports"
        )

    def test_no_targets_no_port(self):
        with pytest.raises(ValidationError, match="no existing targets exist for group 'default'"):
            resolve_port(None, [], "default")

    def test_requested_port(self):
        assert resolve_port(3000, [], "default") == 3000


class TestBestEffort:
    """Cleanup loops never short-circuit."""

    @pytest.mark.asyncio
    async def test_runs_every_item_and_collects_failures(self, caplog):
        action = AsyncMock(side_effect=[None, RuntimeError("nope"), None])

        failures = await best_effort(["a", "b", "c"], action, "stop instance")

        assert action.await_count == 3
        assert [(item, str(err)) for item, err in failures] == [("b", "nope")]
        assert "Failed to stop instance b: nope" in caplog.text

    @pytest.mark.asyncio
    async def test_no_failures(self):
        failures = await best_effort([1, 2], AsyncMock(return_value=None), "noop")
        assert failures == []
