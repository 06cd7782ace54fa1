"""
Rolling replacement of a service target group.

The orchestrator resolves the service and its current target group, brings up
a new generation of instances one at a time, registers them as targets once
all are healthy and only then retires the old generation. Any failure before
the new targets are in place stops everything this attempt created and leaves
the old generation untouched.
"""

import logging
from typing import Callable, List, Optional, Sequence
from uuid import UUID

from unisrv.deployment.boot_monitor import BootEventMonitor
from unisrv.deployment.helpers import (
    best_effort,
    generate_deploy_hex,
    instance_name,
    resolve_port,
    resolve_replicas,
)
from unisrv.deployment.instances import (
    DEFAULT_STOP_TIMEOUT_MS,
    InstanceParams,
    WorkloadClient,
)
from unisrv.deployment.state import ALLOWED_TRANSITIONS, PhaseListener, RolloutState, add_event
from unisrv.deployment.targets import TargetRegistry
from unisrv.logging_config import log_rollout_operation
from unisrv.models import (
    LeaveBehind,
    RolloutPhase,
    RolloutRequest,
    RolloutResult,
    Service,
    ServiceTarget,
)
from unisrv.resolve import resolve_service_id
from unisrv_sdk import UnisrvClient

logger = logging.getLogger(__name__)

StepReporter = Callable[[str], None]


class RolloutOrchestrator:
    """Runs one rolling update at a time against a single API session."""

    def __init__(
        self,
        client: UnisrvClient,
        workloads: WorkloadClient,
        targets: TargetRegistry,
        monitor: BootEventMonitor,
        stop_timeout_ms: int = DEFAULT_STOP_TIMEOUT_MS,
        reporter: Optional[StepReporter] = None,
        on_phase: Optional[PhaseListener] = None,
    ):
        """
        Args:
            client: API session used for service and instance lookups
            workloads: Creates and stops instances
            targets: Registers and removes service targets
            monitor: Confirms new instances are healthy
            stop_timeout_ms: Graceful stop timeout for rollback and retirement
            reporter: Receives one line per rollout step
            on_phase: Called after every phase transition
        """
        self.client = client
        self.workloads = workloads
        self.targets = targets
        self.monitor = monitor
        self.stop_timeout_ms = stop_timeout_ms
        self.reporter = reporter
        self.on_phase = on_phase

    def _step(self, message: str) -> None:
        logger.debug(message)
        if self.reporter:
            self.reporter(message)

    async def run(self, request: RolloutRequest) -> RolloutResult:
        """
        Replace the instances behind `request.group` with `request.image`.

        Returns:
            Result of the completed rollout, including retirement warnings

        Raises:
            ResolutionError: The service identifier did not resolve
            ValidationError: Replica count or port could not be determined
            ProvisionError: Image verification or instance creation failed
            HealthCheckError: A new instance did not stay up
            RegistrationError: A new target could not be added
        """
        state = RolloutState(listener=self.on_phase)

        services = await self.client.list_services()
        service_id = resolve_service_id(request.service, services)
        service = await self.client.get_service(service_id)
        old_targets = service.targets_in_group(request.group)

        replicas = resolve_replicas(request.replicas, old_targets)
        port = resolve_port(request.port, old_targets, request.group)

        instances = await self.client.list_instances()
        generation = generate_deploy_hex(
            service.name, request.group, [i.name for i in instances if i.name]
        )

        state.service_id = service_id
        state.generation = generation
        state.replicas = replicas
        add_event(
            state,
            "resolved",
            f"Service {service.name}: {len(old_targets)} old target(s) in group "
            f"'{request.group}', {replicas} replica(s) on port {port}",
        )
        log_rollout_operation(
            "start",
            service_id,
            {
                "generation": generation,
                "group": request.group,
                "image": request.image,
                "replicas": replicas,
                "port": port,
                "old_targets": len(old_targets),
            },
        )

        self._step(f"[1/5] Verifying {request.image}...")
        pull_token = await self.workloads.verify_image(request.image)

        try:
            await self._provision(request, service, state, generation, pull_token)
            await self._register(request, service_id, port, state)
        except Exception as e:
            await self._rollback(state, e)
            raise

        warnings = await self._retire(request, service_id, old_targets, state)
        state.transition(RolloutPhase.COMPLETE)

        retired_targets = 0
        retired_instances = 0
        for event in state.events:
            if event["type"] == "retired_target":
                retired_targets += 1
            elif event["type"] == "retired_instance":
                retired_instances += 1

        log_rollout_operation(
            "complete",
            service_id,
            {"generation": generation, "replicas": replicas, "warnings": len(warnings)},
        )
        return RolloutResult(
            service_id=service_id,
            service_name=service.name,
            group=request.group,
            port=port,
            replicas=replicas,
            generation=generation,
            instance_ids=list(state.instance_ids),
            target_ids=list(state.target_ids),
            retired_targets=retired_targets,
            retired_instances=retired_instances,
            warnings=warnings,
            phase=state.phase,
        )

    async def _provision(
        self,
        request: RolloutRequest,
        service: Service,
        state: RolloutState,
        generation: str,
        pull_token: Optional[str],
    ) -> None:
        for index in range(state.replicas):
            name = instance_name(service.name, request.group, generation, index)
            state.transition(RolloutPhase.PROVISIONING_REPLICA, index, f"Provisioning {name}")
            self._step(f"[2/5 {index + 1}/{state.replicas}] Provisioning {name}...")

            params = InstanceParams(
                container_image=request.image,
                vcpu_count=request.vcpus,
                memory_mb=request.memory_mb,
                args=list(request.args or []),
                env=dict(request.env or {}),
                name=name,
                network=request.network,
            )
            instance_id = await self.workloads.create_instance(params, pull_token)
            # Tracked before the health check so a failing replica is stopped too
            state.track_instance(instance_id)

            state.transition(
                RolloutPhase.AWAITING_HEALTH, index, f"Waiting for {instance_id} to start"
            )
            self._step(f"[2/5 {index + 1}/{state.replicas}] {str(instance_id)[:8]} Starting...")
            await self.monitor.wait_until_healthy(instance_id)
            log_rollout_operation(
                "replica_healthy",
                state.service_id,
                {"instance_id": str(instance_id), "generation": generation, "index": index},
            )

    async def _register(
        self, request: RolloutRequest, service_id: UUID, port: int, state: RolloutState
    ) -> None:
        state.transition(RolloutPhase.REGISTERING_TARGETS)
        self._step(
            f"[3/5] Adding {len(state.instance_ids)} target(s) to service "
            f"(group: {request.group})..."
        )
        for instance_id in state.instance_ids:
            target_id = await self.targets.create_target(
                service_id, instance_id, port, request.group
            )
            state.track_target(target_id)

    async def _rollback(self, state: RolloutState, error: Exception) -> None:
        """Stop every instance this attempt created. The old generation is not touched."""
        log_rollout_operation(
            "rollback",
            state.service_id,
            {
                "generation": state.generation,
                "phase": state.phase.value,
                "error": str(error),
                "instances": [str(i) for i in state.instance_ids],
            },
            level="WARNING",
        )
        failures = await best_effort(
            list(state.instance_ids),
            lambda instance_id: self.workloads.stop_instance(instance_id, self.stop_timeout_ms),
            "stop instance during cleanup",
        )
        for instance_id, e in failures:
            add_event(state, "warning", f"Failed to stop instance {instance_id}: {e}")

        if RolloutPhase.ROLLED_BACK in ALLOWED_TRANSITIONS[state.phase]:
            state.transition(RolloutPhase.ROLLED_BACK, message=str(error))

    async def _retire(
        self,
        request: RolloutRequest,
        service_id: UUID,
        old_targets: Sequence[ServiceTarget],
        state: RolloutState,
    ) -> List[str]:
        """Deregister old targets and stop old instances per the leave-behind policy."""
        state.transition(RolloutPhase.RETIRING_OLD_GENERATION)
        warnings: List[str] = []
        if not old_targets:
            return warnings

        if request.leave_behind != LeaveBehind.TARGETS:
            self._step(f"[4/5] Deregistering {len(old_targets)} old target(s)...")
            target_ids = [t.id for t in old_targets]

            async def remove(target_id: UUID) -> None:
                await self.targets.remove_target(service_id, target_id)
                add_event(state, "retired_target", f"Removed old target {target_id}")

            failures = await best_effort(target_ids, remove, "remove old target")
            warnings.extend(f"Failed to remove old target {tid}: {e}" for tid, e in failures)

        if request.leave_behind is None:
            instance_ids = list(dict.fromkeys(t.instance_id for t in old_targets))
            self._step(f"[5/5] Stopping {len(instance_ids)} old instance(s)...")

            async def stop(instance_id: UUID) -> None:
                await self.workloads.stop_instance(instance_id, self.stop_timeout_ms)
                add_event(state, "retired_instance", f"Stopped old instance {instance_id}")

            failures = await best_effort(instance_ids, stop, "stop old instance")
            warnings.extend(f"Failed to stop old instance {iid}: {e}" for iid, e in failures)

        for warning in warnings:
            add_event(state, "warning", warning)
        if warnings:
            log_rollout_operation(
                "retire",
                service_id,
                {"generation": state.generation, "warnings": warnings},
                level="WARNING",
            )
        return warnings
