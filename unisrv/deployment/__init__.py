"""
Rolling update orchestration.

Replaces the instances behind a service target group with a new image:
- Sequential provisioning with boot confirmation per replica
- All-or-nothing target registration
- Rollback of the new generation on any failure
- Leave-behind policy for the old generation

Usage:
    from unisrv.deployment import RolloutOrchestrator

    orchestrator = RolloutOrchestrator(client, workloads, targets, monitor)
    result = await orchestrator.run(request)
"""

from unisrv.deployment.boot_monitor import BootEventMonitor, BootProgress, ProgressCallback
from unisrv.deployment.helpers import (
    best_effort,
    generate_deploy_hex,
    instance_name,
    resolve_port,
    resolve_replicas,
)
from unisrv.deployment.instances import InstanceParams, WorkloadClient
from unisrv.deployment.orchestrator import RolloutOrchestrator, StepReporter
from unisrv.deployment.state import RolloutState, add_event
from unisrv.deployment.targets import TargetRegistry

__all__ = [
    # Main orchestrator
    "RolloutOrchestrator",
    # Collaborators
    "BootEventMonitor",
    "BootProgress",
    "InstanceParams",
    "TargetRegistry",
    "WorkloadClient",
    "RolloutState",
    "ProgressCallback",
    "StepReporter",
    # Helper functions
    "add_event",
    "best_effort",
    "generate_deploy_hex",
    "instance_name",
    "resolve_port",
    "resolve_replicas",
]
