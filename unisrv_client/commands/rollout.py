"""
Rollout command for the unisrv CLI.

Replaces the instances behind a service target group with a new image and
reports progress step by step.
"""

from argparse import Namespace
from typing import Optional

from pydantic import ValidationError as ModelValidationError

from unisrv.deployment import (
    BootEventMonitor,
    BootProgress,
    RolloutOrchestrator,
    TargetRegistry,
    WorkloadClient,
)
from unisrv.models import DEFAULT_TARGET_GROUP, LeaveBehind, RolloutRequest, RolloutResult
from unisrv_client.output import render
from unisrv_client.protocols import CommandContext, EXIT_SUCCESS, UsageError
from unisrv_client.utils import ProgressSpinner, env_dict, short_id


class RolloutView:
    """Feeds orchestrator steps and boot progress into one spinner line."""

    def __init__(self, spinner: Optional[ProgressSpinner]):
        self.spinner = spinner
        self.prefix = ""

    def step(self, message: str) -> None:
        self.prefix = message.split("]", 1)[0] + "]" if message.startswith("[") else ""
        if self.spinner:
            if self.spinner.spinning or not self.spinner.animate:
                self.spinner.update(message)
            else:
                self.spinner.start(message)

    def boot(self, progress: BootProgress) -> None:
        if not self.spinner:
            return
        line = f"{self.prefix} {short_id(progress.instance_id)} {progress.phase}"
        if progress.recent and not progress.running:
            line += f": {progress.recent[-1]}"
        self.spinner.update(line)

    def stop(self) -> None:
        if self.spinner:
            self.spinner.stop()


def build_request(args: Namespace) -> RolloutRequest:
    """Turn parsed arguments into a validated rollout request."""
    leave_behind = LeaveBehind(args.leave_behind) if args.leave_behind else None
    try:
        return RolloutRequest(
            service=args.service,
            image=args.image,
            group=args.group or DEFAULT_TARGET_GROUP,
            port=args.port,
            replicas=args.replicas,
            vcpus=args.vcpus,
            memory_mb=args.memory,
            env=env_dict(args.env),
            args=list(args.args or []),
            network=args.network,
            leave_behind=leave_behind,
        )
    except ModelValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise UsageError(f"Invalid rollout arguments: {problems}") from e


def success_message(result: RolloutResult) -> str:
    return (
        f"✅ Rolled out {result.replicas} replica(s) of group '{result.group}' "
        f"on service '{result.service_name}'."
    )


class RolloutCommands:
    """Rolling update commands."""

    @staticmethod
    async def rollout(ctx: CommandContext, args: Namespace) -> int:
        """
        Perform a rolling update of the instances behind a target group.

        Args:
            ctx: Command context
            args: Parsed arguments (service, image, group, port, replicas, ...)

        Returns:
            Exit code
        """
        request = build_request(args)

        view = RolloutView(None if ctx.quiet else ProgressSpinner())
        workloads = WorkloadClient(ctx.client)
        orchestrator = RolloutOrchestrator(
            client=ctx.client,
            workloads=workloads,
            targets=TargetRegistry(ctx.client),
            monitor=BootEventMonitor(
                ctx.client, ctx.settings.health_window_seconds, on_progress=view.boot
            ),
            stop_timeout_ms=ctx.settings.stop_timeout_ms,
            reporter=view.step,
        )

        try:
            result = await orchestrator.run(request)
        finally:
            view.stop()
            await workloads.close()

        # Retirement warnings were already logged as they happened
        if ctx.output_format == "table":
            print(success_message(result))
        else:
            print(render(result, ctx.output_format))
        return EXIT_SUCCESS
