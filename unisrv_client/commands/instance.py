"""
Instance management commands for the unisrv CLI.
"""

import sys
from argparse import Namespace
from typing import Any, Dict, List

from unisrv.deployment import BootEventMonitor, InstanceParams, WorkloadClient
from unisrv.deployment.boot_monitor import describe_event
from unisrv.models import BootEvent, BootEventKind, Instance
from unisrv.resolve import resolve_instance_id
from unisrv_client.output import render
from unisrv_client.protocols import CommandContext, EXIT_SUCCESS
from unisrv_client.utils import ProgressSpinner, env_dict, short_id

INSTANCE_COLUMNS = ["id", "name", "state", "image", "created_at"]


def instance_rows(instances: List[Instance]) -> List[Dict[str, Any]]:
    return [
        {
            "id": i.id,
            "name": i.name,
            "state": i.state,
            "image": i.image,
            "created_at": i.created_at,
        }
        for i in instances
    ]


def print_event(event: BootEvent) -> None:
    """Container output goes to stdout/stderr as is, everything else to stderr."""
    if event.log_type == BootEventKind.STDOUT:
        print(event.message or "")
    else:
        print(describe_event(event), file=sys.stderr)


class InstanceCommands:
    """Instance commands."""

    @staticmethod
    async def list(ctx: CommandContext, args: Namespace) -> int:
        """
        List instances.

        Args:
            ctx: Command context
            args: Parsed arguments (all)

        Returns:
            Exit code
        """
        instances = await ctx.client.list_instances()
        if not args.all:
            instances = [i for i in instances if i.is_active]

        if not instances and ctx.output_format == "table":
            if args.all:
                print("No instances found. How about running one?", file=sys.stderr)
            else:
                print("No running instances found.", file=sys.stderr)
            return EXIT_SUCCESS

        print(render(instance_rows(instances), ctx.output_format, columns=INSTANCE_COLUMNS))
        return EXIT_SUCCESS

    @staticmethod
    async def stop(ctx: CommandContext, args: Namespace) -> int:
        """Stop an instance by UUID, name or UUID prefix."""
        instances = await ctx.client.list_instances()
        instance_id = resolve_instance_id(args.instance, instances)

        workloads = WorkloadClient(ctx.client)
        timeout_ms = args.timeout if args.timeout is not None else ctx.settings.stop_timeout_ms
        await workloads.stop_instance(instance_id, timeout_ms)

        if not ctx.quiet:
            print(f"Instance {instance_id} stopped.")
        return EXIT_SUCCESS

    @staticmethod
    async def logs(ctx: CommandContext, args: Namespace) -> int:
        """Stream boot events and container output until the instance stops."""
        instances = await ctx.client.list_instances()
        instance_id = resolve_instance_id(args.instance, instances)

        monitor = BootEventMonitor(ctx.client, ctx.settings.health_window_seconds)
        await monitor.follow(instance_id, print_event)
        return EXIT_SUCCESS

    @staticmethod
    async def run(ctx: CommandContext, args: Namespace) -> int:
        """
        Start one instance of an image and follow its logs.

        Args:
            ctx: Command context
            args: Parsed arguments (image, args, vcpus, memory, env, name, network, detach)

        Returns:
            Exit code
        """
        params = InstanceParams(
            container_image=args.image,
            vcpu_count=args.vcpus,
            memory_mb=args.memory,
            args=list(args.args or []),
            env=env_dict(args.env) or {},
            name=args.name,
            network=args.network,
        )

        spinner = None if ctx.quiet else ProgressSpinner()
        workloads = WorkloadClient(ctx.client)
        try:
            if spinner:
                spinner.start(f"Starting instance with image: {args.image}")
            pull_token = await workloads.verify_image(args.image)
            instance_id = await workloads.create_instance(params, pull_token)
        finally:
            if spinner:
                spinner.stop()
            await workloads.close()

        if args.detach:
            print(instance_id)
            return EXIT_SUCCESS

        if not ctx.quiet:
            print(f"🚀 Instance {short_id(instance_id)} started successfully", file=sys.stderr)
        monitor = BootEventMonitor(ctx.client, ctx.settings.health_window_seconds)
        await monitor.follow(instance_id, print_event)
        return EXIT_SUCCESS
