"""
Service and target commands for the unisrv CLI.
"""

import sys
from argparse import Namespace

from unisrv.deployment import TargetRegistry
from unisrv.models import DEFAULT_TARGET_GROUP
from unisrv.resolve import resolve_instance_id, resolve_service_id, resolve_target_id
from unisrv_client.output import render, table
from unisrv_client.protocols import CommandContext, EXIT_SUCCESS


class ServiceCommands:
    """Service commands."""

    @staticmethod
    async def list(ctx: CommandContext, args: Namespace) -> int:
        """List services."""
        services = await ctx.client.list_services()
        if not services and ctx.output_format == "table":
            print("No services found.", file=sys.stderr)
            return EXIT_SUCCESS

        rows = [{"id": s.id, "name": s.name, "type": s.service_type} for s in services]
        print(render(rows, ctx.output_format, columns=["id", "name", "type"]))
        return EXIT_SUCCESS

    @staticmethod
    async def show(ctx: CommandContext, args: Namespace) -> int:
        """
        Show a service and its targets.

        Args:
            ctx: Command context
            args: Parsed arguments (service)

        Returns:
            Exit code
        """
        services = await ctx.client.list_services()
        service_id = resolve_service_id(args.service, services)
        service = await ctx.client.get_service(service_id)

        if ctx.output_format != "table":
            print(render(service, ctx.output_format))
            return EXIT_SUCCESS

        print(f"\n=== Service {service.name} ===")
        print(f"ID: {service.id}")
        if service.service_type:
            print(f"Type: {service.service_type}")
        if service.created_at:
            print(f"Created: {service.created_at}")
        print()

        rows = [
            {
                "id": t.id,
                "group": t.group,
                "instance_id": t.instance_id,
                "port": t.instance_port,
            }
            for t in sorted(service.targets, key=lambda t: (t.group, str(t.instance_id)))
        ]
        if rows:
            print(table(rows, ["id", "group", "instance_id", "port"]))
        else:
            print("No targets.")
        return EXIT_SUCCESS


class TargetCommands:
    """Service target commands."""

    @staticmethod
    async def add(ctx: CommandContext, args: Namespace) -> int:
        """Register an instance port as a target of a service."""
        services = await ctx.client.list_services()
        service_id = resolve_service_id(args.service, services)
        instances = await ctx.client.list_instances()
        instance_id = resolve_instance_id(args.instance, instances)

        targets = TargetRegistry(ctx.client)
        target_id = await targets.create_target(
            service_id, instance_id, args.port, args.group or DEFAULT_TARGET_GROUP
        )
        if ctx.quiet:
            print(target_id)
        else:
            print(f"Target {target_id} added ({instance_id}:{args.port}, group {args.group}).")
        return EXIT_SUCCESS

    @staticmethod
    async def delete(ctx: CommandContext, args: Namespace) -> int:
        """Remove a target from a service."""
        services = await ctx.client.list_services()
        service_id = resolve_service_id(args.service, services)
        service = await ctx.client.get_service(service_id)
        target_id = resolve_target_id(args.target, service.targets)

        targets = TargetRegistry(ctx.client)
        await targets.remove_target(service_id, target_id)
        if not ctx.quiet:
            print(f"Target {target_id} removed.")
        return EXIT_SUCCESS
