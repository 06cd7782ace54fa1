#!/usr/bin/env python3
"""
unisrv CLI Tool - Main entry point.

This module provides the main CLI interface for rolling updates and the
login, registry, instance and service commands around them. It uses
argparse for command-line argument parsing and routes commands to the
command handlers.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError as ModelValidationError

from unisrv import __version__
from unisrv.auth import AuthSession, StaticToken
from unisrv.config import CliSettings
from unisrv.logging_config import setup_logging
from unisrv_client.protocols import (
    CommandContext,
    EXIT_ERROR,
    EXIT_INVALID_ARGS,
    EXIT_SUCCESS,
)
from unisrv_client.utils import handle_cli_error, parse_env_var, parse_memory_mb
from unisrv_sdk import UnisrvClient

logger = logging.getLogger(__name__)


def port_number(value: str) -> int:
    port = int(value)
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port must be between 1 and 65535, got {port}")
    return port


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def add_workload_options(parser) -> List[argparse.Action]:
    """Sizing, environment and network options shared by `rollout` and `instance run`."""
    return [
        parser.add_argument(
            "-c",
            "--vcpus",
            type=int,
            choices=range(1, 33),
            default=1,
            metavar="[1-32]",
            help="Number of vCPUs to allocate",
        ),
        parser.add_argument(
            "-m",
            "--memory",
            type=parse_memory_mb,
            default="1024M",
            help="Amount of memory in GB (G) or MB (M) [128M-128G]",
        ),
        parser.add_argument(
            "-e",
            "--env",
            action="append",
            type=parse_env_var,
            metavar="KEY=VALUE",
            help="Environment variable (repeatable)",
        ),
        parser.add_argument(
            "--network",
            metavar="[IP]@NETWORK",
            help="Join the network (IP is auto-allocated when omitted)",
        ),
    ]


def add_rollout_options(parser) -> List[argparse.Action]:
    actions = [
        parser.add_argument("-g", "--group", default="default", help="Target group name"),
        parser.add_argument(
            "-p",
            "--port",
            type=port_number,
            help="Instance port for targets (auto-resolved from existing targets if all agree)",
        ),
        parser.add_argument(
            "-r",
            "--replicas",
            type=positive_int,
            help="Number of replicas (defaults to count of existing group instances, minimum 1)",
        ),
    ]
    actions += add_workload_options(parser)
    actions.append(
        parser.add_argument(
            "--leave-behind",
            choices=["instances", "targets"],
            help=(
                "What to leave behind from the old deployment: 'instances' deregisters targets "
                "but keeps instances running; 'targets' keeps both targets and instances untouched"
            ),
        )
    )
    return actions


def add_run_options(parser) -> List[argparse.Action]:
    actions = add_workload_options(parser)
    actions += [
        parser.add_argument("--name", help="Instance name"),
        parser.add_argument(
            "-d",
            "--detach",
            action="store_true",
            help="Print the instance id and return instead of following its logs",
        ),
    ]
    return actions


def setup_rollout_parser(subparsers):
    """Set up rollout command subparser."""
    rollout_parser = subparsers.add_parser(
        "rollout",
        help="Rolling update of a service target group",
        description="Perform a rolling update of instances behind a service target group",
    )
    rollout_parser.add_argument("service", help="Service UUID, name, or UUID prefix")
    rollout_parser.add_argument("image", help="Container image to run (e.g., 'nginx:latest')")
    rollout_parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Arguments to pass to the container (after IMAGE and any options; '--' ends options)",
    )
    add_rollout_options(rollout_parser)


def setup_instance_parser(subparsers):
    """Set up instance command subparser."""
    instance_parser = subparsers.add_parser(
        "instance", aliases=["instances"], help="Instance management", description="Manage instances"
    )
    instance_subparsers = instance_parser.add_subparsers(
        dest="instance_command", help="Instance commands"
    )

    # instance list
    list_parser = instance_subparsers.add_parser("list", aliases=["ls"], help="List instances")
    list_parser.add_argument(
        "-a", "--all", action="store_true", help="Include instances that are not running"
    )

    # instance run
    run_parser = instance_subparsers.add_parser(
        "run", help="Start an instance and follow its logs"
    )
    run_parser.add_argument("image", help="Container image to run (e.g., 'nginx:latest')")
    run_parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Arguments to pass to the container (after IMAGE and any options; '--' ends options)",
    )
    add_run_options(run_parser)

    # instance stop
    stop_parser = instance_subparsers.add_parser("stop", help="Stop an instance")
    stop_parser.add_argument("instance", help="Instance UUID, name, or UUID prefix")
    stop_parser.add_argument(
        "--timeout", type=int, help="Graceful stop timeout in milliseconds (default: 5000)"
    )

    # instance logs
    logs_parser = instance_subparsers.add_parser("logs", help="Stream instance logs")
    logs_parser.add_argument("instance", help="Instance UUID, name, or UUID prefix")


def setup_service_parser(subparsers):
    """Set up service command subparser."""
    service_parser = subparsers.add_parser(
        "service", aliases=["services"], help="Service management", description="Manage services"
    )
    service_subparsers = service_parser.add_subparsers(
        dest="service_command", help="Service commands"
    )

    # service list
    service_subparsers.add_parser("list", aliases=["ls"], help="List services")

    # service show
    show_parser = service_subparsers.add_parser("show", aliases=["info"], help="Show a service")
    show_parser.add_argument("service", help="Service UUID, name, or UUID prefix")

    # service target add|delete
    target_parser = service_subparsers.add_parser("target", help="Manage service targets")
    target_subparsers = target_parser.add_subparsers(dest="target_command", help="Target commands")

    add_parser = target_subparsers.add_parser("add", help="Add an instance as a target")
    add_parser.add_argument("service", help="Service UUID, name, or UUID prefix")
    add_parser.add_argument("instance", help="Instance UUID, name, or UUID prefix")
    add_parser.add_argument("-p", "--port", type=port_number, required=True, help="Instance port")
    add_parser.add_argument("-g", "--group", default="default", help="Target group name")

    delete_parser = target_subparsers.add_parser(
        "delete", aliases=["rm"], help="Remove a target from a service"
    )
    delete_parser.add_argument("service", help="Service UUID, name, or UUID prefix")
    delete_parser.add_argument("target", help="Target UUID or UUID prefix")


def setup_login_parser(subparsers):
    """Set up login command subparser."""
    login_parser = subparsers.add_parser(
        "login", help="Log in to unisrv", description="Log in and store the session"
    )
    login_parser.add_argument("-u", "--username", required=True, help="Username")
    login_parser.add_argument(
        "-p", "--password", help="Password (prompted for when omitted)"
    )


def setup_registry_parser(subparsers):
    """Set up registry command subparser."""
    registry_parser = subparsers.add_parser(
        "registry",
        aliases=["reg"],
        help="Container registry credentials",
        description="Manage container registry credentials",
    )
    registry_subparsers = registry_parser.add_subparsers(
        dest="registry_command", help="Registry commands"
    )

    # registry login
    login_parser = registry_subparsers.add_parser(
        "login", help="Log in to a container registry"
    )
    login_parser.add_argument("registry", help="Registry host (e.g., ghcr.io)")
    login_parser.add_argument("-u", "--username", help="Registry username")
    password_group = login_parser.add_mutually_exclusive_group()
    password_group.add_argument("-p", "--password", help="Registry password or token")
    password_group.add_argument(
        "--password-stdin", action="store_true", help="Read the password from stdin"
    )

    # registry list
    registry_subparsers.add_parser("list", aliases=["ls"], help="List saved registries")


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="unisrv",
        description="unisrv CLI - Rolling updates for service target groups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Roll the default group of a service over to a new image
  unisrv rollout web ghcr.io/acme/web:1.4

  # Three replicas on port 8080, keep the old instances running
  unisrv rollout --replicas 3 --port 8080 --leave-behind instances web nginx:1.27

  # Options may follow IMAGE; the first other word (or "--") starts the container arguments
  unisrv rollout web ghcr.io/acme/web:1.4 -e MODE=worker -- --threads 4

  # Log in, then save credentials for a private registry
  unisrv login -u alice
  echo $GHCR_TOKEN | unisrv registry login ghcr.io -u alice --password-stdin

  # Follow an instance's boot and container output
  unisrv instance logs web_default_3f9c_0

Environment Variables:
  UNISRV_API_URL         API URL (API_HOST is accepted too)
  UNISRV_TOKEN           Bearer token, bypasses the stored session
  UNISRV_HEALTH_WINDOW   Seconds a new instance must stay up (default: 1.0)

Config File:
  ~/.config/unisrv/config.yml
        """,
    )

    # Global arguments
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--api-url", default=None, help="API URL (default: from config or env)")
    parser.add_argument(
        "--token", default=None, help="Authentication token (default: stored session)"
    )
    parser.add_argument("--config", default=None, help="Path to configuration file")
    parser.add_argument(
        "--format",
        choices=["table", "json", "yaml"],
        default="table",
        help="Output format (default: table)",
    )
    parser.add_argument("--quiet", action="store_true", help="Suppress non-essential output")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    # Subcommands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    setup_login_parser(subparsers)
    setup_registry_parser(subparsers)
    setup_rollout_parser(subparsers)
    setup_instance_parser(subparsers)
    setup_service_parser(subparsers)

    return parser


def split_trailing_options(
    tokens: List[str], actions: List[argparse.Action]
) -> Tuple[List[str], List[str]]:
    """
    Split the words after IMAGE into leading options and container arguments.

    Options are taken until the first word that is not one of `actions`
    (with its value) or until a literal `--`, which is dropped.

    Returns:
        Tuple of (option words, container arguments)
    """
    takes_value = {
        option: action.nargs != 0 for action in actions for option in action.option_strings
    }
    options: List[str] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token == "--":
            return options, tokens[i + 1 :]
        name = token.split("=", 1)[0] if token.startswith("--") else token
        if name in takes_value:
            options.append(token)
            if takes_value[name] and "=" not in token and i + 1 < len(tokens):
                options.append(tokens[i + 1])
                i += 1
        elif not token.startswith("--") and takes_value.get(token[:2]):
            # Short option with its value attached, e.g. -p8080
            options.append(token)
        else:
            break
        i += 1
    return options, tokens[i:]


def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse the command line.

    `rollout` and `instance run` accept their options after IMAGE as well;
    whatever follows those options goes to the container.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "rollout":
        add_options, prog = add_rollout_options, f"{parser.prog} rollout"
    elif args.command in ("instance", "instances") and args.instance_command == "run":
        add_options, prog = add_run_options, f"{parser.prog} instance run"
    else:
        return args

    if args.args:
        options_parser = argparse.ArgumentParser(prog=prog, add_help=False)
        actions = add_options(options_parser)
        options, args.args = split_trailing_options(args.args, actions)
        # Parsing into the same namespace keeps values given before IMAGE unless repeated
        options_parser.parse_args(options, namespace=args)
    return args


def load_settings(args: argparse.Namespace) -> CliSettings:
    """Config file and environment, then command-line flags on top."""
    settings = CliSettings.load(Path(args.config) if args.config else None)
    overrides = {}
    if args.api_url:
        overrides["api_url"] = args.api_url.rstrip("/")
    if args.token:
        overrides["token"] = args.token
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def load_credentials(settings: CliSettings) -> Optional[Union[StaticToken, AuthSession]]:
    """A static token wins over the stored session; None when neither exists."""
    if settings.token:
        return StaticToken(settings.token)
    return AuthSession.load(Path(settings.session_file).expanduser())


async def route_command(ctx: CommandContext, args: argparse.Namespace) -> int:
    """
    Route command to appropriate handler.

    Args:
        ctx: Command context
        args: Parsed arguments

    Returns:
        Exit code
    """
    if args.command == "rollout":
        from unisrv_client.commands.rollout import RolloutCommands

        return await RolloutCommands.rollout(ctx, args)

    if args.command == "login":
        from unisrv_client.commands.auth import AuthCommands

        return await AuthCommands.login(ctx, args)

    if args.command in ("registry", "reg"):
        from unisrv_client.commands.auth import RegistryCommands

        aliases = {"ls": "list"}
        if not args.registry_command:
            print("Error: No registry subcommand specified", file=sys.stderr)
            return EXIT_INVALID_ARGS
        name = aliases.get(args.registry_command, args.registry_command)
        handler = getattr(RegistryCommands, name, None)

    elif args.command in ("instance", "instances"):
        from unisrv_client.commands.instance import InstanceCommands

        aliases = {"ls": "list"}
        if not args.instance_command:
            print("Error: No instance subcommand specified", file=sys.stderr)
            return EXIT_INVALID_ARGS
        name = aliases.get(args.instance_command, args.instance_command)
        handler = getattr(InstanceCommands, name, None)

    elif args.command in ("service", "services"):
        from unisrv_client.commands.service import ServiceCommands, TargetCommands

        aliases = {"ls": "list", "info": "show", "rm": "delete"}
        if not args.service_command:
            print("Error: No service subcommand specified", file=sys.stderr)
            return EXIT_INVALID_ARGS
        if args.service_command == "target":
            if not args.target_command:
                print("Error: No target subcommand specified", file=sys.stderr)
                return EXIT_INVALID_ARGS
            name = aliases.get(args.target_command, args.target_command)
            handler = getattr(TargetCommands, name, None)
        else:
            name = aliases.get(args.service_command, args.service_command)
            handler = getattr(ServiceCommands, name, None)

    else:
        print(f"Error: Unknown command: {args.command}", file=sys.stderr)
        return EXIT_INVALID_ARGS

    if handler is None:
        print(f"Error: Unknown {args.command} command: {name}", file=sys.stderr)
        return EXIT_INVALID_ARGS
    result: int = await handler(ctx, args)
    return result


async def run(args: argparse.Namespace, settings: CliSettings) -> int:
    """Open one API session for the command and dispatch it."""
    credentials = load_credentials(settings)
    async with UnisrvClient(
        settings.api_url, credentials, timeout=settings.request_timeout_seconds
    ) as client:
        ctx = CommandContext(
            client=client,
            settings=settings,
            output_format=args.format,
            quiet=args.quiet,
            verbose=args.verbose,
        )
        return await route_command(ctx, args)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_cli_args(argv)

    # Show help if no command specified
    if not args.command:
        create_parser().print_help()
        return EXIT_SUCCESS

    try:
        settings = load_settings(args)
    except (OSError, ValueError, ModelValidationError) as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(
        console_level="DEBUG" if args.verbose else settings.log_level,
        log_file=settings.log_file,
        use_json=settings.use_json_logs,
    )
    logger.debug(f"Using API at {settings.api_url}")

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_ERROR
    except Exception as e:
        if args.verbose:
            import traceback

            traceback.print_exc()
        return handle_cli_error(e)


if __name__ == "__main__":
    sys.exit(main())
