"""
Login commands for the unisrv CLI.

`login` stores an API session; `registry login` adds container registry
credentials to that session so later rollouts can verify private images.
"""

import getpass
import sys
from argparse import Namespace
from datetime import datetime, timedelta, timezone
from pathlib import Path

from unisrv.auth import AuthSession, AuthSessionError, RegistryCredentials
from unisrv.registry import RegistryClient, normalize_registry
from unisrv_client.output import render
from unisrv_client.protocols import CommandContext, EXIT_SUCCESS, UsageError

NO_SESSION = "No authentication session found. Log in first with 'unisrv login'."


def session_path(ctx: CommandContext) -> Path:
    return Path(ctx.settings.session_file).expanduser()


class AuthCommands:
    """API login."""

    @staticmethod
    async def login(ctx: CommandContext, args: Namespace) -> int:
        """
        Log in with a username and password and store the session.

        Args:
            ctx: Command context
            args: Parsed arguments (username, password)

        Returns:
            Exit code
        """
        password = args.password
        if password is None:
            password = getpass.getpass("Enter password: ")
        if not password:
            raise UsageError("Password cannot be empty")

        data = await ctx.client.login(args.username, password)
        path = session_path(ctx)
        session = AuthSession.from_login(data, path)
        await session.save_async(path)

        if not ctx.quiet:
            print(f"🔒 Successfully logged in as user: {args.username}", file=sys.stderr)
        return EXIT_SUCCESS


class RegistryCommands:
    """Container registry credentials."""

    @staticmethod
    async def login(ctx: CommandContext, args: Namespace) -> int:
        """
        Verify registry credentials and save them in the current session.

        Args:
            ctx: Command context
            args: Parsed arguments (registry, username, password, password_stdin)

        Returns:
            Exit code
        """
        password = args.password
        if args.password_stdin:
            password = sys.stdin.read().strip()
        if password and not args.username:
            raise UsageError("A password requires --username")

        path = session_path(ctx)
        session = AuthSession.load(path)
        if session is None:
            raise AuthSessionError(NO_SESSION)

        registry = normalize_registry(args.registry)
        client = RegistryClient(timeout=ctx.settings.request_timeout_seconds)
        try:
            issued = await client.login(registry, args.username, password)
        finally:
            await client.close()

        expiry = None
        if issued.expires_in:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=issued.expires_in)
        session.set_registry_credentials(
            registry,
            RegistryCredentials(
                username=args.username, password=password, token=issued.token, token_expiry=expiry
            ),
        )
        await session.save_async(path)

        if not ctx.quiet:
            print(f"✓ Credentials for {registry} saved", file=sys.stderr)
            if issued.token is None:
                print("No authentication required (anonymous access)", file=sys.stderr)
        return EXIT_SUCCESS

    @staticmethod
    async def list(ctx: CommandContext, args: Namespace) -> int:
        """List registries with saved credentials."""
        session = AuthSession.load(session_path(ctx))
        if session is None:
            raise AuthSessionError(NO_SESSION)

        rows = [
            {"registry": name, "username": creds.username, "token_expiry": creds.token_expiry}
            for name, creds in sorted(session.container_registry_auth.items())
        ]
        if not rows and ctx.output_format == "table":
            print("No registry credentials saved.", file=sys.stderr)
            return EXIT_SUCCESS
        print(render(rows, ctx.output_format, columns=["registry", "username", "token_expiry"]))
        return EXIT_SUCCESS
