"""
Protocol definitions for the unisrv CLI tool.

This module defines the core types and exit codes shared by all CLI commands.
"""

from dataclasses import dataclass
from typing import Optional

from unisrv.config import CliSettings
from unisrv_sdk import UnisrvClient


# Exit code constants
EXIT_SUCCESS = 0  # Command succeeded
EXIT_ERROR = 1  # General error
EXIT_INVALID_ARGS = 2  # Invalid arguments
EXIT_AUTH_ERROR = 3  # Authentication error
EXIT_API_ERROR = 4  # API error
EXIT_VALIDATION_ERROR = 5  # Validation error
EXIT_NOT_FOUND = 6  # Resource not found


@dataclass
class CommandContext:
    """Context passed to all commands with common resources."""

    client: UnisrvClient
    """API session shared by every remote call of the command"""

    settings: CliSettings
    """Effective configuration"""

    output_format: str = "table"
    """Output format: 'table', 'json', or 'yaml'"""

    quiet: bool = False
    """Suppress non-essential output"""

    verbose: bool = False
    """Enable verbose logging"""


# Exception Hierarchy


class CLIError(Exception):
    """Base class for CLI errors."""

    exit_code: int = EXIT_ERROR

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class UsageError(CLIError):
    """Arguments were accepted by the parser but make no sense together."""

    exit_code: int = EXIT_INVALID_ARGS
