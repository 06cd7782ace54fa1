"""
unisrv CLI Package.

This package provides the command-line interface for rolling updates of
service target groups and the instance/service commands around them.
"""

from unisrv_client.main import main
from unisrv_client.protocols import (
    CommandContext,
    CLIError,
    UsageError,
    EXIT_SUCCESS,
    EXIT_ERROR,
    EXIT_INVALID_ARGS,
    EXIT_AUTH_ERROR,
    EXIT_API_ERROR,
    EXIT_VALIDATION_ERROR,
    EXIT_NOT_FOUND,
)

__all__ = [
    # Main entry point
    "main",
    # Context
    "CommandContext",
    # Error classes
    "CLIError",
    "UsageError",
    # Exit codes
    "EXIT_SUCCESS",
    "EXIT_ERROR",
    "EXIT_INVALID_ARGS",
    "EXIT_AUTH_ERROR",
    "EXIT_API_ERROR",
    "EXIT_VALIDATION_ERROR",
    "EXIT_NOT_FOUND",
]
