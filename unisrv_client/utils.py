"""
Utility functions and classes for the unisrv CLI tool.

This module provides the progress spinner, argument value parsers and the
mapping from exceptions to exit codes.
"""

import argparse
import sys
import threading
import time
from typing import Dict, Iterable, Optional, TextIO, Tuple

MIN_MEMORY_MB = 128
MAX_MEMORY_MB = 131072


class ProgressSpinner:
    """
    Simple progress spinner for long-running operations.

    Shows a rotating spinner animation on a terminal. When the stream is not a
    terminal each new message is written once as a plain line instead.
    """

    def __init__(
        self,
        message: str = "Working...",
        stream: Optional[TextIO] = None,
        animate: Optional[bool] = None,
    ) -> None:
        """
        Initialize the progress spinner.

        Args:
            message: Message to display alongside the spinner
            stream: Where to draw (defaults to stderr)
            animate: Force animation on or off (defaults to stream.isatty())
        """
        self.message = message
        self.stream = stream or sys.stderr
        self.animate = self.stream.isatty() if animate is None else animate
        self.spinning = False
        self.thread: Optional[threading.Thread] = None
        self.frames = ["-", "\\", "|", "/"]
        self.current_frame = 0
        self._width = 0

    def _spin(self) -> None:
        """Internal method to animate the spinner."""
        while self.spinning:
            frame = self.frames[self.current_frame % len(self.frames)]
            line = f"{frame} {self.message}"
            pad = " " * max(0, self._width - len(line))
            self._width = len(line)
            self.stream.write(f"\r{line}{pad}")
            self.stream.flush()
            self.current_frame += 1
            time.sleep(0.1)
        # Clear the line when done
        self.stream.write("\r" + " " * self._width + "\r")
        self.stream.flush()

    def start(self, message: Optional[str] = None) -> None:
        """
        Start showing the spinner.

        Args:
            message: Optional message to display (overrides constructor message)
        """
        if message:
            self.message = message

        if not self.animate:
            self._echo(self.message)
            return

        self.spinning = True
        self.thread = threading.Thread(target=self._spin, daemon=True)
        self.thread.start()

    def update(self, message: str) -> None:
        """
        Update the spinner message.

        Args:
            message: New message to display
        """
        if message == self.message:
            return
        self.message = message
        if not self.animate:
            self._echo(message)

    def stop(self, message: Optional[str] = None) -> None:
        """
        Stop the spinner and optionally display a final message.

        Args:
            message: Optional final message to display
        """
        self.spinning = False
        if self.thread:
            self.thread.join(timeout=1.0)
            self.thread = None

        if message:
            print(message)

    def _echo(self, message: str) -> None:
        self.stream.write(f"{message}\n")
        self.stream.flush()

    def __enter__(self) -> "ProgressSpinner":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        """Context manager exit."""
        self.stop()


def parse_memory_mb(value: str) -> int:
    """
    Parse a memory size such as 512M, 2G or 1024 (bare numbers are MB).

    Used as an argparse `type`.

    Returns:
        Memory in MB, between 128 and 131072

    Raises:
        argparse.ArgumentTypeError: If the value is malformed or out of range
    """
    text = value.strip()
    if not text:
        raise argparse.ArgumentTypeError("Memory value cannot be empty")

    unit = "M"
    number = text
    if not text[-1].isdigit():
        unit = text[-1].upper()
        number = text[:-1]
        if not number.isdigit():
            raise argparse.ArgumentTypeError(
                "Memory value must be a number followed by an optional unit (M/G)"
            )
    elif not text.isdigit():
        raise argparse.ArgumentTypeError(
            "Memory value must be a number, optionally followed by an unit (M/G)"
        )

    if unit == "M":
        mb = int(number)
    elif unit == "G":
        mb = int(number) * 1024
    else:
        raise argparse.ArgumentTypeError(f"Invalid memory unit: {unit}")

    if not MIN_MEMORY_MB <= mb <= MAX_MEMORY_MB:
        raise argparse.ArgumentTypeError(f"Memory must be between 128M and 128G ({mb} MB)")
    return mb


def parse_env_var(value: str) -> Tuple[str, str]:
    """Parse one KEY=VALUE pair (argparse `type` for --env)."""
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(
            f"Invalid environment variable format: {value}. Expected KEY=VALUE format."
        )
    return key, val


def env_dict(pairs: Optional[Iterable[Tuple[str, str]]]) -> Optional[Dict[str, str]]:
    """Collapse repeated --env pairs into a dict, later keys winning."""
    if not pairs:
        return None
    return dict(pairs)


def short_id(value: object, length: int = 8) -> str:
    return str(value)[:length]


def handle_cli_error(error: Exception) -> int:
    """
    Print an error and return the matching exit code.

    Args:
        error: The exception that ended the command

    Returns:
        Appropriate exit code
    """
    from unisrv.auth import AuthSessionError
    from unisrv.errors import ResolutionError, RolloutError, ValidationError
    from unisrv.registry import RegistryError
    from unisrv_sdk import APIError, AuthenticationError

    from .protocols import (
        CLIError,
        EXIT_API_ERROR,
        EXIT_AUTH_ERROR,
        EXIT_ERROR,
        EXIT_NOT_FOUND,
        EXIT_VALIDATION_ERROR,
    )

    if isinstance(error, (AuthenticationError, AuthSessionError)):
        print(f"Authentication error: {error}", file=sys.stderr)
        return EXIT_AUTH_ERROR
    elif isinstance(error, APIError):
        print(f"API error: {error}", file=sys.stderr)
        return EXIT_API_ERROR
    elif isinstance(error, RegistryError):
        print(f"Registry error: {error}", file=sys.stderr)
        return EXIT_API_ERROR
    elif isinstance(error, ResolutionError):
        print(f"Error: {error}", file=sys.stderr)
        return EXIT_NOT_FOUND
    elif isinstance(error, ValidationError):
        print(f"Error: {error}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    elif isinstance(error, RolloutError):
        print(f"Error: {error}", file=sys.stderr)
        return EXIT_ERROR
    elif isinstance(error, CLIError):
        print(f"Error: {error}", file=sys.stderr)
        return error.exit_code
    else:
        print(f"Unexpected error: {error}", file=sys.stderr)
        return EXIT_ERROR
