"""
Centralized logging configuration for the unisrv CLI.

Console logging for humans, optional rotating file logging (plain or JSON)
and a dedicated rollout lifecycle logger.
"""
# mypy: ignore-errors

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROLLOUT_LOGGER = "unisrv.rollout"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON for better parsing."""
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in ("service_id", "instance_id", "generation", "phase"):
            if hasattr(record, field):
                log_obj[field] = str(getattr(record, field))

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console and file logs."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False, verbose: bool = False):
        """Initialize formatter with optional color support."""
        self.use_colors = use_colors
        if verbose:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
        else:
            fmt = "%(levelname)s: %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        """Format with optional colors for console output."""
        if self.use_colors and record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    console_level: str = "WARNING",
    log_file: Optional[Path] = None,
    file_level: str = "DEBUG",
    use_json: bool = False,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
) -> None:
    """
    Configure logging for the CLI.

    Args:
        console_level: Console logging level
        log_file: Optional log file path, rotated by size
        file_level: File logging level
        use_json: Use JSON formatting for the log file
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    level = getattr(logging, console_level.upper(), logging.WARNING)

    # Console goes to stderr so stdout stays usable for --format json/yaml
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        HumanReadableFormatter(use_colors=sys.stderr.isatty(), verbose=level <= logging.DEBUG)
    )
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        file_handler.setFormatter(
            StructuredFormatter() if use_json else HumanReadableFormatter(verbose=True)
        )
        root_logger.addHandler(file_handler)

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    root_logger.debug(
        f"Logging initialized - Console: {console_level}, File: {log_file}, JSON: {use_json}"
    )


def log_rollout_operation(
    operation: str,
    service_id: Any,
    details: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
) -> None:
    """
    Log a rollout lifecycle operation.

    Args:
        operation: Operation type (provision, register, retire, rollback, ...)
        service_id: Service the rollout targets
        details: Additional operation details
        level: Log level (INFO, WARNING, ERROR)
    """
    logger = logging.getLogger(ROLLOUT_LOGGER)

    message = f"Rollout operation: {operation}"
    extra: Dict[str, Any] = {"service_id": service_id}

    if details:
        message += f" - {json.dumps(details, default=str)}"
        for key in ("instance_id", "generation", "phase"):
            if key in details:
                extra[key] = details[key]

    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra)
