"""
CLI configuration.

Values come from, in increasing priority: built-in defaults, an optional YAML
file, environment variables and finally command-line flags.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.unisrv.io"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "unisrv" / "config.yml"
DEFAULT_SESSION_FILE = Path.home() / ".config" / "unisrv" / "session.json"


class CliSettings(BaseModel):
    """Settings shared by every unisrv command."""

    api_url: str = Field(DEFAULT_API_URL, description="Base URL of the unisrv API")
    token: Optional[str] = Field(None, description="Static bearer token, bypasses the session")
    session_file: Path = Field(DEFAULT_SESSION_FILE, description="Stored login session")
    health_window_seconds: float = Field(
        1.0, gt=0, description="How long a new instance must stay connected after it starts"
    )
    stop_timeout_ms: int = Field(5000, ge=0, le=600_000, description="Graceful stop timeout")
    request_timeout_seconds: float = Field(30.0, gt=0)
    log_level: str = Field("WARNING", description="Console log level")
    log_file: Optional[Path] = Field(None, description="Optional rotating log file")
    use_json_logs: bool = False

    @classmethod
    def from_file(cls, path: Path) -> "CliSettings":
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        return cls(**data)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "CliSettings":
        """
        Load settings from the config file (if present) and the environment.

        Args:
            path: Explicit config file; defaults to ~/.config/unisrv/config.yml

        Returns:
            Populated settings
        """
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        data: Dict[str, Any] = {}
        if config_path.exists():
            data = cls.from_file(config_path).model_dump(exclude_unset=True)
            logger.debug(f"Loaded configuration from {config_path}")
        elif path:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        data.update(_env_overrides())
        return cls(**data)


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}

    api_url = os.getenv("UNISRV_API_URL") or os.getenv("API_HOST")
    if api_url:
        if "://" not in api_url:
            api_url = f"https://{api_url}"
        overrides["api_url"] = api_url.rstrip("/")

    token = os.getenv("UNISRV_TOKEN")
    if token:
        overrides["token"] = token

    window = os.getenv("UNISRV_HEALTH_WINDOW")
    if window:
        overrides["health_window_seconds"] = float(window)

    stop_timeout = os.getenv("UNISRV_STOP_TIMEOUT_MS")
    if stop_timeout:
        overrides["stop_timeout_ms"] = int(stop_timeout)

    session_file = os.getenv("UNISRV_SESSION_FILE")
    if session_file:
        overrides["session_file"] = Path(session_file)

    log_level = os.getenv("UNISRV_LOG_LEVEL")
    if log_level:
        overrides["log_level"] = log_level.upper()

    return overrides
