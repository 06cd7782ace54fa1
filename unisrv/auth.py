"""
Stored login session for the unisrv CLI.

The session file holds the API access/refresh tokens and any container
registry credentials saved by `registry login`. Access tokens are refreshed
transparently when they expire.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

import aiofiles  # type: ignore
import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AuthSessionError(Exception):
    """No usable login session."""

    pass


class RegistryCredentials(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    token_expiry: Optional[datetime] = None


class AuthSession(BaseModel):
    """Tokens returned by the login endpoint plus saved registry credentials."""

    user_id: Optional[UUID] = None
    access_token: str
    access_token_expiry: datetime
    refresh_session_id: Optional[UUID] = None
    refresh_token: Optional[str] = None
    refresh_token_expiry: Optional[datetime] = None
    container_registry_auth: Dict[str, RegistryCredentials] = Field(default_factory=dict)

    # Not serialized; remembers where the session came from so refreshes persist
    path: Optional[Path] = Field(None, exclude=True)

    @classmethod
    def load(cls, path: Path) -> Optional["AuthSession"]:
        """Load a session file, returning None if it is missing or unreadable."""
        if not path.exists():
            return None
        try:
            with open(path) as f:
                session = cls.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {path}: {e}")
            return None
        session.path = path
        return session

    @classmethod
    def from_login(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "AuthSession":
        """Build a fresh session (no registry credentials) from a login response."""
        session = cls(
            user_id=data.get("user_id"),
            access_token=data["token"],
            access_token_expiry=data["expires_at"],
            refresh_session_id=data.get("refresh_session_id"),
            refresh_token=data.get("refresh_token"),
            refresh_token_expiry=data.get("refresh_expires_at"),
        )
        session.path = path
        return session

    @property
    def expired(self) -> bool:
        """Both the access token and the refresh token are past their expiry."""
        now = datetime.now(timezone.utc)
        refresh_expiry = self.refresh_token_expiry or self.access_token_expiry
        return now > _aware(self.access_token_expiry) and now > _aware(refresh_expiry)

    def ensure_auth(self) -> None:
        if self.expired:
            raise AuthSessionError(
                "Authentication session expired. Please log in again with 'unisrv login'."
            )

    def registry_credentials(self, registry: str) -> Tuple[Optional[str], Optional[str]]:
        creds = self.container_registry_auth.get(registry)
        if creds is None:
            return None, None
        return creds.username, creds.password

    def set_registry_credentials(self, registry: str, credentials: RegistryCredentials) -> None:
        self.container_registry_auth[registry] = credentials

    async def get_access_token(self, http: httpx.AsyncClient) -> str:
        """Return a valid access token, refreshing it first if needed."""
        self.ensure_auth()
        now = datetime.now(timezone.utc)
        if _aware(self.access_token_expiry) > now:
            return self.access_token

        if not self.refresh_token or not self.refresh_session_id:
            raise AuthSessionError("Access token expired and no refresh token is stored.")

        response = await http.post(
            "/auth/refresh",
            json={"id": str(self.refresh_session_id), "token": self.refresh_token},
            headers={"Authorization": f"Bearer {self.refresh_token}"},
        )
        if response.status_code >= 400:
            reason = None
            try:
                reason = response.json().get("reason")
            except ValueError:
                pass
            detail = f": {reason}" if reason else ""
            raise AuthSessionError(f"Failed to refresh tokens{detail}. Please log in again.")

        data = response.json()
        self.access_token = data["token"]
        self.access_token_expiry = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))
        self.refresh_session_id = UUID(data["refresh_session_id"])
        self.refresh_token = data["refresh_token"]
        self.refresh_token_expiry = datetime.fromisoformat(
            data["refresh_expires_at"].replace("Z", "+00:00")
        )
        logger.debug("Auth session refreshed successfully")

        if self.path:
            await self.save_async(self.path)
        return self.access_token

    async def save_async(self, path: Path) -> None:
        """Write the session atomically (temp file then rename)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_suffix(".tmp")
        async with aiofiles.open(temp_file, "w") as f:
            await f.write(self.model_dump_json(indent=2))
        temp_file.chmod(0o600)
        temp_file.replace(path)
        logger.debug(f"Auth session saved to {path}")


class StaticToken:
    """A bearer token supplied directly (flag or environment)."""

    def __init__(self, token: str) -> None:
        self.token = token

    async def get_access_token(self, http: httpx.AsyncClient) -> str:
        return self.token

    def registry_credentials(self, registry: str) -> Tuple[Optional[str], Optional[str]]:
        return None, None


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
