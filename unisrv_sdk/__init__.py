"""
unisrv SDK - async Python client for the unisrv API.

One UnisrvClient is the session handle for a command: it owns the HTTP
connection pool and the credentials, and is passed explicitly to every
component that talks to the API.
"""

import asyncio
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple, Union
from uuid import UUID

import httpx
from httpx_ws import (
    WebSocketDisconnect,
    WebSocketInvalidTypeReceived,
    WebSocketNetworkError,
    WebSocketUpgradeError,
    aconnect_ws,
)
from pydantic import ValidationError as PydanticValidationError

from unisrv.models import (
    BootEvent,
    Instance,
    NetworkDetail,
    NetworkSummary,
    Service,
    ServiceSummary,
)

logger = logging.getLogger(__name__)

_ENDPOINT_RE = re.compile(r"^/[a-zA-Z0-9/_\-?=&%.]+$")

# The log socket stays open as long as the instance runs; only connecting is bounded
STREAM_TIMEOUT = httpx.Timeout(connect=10.0, read=None, write=10.0, pool=10.0)


class UnisrvError(Exception):
    """Base exception for the unisrv SDK."""

    pass


class AuthenticationError(UnisrvError):
    """Authentication related errors."""

    pass


class APIError(UnisrvError):
    """API request errors."""

    def __init__(
        self, message: str, status_code: Optional[int] = None, response: Optional[Any] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class StreamError(UnisrvError):
    """The boot event stream delivered something that is not an event."""

    pass


class TokenProvider(Protocol):
    async def get_access_token(self, http: httpx.AsyncClient) -> str: ...

    def registry_credentials(self, registry: str) -> Tuple[Optional[str], Optional[str]]: ...


def format_http_error(response: httpx.Response, operation: str) -> APIError:
    """Turn a non-success response into a descriptive APIError."""
    status = response.status_code
    body = response.text
    reason = None
    payload: Optional[Any] = None
    try:
        payload = response.json()
        if isinstance(payload, dict):
            reason = payload.get("reason") or payload.get("detail")
    except ValueError:
        pass

    if 400 <= status < 500:
        if reason:
            message = f"{operation}: {reason}"
        elif body:
            message = f"Failed to {operation}: client error ({status}): {body}"
        else:
            message = f"Failed to {operation}: {status} - {response.reason_phrase}"
    elif status == 503:
        message = "Service temporarily unavailable"
        if reason or body:
            message += f": {reason or body}"
    else:
        message = f"Failed to {operation}: {status} - {body}"
    return APIError(message, status, payload)


class UnisrvClient:
    """Client for interacting with the unisrv API."""

    def __init__(
        self,
        base_url: str,
        credentials: Optional[TokenProvider] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the unisrv client.

        Args:
            base_url: Base URL for the unisrv API
            credentials: Token provider (stored session or static token)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "UnisrvClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http.aclose()

    def registry_credentials(self, registry: str) -> Tuple[Optional[str], Optional[str]]:
        if self.credentials is None:
            return None, None
        return self.credentials.registry_credentials(registry)

    async def _headers(self) -> Dict[str, str]:
        if self.credentials is None:
            raise AuthenticationError("No authentication session found. Please log in first.")
        token = await self.credentials.get_access_token(self._http)
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self, method: str, endpoint: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        """Make an authenticated request to the API."""
        if not _ENDPOINT_RE.match(endpoint):
            raise ValueError(f"Invalid endpoint format: {endpoint}")

        headers = await self._headers()
        response = await self._http.request(method, endpoint, headers=headers, **kwargs)

        if response.status_code == 401:
            raise AuthenticationError("Authentication failed. Token may be expired.")
        if response.status_code >= 400:
            raise format_http_error(response, operation)
        return response

    # Auth

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        """
        Exchange a username and password for session tokens.

        Returns:
            The login response (token, expires_at, refresh_session_id, ...)

        Raises:
            AuthenticationError: If the credentials are rejected
            APIError: On any other failure
        """
        response = await self._http.post("/auth/login/basic", auth=(username, password))
        if response.status_code == 401:
            raise AuthenticationError("Invalid username or password.")
        if response.status_code >= 400:
            raise format_http_error(response, "login")
        data: Dict[str, Any] = response.json()
        return data

    # Services

    async def list_services(self) -> List[ServiceSummary]:
        response = await self._request("GET", "/services", "list services")
        data = response.json()
        items = data.get("services", []) if isinstance(data, dict) else data
        return [ServiceSummary.model_validate(item) for item in items]

    async def get_service(self, service_id: UUID) -> Service:
        response = await self._request("GET", f"/service/{service_id}", "fetch service info")
        return Service.model_validate(response.json())

    async def create_target(
        self, service_id: UUID, instance_id: UUID, port: int, group: Optional[str] = None
    ) -> UUID:
        """Register an instance port as a target of a service. Returns the target id."""
        payload: Dict[str, Any] = {"instance_id": str(instance_id), "instance_port": port}
        if group is not None:
            payload["group"] = group
        response = await self._request(
            "POST", f"/service/{service_id}/target", "add target", json=payload
        )
        return UUID(response.json()["target_id"])

    async def remove_target(self, service_id: UUID, target_id: UUID) -> None:
        await self._request(
            "DELETE", f"/service/{service_id}/target/{target_id}", "delete target"
        )

    # Instances

    async def list_instances(self) -> List[Instance]:
        response = await self._request("GET", "/instance/list", "list instances")
        data = response.json()
        items = data.get("instances", []) if isinstance(data, dict) else data
        return [Instance.model_validate(item) for item in items]

    async def create_instance(self, payload: Dict[str, Any]) -> UUID:
        response = await self._request("POST", "/instance", "start instance", json=payload)
        return UUID(response.json()["id"])

    async def stop_instance(self, instance_id: UUID, timeout_ms: int = 5000) -> None:
        await self._request(
            "DELETE",
            f"/instance/{instance_id}",
            "stop instance",
            json={"timeout_ms": timeout_ms},
        )

    async def stream_boot_events(self, instance_id: UUID) -> AsyncIterator[BootEvent]:
        """
        Stream boot and log events for an instance over a WebSocket.

        Every text frame holds one JSON event. The iterator ends when the
        server closes the socket or sends anything other than text. The
        socket is read by its own task, so the iterator may be advanced from
        any task.

        Raises:
            AuthenticationError: On 401
            APIError: If the socket could not be opened
            StreamError: If a frame is not a valid event
        """
        headers = await self._headers()
        frames: "asyncio.Queue[Union[str, Exception, None]]" = asyncio.Queue()
        reader = asyncio.ensure_future(self._read_log_socket(instance_id, headers, frames))
        try:
            while True:
                frame = await frames.get()
                if frame is None:
                    return
                if isinstance(frame, Exception):
                    raise frame
                yield parse_event_message(frame)
        finally:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    async def _read_log_socket(
        self,
        instance_id: UUID,
        headers: Dict[str, str],
        frames: "asyncio.Queue[Union[str, Exception, None]]",
    ) -> None:
        """Queue text frames, then None on close; a failure is queued in place of None."""
        try:
            async with aconnect_ws(
                f"/instance/{instance_id}/logs/stream",
                self._http,
                headers=headers,
                timeout=STREAM_TIMEOUT,
            ) as ws:
                while True:
                    try:
                        message = await ws.receive_text()
                    except (
                        WebSocketDisconnect,
                        WebSocketInvalidTypeReceived,
                        WebSocketNetworkError,
                    ) as e:
                        logger.debug(f"Log stream for {instance_id} ended: {e!r}")
                        break
                    frames.put_nowait(message)
        except WebSocketUpgradeError as e:
            status = e.response.status_code
            if status == 401:
                error: UnisrvError = AuthenticationError(
                    "Authentication failed. Token may be expired."
                )
            else:
                error = APIError(
                    f"Failed to stream instance logs: {status} - {e.response.reason_phrase}",
                    status,
                )
            frames.put_nowait(error)
            return
        except Exception as e:
            frames.put_nowait(e)
            return
        frames.put_nowait(None)

    # Networks

    async def list_networks(self) -> List[NetworkSummary]:
        response = await self._request(
            "GET", "/networks?include_instance_count=true", "list networks"
        )
        data = response.json()
        items = data.get("networks", []) if isinstance(data, dict) else data
        return [NetworkSummary.model_validate(item) for item in items]

    async def get_network(self, network_id: UUID) -> NetworkDetail:
        response = await self._request("GET", f"/network/{network_id}", "fetch network details")
        return NetworkDetail.model_validate(response.json())


def parse_event_message(message: str) -> BootEvent:
    """Parse one text frame of the log stream."""
    try:
        return BootEvent.model_validate_json(message)
    except PydanticValidationError as e:
        raise StreamError(f"Failed to parse log message: {e}") from e


__all__ = [
    "UnisrvClient",
    "UnisrvError",
    "AuthenticationError",
    "APIError",
    "StreamError",
    "TokenProvider",
    "format_http_error",
    "parse_event_message",
]
