"""
Boot event stream monitor.

Watches the event stream of a freshly created instance and decides whether it
came up. Once the instance reports `executing_container` a fixed health window
starts; if the stream is still open when the window ends the instance is
healthy. Events arriving inside the window do not move the deadline.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Deque, Optional, Protocol
from uuid import UUID

from unisrv.errors import HealthCheckError
from unisrv.models import BootEvent, BootEventKind, BootState

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_WINDOW = 1.0
RECENT_LINES = 5

PHASE_LABELS = {
    BootState.PULLING_CONTAINER_IMAGE: "Pulling container image",
    BootState.ONLINE: "Instance is online",
    BootState.EXECUTING_CONTAINER: "Executing container",
}


class BootEventSource(Protocol):
    def stream_boot_events(self, instance_id: UUID) -> AsyncIterator[BootEvent]: ...


@dataclass
class BootProgress:
    """What is known about an instance while it boots."""

    instance_id: UUID
    phase: str = "Starting"
    recent: Deque[str] = field(default_factory=lambda: deque(maxlen=RECENT_LINES))
    running: bool = False
    events_seen: int = 0


ProgressCallback = Callable[[BootProgress], None]


class BootEventMonitor:
    """Classifies a new instance as healthy or failed from its boot events."""

    def __init__(
        self,
        source: BootEventSource,
        health_window: float = DEFAULT_HEALTH_WINDOW,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            source: Anything exposing `stream_boot_events` (normally the API client)
            health_window: Seconds the stream must stay open after the
                container starts executing
            on_progress: Called whenever the phase label or recent lines change
        """
        if health_window < 0:
            raise ValueError("health_window must not be negative")
        self.source = source
        self.health_window = health_window
        self.on_progress = on_progress

    async def wait_until_healthy(self, instance_id: UUID) -> BootProgress:
        """
        Block until the instance is confirmed healthy.

        Returns:
            Final boot progress for the instance

        Raises:
            HealthCheckError: If the stream ends or fails before the container
                executes, or before the health window elapses
        """
        progress = BootProgress(instance_id=instance_id)
        stream = self.source.stream_boot_events(instance_id)
        try:
            await self._wait_for_executing(stream, progress)
            await self._confirm_health(stream, progress)
        finally:
            await _close_stream(stream)
        logger.info(f"Instance {instance_id} healthy after {self.health_window}s window")
        return progress

    async def _wait_for_executing(
        self, stream: AsyncIterator[BootEvent], progress: BootProgress
    ) -> None:
        while True:
            try:
                event = await stream.__anext__()
            except StopAsyncIteration:
                raise HealthCheckError(
                    f"Log stream for instance {progress.instance_id} closed before "
                    f"reaching running state{_last_lines(progress)}",
                    str(progress.instance_id),
                )
            except Exception as e:
                raise HealthCheckError(
                    f"Log stream for instance {progress.instance_id} closed before "
                    f"reaching running state: {e}",
                    str(progress.instance_id),
                ) from e

            self._record(event, progress)
            if event.is_state and event.state == BootState.EXECUTING_CONTAINER:
                progress.running = True
                return

    async def _confirm_health(
        self, stream: AsyncIterator[BootEvent], progress: BootProgress
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.health_window

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return

            pending = asyncio.ensure_future(stream.__anext__())
            done, _ = await asyncio.wait({pending}, timeout=remaining)
            if not done:
                await _cancel(pending)
                return

            try:
                event = pending.result()
            except StopAsyncIteration:
                raise HealthCheckError(
                    f"Log stream for instance {progress.instance_id} closed unexpectedly "
                    "during health check",
                    str(progress.instance_id),
                )
            except Exception as e:
                raise HealthCheckError(
                    f"Log stream for instance {progress.instance_id} closed unexpectedly "
                    f"during health check: {e}",
                    str(progress.instance_id),
                ) from e

            self._record(event, progress)

    def _record(self, event: BootEvent, progress: BootProgress) -> None:
        progress.events_seen += 1
        if event.is_state:
            if event.state is not None:
                progress.phase = PHASE_LABELS[event.state]
                logger.debug(f"Instance {progress.instance_id}: {progress.phase}")
        elif event.message:
            progress.recent.append(event.message)
        if self.on_progress:
            self.on_progress(progress)

    async def follow(
        self, instance_id: UUID, sink: Callable[[BootEvent], Any]
    ) -> int:
        """
        Pass every event for an instance to `sink` until the stream closes.

        Returns:
            Number of events delivered
        """
        count = 0
        stream = self.source.stream_boot_events(instance_id)
        try:
            async for event in stream:
                sink(event)
                count += 1
        finally:
            await _close_stream(stream)
        return count


def describe_event(event: BootEvent) -> str:
    """One-line rendering of an event for log output."""
    if event.is_state:
        return PHASE_LABELS[event.state] if event.state else "Unknown state"
    if event.log_type == BootEventKind.SYSTEM:
        stamp = event.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"[Instance] {stamp} - {event.message or ''}"
    return event.message or ""


def _last_lines(progress: BootProgress) -> str:
    if not progress.recent:
        return ""
    return ". Last output:\n  " + "\n  ".join(progress.recent)


async def _cancel(task: "asyncio.Future[Any]") -> None:
    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, StopAsyncIteration):
        pass
    except Exception as e:
        logger.debug(f"Pending stream read ended with {e!r} after cancellation")


async def _close_stream(stream: AsyncIterator[BootEvent]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Error closing boot event stream: {e}")
