"""
Utility functions for rollout operations.

Pure functions for naming, replica/port resolution, plus the best-effort
loop used for cleanup and retirement.
"""

import logging
import secrets
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from unisrv.errors import ValidationError
from unisrv.models import ServiceTarget

logger = logging.getLogger(__name__)

T = TypeVar("T")

HEX_WIDTH = 4
MAX_HEX_ATTEMPTS = 256


def instance_name(service_name: str, group: str, generation: str, index: int) -> str:
    """Name of replica `index` of a rollout generation."""
    return f"{service_name}_{group}_{generation}_{index}"


def generate_deploy_hex(
    service_name: str,
    group: str,
    existing_names: Iterable[str],
    width: int = HEX_WIDTH,
    max_attempts: int = MAX_HEX_ATTEMPTS,
) -> str:
    """
    Generate a lowercase hex generation marker unused under `{service}_{group}_`.

    Each width gets `max_attempts` random draws; when they are all taken the
    width grows by two characters, so the loop always terminates.

    Args:
        service_name: Service display name
        group: Target group
        existing_names: Names of every existing instance
        width: Initial number of hex characters
        max_attempts: Random draws per width before widening

    Returns:
        A hex string no existing instance name uses for this service and group
    """
    namespace = f"{service_name}_{group}_"
    taken = {name for name in existing_names if name and name.startswith(namespace)}

    while True:
        for _ in range(max_attempts):
            candidate = secrets.token_hex((width + 1) // 2)[:width]
            prefix = f"{namespace}{candidate}_"
            if not any(name.startswith(prefix) for name in taken):
                return candidate
        logger.warning(
            f"No free {width}-character generation marker for {namespace} after "
            f"{max_attempts} attempts, widening"
        )
        width += 2


def resolve_replicas(requested: Optional[int], old_targets: Sequence[ServiceTarget]) -> int:
    """Requested replica count, else the size of the old generation (at least 1)."""
    if requested is not None:
        if requested < 1:
            raise ValidationError("--replicas must be at least 1")
        return requested
    return max(1, len(old_targets))


def resolve_port(
    requested: Optional[int], old_targets: Sequence[ServiceTarget], group: str
) -> int:
    """
    Requested port, else the single port every old target in the group uses.

    Raises:
        ValidationError: If old targets disagree on the port, or there are none
    """
    if requested is not None:
        return requested

    if not old_targets:
        raise ValidationError(
            f"--port required when no existing targets exist for group '{group}'"
        )

    ports = {t.instance_port for t in old_targets}
    if len(ports) != 1:
        raise ValidationError(
            f"--port required: existing targets in group '{group}' have different ports "
            f"({', '.join(str(p) for p in sorted(ports))})"
        )
    return ports.pop()


async def best_effort(
    items: Iterable[T],
    action: Callable[[T], Awaitable[object]],
    description: str,
) -> List[Tuple[T, Exception]]:
    """
    Run `action` on every item, never stopping at a failure.

    Each failure is logged as a warning and collected.

    Args:
        items: Items to act on, in order
        action: Async callable applied to each item
        description: What the action does, for log messages (e.g. "stop instance")

    Returns:
        List of (item, error) pairs for the items that failed
    """
    failures: List[Tuple[T, Exception]] = []
    for item in items:
        try:
            await action(item)
        except Exception as e:
            logger.warning(f"Failed to {description} {item}: {e}")
            failures.append((item, e))
    return failures
