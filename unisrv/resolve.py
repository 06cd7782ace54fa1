"""
Resolve user supplied identifiers (full UUID, exact name or UUID prefix).

Every resource kind resolves the same way; only the entity label in error
messages differs.
"""

import logging
from typing import Callable, Iterable, List, Optional, Protocol
from uuid import UUID

from unisrv.errors import ResolutionError

logger = logging.getLogger(__name__)

_PREFIX_CHARS = frozenset("0123456789abcdefABCDEF-")


class Identifiable(Protocol):
    """Anything that exposes an id and an optional name."""

    @property
    def id(self) -> UUID: ...

    @property
    def name(self) -> Optional[str]: ...


def parse_uuid(value: str) -> Optional[UUID]:
    """Parse a full UUID, returning None if the value is not one."""
    try:
        return UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


def is_id_prefix(value: str) -> bool:
    return bool(value) and all(c in _PREFIX_CHARS for c in value)


def resolve_id(
    value: str,
    items: Iterable[Identifiable],
    entity: str,
    include: Optional[Callable[[Identifiable], bool]] = None,
) -> UUID:
    """
    Resolve an identifier against a list of resources.

    Resolution order:
    1. A well-formed UUID is returned as is (no existence check).
    2. Exactly one item whose name equals the input.
    3. If the input only has hex digits and hyphens, a unique UUID prefix.

    Args:
        value: User supplied identifier
        items: Candidate resources
        entity: Resource kind used in error messages (service, instance, ...)
        include: Optional filter applied to candidates before name/prefix matching

    Returns:
        The resolved UUID

    Raises:
        ResolutionError: If nothing matches or a prefix is ambiguous
    """
    parsed = parse_uuid(value)
    if parsed is not None:
        return parsed

    candidates: List[Identifiable] = [
        item for item in items if include is None or include(item)
    ]

    named = [item for item in candidates if getattr(item, "name", None) == value]
    if len(named) == 1:
        logger.debug(f"Resolved {entity} name '{value}' to {named[0].id}")
        return named[0].id

    if is_id_prefix(value):
        matches = [item for item in candidates if str(item.id).startswith(value.lower())]
        if len(matches) == 1:
            return matches[0].id
        if not matches:
            raise ResolutionError(f"No {entity} found matching '{value}'", entity, value)
        raise ResolutionError(
            f"Ambiguous: {len(matches)} {entity}s match prefix '{value}'. Be more specific.",
            entity,
            value,
            matches=len(matches),
        )

    raise ResolutionError(f"No {entity} found with name or UUID '{value}'", entity, value)


def resolve_service_id(value: str, services: Iterable[Identifiable]) -> UUID:
    return resolve_id(value, services, "service")


def resolve_instance_id(value: str, instances: Iterable[Identifiable]) -> UUID:
    """Resolve an instance, only considering currently active instances."""
    return resolve_id(
        value, instances, "instance", include=lambda i: getattr(i, "is_active", True)
    )


def resolve_network_id(value: str, networks: Iterable[Identifiable]) -> UUID:
    return resolve_id(value, networks, "network")


def resolve_target_id(value: str, targets: Iterable[Identifiable]) -> UUID:
    return resolve_id(value, targets, "target")
