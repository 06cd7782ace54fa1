"""
Rollout state tracking.

Holds the phase of one in-flight rollout, the ids created by this attempt
(rollback bookkeeping) and a timeline of events. Nothing here is persisted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional
from uuid import UUID

from unisrv.models import RolloutPhase

logger = logging.getLogger(__name__)

P = RolloutPhase

ALLOWED_TRANSITIONS: Dict[RolloutPhase, FrozenSet[RolloutPhase]] = {
    P.RESOLVING: frozenset({P.PROVISIONING_REPLICA}),
    P.PROVISIONING_REPLICA: frozenset({P.AWAITING_HEALTH, P.ROLLED_BACK}),
    P.AWAITING_HEALTH: frozenset(
        {P.PROVISIONING_REPLICA, P.REGISTERING_TARGETS, P.ROLLED_BACK}
    ),
    P.REGISTERING_TARGETS: frozenset({P.RETIRING_OLD_GENERATION, P.ROLLED_BACK}),
    P.RETIRING_OLD_GENERATION: frozenset({P.COMPLETE}),
    P.COMPLETE: frozenset(),
    P.ROLLED_BACK: frozenset(),
}

TERMINAL_PHASES = frozenset({P.COMPLETE, P.ROLLED_BACK})

PhaseListener = Callable[["RolloutState"], None]


class InvalidTransition(RuntimeError):
    """A rollout tried to move between phases that are not connected."""

    pass


@dataclass
class RolloutState:
    """
    State of one rollout attempt.

    `instance_ids` grows monotonically as instances are created; on a fatal
    error exactly these instances are stopped.
    """

    service_id: Optional[UUID] = None
    generation: Optional[str] = None
    replicas: int = 0
    phase: RolloutPhase = P.RESOLVING
    replica_index: Optional[int] = None
    instance_ids: List[UUID] = field(default_factory=list)
    target_ids: List[UUID] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    listener: Optional[PhaseListener] = field(default=None, repr=False)

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def transition(
        self, phase: RolloutPhase, replica_index: Optional[int] = None, message: str = ""
    ) -> None:
        """Move to a new phase, rejecting edges the rollout state machine does not have."""
        if phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidTransition(f"Cannot move rollout from {self.phase.value} to {phase.value}")
        self.phase = phase
        self.replica_index = replica_index
        add_event(self, phase.value, message or phase.value, {"replica": replica_index})
        logger.debug(f"Rollout {self.generation}: {phase.value} (replica={replica_index})")
        if self.listener:
            self.listener(self)

    def track_instance(self, instance_id: UUID) -> None:
        self.instance_ids.append(instance_id)

    def track_target(self, target_id: UUID) -> None:
        self.target_ids.append(target_id)


def add_event(
    state: Optional[RolloutState],
    event_type: str,
    message: str,
    details: Optional[dict] = None,
) -> None:
    """
    Add an event to a rollout's timeline.

    Args:
        state: The rollout to add the event to (can be None)
        event_type: Type of event (e.g., "provisioning_replica", "warning")
        message: Human-readable event message
        details: Optional additional details dict
    """
    if not state:
        return

    event: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "type": event_type,
        "message": message,
    }
    if details:
        event["details"] = {k: v for k, v in details.items() if v is not None}
    state.events.append(event)
