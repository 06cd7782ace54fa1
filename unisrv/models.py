"""
Data models for the unisrv API and rollouts.

Keep it simple. Keep it typed. Keep it working.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

DEFAULT_TARGET_GROUP = "default"


class InstanceState(str, Enum):
    """Instance lifecycle states reported by the API.

    The server vocabulary is open ended; anything unrecognised maps to UNKNOWN.
    Only ACTIVE (currently serving) drives client-side logic.
    """

    ACTIVE = "active"
    STARTING = "starting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "InstanceState":
        return cls.UNKNOWN


class ServiceSummary(BaseModel):
    """Entry in the service list."""

    id: UUID
    name: str
    service_type: Optional[str] = Field(None, alias="type")


class ServiceTarget(BaseModel):
    """A routing entry binding a service to an instance port."""

    id: UUID
    instance_id: UUID
    instance_port: int
    target_group: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def group(self) -> str:
        """Target group label, missing labels belong to the default group."""
        return self.target_group or DEFAULT_TARGET_GROUP


class Service(BaseModel):
    """Service details including its current targets."""

    id: UUID
    name: str
    service_type: Optional[str] = Field(None, alias="type")
    targets: List[ServiceTarget] = Field(default_factory=list)
    created_at: Optional[str] = None

    def targets_in_group(self, group: str) -> List[ServiceTarget]:
        return [t for t in self.targets if t.group == group]


class Instance(BaseModel):
    """A running (or previously running) workload."""

    id: UUID
    name: Optional[str] = None
    state: InstanceState = InstanceState.UNKNOWN
    configuration: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> InstanceState:
        if isinstance(value, InstanceState):
            return value
        return InstanceState(str(value).lower())

    @property
    def is_active(self) -> bool:
        return self.state == InstanceState.ACTIVE

    @property
    def image(self) -> str:
        image = self.configuration.get("container_image")
        return image if isinstance(image, str) else "Unknown"


class NetworkSummary(BaseModel):
    id: UUID
    name: str
    ipv4_cidr: str
    instance_count: Optional[int] = None


class NetworkMember(BaseModel):
    id: UUID
    internal_ip: str


class NetworkDetail(BaseModel):
    id: UUID
    name: str
    ipv4_cidr: str
    instances: List[NetworkMember] = Field(default_factory=list)


class BootEventKind(str, Enum):
    STATE = "state"
    SYSTEM = "system"
    STDOUT = "stdout"
    STDERR = "stderr"


class BootState(str, Enum):
    """Lifecycle states announced on an instance's boot event stream."""

    PULLING_CONTAINER_IMAGE = "pulling_container_image"
    ONLINE = "online"
    EXECUTING_CONTAINER = "executing_container"


class BootEvent(BaseModel):
    """One message from an instance's boot/log event stream."""

    log_type: BootEventKind
    timestamp_ms: int = 0
    message: Optional[str] = None
    state: Optional[BootState] = None

    @property
    def is_state(self) -> bool:
        return self.log_type == BootEventKind.STATE

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000)


class LeaveBehind(str, Enum):
    """What a successful rollout leaves behind from the old generation."""

    INSTANCES = "instances"
    TARGETS = "targets"


class RolloutPhase(str, Enum):
    RESOLVING = "resolving"
    PROVISIONING_REPLICA = "provisioning_replica"
    AWAITING_HEALTH = "awaiting_health"
    REGISTERING_TARGETS = "registering_targets"
    RETIRING_OLD_GENERATION = "retiring_old_generation"
    COMPLETE = "complete"
    ROLLED_BACK = "rolled_back"


class RolloutRequest(BaseModel):
    """Everything needed to roll a target group over to a new image."""

    service: str = Field(..., description="Service UUID, name, or UUID prefix")
    image: str = Field(..., description="Container image reference")
    group: str = Field(DEFAULT_TARGET_GROUP, description="Target group to replace")
    port: Optional[int] = Field(None, ge=1, le=65535, description="Instance port for targets")
    replicas: Optional[int] = Field(None, ge=1, description="Replica count")
    vcpus: int = Field(1, ge=1, le=32)
    memory_mb: int = Field(1024, ge=128, le=131072)
    env: Optional[Dict[str, str]] = None
    args: Optional[List[str]] = None
    network: Optional[str] = Field(None, description="[ip]@<network id or name>")
    leave_behind: Optional[LeaveBehind] = None

    @field_validator("group")
    @classmethod
    def _group_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("target group must not be empty")
        return value


class RolloutResult(BaseModel):
    """Outcome of a completed rollout."""

    service_id: UUID
    service_name: str
    group: str
    port: int
    replicas: int
    generation: str
    instance_ids: List[UUID] = Field(default_factory=list)
    target_ids: List[UUID] = Field(default_factory=list)
    retired_targets: int = 0
    retired_instances: int = 0
    warnings: List[str] = Field(default_factory=list)
    phase: RolloutPhase = RolloutPhase.COMPLETE
