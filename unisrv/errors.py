"""
Rollout error taxonomy.

Fatal errors abort the rollout. Errors raised after a workload was created
trigger a best-effort rollback of this attempt only; the previous generation
is never touched on a fatal path. DecommissionError is never raised out of a
rollout, it only describes retirement failures that were logged.
"""

from typing import Optional


class RolloutError(Exception):
    """Base class for rollout failures."""

    pass


class ResolutionError(RolloutError):
    """An identifier did not resolve to exactly one resource."""

    def __init__(self, message: str, entity: str, value: str, matches: int = 0) -> None:
        super().__init__(message)
        self.entity = entity
        self.value = value
        self.matches = matches

    @property
    def ambiguous(self) -> bool:
        return self.matches > 1


class ValidationError(RolloutError):
    """Rollout inputs are inconsistent with the current service state."""

    pass


class ProvisionError(RolloutError):
    """Image verification or workload creation failed."""

    pass


class HealthCheckError(RolloutError):
    """A new workload's boot event stream closed before it was confirmed healthy."""

    def __init__(self, message: str, instance_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.instance_id = instance_id


class RegistrationError(RolloutError):
    """Registering a new workload as a routing target failed."""

    pass


class DecommissionError(RolloutError):
    """Deregistering an old target or stopping an old workload failed."""

    pass
