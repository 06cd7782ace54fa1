"""unisrv - rolling updates for service target groups."""

__version__ = "0.3.0"

from unisrv.errors import (
    DecommissionError,
    HealthCheckError,
    ProvisionError,
    RegistrationError,
    ResolutionError,
    RolloutError,
    ValidationError,
)

__all__ = [
    "RolloutError",
    "ResolutionError",
    "ValidationError",
    "ProvisionError",
    "HealthCheckError",
    "RegistrationError",
    "DecommissionError",
]
