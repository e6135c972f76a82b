from .fleet import (
    ConflictError,
    FleetError,
    InvariantViolation,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)

__all__ = [
    "ConflictError",
    "FleetError",
    "InvariantViolation",
    "NotFoundError",
    "PermissionDenied",
    "ValidationError",
]
