from __future__ import annotations


class FleetError(Exception):
    """Base exception for user-facing fleet failures."""

    code = "fleet_error"

    def __init__(self, message: str, *, vehicle_id: str | None = None) -> None:
        self.vehicle_id = vehicle_id
        super().__init__(message)


class ValidationError(FleetError, ValueError):
    """Raised for malformed or out-of-range input."""

    code = "validation_error"


class NotFoundError(FleetError):
    """Raised when a vehicle id is unknown (or inactive where an active one is required)."""

    code = "not_found"


class PermissionDenied(FleetError):
    """Raised when the caller may not mutate the target vehicle."""

    code = "permission_denied"


class ConflictError(FleetError):
    """Raised when a conditional write to the durable store is rejected."""

    code = "conflict"


class InvariantViolation(RuntimeError):
    """A commit would expose inconsistent state. This is a bug, not user error."""
