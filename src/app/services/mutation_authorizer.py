from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from src.domain.exceptions import NotFoundError, PermissionDenied
from src.domain.models import Caller, Role, Vehicle

from .fleet_registry import FleetRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MutationAuthorizer:
    """Decides whether a caller may mutate a given vehicle.

    - ADMIN: always.
    - DRIVER: only the vehicle's assigned driver.
    - STUDENT / unauthenticated: never.

    Non-admin callers get PermissionDenied for unknown vehicle ids as well,
    so the response never reveals whether an id exists.
    """

    registry: FleetRegistry

    def authorize(self, caller: Caller, vehicle_id: str) -> None:
        if self._is_admin(caller):
            return
        try:
            vehicle = self.registry.get_snapshot(vehicle_id)
        except NotFoundError:
            vehicle = None
        self._check(caller, vehicle_id, vehicle)

    def guard(self, caller: Caller) -> Callable[[Vehicle], None]:
        """Same decision as ``authorize``, against a snapshot the registry
        holds under its per-vehicle lock."""

        def check(vehicle: Vehicle) -> None:
            self._check(caller, vehicle.vehicle_id, vehicle)

        return check

    def require_admin(self, caller: Caller, vehicle_id: str | None = None) -> None:
        if self._is_admin(caller):
            return
        raise PermissionDenied("Admin access required", vehicle_id=vehicle_id)

    @staticmethod
    def _is_admin(caller: Caller) -> bool:
        return caller.role is Role.ADMIN and caller.identity is not None

    def _check(self, caller: Caller, vehicle_id: str, vehicle: Vehicle | None) -> None:
        if self._is_admin(caller):
            return
        if (
            caller.role is Role.DRIVER
            and caller.identity is not None
            and vehicle is not None
            and vehicle.driver_ref == caller.identity
        ):
            return

        logger.info(
            "Denied mutation on %s for %s (%s)",
            vehicle_id,
            caller.identity or "anonymous",
            caller.role.value if caller.role else "none",
        )
        raise PermissionDenied(
            "Not authorized to update this vehicle", vehicle_id=vehicle_id
        )
