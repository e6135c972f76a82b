from __future__ import annotations

from dataclasses import dataclass

from src.domain.exceptions import ValidationError
from src.domain.models import (
    Caller,
    LocationUpdate,
    MutationKind,
    MutationRequest,
    StatusUpdate,
    Vehicle,
    VehicleSpec,
)

from .fleet_registry import FleetRegistry
from .mutation_authorizer import MutationAuthorizer


@dataclass(slots=True)
class FleetCommandService:
    """Entry point for every state-changing request.

    Authorization always runs before the registry is touched, so a rejected
    call leaves no state change and produces no broadcast.
    """

    registry: FleetRegistry
    authorizer: MutationAuthorizer

    async def submit(self, caller: Caller, request: MutationRequest) -> Vehicle:
        self.authorizer.authorize(caller, request.vehicle_id)
        guard = self.authorizer.guard(caller)

        payload = request.payload
        if request.kind is MutationKind.LOCATION and isinstance(payload, LocationUpdate):
            return await self.registry.apply_location_mutation(
                request.vehicle_id,
                lat=payload.lat,
                lon=payload.lon,
                speed_mps=payload.speed_mps,
                heading_deg=payload.heading_deg,
                guard=guard,
            )
        if request.kind is MutationKind.STATUS and isinstance(payload, StatusUpdate):
            return await self.registry.apply_status_mutation(
                request.vehicle_id,
                status=payload.status,
                occupancy=payload.occupancy,
                destination=payload.destination,
                notes=payload.notes,
                guard=guard,
            )
        raise ValidationError(
            f"Payload does not match mutation kind {request.kind.value}",
            vehicle_id=request.vehicle_id,
        )

    async def register(self, caller: Caller, spec: VehicleSpec) -> Vehicle:
        self.authorizer.require_admin(caller)
        return await self.registry.register(spec)

    async def assign_driver(
        self, caller: Caller, vehicle_id: str, driver_ref: str | None
    ) -> Vehicle:
        self.authorizer.require_admin(caller, vehicle_id)
        return await self.registry.assign_driver(vehicle_id, driver_ref)

    async def deactivate(self, caller: Caller, vehicle_id: str) -> Vehicle:
        self.authorizer.require_admin(caller, vehicle_id)
        return await self.registry.deactivate(vehicle_id)
