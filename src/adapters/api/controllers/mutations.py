from __future__ import annotations

from fastapi import APIRouter, Depends

from src.adapters.api.controllers.vehicles import (
    ERROR_RESPONSES,
    location_update,
    status_update,
    vehicle_to_schema,
)
from src.adapters.api.dependencies import get_caller, get_fleet_runtime
from src.adapters.api.schemas.vehicles import (
    LocationMutationSchema,
    MutationSubmissionSchema,
    VehicleSchema,
)
from src.app.services.fleet_runtime import FleetRuntime
from src.domain.models import Caller, MutationKind, MutationRequest

router = APIRouter(tags=["mutations"], responses=ERROR_RESPONSES)


@router.post("/mutations", response_model=VehicleSchema)
async def submit_mutation(
    req: MutationSubmissionSchema,
    caller: Caller = Depends(get_caller),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleSchema:
    runtime.authorizer.authorize(caller, req.vehicle_id)

    if isinstance(req, LocationMutationSchema):
        request = MutationRequest(
            vehicle_id=req.vehicle_id,
            kind=MutationKind.LOCATION,
            payload=location_update(req.payload),
        )
    else:
        request = MutationRequest(
            vehicle_id=req.vehicle_id,
            kind=MutationKind.STATUS,
            payload=status_update(req.payload, req.vehicle_id),
        )

    vehicle = await runtime.commands.submit(caller, request)
    return vehicle_to_schema(vehicle)
