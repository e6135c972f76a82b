from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query, Response

from src.adapters.api.dependencies import get_caller, get_config, get_fleet_runtime
from src.adapters.api.schemas.vehicles import (
    DriverAssignmentSchema,
    ErrorSchema,
    LocationUpdateSchema,
    NearbyResponseSchema,
    NearbyVehicleSchema,
    RegisterVehicleSchema,
    StatusUpdateSchema,
    VehicleListSchema,
    VehicleSchema,
)
from src.adapters.config import FleetConfig
from src.app.services.fleet_runtime import FleetRuntime
from src.domain.exceptions import ValidationError
from src.domain.models import (
    Caller,
    GeoPoint,
    LocationUpdate,
    MutationKind,
    MutationRequest,
    OperationalStatus,
    StatusUpdate,
    Vehicle,
    VehicleSpec,
    vehicle_to_dict,
)

ERROR_RESPONSES = {
    code: {"model": ErrorSchema} for code in (400, 403, 404, 409)
}

router = APIRouter(prefix="/vehicles", tags=["vehicles"], responses=ERROR_RESPONSES)


def vehicle_to_schema(vehicle: Vehicle) -> VehicleSchema:
    return VehicleSchema.model_validate(vehicle_to_dict(vehicle))


def _parse_status(raw: str, vehicle_id: str | None = None) -> OperationalStatus:
    try:
        return OperationalStatus(raw.strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid status: {raw!r}", vehicle_id=vehicle_id) from None


def location_update(req: LocationUpdateSchema) -> LocationUpdate:
    return LocationUpdate(
        lat=req.lat, lon=req.lon, speed_mps=req.speed_mps, heading_deg=req.heading_deg
    )


def status_update(req: StatusUpdateSchema, vehicle_id: str) -> StatusUpdate:
    return StatusUpdate(
        status=_parse_status(req.status, vehicle_id),
        occupancy=req.occupancy,
        destination=req.destination,
        notes=req.notes,
    )


@router.post("", response_model=VehicleSchema, status_code=201)
async def register_vehicle(
    req: RegisterVehicleSchema,
    caller: Caller = Depends(get_caller),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleSchema:
    spec = VehicleSpec(
        bus_number=req.bus_number,
        capacity=req.capacity,
        destination=req.destination,
        driver_ref=req.driver_ref,
        route_ref=req.route_ref,
        location=(
            GeoPoint(lat=req.location.lat, lon=req.location.lon) if req.location else None
        ),
        notes=req.notes,
    )
    vehicle = await runtime.commands.register(caller, spec)
    return vehicle_to_schema(vehicle)


@router.get("", response_model=VehicleListSchema)
async def list_vehicles(
    status: str | None = Query(default=None),
    destination: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    page: int = Query(default=1, ge=1),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleListSchema:
    vehicles = runtime.registry.list_active(
        status=_parse_status(status) if status else None,
        destination=destination,
    )
    start = (page - 1) * limit
    return VehicleListSchema(
        vehicles=[vehicle_to_schema(v) for v in vehicles[start : start + limit]],
        page=page,
        limit=limit,
        total=len(vehicles),
        pages=math.ceil(len(vehicles) / limit),
    )


@router.get("/nearby", response_model=NearbyResponseSchema)
async def nearby_vehicles(
    lat: float = Query(..., ge=-90.0, le=90.0),
    lon: float = Query(..., ge=-180.0, le=180.0),
    radius_m: float | None = Query(default=None, ge=0.0),
    limit: int = Query(default=20, ge=1, le=200),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
    config: FleetConfig = Depends(get_config),
) -> NearbyResponseSchema:
    radius = config.nearby_radius_m if radius_m is None else radius_m
    hits = runtime.registry.nearest(lat, lon, radius, limit)
    return NearbyResponseSchema(
        lat=lat,
        lon=lon,
        radius_m=radius,
        vehicles=[
            NearbyVehicleSchema(vehicle_id=v.vehicle_id, distance_m=round(d, 1))
            for v, d in hits
        ],
    )


@router.get("/{vehicle_id}", response_model=VehicleSchema)
async def get_vehicle(
    vehicle_id: str,
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleSchema:
    return vehicle_to_schema(runtime.registry.get_snapshot(vehicle_id))


@router.put("/{vehicle_id}/location", response_model=VehicleSchema)
async def update_location(
    vehicle_id: str,
    req: LocationUpdateSchema,
    caller: Caller = Depends(get_caller),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleSchema:
    vehicle = await runtime.commands.submit(
        caller,
        MutationRequest(
            vehicle_id=vehicle_id,
            kind=MutationKind.LOCATION,
            payload=location_update(req),
        ),
    )
    return vehicle_to_schema(vehicle)


@router.put("/{vehicle_id}/status", response_model=VehicleSchema)
async def update_status(
    vehicle_id: str,
    req: StatusUpdateSchema,
    caller: Caller = Depends(get_caller),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleSchema:
    # Authorize before parsing the payload so a bad status from an
    # unauthorized caller is still reported as a permission failure.
    runtime.authorizer.authorize(caller, vehicle_id)
    vehicle = await runtime.commands.submit(
        caller,
        MutationRequest(
            vehicle_id=vehicle_id,
            kind=MutationKind.STATUS,
            payload=status_update(req, vehicle_id),
        ),
    )
    return vehicle_to_schema(vehicle)


@router.put("/{vehicle_id}/driver", response_model=VehicleSchema)
async def assign_driver(
    vehicle_id: str,
    req: DriverAssignmentSchema,
    caller: Caller = Depends(get_caller),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> VehicleSchema:
    vehicle = await runtime.commands.assign_driver(caller, vehicle_id, req.driver_ref)
    return vehicle_to_schema(vehicle)


@router.delete("/{vehicle_id}", status_code=204)
async def deactivate_vehicle(
    vehicle_id: str,
    caller: Caller = Depends(get_caller),
    runtime: FleetRuntime = Depends(get_fleet_runtime),
) -> Response:
    await runtime.commands.deactivate(caller, vehicle_id)
    return Response(status_code=204)
