from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel

from src.adapters.api.schemas.geo import GeoPointSchema


class VehicleSchema(BaseModel):
    vehicle_id: str
    bus_number: str
    driver_ref: str | None = None
    lat: float
    lon: float
    speed_mps: float
    heading_deg: float
    destination: str
    status: str
    occupancy: int
    capacity: int
    seat_tier: str
    available_seats: int
    occupancy_percentage: int
    route_ref: str | None = None
    notes: str | None = None
    last_updated: datetime
    active: bool


class VehicleListSchema(BaseModel):
    vehicles: list[VehicleSchema]
    page: int
    limit: int
    total: int
    pages: int


class RegisterVehicleSchema(BaseModel):
    bus_number: str
    capacity: int
    destination: str
    driver_ref: str | None = None
    route_ref: str | None = None
    location: GeoPointSchema | None = None
    notes: str | None = None


class LocationUpdateSchema(BaseModel):
    lat: float
    lon: float
    speed_mps: float = 0.0
    heading_deg: float = 0.0


class StatusUpdateSchema(BaseModel):
    status: str
    occupancy: int | None = None
    destination: str | None = None
    notes: str | None = None


class DriverAssignmentSchema(BaseModel):
    driver_ref: str | None = None


class LocationMutationSchema(BaseModel):
    vehicle_id: str
    kind: Literal["location"]
    payload: LocationUpdateSchema


class StatusMutationSchema(BaseModel):
    vehicle_id: str
    kind: Literal["status"]
    payload: StatusUpdateSchema


# Pydantic picks the member whose "kind" literal matches.
MutationSubmissionSchema = Union[LocationMutationSchema, StatusMutationSchema]


class NearbyVehicleSchema(BaseModel):
    vehicle_id: str
    distance_m: float


class NearbyResponseSchema(BaseModel):
    lat: float
    lon: float
    radius_m: float
    vehicles: list[NearbyVehicleSchema]


class ErrorSchema(BaseModel):
    error: str
    detail: str
    vehicle_id: str | None = None
