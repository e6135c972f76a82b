from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .geo import GeoPoint


class OperationalStatus(str, Enum):
    IN_SERVICE = "in_service"
    OUT_OF_SERVICE = "out_of_service"
    ON_BREAK = "on_break"
    EMERGENCY = "emergency"


class SeatTier(str, Enum):
    EMPTY = "empty"
    FEW_SEATS = "few_seats"
    FULL = "full"


@dataclass(frozen=True, slots=True)
class Vehicle:
    """Immutable snapshot of one bus at a specific commit.

    The registry replaces snapshots wholesale; nothing mutates one in place.
    """

    vehicle_id: str
    bus_number: str
    location: GeoPoint
    destination: str
    capacity: int
    last_updated: datetime
    driver_ref: str | None = None
    speed_mps: float = 0.0
    heading_deg: float = 0.0
    status: OperationalStatus = OperationalStatus.OUT_OF_SERVICE
    occupancy: int = 0
    seat_tier: SeatTier = SeatTier.EMPTY
    route_ref: str | None = None
    notes: str | None = None
    active: bool = True

    @property
    def available_seats(self) -> int:
        return self.capacity - self.occupancy

    @property
    def occupancy_percentage(self) -> int:
        return round(self.occupancy * 100 / self.capacity)


@dataclass(frozen=True, slots=True)
class VehicleSpec:
    """Registration request for a new bus."""

    bus_number: str
    capacity: int
    destination: str
    driver_ref: str | None = None
    route_ref: str | None = None
    location: GeoPoint | None = None
    notes: str | None = None
