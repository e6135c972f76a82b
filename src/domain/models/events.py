from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .vehicle import Vehicle


class EventKind(str, Enum):
    SNAPSHOT = "snapshot"
    LOCATION_CHANGED = "location_changed"
    STATUS_CHANGED = "status_changed"
    VEHICLE_UPDATED = "vehicle_updated"


def vehicle_to_dict(vehicle: Vehicle) -> dict[str, Any]:
    """JSON-ready full view of a snapshot."""

    return {
        "vehicle_id": vehicle.vehicle_id,
        "bus_number": vehicle.bus_number,
        "driver_ref": vehicle.driver_ref,
        "lat": vehicle.location.lat,
        "lon": vehicle.location.lon,
        "speed_mps": vehicle.speed_mps,
        "heading_deg": vehicle.heading_deg,
        "destination": vehicle.destination,
        "status": vehicle.status.value,
        "occupancy": vehicle.occupancy,
        "capacity": vehicle.capacity,
        "seat_tier": vehicle.seat_tier.value,
        "available_seats": vehicle.available_seats,
        "occupancy_percentage": vehicle.occupancy_percentage,
        "route_ref": vehicle.route_ref,
        "notes": vehicle.notes,
        "last_updated": vehicle.last_updated.isoformat(),
        "active": vehicle.active,
    }


@dataclass(frozen=True, slots=True)
class VehicleEvent:
    kind: EventKind
    snapshot: Vehicle

    @property
    def vehicle_id(self) -> str:
        return self.snapshot.vehicle_id

    def to_message(self) -> dict[str, Any]:
        v = self.snapshot
        if self.kind is EventKind.LOCATION_CHANGED:
            return {
                "type": self.kind.value,
                "vehicle_id": v.vehicle_id,
                "lat": v.location.lat,
                "lon": v.location.lon,
                "speed_mps": v.speed_mps,
                "heading_deg": v.heading_deg,
                "last_updated": v.last_updated.isoformat(),
            }
        if self.kind is EventKind.STATUS_CHANGED:
            return {
                "type": self.kind.value,
                "vehicle_id": v.vehicle_id,
                "status": v.status.value,
                "occupancy": v.occupancy,
                "capacity": v.capacity,
                "seat_tier": v.seat_tier.value,
                "destination": v.destination,
                "last_updated": v.last_updated.isoformat(),
            }
        return {"type": self.kind.value, "vehicle": vehicle_to_dict(v)}
