from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .vehicle import OperationalStatus


class MutationKind(str, Enum):
    LOCATION = "location"
    STATUS = "status"


@dataclass(frozen=True, slots=True)
class LocationUpdate:
    lat: float
    lon: float
    speed_mps: float = 0.0
    heading_deg: float = 0.0


@dataclass(frozen=True, slots=True)
class StatusUpdate:
    status: OperationalStatus
    occupancy: int | None = None
    destination: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class MutationRequest:
    """A driver/admin submission targeting one vehicle."""

    vehicle_id: str
    kind: MutationKind
    payload: LocationUpdate | StatusUpdate
