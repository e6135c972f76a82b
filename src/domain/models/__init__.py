from .caller import ANONYMOUS, Caller, Role
from .events import EventKind, VehicleEvent, vehicle_to_dict
from .geo import GeoPoint
from .mutation import LocationUpdate, MutationKind, MutationRequest, StatusUpdate
from .vehicle import OperationalStatus, SeatTier, Vehicle, VehicleSpec

__all__ = [
    "ANONYMOUS",
    "Caller",
    "EventKind",
    "GeoPoint",
    "LocationUpdate",
    "MutationKind",
    "MutationRequest",
    "OperationalStatus",
    "Role",
    "SeatTier",
    "StatusUpdate",
    "Vehicle",
    "VehicleEvent",
    "VehicleSpec",
    "vehicle_to_dict",
]
