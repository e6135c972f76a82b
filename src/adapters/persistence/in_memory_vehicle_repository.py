from __future__ import annotations

import threading
from dataclasses import dataclass, field

from src.app.ports.output import IVehicleRepository
from src.domain.exceptions import ConflictError
from src.domain.models import Vehicle


@dataclass(slots=True)
class InMemoryVehicleRepository(IVehicleRepository):
    """Process-local store. State is lost on restart."""

    _items: dict[str, Vehicle] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def insert(self, vehicle: Vehicle) -> None:
        with self._lock:
            if vehicle.vehicle_id in self._items:
                raise ConflictError(
                    f"Vehicle {vehicle.vehicle_id} already exists",
                    vehicle_id=vehicle.vehicle_id,
                )
            self._items[vehicle.vehicle_id] = vehicle

    def save(self, vehicle: Vehicle) -> None:
        with self._lock:
            previous = self._items.get(vehicle.vehicle_id)
            if previous is not None and vehicle.last_updated < previous.last_updated:
                raise ConflictError(
                    f"Stale write for vehicle {vehicle.vehicle_id}",
                    vehicle_id=vehicle.vehicle_id,
                )
            self._items[vehicle.vehicle_id] = vehicle

    def load_all(self) -> tuple[Vehicle, ...]:
        with self._lock:
            return tuple(self._items.values())
