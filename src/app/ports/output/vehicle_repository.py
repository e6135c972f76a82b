from __future__ import annotations

from abc import ABC, abstractmethod

from src.domain.models.vehicle import Vehicle


class IVehicleRepository(ABC):
    """Port for the durable vehicle store.

    Implementations must enforce uniqueness of ``vehicle_id`` and keep
    enough location data to rebuild the geospatial index on restart.
    """

    @abstractmethod
    def insert(self, vehicle: Vehicle) -> None:
        """Persist a newly registered vehicle; ConflictError if the id exists."""

    @abstractmethod
    def save(self, vehicle: Vehicle) -> None:
        """Persist a committed snapshot, replacing the previous one."""

    @abstractmethod
    def load_all(self) -> tuple[Vehicle, ...]:
        raise NotImplementedError
