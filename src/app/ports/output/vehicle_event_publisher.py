from __future__ import annotations

from abc import ABC, abstractmethod

from src.domain.models.events import VehicleEvent


class IVehicleEventPublisher(ABC):
    """Port the registry uses to announce committed snapshots."""

    @abstractmethod
    def publish(self, vehicle_id: str, event: VehicleEvent) -> None:
        """Hand the event off for delivery. Must not block the caller."""
