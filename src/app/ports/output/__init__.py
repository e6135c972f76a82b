from .identity_provider import IIdentityProvider
from .observer_channel import IObserverChannel
from .vehicle_event_publisher import IVehicleEventPublisher
from .vehicle_repository import IVehicleRepository

__all__ = [
    "IIdentityProvider",
    "IObserverChannel",
    "IVehicleEventPublisher",
    "IVehicleRepository",
]
