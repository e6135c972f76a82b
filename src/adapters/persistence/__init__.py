from .dynamodb_vehicle_repository import DynamoDbVehicleRepository
from .in_memory_vehicle_repository import InMemoryVehicleRepository

__all__ = [
    "DynamoDbVehicleRepository",
    "InMemoryVehicleRepository",
]
