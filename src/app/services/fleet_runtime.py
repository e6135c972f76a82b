from __future__ import annotations

from dataclasses import dataclass

from src.app.ports.output import IVehicleRepository
from src.domain.models import GeoPoint

from .fleet_command_service import FleetCommandService
from .fleet_registry import DEFAULT_DEPOT, DEFAULT_DESTINATIONS, FleetRegistry
from .geospatial_index import GeospatialIndex
from .mutation_authorizer import MutationAuthorizer
from .subscription_broker import SubscriptionBroker


@dataclass(slots=True)
class FleetRuntime:
    """Process-scoped set of fleet components, wired together.

    Built once at startup and closed at shutdown; nothing here is a
    module-level global.
    """

    index: GeospatialIndex
    registry: FleetRegistry
    broker: SubscriptionBroker
    authorizer: MutationAuthorizer
    commands: FleetCommandService

    @classmethod
    def create(
        cls,
        *,
        repository: IVehicleRepository | None = None,
        destinations: tuple[str, ...] = DEFAULT_DESTINATIONS,
        depot: GeoPoint = DEFAULT_DEPOT,
        cell_size_deg: float = 0.01,
        subscriber_queue_size: int = 100,
    ) -> "FleetRuntime":
        index = GeospatialIndex(cell_size_deg=cell_size_deg)
        registry = FleetRegistry(
            index=index,
            repository=repository,
            destinations=frozenset(destinations),
            depot=depot,
        )
        broker = SubscriptionBroker(snapshots=registry, max_pending=subscriber_queue_size)
        registry.publisher = broker

        authorizer = MutationAuthorizer(registry=registry)
        return cls(
            index=index,
            registry=registry,
            broker=broker,
            authorizer=authorizer,
            commands=FleetCommandService(registry=registry, authorizer=authorizer),
        )

    async def start(self) -> None:
        await self.registry.load()

    async def close(self) -> None:
        await self.broker.close()
