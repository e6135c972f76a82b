from __future__ import annotations

from fastapi import Depends, Header
from starlette.requests import HTTPConnection

from src.adapters.config import FleetConfig
from src.adapters.identity import StaticTokenIdentityProvider
from src.adapters.persistence import DynamoDbVehicleRepository, InMemoryVehicleRepository
from src.app.ports.output import IIdentityProvider, IVehicleRepository
from src.app.services.fleet_runtime import FleetRuntime
from src.domain.models import Caller, GeoPoint


def build_fleet_runtime(config: FleetConfig) -> FleetRuntime:
    repository: IVehicleRepository
    if config.storage == "dynamodb":
        repository = DynamoDbVehicleRepository(
            table_name=config.ddb_table, cell_size_deg=config.index_cell_deg
        )
    else:
        repository = InMemoryVehicleRepository()

    return FleetRuntime.create(
        repository=repository,
        destinations=config.destinations,
        depot=GeoPoint(lat=config.depot_lat, lon=config.depot_lon),
        cell_size_deg=config.index_cell_deg,
        subscriber_queue_size=config.subscriber_queue_size,
    )


def build_identity_provider(config: FleetConfig) -> IIdentityProvider:
    return StaticTokenIdentityProvider(tokens_raw=config.api_tokens or "")


def get_config(conn: HTTPConnection) -> FleetConfig:
    config = getattr(conn.app.state, "config", None)
    return config if config is not None else FleetConfig.from_env()


def get_fleet_runtime(conn: HTTPConnection) -> FleetRuntime:
    runtime = getattr(conn.app.state, "fleet", None)
    if runtime is None:
        raise RuntimeError("Fleet runtime not initialised")
    return runtime


def get_identity_provider(conn: HTTPConnection) -> IIdentityProvider:
    provider = getattr(conn.app.state, "identity", None)
    if provider is None:
        raise RuntimeError("Identity provider not initialised")
    return provider


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_caller(
    authorization: str | None = Header(default=None),
    identity: IIdentityProvider = Depends(get_identity_provider),
) -> Caller:
    return identity.resolve(_bearer_token(authorization))
