from __future__ import annotations

import os
from dataclasses import dataclass

from src.app.services.fleet_registry import DEFAULT_DEPOT, DEFAULT_DESTINATIONS


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or default


@dataclass(frozen=True, slots=True)
class FleetConfig:
    """Process configuration, read from the environment.

    Env vars:
      - FLEET_DESTINATIONS: comma-separated destination names
      - FLEET_DEPOT_LAT / FLEET_DEPOT_LON: default position for new buses
      - FLEET_STORAGE: "memory" (default) or "dynamodb"
      - FLEET_DDB_TABLE (default: campus-fleet-vehicles)
      - FLEET_INDEX_CELL_DEG: geospatial grid cell size (default 0.01)
      - FLEET_SUBSCRIBER_QUEUE_SIZE: pending events per observer (default 100)
      - FLEET_NEARBY_RADIUS_M: default radius for nearby queries (default 5000)
      - FLEET_API_TOKENS: 'token:identity:role;token2:identity2:role2'
      - FLEET_LOG_LEVEL (default: INFO)
      - FLEET_REVEAL_ERRORS: include exception text in 500 responses
    """

    destinations: tuple[str, ...] = DEFAULT_DESTINATIONS
    depot_lat: float = DEFAULT_DEPOT.lat
    depot_lon: float = DEFAULT_DEPOT.lon
    storage: str = "memory"
    ddb_table: str = "campus-fleet-vehicles"
    index_cell_deg: float = 0.01
    subscriber_queue_size: int = 100
    nearby_radius_m: float = 5000.0
    api_tokens: str | None = None
    log_level: str = "INFO"
    reveal_errors: bool = False

    @staticmethod
    def from_env() -> "FleetConfig":
        storage = (os.getenv("FLEET_STORAGE") or "memory").strip().lower()
        if storage not in {"memory", "dynamodb"}:
            raise RuntimeError(f"Unsupported FLEET_STORAGE: {storage}")

        return FleetConfig(
            destinations=_env_list("FLEET_DESTINATIONS", DEFAULT_DESTINATIONS),
            depot_lat=_env_float("FLEET_DEPOT_LAT", DEFAULT_DEPOT.lat),
            depot_lon=_env_float("FLEET_DEPOT_LON", DEFAULT_DEPOT.lon),
            storage=storage,
            ddb_table=os.getenv("FLEET_DDB_TABLE") or "campus-fleet-vehicles",
            index_cell_deg=_env_float("FLEET_INDEX_CELL_DEG", 0.01),
            subscriber_queue_size=_env_int("FLEET_SUBSCRIBER_QUEUE_SIZE", 100),
            nearby_radius_m=_env_float("FLEET_NEARBY_RADIUS_M", 5000.0),
            api_tokens=os.getenv("FLEET_API_TOKENS"),
            log_level=(os.getenv("FLEET_LOG_LEVEL") or "INFO").strip().upper(),
            reveal_errors=_env_bool("FLEET_REVEAL_ERRORS", False),
        )
