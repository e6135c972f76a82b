from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from botocore.exceptions import ClientError

from src.adapters.aws import dynamodb_client
from src.app.ports.output import IVehicleRepository
from src.domain.algorithms.geo_utils import grid_cell
from src.domain.exceptions import ConflictError
from src.domain.models import GeoPoint, OperationalStatus, SeatTier, Vehicle


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def _opt_str(item: Mapping[str, Any], key: str) -> str | None:
    attr = item.get(key)
    if not attr or "S" not in attr:
        return None
    return attr["S"]


@dataclass(slots=True)
class DynamoDbVehicleRepository(IVehicleRepository):
    """Stores vehicle snapshots in DynamoDB.

    Table layout:
      - hash key ``vehicle_id`` (S), which makes ids unique
      - ``geo_cell`` (S) grid cell of the position; suitable as a GSI hash
        key for geospatial range lookups
      - one attribute per Vehicle field; ``last_updated_ms`` (N)

    Writes are conditional: ``insert`` fails if the id exists and ``save``
    refuses to move ``last_updated_ms`` backwards. Both raise ConflictError.

    Env vars:
      - FLEET_DDB_TABLE (default: campus-fleet-vehicles)
      - ENDPOINT_URL (preferred for LocalStack)
      - AWS_REGION
    """

    table_name: str | None = None
    cell_size_deg: float = 0.01

    def _table(self) -> str:
        return self.table_name or os.getenv("FLEET_DDB_TABLE") or "campus-fleet-vehicles"

    def _to_item(self, vehicle: Vehicle) -> dict[str, Any]:
        row, col = grid_cell(vehicle.location.lat, vehicle.location.lon, self.cell_size_deg)
        item: dict[str, Any] = {
            "vehicle_id": {"S": vehicle.vehicle_id},
            "bus_number": {"S": vehicle.bus_number},
            "lat": {"N": repr(vehicle.location.lat)},
            "lon": {"N": repr(vehicle.location.lon)},
            "geo_cell": {"S": f"{row}:{col}"},
            "speed_mps": {"N": repr(vehicle.speed_mps)},
            "heading_deg": {"N": repr(vehicle.heading_deg)},
            "destination": {"S": vehicle.destination},
            "status": {"S": vehicle.status.value},
            "occupancy": {"N": str(vehicle.occupancy)},
            "capacity": {"N": str(vehicle.capacity)},
            "seat_tier": {"S": vehicle.seat_tier.value},
            "last_updated_ms": {"N": str(_to_ms(vehicle.last_updated))},
            "active": {"BOOL": vehicle.active},
        }
        if vehicle.driver_ref is not None:
            item["driver_ref"] = {"S": vehicle.driver_ref}
        if vehicle.route_ref is not None:
            item["route_ref"] = {"S": vehicle.route_ref}
        if vehicle.notes:
            item["notes"] = {"S": vehicle.notes}
        return item

    @staticmethod
    def _from_item(item: Mapping[str, Any]) -> Vehicle:
        return Vehicle(
            vehicle_id=item["vehicle_id"]["S"],
            bus_number=item["bus_number"]["S"],
            location=GeoPoint(lat=float(item["lat"]["N"]), lon=float(item["lon"]["N"])),
            destination=item["destination"]["S"],
            capacity=int(item["capacity"]["N"]),
            last_updated=_from_ms(int(item["last_updated_ms"]["N"])),
            driver_ref=_opt_str(item, "driver_ref"),
            speed_mps=float(item.get("speed_mps", {}).get("N", "0")),
            heading_deg=float(item.get("heading_deg", {}).get("N", "0")),
            status=OperationalStatus(item["status"]["S"]),
            occupancy=int(item.get("occupancy", {}).get("N", "0")),
            seat_tier=SeatTier(item["seat_tier"]["S"]),
            route_ref=_opt_str(item, "route_ref"),
            notes=_opt_str(item, "notes"),
            active=bool(item.get("active", {}).get("BOOL", True)),
        )

    def _put(self, vehicle: Vehicle, **condition: Any) -> None:
        ddb = dynamodb_client()
        try:
            ddb.put_item(TableName=self._table(), Item=self._to_item(vehicle), **condition)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                raise ConflictError(
                    f"Conditional write rejected for vehicle {vehicle.vehicle_id}",
                    vehicle_id=vehicle.vehicle_id,
                ) from exc
            raise

    def insert(self, vehicle: Vehicle) -> None:
        self._put(vehicle, ConditionExpression="attribute_not_exists(vehicle_id)")

    def save(self, vehicle: Vehicle) -> None:
        self._put(
            vehicle,
            ConditionExpression="attribute_not_exists(vehicle_id) OR last_updated_ms <= :u",
            ExpressionAttributeValues={":u": {"N": str(_to_ms(vehicle.last_updated))}},
        )

    def load_all(self) -> tuple[Vehicle, ...]:
        ddb = dynamodb_client()
        out: list[Vehicle] = []
        kwargs: dict[str, Any] = {"TableName": self._table()}
        while True:
            resp = ddb.scan(**kwargs)
            for item in resp.get("Items", []) or []:
                out.append(self._from_item(item))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return tuple(out)
