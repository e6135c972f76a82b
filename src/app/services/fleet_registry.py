from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from src.app.ports.output import IVehicleEventPublisher, IVehicleRepository
from src.domain.algorithms.seat_tier import derive_tier
from src.domain.exceptions import InvariantViolation, NotFoundError, ValidationError
from src.domain.models import (
    EventKind,
    GeoPoint,
    OperationalStatus,
    Vehicle,
    VehicleEvent,
    VehicleSpec,
)

from .geospatial_index import GeospatialIndex

logger = logging.getLogger(__name__)

DEFAULT_DESTINATIONS = ("Campus 25", "Campus 6", "Campus 15", "Main Campus", "Other")
DEFAULT_DEPOT = GeoPoint(lat=20.2961, lon=85.8189)
MAX_CAPACITY = 100
MAX_NOTES_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _finite(name: str, value: float, vehicle_id: str | None) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value!r}", vehicle_id=vehicle_id) from None
    if not math.isfinite(out):
        raise ValidationError(f"Invalid {name}: {value!r}", vehicle_id=vehicle_id)
    return out


def _location(lat: float, lon: float, vehicle_id: str | None) -> GeoPoint:
    point_lat = _finite("latitude", lat, vehicle_id)
    point_lon = _finite("longitude", lon, vehicle_id)
    try:
        return GeoPoint(lat=point_lat, lon=point_lon)
    except ValidationError as exc:
        raise ValidationError(str(exc), vehicle_id=vehicle_id) from None


@dataclass(slots=True)
class FleetRegistry:
    """Canonical owner of per-vehicle state.

    - Mutations on the same vehicle run one at a time (one asyncio.Lock per id).
    - Reads never take a lock; they see the last committed snapshot.
    - A commit derives the seat tier, checks invariants, persists, swaps the
      visible snapshot, then updates the index and publishes exactly once.
    """

    index: GeospatialIndex
    repository: IVehicleRepository | None = None
    publisher: IVehicleEventPublisher | None = None
    destinations: frozenset[str] = frozenset(DEFAULT_DESTINATIONS)
    depot: GeoPoint = DEFAULT_DEPOT
    max_capacity: int = MAX_CAPACITY
    clock: Callable[[], datetime] = _utcnow

    _vehicles: dict[str, Vehicle] = field(default_factory=dict, init=False, repr=False)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False, repr=False)
    _bus_numbers: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _register_lock: asyncio.Lock = field(
        default_factory=asyncio.Lock, init=False, repr=False
    )

    # -- validation -------------------------------------------------------

    def _validate_destination(self, destination: str, vehicle_id: str | None) -> str:
        if destination not in self.destinations:
            raise ValidationError(
                f"Invalid destination: {destination!r}", vehicle_id=vehicle_id
            )
        return destination

    def _validate_capacity(self, capacity: int) -> int:
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise ValidationError(f"Capacity must be an integer, got {capacity!r}")
        if not (1 <= capacity <= self.max_capacity):
            raise ValidationError(
                f"Capacity must be between 1 and {self.max_capacity}, got {capacity}"
            )
        return capacity

    @staticmethod
    def _validate_notes(notes: str | None, vehicle_id: str | None) -> str | None:
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(
                f"Notes exceed {MAX_NOTES_LENGTH} characters", vehicle_id=vehicle_id
            )
        return notes

    @staticmethod
    def _validate_status(
        status: OperationalStatus | str, vehicle_id: str
    ) -> OperationalStatus:
        try:
            return OperationalStatus(status)
        except ValueError:
            raise ValidationError(
                f"Invalid status: {status!r}", vehicle_id=vehicle_id
            ) from None

    # -- commit -----------------------------------------------------------

    @staticmethod
    def _check_invariants(vehicle: Vehicle, previous: Vehicle | None) -> None:
        if not (1 <= vehicle.capacity):
            raise InvariantViolation(f"{vehicle.vehicle_id}: capacity {vehicle.capacity}")
        if not (0 <= vehicle.occupancy <= vehicle.capacity):
            raise InvariantViolation(
                f"{vehicle.vehicle_id}: occupancy {vehicle.occupancy} "
                f"outside [0, {vehicle.capacity}]"
            )
        if vehicle.seat_tier is not derive_tier(vehicle.occupancy, vehicle.capacity):
            raise InvariantViolation(
                f"{vehicle.vehicle_id}: tier {vehicle.seat_tier.value} does not match "
                f"occupancy {vehicle.occupancy}/{vehicle.capacity}"
            )
        if previous is not None and vehicle.last_updated < previous.last_updated:
            raise InvariantViolation(f"{vehicle.vehicle_id}: last_updated moved backwards")

    def _finalize(self, current: Vehicle, candidate: Vehicle) -> Vehicle:
        if not (0 <= candidate.occupancy <= candidate.capacity):
            raise InvariantViolation(
                f"{candidate.vehicle_id}: occupancy {candidate.occupancy} "
                f"outside [0, {candidate.capacity}]"
            )
        committed = replace(
            candidate,
            seat_tier=derive_tier(candidate.occupancy, candidate.capacity),
            last_updated=max(self.clock(), current.last_updated),
        )
        self._check_invariants(committed, current)
        return committed

    def _lock_for(self, vehicle_id: str) -> asyncio.Lock:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[vehicle_id] = lock
        return lock

    async def _commit(
        self,
        vehicle_id: str,
        kind: EventKind,
        change: Callable[[Vehicle], Vehicle],
        *,
        guard: Callable[[Vehicle], None] | None = None,
    ) -> Vehicle:
        if vehicle_id not in self._vehicles:
            raise NotFoundError(f"Vehicle {vehicle_id} not found", vehicle_id=vehicle_id)

        async with self._lock_for(vehicle_id):
            current = self._vehicles[vehicle_id]
            if not current.active:
                raise NotFoundError(
                    f"Vehicle {vehicle_id} not found", vehicle_id=vehicle_id
                )
            # Any check made before the lock may have seen an older snapshot.
            if guard is not None:
                guard(current)

            committed = self._finalize(current, change(current))
            if self.repository is not None:
                await asyncio.to_thread(self.repository.save, committed)

            # From here to the publish there is no await: observers see the
            # swap and the event as one step.
            self._vehicles[vehicle_id] = committed
            if not committed.active:
                self.index.remove(vehicle_id)
            elif kind is EventKind.LOCATION_CHANGED:
                self.index.upsert(
                    vehicle_id, committed.location.lat, committed.location.lon
                )
            if self.publisher is not None:
                self.publisher.publish(vehicle_id, VehicleEvent(kind, committed))

        logger.debug("Committed %s for vehicle %s", kind.value, vehicle_id)
        return committed

    # -- mutations --------------------------------------------------------

    async def register(self, spec: VehicleSpec) -> Vehicle:
        bus_number = (spec.bus_number or "").strip()
        if not bus_number:
            raise ValidationError("Bus number is required")
        capacity = self._validate_capacity(spec.capacity)
        destination = self._validate_destination(spec.destination, None)
        notes = self._validate_notes(spec.notes, None)
        location = spec.location or self.depot

        async with self._register_lock:
            if bus_number in self._bus_numbers:
                raise ValidationError(f"Bus number {bus_number} already exists")

            vehicle = Vehicle(
                vehicle_id=uuid4().hex,
                bus_number=bus_number,
                location=location,
                destination=destination,
                capacity=capacity,
                last_updated=self.clock(),
                driver_ref=spec.driver_ref,
                route_ref=spec.route_ref,
                notes=notes,
                seat_tier=derive_tier(0, capacity),
            )
            self._check_invariants(vehicle, None)
            if self.repository is not None:
                await asyncio.to_thread(self.repository.insert, vehicle)

            self._vehicles[vehicle.vehicle_id] = vehicle
            self._bus_numbers[bus_number] = vehicle.vehicle_id
            self.index.upsert(vehicle.vehicle_id, location.lat, location.lon)

        logger.info("Registered bus %s as %s", bus_number, vehicle.vehicle_id)
        return vehicle

    async def apply_location_mutation(
        self,
        vehicle_id: str,
        lat: float,
        lon: float,
        speed_mps: float = 0.0,
        heading_deg: float = 0.0,
        *,
        guard: Callable[[Vehicle], None] | None = None,
    ) -> Vehicle:
        location = _location(lat, lon, vehicle_id)
        speed = _finite("speed", speed_mps, vehicle_id)
        heading = _finite("heading", heading_deg, vehicle_id)
        if speed < 0:
            raise ValidationError(f"Speed must be >= 0, got {speed}", vehicle_id=vehicle_id)
        if not (0.0 <= heading < 360.0):
            raise ValidationError(
                f"Heading must be in [0, 360), got {heading}", vehicle_id=vehicle_id
            )

        return await self._commit(
            vehicle_id,
            EventKind.LOCATION_CHANGED,
            lambda v: replace(v, location=location, speed_mps=speed, heading_deg=heading),
            guard=guard,
        )

    async def apply_status_mutation(
        self,
        vehicle_id: str,
        status: OperationalStatus | str,
        occupancy: int | None = None,
        destination: str | None = None,
        notes: str | None = None,
        *,
        guard: Callable[[Vehicle], None] | None = None,
    ) -> Vehicle:
        new_status = self._validate_status(status, vehicle_id)
        if occupancy is not None:
            if isinstance(occupancy, bool) or not isinstance(occupancy, int):
                raise ValidationError(
                    f"Occupancy must be an integer, got {occupancy!r}",
                    vehicle_id=vehicle_id,
                )
            if occupancy < 0:
                raise ValidationError(
                    f"Occupancy must be >= 0, got {occupancy}", vehicle_id=vehicle_id
                )
        if destination is not None:
            self._validate_destination(destination, vehicle_id)
        self._validate_notes(notes, vehicle_id)

        def change(v: Vehicle) -> Vehicle:
            new_occupancy = v.occupancy if occupancy is None else occupancy
            if new_occupancy > v.capacity:
                raise ValidationError(
                    f"Occupancy {new_occupancy} exceeds capacity {v.capacity}",
                    vehicle_id=vehicle_id,
                )
            return replace(
                v,
                status=new_status,
                occupancy=new_occupancy,
                destination=destination or v.destination,
                notes=v.notes if notes is None else notes,
            )

        return await self._commit(
            vehicle_id, EventKind.STATUS_CHANGED, change, guard=guard
        )

    async def assign_driver(self, vehicle_id: str, driver_ref: str | None) -> Vehicle:
        if driver_ref is not None and not driver_ref.strip():
            raise ValidationError("Driver reference must not be blank", vehicle_id=vehicle_id)
        return await self._commit(
            vehicle_id,
            EventKind.VEHICLE_UPDATED,
            lambda v: replace(v, driver_ref=driver_ref),
        )

    async def deactivate(self, vehicle_id: str) -> Vehicle:
        vehicle = await self._commit(
            vehicle_id,
            EventKind.VEHICLE_UPDATED,
            lambda v: replace(v, active=False),
        )
        logger.info("Deactivated vehicle %s", vehicle_id)
        return vehicle

    # -- queries ----------------------------------------------------------

    def get_snapshot(self, vehicle_id: str) -> Vehicle:
        vehicle = self._vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found", vehicle_id=vehicle_id)
        return vehicle

    def list_active(
        self,
        *,
        status: OperationalStatus | None = None,
        destination: str | None = None,
    ) -> tuple[Vehicle, ...]:
        vehicles = [
            v
            for v in list(self._vehicles.values())
            if v.active
            and (status is None or v.status is status)
            and (destination is None or v.destination == destination)
        ]
        vehicles.sort(key=lambda v: (-v.last_updated.timestamp(), v.vehicle_id))
        return tuple(vehicles)

    def nearest(
        self, lat: float, lon: float, radius_m: float, limit: int
    ) -> tuple[tuple[Vehicle, float], ...]:
        """Active vehicles within ``radius_m``, closest first, at most ``limit``.

        The limit is applied after joining with current snapshots, so an
        index entry without an active vehicle never shortens the result.
        """

        if limit < 0:
            raise ValidationError(f"Invalid limit: {limit}")

        out: list[tuple[Vehicle, float]] = []
        for vehicle_id, distance_m in self.index.nearest(lat, lon, radius_m, len(self.index)):
            if len(out) == limit:
                break
            vehicle = self._vehicles.get(vehicle_id)
            if vehicle is not None and vehicle.active:
                out.append((vehicle, distance_m))
        return tuple(out)

    # -- lifecycle --------------------------------------------------------

    async def load(self) -> int:
        """Rebuild state and the geospatial index from the repository."""

        if self.repository is None:
            return 0

        vehicles = await asyncio.to_thread(self.repository.load_all)
        for stored in vehicles:
            vehicle = replace(
                stored, seat_tier=derive_tier(stored.occupancy, stored.capacity)
            )
            self._vehicles[vehicle.vehicle_id] = vehicle
            self._bus_numbers[vehicle.bus_number] = vehicle.vehicle_id
            if vehicle.active:
                self.index.upsert(
                    vehicle.vehicle_id, vehicle.location.lat, vehicle.location.lon
                )
            else:
                self.index.remove(vehicle.vehicle_id)

        logger.info("Loaded %d vehicles from storage", len(vehicles))
        return len(vehicles)
