from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

import pytest

from src.adapters.persistence import InMemoryVehicleRepository
from src.app.services.fleet_registry import FleetRegistry
from src.app.services.geospatial_index import GeospatialIndex
from src.domain.algorithms.seat_tier import derive_tier
from src.domain.exceptions import InvariantViolation, NotFoundError, ValidationError
from src.domain.models import (
    EventKind,
    GeoPoint,
    OperationalStatus,
    SeatTier,
    Vehicle,
    VehicleEvent,
    VehicleSpec,
)

T0 = datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc)


@dataclass(slots=True)
class FakeClock:
    now: datetime = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass(slots=True)
class RecordingPublisher:
    events: list[tuple[str, VehicleEvent]] = field(default_factory=list)

    def publish(self, vehicle_id: str, event: VehicleEvent) -> None:
        self.events.append((vehicle_id, event))


def _registry(**kwargs) -> tuple[FleetRegistry, RecordingPublisher, FakeClock]:
    publisher = RecordingPublisher()
    clock = FakeClock()
    registry = FleetRegistry(
        index=GeospatialIndex(),
        publisher=publisher,
        clock=clock,
        **kwargs,
    )
    return registry, publisher, clock


async def _register(registry: FleetRegistry, bus_number: str = "OR-02-1234", **kw) -> Vehicle:
    spec = VehicleSpec(
        bus_number=bus_number,
        capacity=kw.pop("capacity", 45),
        destination=kw.pop("destination", "Campus 25"),
        **kw,
    )
    return await registry.register(spec)


@pytest.mark.anyio
async def test_register_initializes_defaults() -> None:
    registry, publisher, _ = _registry()

    v = await _register(registry, driver_ref="D1")

    assert v.occupancy == 0
    assert v.seat_tier is SeatTier.EMPTY
    assert v.active is True
    assert v.status is OperationalStatus.OUT_OF_SERVICE
    assert v.location == GeoPoint(lat=20.2961, lon=85.8189)
    assert v.last_updated == T0
    assert registry.get_snapshot(v.vehicle_id) == v
    assert registry.index.position(v.vehicle_id) == v.location
    # Registration is not a mutation of an observable vehicle.
    assert publisher.events == []


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides",
    [
        {"capacity": 0},
        {"capacity": 101},
        {"capacity": True},
        {"destination": "Mars"},
        {"bus_number": "   "},
        {"notes": "x" * 501},
    ],
)
async def test_register_rejects_invalid_specs(overrides: dict) -> None:
    registry, _, _ = _registry()
    spec = VehicleSpec(
        bus_number=overrides.pop("bus_number", "OR-1"),
        capacity=overrides.pop("capacity", 45),
        destination=overrides.pop("destination", "Main Campus"),
        **overrides,
    )

    with pytest.raises(ValidationError):
        await registry.register(spec)

    assert registry.list_active() == ()


@pytest.mark.anyio
async def test_register_rejects_duplicate_bus_number() -> None:
    registry, _, _ = _registry()
    await _register(registry, bus_number="OR-7")

    with pytest.raises(ValidationError):
        await _register(registry, bus_number=" OR-7 ")


@pytest.mark.anyio
async def test_register_uses_configured_destinations() -> None:
    registry, _, _ = _registry(destinations=frozenset({"North Gate"}))

    v = await _register(registry, destination="North Gate")
    assert v.destination == "North Gate"

    with pytest.raises(ValidationError):
        await _register(registry, bus_number="OR-8", destination="Campus 25")


@pytest.mark.anyio
async def test_capacity_45_tier_scenario() -> None:
    registry, _, clock = _registry()
    v = await _register(registry, capacity=45)

    s0 = await registry.apply_status_mutation(v.vehicle_id, "in_service", occupancy=0)
    assert s0.seat_tier is SeatTier.EMPTY

    clock.advance(1)
    s1 = await registry.apply_status_mutation(
        v.vehicle_id, OperationalStatus.IN_SERVICE, occupancy=41
    )
    assert s1.seat_tier is SeatTier.FULL

    clock.advance(1)
    s2 = await registry.apply_status_mutation(
        v.vehicle_id, OperationalStatus.IN_SERVICE, occupancy=20
    )
    assert s2.seat_tier is SeatTier.FEW_SEATS
    assert registry.get_snapshot(v.vehicle_id).seat_tier is SeatTier.FEW_SEATS


@pytest.mark.anyio
async def test_tier_never_drifts_from_occupancy() -> None:
    registry, publisher, clock = _registry()
    v = await _register(registry, capacity=30)

    for occupancy in [0, 5, 27, 26, 30, 0, 12, 29, 1]:
        clock.advance(1)
        await registry.apply_status_mutation(
            v.vehicle_id, OperationalStatus.IN_SERVICE, occupancy=occupancy
        )
        clock.advance(1)
        await registry.apply_location_mutation(v.vehicle_id, 20.3, 85.82)

    for _, event in publisher.events:
        snap = event.snapshot
        assert snap.seat_tier is derive_tier(snap.occupancy, snap.capacity)


@pytest.mark.anyio
async def test_last_updated_never_moves_backwards() -> None:
    registry, _, clock = _registry()
    v = await _register(registry)

    clock.advance(10)
    s1 = await registry.apply_location_mutation(v.vehicle_id, 20.3, 85.82)
    clock.now = T0 - timedelta(hours=1)  # wall clock stepped back
    s2 = await registry.apply_location_mutation(v.vehicle_id, 20.31, 85.83)
    clock.advance(7200)
    s3 = await registry.apply_status_mutation(v.vehicle_id, "on_break")

    assert v.last_updated <= s1.last_updated <= s2.last_updated <= s3.last_updated


@pytest.mark.anyio
async def test_location_mutation_updates_position_only() -> None:
    registry, publisher, clock = _registry()
    v = await _register(registry)
    await registry.apply_status_mutation(v.vehicle_id, "in_service", occupancy=10)
    clock.advance(5)

    s = await registry.apply_location_mutation(
        v.vehicle_id, 20.355, 85.819, speed_mps=8.5, heading_deg=359.9
    )

    assert s.location == GeoPoint(lat=20.355, lon=85.819)
    assert s.speed_mps == 8.5
    assert s.heading_deg == 359.9
    assert s.occupancy == 10
    assert s.seat_tier is SeatTier.FEW_SEATS
    assert s.last_updated == T0 + timedelta(seconds=5)
    assert registry.index.position(v.vehicle_id) == s.location
    assert publisher.events[-1] == (v.vehicle_id, VehicleEvent(EventKind.LOCATION_CHANGED, s))


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("lat", "lon", "speed", "heading"),
    [
        (90.5, 85.0, 0.0, 0.0),
        (20.0, -181.0, 0.0, 0.0),
        (20.0, 85.0, -0.1, 0.0),
        (20.0, 85.0, 0.0, 360.0),
        (20.0, 85.0, 0.0, -1.0),
        (20.0, 85.0, float("inf"), 0.0),
        (float("nan"), 85.0, 0.0, 0.0),
    ],
)
async def test_invalid_location_is_rejected_without_side_effects(
    lat: float, lon: float, speed: float, heading: float
) -> None:
    registry, publisher, clock = _registry()
    v = await _register(registry)
    clock.advance(5)

    with pytest.raises(ValidationError) as excinfo:
        await registry.apply_location_mutation(v.vehicle_id, lat, lon, speed, heading)

    assert excinfo.value.vehicle_id == v.vehicle_id
    assert registry.get_snapshot(v.vehicle_id) == v
    assert publisher.events == []


@pytest.mark.anyio
async def test_occupancy_above_capacity_is_rejected() -> None:
    registry, publisher, _ = _registry()
    v = await _register(registry, capacity=10)

    with pytest.raises(ValidationError):
        await registry.apply_status_mutation(v.vehicle_id, "in_service", occupancy=11)
    with pytest.raises(ValidationError):
        await registry.apply_status_mutation(v.vehicle_id, "in_service", occupancy=-1)
    with pytest.raises(ValidationError):
        await registry.apply_status_mutation(v.vehicle_id, "cruising")
    with pytest.raises(ValidationError):
        await registry.apply_status_mutation(v.vehicle_id, "in_service", destination="Mars")

    assert registry.get_snapshot(v.vehicle_id) == v
    assert publisher.events == []


@pytest.mark.anyio
async def test_status_mutation_keeps_occupancy_when_omitted() -> None:
    registry, _, _ = _registry()
    v = await _register(registry, capacity=10)
    await registry.apply_status_mutation(v.vehicle_id, "in_service", occupancy=9)

    s = await registry.apply_status_mutation(
        v.vehicle_id, "emergency", destination="Campus 6", notes="flat tyre"
    )

    assert s.occupancy == 9
    assert s.seat_tier is SeatTier.FULL
    assert s.status is OperationalStatus.EMERGENCY
    assert s.destination == "Campus 6"
    assert s.notes == "flat tyre"


@pytest.mark.anyio
async def test_unknown_vehicle_is_not_found() -> None:
    registry, _, _ = _registry()

    with pytest.raises(NotFoundError):
        registry.get_snapshot("nope")
    with pytest.raises(NotFoundError):
        await registry.apply_location_mutation("nope", 20.0, 85.0)
    with pytest.raises(NotFoundError):
        await registry.apply_status_mutation("nope", "in_service")


@pytest.mark.anyio
async def test_deactivated_vehicle_is_addressable_but_not_mutable() -> None:
    registry, publisher, _ = _registry()
    v = await _register(registry)
    other = await _register(registry, bus_number="OR-2")

    gone = await registry.deactivate(v.vehicle_id)

    assert gone.active is False
    assert registry.get_snapshot(v.vehicle_id).active is False
    assert [x.vehicle_id for x in registry.list_active()] == [other.vehicle_id]
    assert registry.index.position(v.vehicle_id) is None
    assert v.vehicle_id not in [vid for vid, _ in registry.index.nearest(20.2961, 85.8189, 100.0, 10)]
    assert publisher.events[-1][1].kind is EventKind.VEHICLE_UPDATED

    with pytest.raises(NotFoundError):
        await registry.apply_location_mutation(v.vehicle_id, 20.0, 85.0)
    with pytest.raises(NotFoundError):
        await registry.deactivate(v.vehicle_id)


@pytest.mark.anyio
async def test_assign_driver() -> None:
    registry, _, _ = _registry()
    v = await _register(registry)

    s = await registry.assign_driver(v.vehicle_id, "D9")
    assert s.driver_ref == "D9"

    s = await registry.assign_driver(v.vehicle_id, None)
    assert s.driver_ref is None

    with pytest.raises(ValidationError):
        await registry.assign_driver(v.vehicle_id, "  ")


@pytest.mark.anyio
async def test_list_active_filters_and_orders_by_recency() -> None:
    registry, _, clock = _registry()
    a = await _register(registry, bus_number="A", destination="Campus 25")
    b = await _register(registry, bus_number="B", destination="Campus 6")
    c = await _register(registry, bus_number="C", destination="Campus 25")

    clock.advance(1)
    await registry.apply_status_mutation(a.vehicle_id, "in_service")
    clock.advance(1)
    await registry.apply_status_mutation(c.vehicle_id, "in_service")

    ids = [v.vehicle_id for v in registry.list_active()]
    assert ids[:2] == [c.vehicle_id, a.vehicle_id]
    assert ids[2] == b.vehicle_id

    in_service = registry.list_active(status=OperationalStatus.IN_SERVICE)
    assert {v.vehicle_id for v in in_service} == {a.vehicle_id, c.vehicle_id}

    campus6 = registry.list_active(destination="Campus 6")
    assert [v.vehicle_id for v in campus6] == [b.vehicle_id]


@pytest.mark.anyio
async def test_nearest_joins_snapshots() -> None:
    registry, _, _ = _registry()
    near = await _register(registry, bus_number="N", location=GeoPoint(lat=20.3, lon=85.8))
    await _register(registry, bus_number="F", location=GeoPoint(lat=21.3, lon=85.8))

    hits = registry.nearest(20.3001, 85.8, 1000.0, 5)

    assert [(v.vehicle_id, round(d)) for v, d in hits] == [(near.vehicle_id, 11)]


@pytest.mark.anyio
async def test_nearest_limit_counts_only_active_vehicles() -> None:
    registry, _, _ = _registry()
    gone = await _register(registry, bus_number="G", location=GeoPoint(lat=20.3, lon=85.8))
    a = await _register(registry, bus_number="A", location=GeoPoint(lat=20.301, lon=85.8))
    b = await _register(registry, bus_number="B", location=GeoPoint(lat=20.302, lon=85.8))
    await registry.deactivate(gone.vehicle_id)
    # A leftover index entry closer than every active vehicle.
    registry.index.upsert(gone.vehicle_id, 20.3, 85.8)

    hits = registry.nearest(20.3, 85.8, 1000.0, 2)

    assert [v.vehicle_id for v, _ in hits] == [a.vehicle_id, b.vehicle_id]
    assert registry.nearest(20.3, 85.8, 1000.0, 0) == ()
    with pytest.raises(ValidationError):
        registry.nearest(20.3, 85.8, 1000.0, -1)
    with pytest.raises(ValidationError):
        registry.nearest(20.3, 85.8, -5.0, 2)


@dataclass(slots=True)
class SlowRepository(InMemoryVehicleRepository):
    """Saves take a moment and record overlapping writes per vehicle."""

    delay_s: float = 0.002
    in_flight: dict[str, int] = field(default_factory=dict)
    max_overlap: int = 0
    guard: threading.Lock = field(default_factory=threading.Lock)

    def save(self, vehicle: Vehicle) -> None:
        with self.guard:
            n = self.in_flight.get(vehicle.vehicle_id, 0) + 1
            self.in_flight[vehicle.vehicle_id] = n
            self.max_overlap = max(self.max_overlap, n)
        time.sleep(self.delay_s)
        InMemoryVehicleRepository.save(self, vehicle)
        with self.guard:
            self.in_flight[vehicle.vehicle_id] -= 1


@pytest.mark.anyio
async def test_concurrent_mutations_on_one_vehicle_are_serialized() -> None:
    repo = SlowRepository()
    registry, publisher, clock = _registry(repository=repo)
    v = await _register(registry, capacity=50)

    async def bump(n: int) -> Vehicle:
        clock.advance(0.001)
        return await registry.apply_status_mutation(v.vehicle_id, "in_service", occupancy=n)

    results = await asyncio.gather(*(bump(n) for n in range(1, 31)))

    assert repo.max_overlap == 1
    assert len(publisher.events) == 30
    published = [e.snapshot for _, e in publisher.events]
    stamps = [s.last_updated for s in published]
    assert stamps == sorted(stamps)
    assert registry.get_snapshot(v.vehicle_id) == published[-1]
    assert {r.occupancy for r in results} == set(range(1, 31))
    for snap in published:
        assert snap.seat_tier is derive_tier(snap.occupancy, snap.capacity)


@dataclass(slots=True)
class GatedRepository(InMemoryVehicleRepository):
    """Blocks saves for one vehicle until released."""

    blocked_id: str | None = None
    entered: threading.Event = field(default_factory=threading.Event)
    release: threading.Event = field(default_factory=threading.Event)

    def save(self, vehicle: Vehicle) -> None:
        if vehicle.vehicle_id == self.blocked_id:
            self.entered.set()
            self.release.wait(timeout=5)
        InMemoryVehicleRepository.save(self, vehicle)


@pytest.mark.anyio
async def test_stalled_commit_does_not_block_other_vehicles_or_readers() -> None:
    repo = GatedRepository()
    registry, _, _ = _registry(repository=repo)
    slow = await _register(registry, bus_number="SLOW")
    fast = await _register(registry, bus_number="FAST")
    repo.blocked_id = slow.vehicle_id

    pending = asyncio.create_task(
        registry.apply_location_mutation(slow.vehicle_id, 20.4, 85.9)
    )
    try:
        await asyncio.to_thread(repo.entered.wait, 5)

        moved = await asyncio.wait_for(
            registry.apply_location_mutation(fast.vehicle_id, 20.5, 85.7), timeout=2
        )
        assert moved.location == GeoPoint(lat=20.5, lon=85.7)

        # Readers see the last committed snapshot, not the in-progress one.
        assert registry.get_snapshot(slow.vehicle_id).location == slow.location
    finally:
        repo.release.set()

    committed = await pending
    assert registry.get_snapshot(slow.vehicle_id) == committed


@pytest.mark.anyio
async def test_load_rebuilds_state_and_index() -> None:
    repo = InMemoryVehicleRepository()
    first, _, _ = _registry(repository=repo)
    a = await _register(first, bus_number="A", location=GeoPoint(lat=20.3, lon=85.8))
    b = await _register(first, bus_number="B", location=GeoPoint(lat=20.3, lon=85.801))
    await first.apply_status_mutation(a.vehicle_id, "in_service", occupancy=44)
    await first.deactivate(b.vehicle_id)

    second, _, _ = _registry(repository=repo)
    loaded = await second.load()

    assert loaded == 2
    assert second.get_snapshot(a.vehicle_id).seat_tier is SeatTier.FULL
    assert [x.vehicle_id for x in second.list_active()] == [a.vehicle_id]
    hits = second.index.nearest(20.3, 85.8, 500.0, 10)
    assert [vid for vid, _ in hits] == [a.vehicle_id]
    with pytest.raises(ValidationError):
        await _register(second, bus_number="A")


def test_invariant_check_rejects_inconsistent_snapshot() -> None:
    v = Vehicle(
        vehicle_id="v1",
        bus_number="X",
        location=GeoPoint(lat=0.0, lon=0.0),
        destination="Other",
        capacity=10,
        last_updated=T0,
        occupancy=9,
        seat_tier=SeatTier.FEW_SEATS,
    )
    with pytest.raises(InvariantViolation):
        FleetRegistry._check_invariants(v, None)

    ok = replace(v, seat_tier=SeatTier.FULL)
    FleetRegistry._check_invariants(ok, None)
    with pytest.raises(InvariantViolation):
        FleetRegistry._check_invariants(ok, replace(ok, last_updated=T0 + timedelta(seconds=1)))
