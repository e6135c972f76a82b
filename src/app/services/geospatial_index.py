from __future__ import annotations

import heapq
import math
import threading
from dataclasses import dataclass, field

from src.domain.algorithms.geo_utils import (
    bounding_box,
    grid_cell,
    haversine_distance_m,
)
from src.domain.exceptions import ValidationError
from src.domain.models.geo import GeoPoint

Cell = tuple[int, int]


@dataclass(slots=True)
class GeospatialIndex:
    """Grid-bucketed positions of active vehicles.

    Holds a read-derived copy of the latest committed position per vehicle.
    The registry is the only writer: it upserts after each location commit
    and removes on deactivation.
    """

    cell_size_deg: float = 0.01

    _positions: dict[str, GeoPoint] = field(default_factory=dict, init=False, repr=False)
    _cells: dict[Cell, set[str]] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if not (self.cell_size_deg > 0.0):
            raise ValueError(f"cell_size_deg must be positive, got {self.cell_size_deg}")

    def __len__(self) -> int:
        return len(self._positions)

    def _cell(self, lat: float, lon: float) -> Cell:
        return grid_cell(lat, lon, self.cell_size_deg)

    def upsert(self, vehicle_id: str, lat: float, lon: float) -> None:
        point = GeoPoint(lat=lat, lon=lon)
        new_cell = self._cell(point.lat, point.lon)
        with self._lock:
            old = self._positions.get(vehicle_id)
            if old is not None:
                old_cell = self._cell(old.lat, old.lon)
                if old_cell != new_cell:
                    self._discard_from_cell(old_cell, vehicle_id)
            self._positions[vehicle_id] = point
            self._cells.setdefault(new_cell, set()).add(vehicle_id)

    def remove(self, vehicle_id: str) -> None:
        with self._lock:
            old = self._positions.pop(vehicle_id, None)
            if old is not None:
                self._discard_from_cell(self._cell(old.lat, old.lon), vehicle_id)

    def position(self, vehicle_id: str) -> GeoPoint | None:
        return self._positions.get(vehicle_id)

    def _discard_from_cell(self, cell: Cell, vehicle_id: str) -> None:
        members = self._cells.get(cell)
        if members is None:
            return
        members.discard(vehicle_id)
        if not members:
            del self._cells[cell]

    def _candidates(self, center: GeoPoint, radius_m: float) -> list[tuple[str, GeoPoint]]:
        box = bounding_box(center, radius_m)
        if box is None:
            return list(self._positions.items())

        min_lat, min_lon, max_lat, max_lon = box
        row0, col0 = self._cell(min_lat, min_lon)
        row1, col1 = self._cell(max_lat, max_lon)

        # Very large radii touch more cells than there are vehicles.
        if (row1 - row0 + 1) * (col1 - col0 + 1) > len(self._cells):
            return list(self._positions.items())

        out: list[tuple[str, GeoPoint]] = []
        for row in range(row0, row1 + 1):
            for col in range(col0, col1 + 1):
                for vid in self._cells.get((row, col), ()):
                    out.append((vid, self._positions[vid]))
        return out

    def nearest(
        self, lat: float, lon: float, radius_m: float, limit: int
    ) -> tuple[tuple[str, float], ...]:
        """Vehicles within ``radius_m`` of (lat, lon), closest first.

        Ties are broken by vehicle id so results are deterministic.
        """

        center = GeoPoint(lat=lat, lon=lon)
        if not math.isfinite(radius_m) or radius_m < 0:
            raise ValidationError(f"Invalid radius: {radius_m}")
        if limit < 0:
            raise ValidationError(f"Invalid limit: {limit}")
        if limit == 0:
            return ()

        with self._lock:
            candidates = self._candidates(center, radius_m)

        hits: list[tuple[float, str]] = []
        for vid, point in candidates:
            d = haversine_distance_m(center, point)
            if d <= radius_m:
                hits.append((d, vid))

        best = heapq.nsmallest(limit, hits)
        return tuple((vid, d) for d, vid in best)
