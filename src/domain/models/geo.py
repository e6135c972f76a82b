from __future__ import annotations

import math
from dataclasses import dataclass

from src.domain.exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.lat) or not (-90.0 <= self.lat <= 90.0):
            raise ValidationError(f"Invalid latitude: {self.lat}")
        if not math.isfinite(self.lon) or not (-180.0 <= self.lon <= 180.0):
            raise ValidationError(f"Invalid longitude: {self.lon}")
