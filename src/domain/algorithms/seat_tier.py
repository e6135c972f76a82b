from __future__ import annotations

from src.domain.models.vehicle import SeatTier

# Share of capacity at which a bus is reported as full.
FULL_THRESHOLD_PERCENT = 90


def derive_tier(occupancy: int, capacity: int) -> SeatTier:
    """Classify occupancy into a seat tier.

    - 0 riders -> EMPTY
    - occupancy / capacity >= 0.90 -> FULL
    - otherwise -> FEW_SEATS

    The ratio is compared in integers so that boundaries such as 9/10 are exact.
    """

    if capacity < 1:
        raise ValueError(f"capacity must be >= 1, got {capacity}")
    if not (0 <= occupancy <= capacity):
        raise ValueError(f"occupancy {occupancy} outside [0, {capacity}]")

    if occupancy == 0:
        return SeatTier.EMPTY
    if occupancy * 100 >= capacity * FULL_THRESHOLD_PERCENT:
        return SeatTier.FULL
    return SeatTier.FEW_SEATS
