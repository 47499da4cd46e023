"""
Weekly availability grids for teachers, classes and rooms.

A grid is a sparse mapping day -> hour -> status. Anything not listed is
AVAILABLE, so an empty dict means "free all week".
"""

from enum import Enum
from typing import Optional


class AvailabilityStatus(str, Enum):
    AVAILABLE = 'available'
    PREFERRED = 'preferred'
    UNAVAILABLE = 'unavailable'


Availability = dict[int, dict[int, AvailabilityStatus]]

UNAVAILABLE_SCORE = float('-inf')


def get_status(availability: Optional[Availability], day: int, hour: int) -> AvailabilityStatus:
    if not availability:
        return AvailabilityStatus.AVAILABLE
    return availability.get(day, {}).get(hour, AvailabilityStatus.AVAILABLE)


def status_score(status: AvailabilityStatus) -> float:
    """Desirability of a slot for one entity: PREFERRED 2, AVAILABLE 1, UNAVAILABLE -inf."""
    if status == AvailabilityStatus.UNAVAILABLE:
        return UNAVAILABLE_SCORE
    if status == AvailabilityStatus.PREFERRED:
        return 2
    return 1


def has_unavailable_marker(availability: Optional[Availability]) -> bool:
    if not availability:
        return False
    return any(
        status == AvailabilityStatus.UNAVAILABLE
        for hours in availability.values()
        for status in hours.values()
    )


def parse_availability(raw: Optional[dict]) -> Availability:
    """Normalise a JSON availability grid.

    JSON object keys are always strings, so {"0": {"3": "preferred"}} becomes
    {0: {3: AvailabilityStatus.PREFERRED}}. AVAILABLE entries are dropped
    since they match the default.
    """
    grid: Availability = {}
    if not raw:
        return grid
    for day_key, hours in raw.items():
        if not hours:
            continue
        day = int(day_key)
        for hour_key, value in hours.items():
            status = AvailabilityStatus(value)
            if status == AvailabilityStatus.AVAILABLE:
                continue
            grid.setdefault(day, {})[int(hour_key)] = status
    return grid
