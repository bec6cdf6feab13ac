"""
Pass list filtering for display and notification consumers.
"""

from datetime import datetime, timedelta
from typing import Iterable, List

from .passes import Pass

# Passes this long before a future epoch are dropped
FUTURE_EPOCH_MARGIN = timedelta(minutes=90)


def filter_and_sort_passes(
    passes: Iterable[Pass],
    now: datetime,
    delta_hours: float = 48.0,
    hide_sunlight_passes: bool = False,
    show_only_lit_passes: bool = False,
) -> List[Pass]:
    """
    Filter and sort passes by time, sky darkness and satellite illumination.

    Args:
        passes: Passes to filter
        now: Reference time
        delta_hours: Keep passes starting less than this many hours after now
        hide_sunlight_passes: Keep only passes where the ground station is
            dark at start or end
        show_only_lit_passes: Keep only passes where the satellite is lit at
            start or end, or enters/leaves shadow during the pass

    Returns:
        Matching passes sorted by start time
    """
    horizon = now + timedelta(hours=delta_hours)
    filtered = [p for p in passes if p.start < horizon]

    # Must run before the sunlight filters
    filtered = [
        p
        for p in filtered
        if not (p.epoch_in_future and p.epoch is not None)
        or p.start >= p.epoch - FUTURE_EPOCH_MARGIN
    ]

    if hide_sunlight_passes:
        filtered = [
            p for p in filtered if p.ground_station_dark_at_start or p.ground_station_dark_at_end
        ]

    if show_only_lit_passes:
        filtered = [
            p
            for p in filtered
            if not p.satellite_eclipsed_at_start
            or not p.satellite_eclipsed_at_end
            or len(p.eclipse_transitions) > 0
        ]

    return sorted(filtered, key=lambda p: p.start)
