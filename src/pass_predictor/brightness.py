"""
Visual magnitude estimation.

Brightness follows the standard-magnitude model: an intrinsic magnitude at
1000 km range and 90 degrees phase, corrected for the actual range and for
a diffuse (Lambertian) sphere phase function.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .geometry import GroundStation, is_in_earth_shadow
from .result import ErrorKind, Result
from .sunlight import sun_position_eci

logger = logging.getLogger(__name__)

DEFAULT_STANDARD_MAGNITUDE = 5.0

# Intrinsic magnitudes of well-known objects, by NORAD catalog number
STANDARD_MAGNITUDES_BY_ID: Dict[int, float] = {
    25544: -1.8,  # ISS
    20580: 2.2,  # Hubble Space Telescope
    48274: -0.8,  # Tiangong
}

# Checked in order against the upper-cased satellite name
STANDARD_MAGNITUDES_BY_NAME: Tuple[Tuple[str, float], ...] = (
    ("STARLINK", 4.5),
    ("ONEWEB", 6.0),
    ("IRIDIUM", 6.0),
    ("COSMOS", 4.0),
    ("SL-", 4.0),  # rocket bodies
)


@dataclass(frozen=True)
class BrightnessRecord:
    """Estimated brightness of a satellite at one instant."""

    time: datetime
    magnitude: float  # +inf when not visible (eclipsed or backlit)
    range_km: float
    phase_angle_deg: float
    is_in_shadow: bool
    phase_function: float
    standard_magnitude: float

    @property
    def is_visible(self) -> bool:
        return math.isfinite(self.magnitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.isoformat(),
            "magnitude": self.magnitude if self.is_visible else None,
            "rangeKm": round(self.range_km, 2),
            "phaseAngle": round(self.phase_angle_deg, 2),
            "isInShadow": self.is_in_shadow,
            "phaseFunction": round(self.phase_function, 4),
            "standardMag": self.standard_magnitude,
        }


def lookup_standard_magnitude(catalog_id: Optional[int], name: Optional[str]) -> float:
    """
    Intrinsic magnitude for a satellite.

    Exact catalog-number matches win, then name patterns, then the default.
    """
    if catalog_id is not None and catalog_id in STANDARD_MAGNITUDES_BY_ID:
        return STANDARD_MAGNITUDES_BY_ID[catalog_id]
    upper = (name or "").upper()
    for pattern, magnitude in STANDARD_MAGNITUDES_BY_NAME:
        if pattern in upper:
            return magnitude
    return DEFAULT_STANDARD_MAGNITUDE


def phase_function(phase_angle_rad: float) -> float:
    """Diffuse-sphere phase function (sin b + (pi - b) cos b) / pi."""
    beta = phase_angle_rad
    return (math.sin(beta) + (math.pi - beta) * math.cos(beta)) / math.pi


def visual_magnitude(standard_magnitude: float, range_km: float, phase_fn: float) -> float:
    """Apparent magnitude, or +inf for a non-positive phase function."""
    if phase_fn <= 0 or range_km <= 0:
        return math.inf
    return standard_magnitude - 15.0 + 5.0 * math.log10(range_km) - 2.5 * math.log10(phase_fn)


class BrightnessEstimator:
    """Estimates how bright one satellite appears from a ground station."""

    def __init__(self, satellite: Any, standard_magnitude: Optional[float] = None) -> None:
        """
        Args:
            satellite: SatelliteOrbit
            standard_magnitude: Override for the catalog/name lookup
        """
        self.satellite = satellite
        if standard_magnitude is None:
            standard_magnitude = lookup_standard_magnitude(
                satellite.catalog_id, satellite.satellite_name
            )
        self.standard_magnitude = standard_magnitude

    def estimate_visual_magnitude(
        self,
        timestamp: datetime,
        observer: GroundStation,
        standard_magnitude: Optional[float] = None,
    ) -> Result[BrightnessRecord]:
        """
        Estimate the visual magnitude seen by an observer.

        Args:
            timestamp: UTC datetime
            observer: Ground station
            standard_magnitude: Intrinsic magnitude for this call only

        Returns:
            Result holding a BrightnessRecord (magnitude +inf when eclipsed
            or when the satellite is directly between observer and sun), or
            the propagation failure
        """
        std_mag = self.standard_magnitude if standard_magnitude is None else standard_magnitude
        state = self.satellite.propagate(timestamp)
        if not state.ok:
            return Result.failure(state.error or ErrorKind.PROPAGATION_FAILED, state.message)

        satellite_eci = state.unwrap().position
        sun_eci = sun_position_eci(timestamp)
        observer_eci = self.satellite.fixed_to_inertial(observer.ecf, timestamp)

        to_observer = observer_eci - satellite_eci
        to_sun = sun_eci - satellite_eci
        range_km = float(np.linalg.norm(to_observer))

        cos_phase = float(np.dot(to_sun, to_observer) / (np.linalg.norm(to_sun) * range_km))
        phase_angle = math.acos(max(-1.0, min(1.0, cos_phase)))
        phase_fn = phase_function(phase_angle)

        in_shadow = is_in_earth_shadow(satellite_eci, sun_eci)
        magnitude = math.inf if in_shadow else visual_magnitude(std_mag, range_km, phase_fn)

        return Result.success(
            BrightnessRecord(
                time=timestamp,
                magnitude=magnitude,
                range_km=range_km,
                phase_angle_deg=math.degrees(phase_angle),
                is_in_shadow=in_shadow,
                phase_function=phase_fn,
                standard_magnitude=std_mag,
            )
        )

    def estimate_peak_brightness(
        self,
        start: datetime,
        end: datetime,
        observer: GroundStation,
        samples: int = 20,
    ) -> Optional[BrightnessRecord]:
        """
        Brightest moment of a pass.

        Samples equally spaced instants from start to end (inclusive) and
        returns the lowest-magnitude sample that is not eclipsed.

        Returns:
            The brightest record, or None if the satellite is never visible
        """
        if samples < 2:
            raise ValueError(f"samples must be at least 2, got {samples}")
        span = (end - start).total_seconds()
        brightest: Optional[BrightnessRecord] = None
        for i in range(samples):
            timestamp = start + timedelta(seconds=span * i / (samples - 1))
            record = self.estimate_visual_magnitude(timestamp, observer)
            if not record.ok:
                continue
            candidate = record.unwrap()
            if not candidate.is_visible:
                continue
            if brightest is None or candidate.magnitude < brightest.magnitude:
                brightest = candidate
        if brightest is None:
            logger.debug(f"{self.satellite.satellite_name}: not visible between {start} and {end}")
        return brightest
