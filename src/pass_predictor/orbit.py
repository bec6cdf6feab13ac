"""
Satellite orbit propagation and TLE handling module.

This module wraps the SGP4 model from the ``sgp4`` package: it decodes an
element set once, propagates it to inertial and Earth-fixed positions,
rejects implausible output from decayed or stale element sets, and reports
how old the element set is.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from sgp4.api import Satrec  # type: ignore[import-untyped]

from .frames import (
    EarthOrientationTable,
    datetime_to_jd,
    ecf_to_geodetic,
    fixed_to_inertial_matrix,
    inertial_to_fixed_matrix,
    jd_to_datetime,
    split_jd,
)
from .result import ErrorKind, Result
from .utils import get_current_utc

logger = logging.getLogger(__name__)

# Earth equatorial radius used for altitude plausibility checks
EARTH_EQUATORIAL_RADIUS_KM = 6378.137

# Plausibility limits for propagated positions
MIN_ALTITUDE_KM = -100.0
MAX_LEO_ALTITUDE_KM = 5000.0
MAX_ALTITUDE_KM = 500000.0
LEO_MEAN_MOTION_REV_PER_DAY = 10.0

# Drag thresholds (B* in inverse earth radii, ndot in rev/day^2)
HIGH_DRAG_THRESHOLD = 1e-4
DECAY_MEAN_MOTION_REV_PER_DAY = 16.0

MINUTES_PER_DAY = 1440.0
TLE_LINE_LENGTH = 69
XPDOTP = MINUTES_PER_DAY / (2.0 * math.pi)  # rev/day per rad/min


class Staleness(Enum):
    """Advisory age classification of an element set."""

    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"


@dataclass(frozen=True)
class StalenessReport:
    """Result of an element-set age check. Never blocks computation."""

    status: Staleness
    epoch_age_days: float
    reason: str
    estimated_days_until_decay: Optional[float] = None

    @property
    def is_stale(self) -> bool:
        return self.status == Staleness.STALE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "isStale": self.is_stale,
            "epochAgeDays": round(self.epoch_age_days, 2),
            "reason": self.reason,
            "estimatedDaysUntilDecay": (
                round(self.estimated_days_until_decay, 1)
                if self.estimated_days_until_decay is not None
                else None
            ),
        }


@dataclass(frozen=True)
class OrbitalElements:
    """Decoded element set. Created once per satellite and never mutated."""

    catalog_id: int
    name: str
    line1: str
    line2: str
    epoch_jd: float
    mean_motion_rev_per_day: float
    bstar: float
    ndot: float  # first derivative term as printed in the TLE, rev/day^2
    error_code: int = 0

    @property
    def epoch(self) -> datetime:
        return jd_to_datetime(self.epoch_jd)

    @property
    def is_valid(self) -> bool:
        return self.error_code == 0 and self.mean_motion_rev_per_day > 0

    @property
    def orbital_period_minutes(self) -> float:
        if self.mean_motion_rev_per_day <= 0:
            return math.inf
        return MINUTES_PER_DAY / self.mean_motion_rev_per_day

    @property
    def is_leo(self) -> bool:
        return self.mean_motion_rev_per_day > LEO_MEAN_MOTION_REV_PER_DAY

    @property
    def is_high_drag(self) -> bool:
        return self.bstar > HIGH_DRAG_THRESHOLD or self.ndot > HIGH_DRAG_THRESHOLD

    @property
    def tle_lines(self) -> Tuple[str, str, str]:
        return (self.name, self.line1, self.line2)


@dataclass(frozen=True)
class StateVector:
    """Inertial (TEME) state at an instant, km and km/s."""

    time: datetime
    position: np.ndarray = field(compare=False)
    velocity: np.ndarray = field(compare=False)

    @property
    def radius_km(self) -> float:
        return float(np.linalg.norm(self.position))

    @property
    def speed_km_s(self) -> float:
        return float(np.linalg.norm(self.velocity))


@dataclass(frozen=True)
class GeodeticPosition:
    """Sub-satellite point: degrees and height in metres."""

    latitude: float
    longitude: float
    height: float
    velocity: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "height": self.height,
        }
        if self.velocity is not None:
            result["velocity"] = self.velocity
        return result


def split_tle_lines(tle_lines: Sequence[str]) -> Tuple[Optional[str], str, str]:
    """
    Split 2-line or 3-line TLE input into (name, line1, line2).

    Raises:
        ValueError: If the input does not contain two element lines
    """
    lines = [line.strip() for line in tle_lines if line and line.strip()]
    if len(lines) == 3:
        name: Optional[str] = lines[0]
        if name.startswith("0 "):
            name = name[2:].strip()
        line1, line2 = lines[1], lines[2]
    elif len(lines) == 2:
        name = None
        line1, line2 = lines
    else:
        raise ValueError(f"Expected 2 or 3 TLE lines, got {len(lines)}")

    if not (line1.startswith("1 ") and line2.startswith("2 ")):
        raise ValueError("Element lines must start with '1 ' and '2 '")
    if len(line1) != TLE_LINE_LENGTH or len(line2) != TLE_LINE_LENGTH:
        raise ValueError(f"Element lines must be {TLE_LINE_LENGTH} characters long")
    return name, line1, line2


def decode_elements(tle_lines: Sequence[str], satellite_name: Optional[str] = None) -> Tuple[OrbitalElements, Any]:
    """
    Decode an element set with the SGP4 library.

    Returns:
        Tuple of (OrbitalElements, sgp4 Satrec)

    Raises:
        ValueError: If the element lines cannot be decoded
    """
    name, line1, line2 = split_tle_lines(tle_lines)
    try:
        satrec = Satrec.twoline2rv(line1, line2)
    except Exception as e:
        raise ValueError(f"Invalid TLE data: {e}")

    elements = OrbitalElements(
        catalog_id=int(satrec.satnum),
        name=satellite_name or name or str(satrec.satnum),
        line1=line1,
        line2=line2,
        epoch_jd=float(satrec.jdsatepoch + satrec.jdsatepochF),
        mean_motion_rev_per_day=float(satrec.no_kozai * XPDOTP),
        bstar=float(satrec.bstar),
        ndot=float(satrec.ndot * XPDOTP * MINUTES_PER_DAY),
        error_code=int(getattr(satrec, "error", 0)),
    )
    return elements, satrec


class SatelliteOrbit:
    """
    Represents a satellite orbit with TLE-based propagation capabilities.

    Positions are returned as ``Result`` values (or ``None`` from the
    convenience accessors) rather than raising, so a decayed element set
    shows up as a gap in a scan instead of aborting it.
    """

    def __init__(
        self,
        tle_lines: Sequence[str],
        satellite_name: Optional[str] = None,
        earth_orientation: Optional[EarthOrientationTable] = None,
    ) -> None:
        """
        Initialize satellite orbit from TLE data.

        Args:
            tle_lines: 3 strings (name, line1, line2) or 2 strings (line1, line2)
            satellite_name: Name override for the satellite
            earth_orientation: Optional polar-motion table for fixed/inertial transforms

        Raises:
            ValueError: If TLE data is invalid
        """
        try:
            self.elements, self._satrec = decode_elements(tle_lines, satellite_name)
        except ValueError as e:
            logger.error(f"Failed to initialize satellite orbit: {e}")
            raise ValueError(f"Invalid TLE data for satellite {satellite_name}: {e}")

        self.satellite_name = self.elements.name
        self.tle_lines = list(self.elements.tle_lines)
        self.earth_orientation = earth_orientation

        if not self.elements.is_valid:
            logger.warning(
                f"Element set for {self.satellite_name} reports error code {self.elements.error_code}"
            )
        logger.info(f"Successfully loaded orbit for satellite: {self.satellite_name}")

    @classmethod
    def from_tle_file(cls, tle_file_path: Union[str, Path], satellite_name: str) -> "SatelliteOrbit":
        """
        Create SatelliteOrbit instance from TLE file.

        Args:
            tle_file_path: Path to TLE file
            satellite_name: Name (or NORAD id) of the satellite to extract

        Returns:
            SatelliteOrbit instance

        Raises:
            FileNotFoundError: If TLE file doesn't exist
            ValueError: If satellite not found in TLE file
        """
        tle_path = Path(tle_file_path)
        if not tle_path.exists():
            raise FileNotFoundError(f"TLE file not found: {tle_file_path}")

        with open(tle_path, "r") as f:
            lines = [line.strip() for line in f.readlines() if line.strip()]

        for name_line, line1, line2 in iter_tle_triplets(lines):
            catalog = line1[2:7].strip()
            if satellite_name.upper() in name_line.upper() or satellite_name == catalog:
                return cls([name_line, line1, line2], name_line.strip())

        raise ValueError(f"Satellite '{satellite_name}' not found in TLE file")

    @property
    def catalog_id(self) -> int:
        return self.elements.catalog_id

    @property
    def epoch(self) -> datetime:
        return self.elements.epoch

    def get_orbital_period(self) -> timedelta:
        """Orbital period derived from the mean motion."""
        return timedelta(minutes=self.elements.orbital_period_minutes)

    def propagate(self, timestamp: datetime) -> Result[StateVector]:
        """
        Propagate to an instant.

        Args:
            timestamp: UTC datetime (naive)

        Returns:
            Result holding the TEME state vector, or PROPAGATION_FAILED /
            IMPLAUSIBLE_POSITION
        """
        jd, fraction = split_jd(timestamp)
        error_code, position, velocity = self._satrec.sgp4(jd, fraction)
        if error_code != 0:
            return Result.failure(
                ErrorKind.PROPAGATION_FAILED,
                f"SGP4 error {error_code} for {self.satellite_name} at {timestamp}",
            )
        position_vec = np.array(position, dtype=float)
        if not self.validate_position(position_vec):
            return Result.failure(
                ErrorKind.IMPLAUSIBLE_POSITION,
                f"Implausible position for {self.satellite_name} at {timestamp}",
            )
        return Result.success(
            StateVector(time=timestamp, position=position_vec, velocity=np.array(velocity, dtype=float))
        )

    def position_eci(self, timestamp: datetime) -> Optional[np.ndarray]:
        """Inertial position in km, or None when propagation fails."""
        state = self.propagate(timestamp)
        return state.unwrap().position if state.ok else None

    def position_ecf(self, timestamp: datetime) -> Optional[np.ndarray]:
        """Earth-fixed position in km (polar motion applied when tabulated), or None when propagation fails."""
        state = self.propagate(timestamp)
        if not state.ok:
            return None
        return self.inertial_to_fixed(state.unwrap().position, timestamp)

    def position_geodetic(self, timestamp: datetime, calculate_velocity: bool = False) -> Optional[GeodeticPosition]:
        """
        Sub-satellite point at timestamp.

        Args:
            timestamp: UTC datetime
            calculate_velocity: Include inertial speed in km/s

        Returns:
            GeodeticPosition (height in metres), or None when propagation fails
        """
        state = self.propagate(timestamp)
        if not state.ok:
            return None
        sv = state.unwrap()
        lat, lon, height_km = ecf_to_geodetic(self.inertial_to_fixed(sv.position, timestamp))
        return GeodeticPosition(
            latitude=lat,
            longitude=lon,
            height=height_km * 1000.0,
            velocity=sv.speed_km_s if calculate_velocity else None,
        )

    def get_position(self, timestamp: datetime) -> Tuple[float, float, float]:
        """
        Get satellite position at specific timestamp.

        Returns:
            Tuple of (latitude, longitude, altitude_km)

        Raises:
            ValueError: If the satellite cannot be propagated to timestamp
        """
        geodetic = self.position_geodetic(timestamp)
        if geodetic is None:
            raise ValueError(f"No position for {self.satellite_name} at {timestamp}")
        return geodetic.latitude, geodetic.longitude, geodetic.height / 1000.0

    def propagate_positions(self, timestamps: Sequence[datetime]) -> List[Dict[str, Any]]:
        """
        Propagate to many instants at once.

        Returns:
            One entry per timestamp with ``eci`` and ``ecf`` vectors in metres,
            or ``{"timestamp": t, "error": True}`` where propagation failed
        """
        results: List[Dict[str, Any]] = []
        for timestamp in timestamps:
            state = self.propagate(timestamp)
            if not state.ok:
                results.append({"timestamp": timestamp, "error": True})
                continue
            eci = state.unwrap().position
            ecf = self.inertial_to_fixed(eci, timestamp)
            results.append(
                {
                    "timestamp": timestamp,
                    "eci": {"x": eci[0] * 1000.0, "y": eci[1] * 1000.0, "z": eci[2] * 1000.0},
                    "ecf": {"x": ecf[0] * 1000.0, "y": ecf[1] * 1000.0, "z": ecf[2] * 1000.0},
                }
            )
        return results

    def inertial_to_fixed(self, position_eci: np.ndarray, timestamp: datetime) -> np.ndarray:
        """Inertial to Earth-fixed using the configured Earth orientation data."""
        return inertial_to_fixed_matrix(timestamp, self.earth_orientation) @ np.asarray(position_eci, dtype=float)

    def fixed_to_inertial(self, position_ecf: np.ndarray, timestamp: datetime) -> np.ndarray:
        """Earth-fixed to inertial using the configured Earth orientation data."""
        return fixed_to_inertial_matrix(timestamp, self.earth_orientation) @ np.asarray(position_ecf, dtype=float)

    def validate_position(self, position: Optional[Any]) -> bool:
        """
        Check that a propagated position is physically plausible.

        Rejects missing or non-finite components, positions more than 100 km
        underground, LEO objects above 5,000 km and anything beyond 500,000 km.
        """
        if position is None:
            return False
        try:
            if isinstance(position, dict):
                vec = np.array([position["x"], position["y"], position["z"]], dtype=float)
            else:
                vec = np.asarray(position, dtype=float).reshape(3)
        except (KeyError, TypeError, ValueError):
            return False
        if not np.all(np.isfinite(vec)):
            return False

        altitude_km = float(np.linalg.norm(vec)) - EARTH_EQUATORIAL_RADIUS_KM
        if altitude_km < MIN_ALTITUDE_KM:
            return False
        if self.elements.is_leo and altitude_km > MAX_LEO_ALTITUDE_KM:
            return False
        return altitude_km <= MAX_ALTITUDE_KM

    def epoch_age_days(self, now: Optional[datetime] = None) -> float:
        """Days between the element-set epoch and now (negative for future epochs)."""
        now = now or get_current_utc()
        return (datetime_to_jd(now) - self.elements.epoch_jd)

    @property
    def estimated_days_until_decay(self) -> Optional[float]:
        """
        Rough decay estimate for high-drag LEO objects.

        Extrapolates the mean motion linearly to the decay threshold using the
        drag term; returns None for objects without significant drag.
        """
        if not (self.elements.is_leo and self.elements.is_high_drag):
            return None
        mean_motion_rate = 2.0 * self.elements.ndot
        if mean_motion_rate <= 0:
            return None
        remaining = DECAY_MEAN_MOTION_REV_PER_DAY - self.elements.mean_motion_rev_per_day
        return max(remaining / mean_motion_rate, 0.0)

    def check_staleness(
        self,
        now: Optional[datetime] = None,
        aging_days: float = 3.0,
        stale_days: float = 14.0,
    ) -> StalenessReport:
        """
        Classify the element set by epoch age. Advisory only.

        Args:
            now: Reference time (default: current UTC)
            aging_days: Age beyond which the set is AGING
            stale_days: Age beyond which the set is STALE

        Returns:
            StalenessReport
        """
        age = self.epoch_age_days(now)
        decay = self.estimated_days_until_decay

        if age < 0:
            status = Staleness.FRESH
            reason = f"Epoch is {abs(age):.1f} days in the future"
        elif age > stale_days:
            status = Staleness.STALE
            reason = f"TLE is {age:.1f} days old"
        elif self.elements.is_high_drag and age > aging_days:
            status = Staleness.STALE
            reason = f"High-drag TLE is {age:.1f} days old"
        elif age > aging_days:
            status = Staleness.AGING
            reason = f"TLE is {age:.1f} days old"
        else:
            status = Staleness.FRESH
            reason = f"TLE is {age:.1f} days old"

        if decay is not None and decay < age:
            status = Staleness.STALE
            reason = f"{reason}; object may have decayed (estimated {decay:.0f} days after epoch)"

        if status == Staleness.STALE:
            logger.warning(f"{self.satellite_name}: {reason}")
        return StalenessReport(status=status, epoch_age_days=age, reason=reason, estimated_days_until_decay=decay)

    def __repr__(self) -> str:
        """String representation of the satellite orbit."""
        period = self.get_orbital_period()
        return f"SatelliteOrbit(name='{self.satellite_name}', period={period})"


def iter_tle_triplets(lines: Sequence[str]) -> List[Tuple[str, str, str]]:
    """Group cleaned TLE file lines into (name, line1, line2) triplets."""
    triplets = []
    i = 0
    while i + 2 < len(lines):
        if lines[i + 1].startswith("1 ") and lines[i + 2].startswith("2 "):
            triplets.append((lines[i], lines[i + 1], lines[i + 2]))
            i += 3
        else:
            i += 1
    return triplets
