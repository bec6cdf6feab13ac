"""
Time scales and reference-frame conversions.

SGP4 output is in the TEME inertial frame. This module converts it to the
Earth-fixed frame through Greenwich sidereal time, optionally refined with
tabulated polar motion, and from there to geodetic coordinates.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Set, Tuple

import numpy as np
from orbit_predictor import coordinate_systems  # type: ignore[import-untyped]

from .result import ErrorKind, Result

logger = logging.getLogger(__name__)

UNIX_EPOCH = datetime(1970, 1, 1)
JD_UNIX_EPOCH = 2440587.5
JD_J2000 = 2451545.0
MJD_OFFSET = 2400000.5
SECONDS_PER_DAY = 86400.0
ARCSEC_TO_RAD = math.pi / (180.0 * 3600.0)


def datetime_to_jd(timestamp: datetime) -> float:
    """Convert a naive UTC datetime to a Julian date."""
    delta = timestamp - UNIX_EPOCH
    return JD_UNIX_EPOCH + delta.total_seconds() / SECONDS_PER_DAY


def jd_to_datetime(jd: float) -> datetime:
    """Convert a Julian date to a naive UTC datetime (millisecond resolution)."""
    seconds = (jd - JD_UNIX_EPOCH) * SECONDS_PER_DAY
    return UNIX_EPOCH + timedelta(milliseconds=round(seconds * 1000.0))


def split_jd(timestamp: datetime) -> Tuple[float, float]:
    """
    Split a timestamp into whole and fractional Julian date parts.

    SGP4 takes the date in two parts to keep sub-millisecond precision.
    """
    day = timestamp.replace(hour=0, minute=0, second=0, microsecond=0)
    jd_midnight = datetime_to_jd(day)
    fraction = (timestamp - day).total_seconds() / SECONDS_PER_DAY
    return jd_midnight, fraction


def gmst_radians(timestamp: datetime) -> float:
    """
    Greenwich mean sidereal time in radians (IAU-82 expression).

    Args:
        timestamp: UTC datetime (UT1 approximated by UTC)

    Returns:
        GMST in [0, 2π)
    """
    tut1 = (datetime_to_jd(timestamp) - JD_J2000) / 36525.0
    seconds = (
        -6.2e-6 * tut1**3
        + 0.093104 * tut1**2
        + (876600.0 * 3600.0 + 8640184.812866) * tut1
        + 67310.54841
    )
    gmst = math.radians(seconds / 240.0) % (2.0 * math.pi)
    if gmst < 0.0:
        gmst += 2.0 * math.pi
    return gmst


def rotation_z(angle_rad: float) -> np.ndarray:
    """Frame rotation about the z axis by angle_rad."""
    c, s = math.cos(angle_rad), math.sin(angle_rad)
    return np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])


def polar_motion_matrix(xp_rad: float, yp_rad: float) -> np.ndarray:
    """Small-angle polar motion matrix taking Earth-fixed vectors to pseudo-fixed."""
    return np.array(
        [[1.0, 0.0, xp_rad], [0.0, 1.0, -yp_rad], [-xp_rad, yp_rad, 1.0]]
    )


class EarthOrientationTable:
    """
    Daily polar-motion values keyed by Modified Julian Date.

    Lookups for days outside the table return FRAME_UNAVAILABLE; the
    transform functions then fall back to sidereal rotation alone.
    """

    def __init__(self, entries: Optional[Dict[int, Tuple[float, float]]] = None) -> None:
        self._entries: Dict[int, Tuple[float, float]] = dict(entries or {})
        self._warned_days: Set[int] = set()

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[int, float, float]]) -> "EarthOrientationTable":
        """Build a table from (mjd, x_arcsec, y_arcsec) rows."""
        return cls({int(mjd): (float(x), float(y)) for mjd, x, y in rows})

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def mjd_for(timestamp: datetime) -> int:
        return int(math.floor(datetime_to_jd(timestamp) - MJD_OFFSET))

    def polar_motion(self, timestamp: datetime) -> Result[Tuple[float, float]]:
        """Polar motion (xp, yp) in radians for the day containing timestamp."""
        mjd = self.mjd_for(timestamp)
        entry = self._entries.get(mjd)
        if entry is None:
            return Result.failure(
                ErrorKind.FRAME_UNAVAILABLE, f"No Earth orientation data for MJD {mjd}"
            )
        x_arcsec, y_arcsec = entry
        return Result.success((x_arcsec * ARCSEC_TO_RAD, y_arcsec * ARCSEC_TO_RAD))

    def warn_once(self, timestamp: datetime, message: str) -> None:
        mjd = self.mjd_for(timestamp)
        if mjd not in self._warned_days:
            self._warned_days.add(mjd)
            logger.warning(f"{message}; using sidereal rotation only")


def inertial_to_fixed_matrix(
    timestamp: datetime, eop: Optional[EarthOrientationTable] = None
) -> np.ndarray:
    """
    Rotation matrix from TEME inertial to Earth-fixed at timestamp.

    Missing orientation data never aborts a computation: the matrix falls
    back to the sidereal rotation with zero polar motion.
    """
    matrix = rotation_z(gmst_radians(timestamp))
    if eop is None:
        return matrix
    polar = eop.polar_motion(timestamp)
    if not polar.ok:
        eop.warn_once(timestamp, polar.message)
        return matrix
    xp, yp = polar.unwrap()
    return polar_motion_matrix(xp, yp).T @ matrix


def fixed_to_inertial_matrix(
    timestamp: datetime, eop: Optional[EarthOrientationTable] = None
) -> np.ndarray:
    """Rotation matrix from Earth-fixed to TEME inertial (transpose of the forward one)."""
    return inertial_to_fixed_matrix(timestamp, eop).T


def eci_to_ecf(position_eci: np.ndarray, timestamp: datetime) -> np.ndarray:
    """Rotate an inertial vector into the Earth-fixed frame using GMST."""
    return rotation_z(gmst_radians(timestamp)) @ np.asarray(position_eci, dtype=float)


def ecf_to_eci(position_ecf: np.ndarray, timestamp: datetime) -> np.ndarray:
    """Rotate an Earth-fixed vector into the inertial frame using GMST."""
    return rotation_z(gmst_radians(timestamp)).T @ np.asarray(position_ecf, dtype=float)


def ecf_to_geodetic(position_ecf: np.ndarray) -> Tuple[float, float, float]:
    """
    Convert Earth-fixed coordinates to geodetic.

    Returns:
        Tuple of (latitude_deg, longitude_deg, height_km)
    """
    lat, lon, height_km = coordinate_systems.ecef_to_llh(tuple(float(v) for v in position_ecf))
    return float(lat), float(lon), float(height_km)


def geodetic_to_ecf(latitude_deg: float, longitude_deg: float, height_km: float) -> np.ndarray:
    """Convert geodetic coordinates (degrees, km) to an Earth-fixed vector in km."""
    return np.array(coordinate_systems.llh_to_ecef(latitude_deg, longitude_deg, height_km), dtype=float)
