"""
Observer geometry: look angles, Earth shadow and ground distance.

Everything here is a pure function of propagated positions. Ground stations
are given in degrees and metres; the look-angle calculator converts them to
radians and kilometres once and keeps the trigonometric terms it needs for
every sample.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

import numpy as np

from .frames import geodetic_to_ecf
from .sunlight import (
    CIVIL_TWILIGHT_DEG,
    get_sun_azimuth,
    get_sun_elevation,
    is_ground_station_dark,
)

logger = logging.getLogger(__name__)

# Mean Earth radius for great-circle distances
EARTH_RADIUS_KM = 6371.0

# Equatorial radius used for the cylindrical shadow
EARTH_SHADOW_RADIUS_KM = 6378.137


@dataclass(frozen=True)
class GroundStation:
    """
    Geodetic observer position.

    Latitude and longitude are in degrees (what the sun calculations take);
    height is in metres. The radian/kilometre forms used by the geometry
    code are exposed as properties so the conversion is explicit.
    """

    latitude: float  # degrees, -90 to +90
    longitude: float  # degrees, -180 to +180
    height: float = 0.0  # metres above the ellipsoid
    name: str = "Ground Station"
    _ecf: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Invalid latitude: {self.latitude}. Must be between -90 and 90.")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Invalid longitude: {self.longitude}. Must be between -180 and 180.")
        object.__setattr__(
            self, "_ecf", geodetic_to_ecf(self.latitude, self.longitude, self.height_km)
        )

    @property
    def latitude_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def longitude_rad(self) -> float:
        return math.radians(self.longitude)

    @property
    def height_km(self) -> float:
        return self.height / 1000.0

    @property
    def ecf(self) -> np.ndarray:
        """Earth-fixed observer position in km."""
        return self._ecf.copy()

    def is_dark(self, timestamp: datetime, max_sun_elevation: float = CIVIL_TWILIGHT_DEG) -> bool:
        return is_ground_station_dark(self.latitude, self.longitude, timestamp, max_sun_elevation)

    def lighting_condition(self, timestamp: datetime) -> str:
        """Return "Dark" below civil twilight, "Light" otherwise."""
        return "Dark" if self.is_dark(timestamp) else "Light"

    def sun_position(self, timestamp: datetime) -> Dict[str, Any]:
        """Sun elevation/azimuth at the station and whether it is dark."""
        elevation = get_sun_elevation(self.latitude, self.longitude, timestamp)
        return {
            "elevation": elevation,
            "azimuth": get_sun_azimuth(self.latitude, self.longitude, timestamp),
            "isDark": elevation < CIVIL_TWILIGHT_DEG,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroundStation":
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            height=float(data.get("height", 0.0)),
            name=data.get("name", "Ground Station"),
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.latitude:.4f}°, {self.longitude:.4f}°, {self.height:.0f} m)"


@dataclass(frozen=True)
class LookAngles:
    """Topocentric look angles. Angles in radians, range in km."""

    azimuth: float
    elevation: float
    range_km: float

    @property
    def azimuth_deg(self) -> float:
        return math.degrees(self.azimuth)

    @property
    def elevation_deg(self) -> float:
        return math.degrees(self.elevation)


class LookAngleCalculator:
    """
    Look angles from one ground station.

    The station's sines, cosines and Earth-fixed position are computed once
    at construction; each call then only rotates the range vector into the
    South/East/Zenith frame.
    """

    def __init__(self, station: GroundStation) -> None:
        self.station = station
        lat = station.latitude_rad
        lon = station.longitude_rad
        self._sin_lat = math.sin(lat)
        self._cos_lat = math.cos(lat)
        self._sin_lon = math.sin(lon)
        self._cos_lon = math.cos(lon)
        self._observer = station.ecf

    def topocentric(self, satellite_ecf: np.ndarray) -> np.ndarray:
        """Satellite-minus-observer vector as (south, east, zenith) in km."""
        rx, ry, rz = np.asarray(satellite_ecf, dtype=float) - self._observer
        south = (
            self._sin_lat * self._cos_lon * rx
            + self._sin_lat * self._sin_lon * ry
            - self._cos_lat * rz
        )
        east = -self._sin_lon * rx + self._cos_lon * ry
        zenith = (
            self._cos_lat * self._cos_lon * rx
            + self._cos_lat * self._sin_lon * ry
            + self._sin_lat * rz
        )
        return np.array([south, east, zenith])

    def look_angles(self, satellite_ecf: np.ndarray) -> LookAngles:
        """
        Azimuth, elevation and range to a satellite.

        Azimuth is atan2(-east, south) + pi: the south-referenced angle
        shifted onto a compass bearing, in [0, 2pi].
        """
        south, east, zenith = self.topocentric(satellite_ecf)
        range_km = math.sqrt(south * south + east * east + zenith * zenith)
        if range_km == 0.0:
            return LookAngles(azimuth=0.0, elevation=math.pi / 2, range_km=0.0)
        elevation = math.asin(max(-1.0, min(1.0, zenith / range_km)))
        azimuth = math.atan2(-east, south) + math.pi
        return LookAngles(azimuth=azimuth, elevation=elevation, range_km=range_km)


def is_in_earth_shadow(satellite_eci: np.ndarray, sun_eci: np.ndarray) -> bool:
    """
    Cylindrical Earth-shadow test.

    The satellite is eclipsed when it is on the far side of the Earth from
    the sun and within one Earth radius of the Sun-Earth line. Penumbra and
    the narrowing of the umbral cone are ignored.

    Args:
        satellite_eci: Satellite position in km
        sun_eci: Sun position in km, same frame
    """
    sat = np.asarray(satellite_eci, dtype=float)
    sun = np.asarray(sun_eci, dtype=float)
    sun_dir = sun / np.linalg.norm(sun)
    along = float(np.dot(sat, sun_dir))
    if along >= 0.0:
        return False
    perpendicular = float(np.linalg.norm(sat - along * sun_dir))
    return perpendicular < EARTH_SHADOW_RADIUS_KM


def ground_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great circle distance between two points on Earth.

    Args:
        lat1, lon1: First point (degrees)
        lat2, lon2: Second point (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def is_within_swath(distance_km: float, swath_km: float) -> bool:
    """True if a ground point lies within half the swath width of the nadir point."""
    return distance_km <= swath_km / 2.0


def station_ground_distance_km(
    station: GroundStation, latitude: float, longitude: float
) -> float:
    """Ground distance from a station to a sub-satellite point."""
    return ground_distance_km(station.latitude, station.longitude, latitude, longitude)
