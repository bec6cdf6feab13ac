"""
Sunlight and illumination calculations for pass prediction.

This module provides the sun's inertial position (used by the Earth-shadow
test and the brightness estimator) and the sun's altitude at a ground
station (used to decide whether the sky is dark enough for visual
observation).
"""

import math
from datetime import datetime
from typing import Tuple

import numpy as np

from .frames import gmst_radians

# Constants
EARTH_RADIUS_KM = 6371.0
AU_KM = 149597870.7  # Astronomical Unit in kilometers

# Sun below -6 degrees: end of civil twilight
CIVIL_TWILIGHT_DEG = -6.0


def calculate_sun_position(timestamp: datetime) -> Tuple[float, float, float]:
    """
    Calculate the sun's position in Earth-Centered Inertial (ECI) coordinates.

    Uses simplified astronomical calculations for the sun's position.

    Args:
        timestamp: UTC datetime

    Returns:
        Tuple of (x, y, z) coordinates in kilometers
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.replace(tzinfo=None)

    # Days since J2000.0 epoch
    j2000 = datetime(2000, 1, 1, 12, 0, 0)
    days = (timestamp - j2000).total_seconds() / 86400.0

    # Mean anomaly
    M = math.radians(357.52911 + 0.98560028 * days) % (2 * math.pi)

    # Equation of center
    C = math.radians(1.914602 * math.sin(M) + 0.019993 * math.sin(2 * M))

    # Ecliptic longitude
    lambda_sun = math.radians(280.46646 + 0.98564736 * days) + C

    # Obliquity of ecliptic
    epsilon = math.radians(23.439291)

    x = AU_KM * math.cos(lambda_sun)
    y = AU_KM * math.sin(lambda_sun) * math.cos(epsilon)
    z = AU_KM * math.sin(lambda_sun) * math.sin(epsilon)

    return x, y, z


def sun_position_eci(timestamp: datetime) -> np.ndarray:
    """Sun position in ECI as a numpy vector (km)."""
    return np.array(calculate_sun_position(timestamp), dtype=float)


def _station_to_sun(
    latitude: float, longitude: float, timestamp: datetime
) -> Tuple[np.ndarray, np.ndarray]:
    """Unit vectors (to-sun, local-up) at a spherical-Earth station in ECI."""
    sun = sun_position_eci(timestamp)

    lon_rad = math.radians(longitude) + gmst_radians(timestamp)
    lat_rad = math.radians(latitude)
    up = np.array(
        [
            math.cos(lat_rad) * math.cos(lon_rad),
            math.cos(lat_rad) * math.sin(lon_rad),
            math.sin(lat_rad),
        ]
    )
    station = EARTH_RADIUS_KM * up

    to_sun = sun - station
    return to_sun / np.linalg.norm(to_sun), up


def get_sun_elevation(latitude: float, longitude: float, timestamp: datetime) -> float:
    """
    Get the sun elevation angle at a ground location.

    Args:
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        timestamp: UTC datetime

    Returns:
        Sun elevation angle in degrees (positive = above horizon, negative = below)
    """
    sun_unit, up = _station_to_sun(latitude, longitude, timestamp)
    sin_elevation = float(np.dot(sun_unit, up))
    return math.degrees(math.asin(max(-1.0, min(1.0, sin_elevation))))


def get_sun_azimuth(latitude: float, longitude: float, timestamp: datetime) -> float:
    """
    Get the sun azimuth at a ground location.

    Returns:
        Compass bearing in degrees, 0 = north, clockwise
    """
    sun_unit, up = _station_to_sun(latitude, longitude, timestamp)
    # Local east and north in ECI
    east = np.cross(np.array([0.0, 0.0, 1.0]), up)
    norm = np.linalg.norm(east)
    if norm < 1e-12:
        # At a pole every direction is south (or north); report due north
        return 0.0
    east /= norm
    north = np.cross(up, east)
    azimuth = math.degrees(math.atan2(float(np.dot(sun_unit, east)), float(np.dot(sun_unit, north))))
    return azimuth % 360.0


def is_ground_station_dark(
    latitude: float,
    longitude: float,
    timestamp: datetime,
    max_sun_elevation: float = CIVIL_TWILIGHT_DEG,
) -> bool:
    """
    Check whether the sky at a ground station is dark enough to see satellites.

    Args:
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        timestamp: UTC datetime
        max_sun_elevation: Sun altitude below which the station counts as dark

    Returns:
        True if the sun is below max_sun_elevation
    """
    return get_sun_elevation(latitude, longitude, timestamp) < max_sun_elevation
