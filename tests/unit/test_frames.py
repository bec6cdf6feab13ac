"""
Tests for time and reference-frame helpers.
"""

import logging
import math
from datetime import datetime

import numpy as np
import pytest

from pass_predictor.frames import (
    EarthOrientationTable,
    datetime_to_jd,
    eci_to_ecf,
    ecf_to_eci,
    ecf_to_geodetic,
    fixed_to_inertial_matrix,
    geodetic_to_ecf,
    gmst_radians,
    inertial_to_fixed_matrix,
    jd_to_datetime,
    rotation_z,
    split_jd,
)
from pass_predictor.result import ErrorKind


class TestJulianDates:
    """Tests for Julian date conversion."""

    def test_j2000(self) -> None:
        assert datetime_to_jd(datetime(2000, 1, 1, 12, 0, 0)) == pytest.approx(2451545.0)

    def test_round_trip(self) -> None:
        dt = datetime(2024, 3, 15, 7, 45, 12, 250000)
        assert jd_to_datetime(datetime_to_jd(dt)) == dt

    def test_split_jd(self) -> None:
        whole, fraction = split_jd(datetime(2024, 1, 1, 6, 0, 0))
        assert whole == pytest.approx(2460310.5)
        assert fraction == pytest.approx(0.25)


class TestGmst:
    """Tests for sidereal time."""

    def test_range(self) -> None:
        for hour in range(0, 24, 3):
            gmst = gmst_radians(datetime(2024, 6, 1, hour))
            assert 0.0 <= gmst < 2 * math.pi

    def test_j2000_value(self) -> None:
        # GMST at J2000.0 is about 280.46 degrees
        assert math.degrees(gmst_radians(datetime(2000, 1, 1, 12))) == pytest.approx(280.46, abs=0.01)


class TestFrameTransforms:
    """Tests for inertial/fixed rotation."""

    def test_round_trip(self) -> None:
        t = datetime(2024, 1, 1, 3, 0, 0)
        vec = np.array([7000.0, -1200.0, 300.0])
        np.testing.assert_allclose(ecf_to_eci(eci_to_ecf(vec, t), t), vec, atol=1e-9)

    def test_preserves_norm(self) -> None:
        vec = np.array([4000.0, 4000.0, 4000.0])
        ecf = eci_to_ecf(vec, datetime(2024, 1, 1))
        assert np.linalg.norm(ecf) == pytest.approx(np.linalg.norm(vec))

    def test_z_axis_unchanged(self) -> None:
        vec = np.array([0.0, 0.0, 6500.0])
        np.testing.assert_allclose(eci_to_ecf(vec, datetime(2024, 1, 1)), vec)

    def test_matrix_inverse(self) -> None:
        t = datetime(2024, 1, 1)
        product = inertial_to_fixed_matrix(t) @ fixed_to_inertial_matrix(t)
        np.testing.assert_allclose(product, np.eye(3), atol=1e-12)


class TestEarthOrientation:
    """Tests for the polar-motion table and its fallback."""

    def test_lookup(self) -> None:
        t = datetime(2024, 1, 1, 12)
        table = EarthOrientationTable.from_rows([(EarthOrientationTable.mjd_for(t), 0.1, 0.3)])
        result = table.polar_motion(t)
        assert result.ok
        xp, yp = result.unwrap()
        assert xp > 0 and yp > xp

    def test_missing_day(self) -> None:
        result = EarthOrientationTable().polar_motion(datetime(2024, 1, 1))
        assert result.error == ErrorKind.FRAME_UNAVAILABLE

    def test_fallback_to_sidereal(self, caplog: pytest.LogCaptureFixture) -> None:
        t = datetime(2024, 1, 1, 12)
        table = EarthOrientationTable()
        with caplog.at_level(logging.WARNING):
            matrix = inertial_to_fixed_matrix(t, table)
            inertial_to_fixed_matrix(t, table)
        np.testing.assert_allclose(matrix, rotation_z(gmst_radians(t)))
        # Warned once per day, not once per call
        assert sum("sidereal rotation only" in r.message for r in caplog.records) == 1

    def test_polar_motion_applied(self) -> None:
        t = datetime(2024, 1, 1, 12)
        table = EarthOrientationTable.from_rows([(EarthOrientationTable.mjd_for(t), 0.2, 0.4)])
        with_pm = inertial_to_fixed_matrix(t, table)
        without = inertial_to_fixed_matrix(t)
        assert not np.allclose(with_pm, without)
        np.testing.assert_allclose(with_pm, without, atol=1e-5)


class TestGeodetic:
    """Tests for geodetic conversion."""

    def test_origin(self) -> None:
        ecf = geodetic_to_ecf(0.0, 0.0, 0.0)
        np.testing.assert_allclose(ecf, [6378.137, 0.0, 0.0], atol=1e-6)

    def test_round_trip(self) -> None:
        lat, lon, height = ecf_to_geodetic(geodetic_to_ecf(48.1, 11.6, 0.52))
        assert lat == pytest.approx(48.1, abs=1e-6)
        assert lon == pytest.approx(11.6, abs=1e-6)
        assert height == pytest.approx(0.52, abs=1e-3)
