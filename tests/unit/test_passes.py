"""
Tests for pass prediction.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Tuple
from unittest.mock import MagicMock, patch

import pytest

from pass_predictor.config import PredictionConfig
from pass_predictor.eclipse import EclipseTransition
from pass_predictor.frames import EarthOrientationTable
from pass_predictor.geometry import GroundStation
from pass_predictor.orbit import SatelliteOrbit
from pass_predictor.passes import Pass, PassFinder, PassMode, PassSearchResult, SearchStats


def make_pass(start: datetime, minutes: float = 6.0, **kwargs: Any) -> Pass:
    """Build an elevation-mode pass for tests."""
    fields = {
        "name": "TEST",
        "mode": PassMode.ELEVATION,
        "start": start,
        "end": start + timedelta(minutes=minutes),
        "apex": start + timedelta(minutes=minutes / 2),
        "ground_station_dark_at_start": False,
        "ground_station_dark_at_end": False,
        "satellite_eclipsed_at_start": False,
        "satellite_eclipsed_at_end": False,
        "max_elevation": 45.0,
        "azimuth_start": 200.0,
        "azimuth_apex": 270.0,
        "azimuth_end": 340.0,
    }
    fields.update(kwargs)
    return Pass(**fields)


class TestPass:
    """Tests for the Pass record."""

    def test_end_must_follow_start(self) -> None:
        start = datetime(2024, 1, 1)
        with pytest.raises(ValueError, match="after start"):
            make_pass(start, minutes=0)

    def test_transition_outside_pass(self) -> None:
        start = datetime(2024, 1, 1)
        outside = EclipseTransition(start - timedelta(seconds=1), False, True)
        with pytest.raises(ValueError, match="outside"):
            make_pass(start, eclipse_transitions=(outside,))

    def test_duration(self) -> None:
        p = make_pass(datetime(2024, 1, 1), minutes=5)
        assert p.duration_seconds == 300.0

    def test_to_dict_elevation(self) -> None:
        p = make_pass(datetime(2024, 1, 1), epoch=datetime(2023, 12, 31))
        data = p.to_dict()
        assert data["mode"] == "elevation"
        assert data["maxElevation"] == 45.0
        assert data["azimuthApex"] == 270.0
        assert data["epochTime"] == "2023-12-31T00:00:00"
        assert "minDistance" not in data

    def test_to_dict_swath(self) -> None:
        start = datetime(2024, 1, 1)
        p = make_pass(
            start,
            mode=PassMode.SWATH,
            max_elevation=None,
            min_distance=12.345,
            min_distance_time=start + timedelta(minutes=1),
            swath_width=100.0,
        )
        data = p.to_dict()
        assert data["minDistance"] == 12.35
        assert data["swathWidth"] == 100.0
        assert "maxElevation" not in data

    def test_str(self) -> None:
        assert "Max Elev: 45.0°" in str(make_pass(datetime(2024, 1, 1)))


class TestPassFinderElevation:
    """Tests for elevation-mode pass search on a real element set."""

    @pytest.fixture
    def passes(
        self, iss: SatelliteOrbit, munich_station: GroundStation, time_range: Tuple[datetime, datetime]
    ) -> List[Pass]:
        return PassFinder(iss).compute_passes_elevation(munich_station, *time_range, min_elevation=10.0)

    def test_finds_passes(self, passes: List[Pass]) -> None:
        assert len(passes) >= 1

    def test_pass_invariants(self, passes: List[Pass], time_range: Tuple[datetime, datetime]) -> None:
        for p in passes:
            assert p.mode == PassMode.ELEVATION
            assert p.start < p.end
            assert time_range[0] <= p.start and p.end <= time_range[1] + timedelta(minutes=1)
            assert p.start <= p.apex <= p.end
            assert p.max_elevation > 10.0
            for azimuth in (p.azimuth_start, p.azimuth_apex, p.azimuth_end):
                assert 0.0 <= azimuth <= 360.0
            assert p.duration_seconds < 15 * 60
            for transition in p.eclipse_transitions:
                assert p.start <= transition.time <= p.end

    def test_passes_ordered_and_disjoint(self, passes: List[Pass]) -> None:
        for before, after in zip(passes, passes[1:]):
            assert before.end < after.start

    def test_idempotent(
        self, iss: SatelliteOrbit, munich_station: GroundStation, time_range: Tuple[datetime, datetime]
    ) -> None:
        finder = PassFinder(iss)
        first = finder.compute_passes_elevation(munich_station, *time_range)
        second = finder.compute_passes_elevation(munich_station, *time_range)
        assert first == second

    def test_max_passes(
        self, iss: SatelliteOrbit, munich_station: GroundStation, time_range: Tuple[datetime, datetime]
    ) -> None:
        passes = PassFinder(iss).compute_passes_elevation(munich_station, *time_range, max_passes=1)
        assert len(passes) == 1

    def test_overhead_pass(self, iss: SatelliteOrbit, iss_epoch: datetime) -> None:
        t0 = iss_epoch + timedelta(hours=6)
        nadir = iss.position_geodetic(t0)
        station = GroundStation(latitude=nadir.latitude, longitude=nadir.longitude)
        passes = PassFinder(iss).compute_passes_elevation(
            station, t0 - timedelta(minutes=15), t0 + timedelta(minutes=15)
        )
        assert len(passes) == 1
        assert passes[0].start < t0 < passes[0].end
        assert passes[0].max_elevation > 80.0

    def test_stats_recorded(
        self, iss: SatelliteOrbit, munich_station: GroundStation, time_range: Tuple[datetime, datetime]
    ) -> None:
        finder = PassFinder(iss)
        passes = finder.compute_passes_elevation(munich_station, *time_range)
        stats = finder.last_stats
        assert stats is not None
        assert stats.passes_found == len(passes)
        assert stats.iterations == stats.propagation_calls
        assert stats.propagation_gaps == 0

    def test_start_defaults_to_current_time(
        self, iss: SatelliteOrbit, munich_station: GroundStation, base_datetime: datetime
    ) -> None:
        with patch("pass_predictor.passes.get_current_utc", return_value=base_datetime):
            passes = PassFinder(iss).compute_passes_elevation(munich_station, max_passes=1)
        assert len(passes) == 1
        assert passes[0].start >= base_datetime

    def test_start_clamped_before_epoch(
        self, iss: SatelliteOrbit, munich_station: GroundStation, iss_epoch: datetime
    ) -> None:
        passes = PassFinder(iss).compute_passes_elevation(
            munich_station, iss_epoch - timedelta(days=3), iss_epoch + timedelta(days=1)
        )
        assert all(p.start >= iss_epoch - timedelta(hours=1) for p in passes)
        assert all(p.epoch_in_future for p in passes)


class TestPassFinderSwath:
    """Tests for swath-mode pass search."""

    def test_overhead_within_swath(self, iss: SatelliteOrbit, iss_epoch: datetime) -> None:
        t0 = iss_epoch + timedelta(hours=6)
        nadir = iss.position_geodetic(t0)
        station = GroundStation(latitude=nadir.latitude, longitude=nadir.longitude)
        passes = PassFinder(iss).compute_passes_swath(
            station, 200.0, t0 - timedelta(minutes=10), t0 + timedelta(minutes=10)
        )
        assert len(passes) == 1
        p = passes[0]
        assert p.mode == PassMode.SWATH
        assert p.start <= t0 < p.end
        assert 0.0 <= p.min_distance <= 100.0
        assert p.swath_width == 200.0

    def test_distance_bounded_by_half_swath(
        self, iss: SatelliteOrbit, equator_station: GroundStation, time_range: Tuple[datetime, datetime]
    ) -> None:
        passes = PassFinder(iss).compute_passes_swath(equator_station, 2000.0, *time_range)
        assert passes
        for p in passes:
            assert 0.0 <= p.min_distance <= 1000.0
            assert p.start <= p.min_distance_time <= p.end

    def test_invalid_swath(self, iss: SatelliteOrbit, equator_station: GroundStation) -> None:
        with pytest.raises(ValueError, match="swath_km"):
            PassFinder(iss).compute_passes_swath(equator_station, 0.0)


class TestPassFinderEdgeCases:
    """Edge cases driven by mocked propagators."""

    def _mock_satellite(self, period_minutes: float, epoch: datetime) -> MagicMock:
        satellite = MagicMock()
        satellite.satellite_name = "MOCK"
        satellite.catalog_id = 12345
        satellite.epoch = epoch
        satellite.elements.orbital_period_minutes = period_minutes
        return satellite

    def test_geostationary_returns_no_passes(self, equator_station: GroundStation) -> None:
        start = datetime(2024, 1, 1)
        satellite = self._mock_satellite(1436.0, start - timedelta(days=1))
        finder = PassFinder(satellite)
        assert finder.compute_passes_elevation(equator_station, start, start + timedelta(days=1)) == []
        satellite.position_ecf.assert_not_called()

    def test_propagation_gaps_keep_scanning(
        self, equator_station: GroundStation, caplog: pytest.LogCaptureFixture
    ) -> None:
        start = datetime(2024, 1, 1)
        satellite = self._mock_satellite(92.0, start - timedelta(days=1))
        satellite.position_ecf.return_value = None
        finder = PassFinder(satellite, PredictionConfig(propagation_gap_step_s=60))
        with caplog.at_level(logging.WARNING):
            passes = finder.compute_passes_elevation(equator_station, start, start + timedelta(hours=2))
        assert passes == []
        assert finder.last_stats.propagation_gaps == 120
        assert "no valid position" in caplog.text

    def test_gap_then_pass(self, iss: SatelliteOrbit, iss_epoch: datetime) -> None:
        t0 = iss_epoch + timedelta(hours=6)
        nadir = iss.position_geodetic(t0)
        station = GroundStation(latitude=nadir.latitude, longitude=nadir.longitude)
        gap_end = t0 - timedelta(minutes=10)
        real_position_ecf = iss.position_ecf

        with patch.object(
            iss, "position_ecf", side_effect=lambda t: None if t < gap_end else real_position_ecf(t)
        ):
            finder = PassFinder(iss)
            passes = finder.compute_passes_elevation(
                station, t0 - timedelta(minutes=30), t0 + timedelta(minutes=15)
            )
        assert finder.last_stats.propagation_gaps > 0
        assert len(passes) == 1
        assert passes[0].start < t0 < passes[0].end

    def test_invalid_max_passes(self, iss: SatelliteOrbit, munich_station: GroundStation, iss_epoch: datetime) -> None:
        finder = PassFinder(iss)
        with pytest.raises(ValueError, match="max_passes"):
            finder.compute_passes_elevation(munich_station, iss_epoch, iss_epoch + timedelta(hours=1), max_passes=0)
        with pytest.raises(ValueError, match="max_passes"):
            finder.compute_passes_swath(munich_station, 500.0, iss_epoch, iss_epoch + timedelta(hours=1), max_passes=0)


class TestPassEclipseFlags:
    """Eclipse flags on pass records."""

    def test_flags_taken_at_exact_pass_ends(self, iss: SatelliteOrbit, iss_epoch: datetime) -> None:
        t0 = iss_epoch + timedelta(hours=6)
        nadir = iss.position_geodetic(t0)
        station = GroundStation(latitude=nadir.latitude, longitude=nadir.longitude)
        window = (t0 - timedelta(minutes=15), t0 + timedelta(minutes=15))
        reference = PassFinder(iss).compute_passes_elevation(station, *window)[0]

        # Shadow entry a few seconds before the pass starts
        boundary = reference.start - timedelta(seconds=10)
        finder = PassFinder(iss)
        with patch("pass_predictor.eclipse.is_in_earth_shadow", return_value=False), patch.object(
            finder.eclipse_finder, "_state_at", side_effect=lambda t, sun: t >= boundary
        ):
            p = finder.compute_passes_elevation(station, *window)[0]

        assert p.start == reference.start
        assert p.satellite_eclipsed_at_start
        assert p.satellite_eclipsed_at_end
        assert p.eclipse_transitions == ()

    def test_flags_agree_with_transition(self, iss: SatelliteOrbit, iss_epoch: datetime) -> None:
        t0 = iss_epoch + timedelta(hours=6)
        nadir = iss.position_geodetic(t0)
        station = GroundStation(latitude=nadir.latitude, longitude=nadir.longitude)
        finder = PassFinder(iss)
        with patch.object(finder.eclipse_finder, "_state_at", side_effect=lambda t, sun: t >= t0):
            p = finder.compute_passes_elevation(station, t0 - timedelta(minutes=15), t0 + timedelta(minutes=15))[0]

        assert not p.satellite_eclipsed_at_start
        assert p.satellite_eclipsed_at_end
        assert len(p.eclipse_transitions) == 1
        transition = p.eclipse_transitions[0]
        assert transition.from_shadow == p.satellite_eclipsed_at_start
        assert transition.to_shadow == p.satellite_eclipsed_at_end


class TestEarthOrientationInSearch:
    """Pass search on an orbit carrying Earth orientation data."""

    def test_missing_days_fall_back_and_scan_completes(
        self,
        iss: SatelliteOrbit,
        iss_tle_lines: Tuple[str, str, str],
        munich_station: GroundStation,
        time_range: Tuple[datetime, datetime],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        oriented = SatelliteOrbit(list(iss_tle_lines), earth_orientation=EarthOrientationTable())
        with caplog.at_level(logging.WARNING, logger="pass_predictor.frames"):
            passes = PassFinder(oriented).compute_passes_elevation(munich_station, *time_range)

        assert passes == PassFinder(iss).compute_passes_elevation(munich_station, *time_range)
        warnings = [r.message for r in caplog.records if "sidereal rotation only" in r.message]
        assert warnings
        assert len(warnings) == len(set(warnings))

    def test_covered_day_changes_pass_geometry(
        self, iss: SatelliteOrbit, iss_tle_lines: Tuple[str, str, str], iss_epoch: datetime
    ) -> None:
        t0 = iss_epoch + timedelta(hours=6)
        nadir = iss.position_geodetic(t0)
        station = GroundStation(latitude=nadir.latitude, longitude=nadir.longitude)
        window = (t0 - timedelta(minutes=15), t0 + timedelta(minutes=15))
        mjds = {EarthOrientationTable.mjd_for(t) for t in window}
        table = EarthOrientationTable.from_rows([(mjd, 3600.0, 3600.0) for mjd in mjds])
        oriented = SatelliteOrbit(list(iss_tle_lines), earth_orientation=table)

        plain = PassFinder(iss).compute_passes_elevation(station, *window)[0]
        shifted = PassFinder(oriented).compute_passes_elevation(station, *window)
        assert shifted
        assert shifted[0].max_elevation != pytest.approx(plain.max_elevation)


class TestPassSearchResult:
    """Tests for PassSearchResult serialization."""

    def test_to_dict(self) -> None:
        result = PassSearchResult(
            passes=[make_pass(datetime(2024, 1, 1))],
            stats=SearchStats(iterations=3, propagation_calls=3, passes_found=1),
            warnings=["TLE is 20.0 days old"],
        )
        data = result.to_dict()
        assert len(data["passes"]) == 1
        assert data["stats"]["iterations"] == 3
        assert data["warnings"] == ["TLE is 20.0 days old"]
        assert "staleness" not in data
