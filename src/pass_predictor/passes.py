"""
Satellite pass prediction.

A pass is a continuous interval during which a visibility criterion holds
for a ground station: either the satellite is above a minimum elevation,
or the station lies inside the satellite's sensor swath. PassFinder scans
a time range with a two-state machine (searching / in pass), using coarse
adaptive steps while the satellite is far from visible and a fine fixed
step while a pass is in progress.

After each pass the clock jumps ahead by half an orbital period. This
assumes at most one visibility window per revolution; geometries with two
windows in one revolution can lose the second one.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import PredictionConfig
from .eclipse import EclipseTransition, EclipseTransitionFinder, ShadowCache
from .geometry import (
    GroundStation,
    LookAngleCalculator,
    is_within_swath,
    station_ground_distance_km,
)
from .orbit import SatelliteOrbit, StalenessReport
from .utils import get_current_utc

logger = logging.getLogger(__name__)


class PassMode(Enum):
    """Visibility criterion a pass was computed with."""

    ELEVATION = "elevation"
    SWATH = "swath"


class SearchState(Enum):
    """States of the pass-finder scan."""

    SEARCHING = "searching"
    IN_PASS = "in_pass"


@dataclass(frozen=True)
class Pass:
    """
    One visibility window over a ground station.

    Elevation-mode passes carry max elevation and azimuths (degrees);
    swath-mode passes carry the closest ground distance (km) and its time.
    """

    name: str
    mode: PassMode
    start: datetime
    end: datetime
    apex: datetime
    ground_station_dark_at_start: bool
    ground_station_dark_at_end: bool
    satellite_eclipsed_at_start: bool
    satellite_eclipsed_at_end: bool
    eclipse_transitions: Tuple[EclipseTransition, ...] = ()

    # Elevation mode
    max_elevation: Optional[float] = None
    azimuth_start: Optional[float] = None
    azimuth_apex: Optional[float] = None
    azimuth_end: Optional[float] = None

    # Swath mode
    min_distance: Optional[float] = None
    min_distance_time: Optional[datetime] = None
    swath_width: Optional[float] = None

    # Element-set context for consumers
    epoch: Optional[datetime] = None
    epoch_in_future: bool = False

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"Pass end {self.end} must be after start {self.start}")
        for transition in self.eclipse_transitions:
            if not self.start <= transition.time <= self.end:
                raise ValueError(
                    f"Eclipse transition at {transition.time} lies outside the pass "
                    f"{self.start} - {self.end}"
                )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_seconds(self) -> float:
        return self.duration.total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the field names consumers of pass lists expect."""
        result: Dict[str, Any] = {
            "name": self.name,
            "mode": self.mode.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "apex": self.apex.isoformat(),
            "duration": round(self.duration_seconds, 1),
            "groundStationDarkAtStart": self.ground_station_dark_at_start,
            "groundStationDarkAtEnd": self.ground_station_dark_at_end,
            "satelliteEclipsedAtStart": self.satellite_eclipsed_at_start,
            "satelliteEclipsedAtEnd": self.satellite_eclipsed_at_end,
            "eclipseTransitions": [t.to_dict() for t in self.eclipse_transitions],
            "epochInFuture": self.epoch_in_future,
        }
        if self.mode == PassMode.ELEVATION:
            result.update(
                {
                    "maxElevation": round(self.max_elevation or 0.0, 2),
                    "azimuthStart": round(self.azimuth_start or 0.0, 2),
                    "azimuthApex": round(self.azimuth_apex or 0.0, 2),
                    "azimuthEnd": round(self.azimuth_end or 0.0, 2),
                }
            )
        else:
            result.update(
                {
                    "minDistance": round(self.min_distance or 0.0, 2),
                    "minDistanceTime": self.min_distance_time.isoformat() if self.min_distance_time else None,
                    "swathWidth": self.swath_width,
                }
            )
        if self.epoch is not None:
            result["epochTime"] = self.epoch.isoformat()
        return result

    def __str__(self) -> str:
        """String representation of the pass."""
        if self.mode == PassMode.ELEVATION:
            detail = f"Max Elev: {self.max_elevation:.1f}°"
        else:
            detail = f"Min Dist: {self.min_distance:.1f} km"
        return (
            f"Pass of {self.name}: "
            f"{self.start.strftime('%Y-%m-%d %H:%M:%S')} - "
            f"{self.end.strftime('%H:%M:%S')} UTC, {detail}"
        )


@dataclass
class SearchStats:
    """Counters for the most recent pass search."""

    iterations: int = 0
    propagation_calls: int = 0
    propagation_gaps: int = 0
    passes_found: int = 0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "propagationCalls": self.propagation_calls,
            "propagationGaps": self.propagation_gaps,
            "passesFound": self.passes_found,
            "elapsedSeconds": round(self.elapsed_seconds, 4),
        }


@dataclass(frozen=True)
class _Sample:
    time: datetime
    value: float  # elevation (deg) or ground distance (km)
    azimuth: Optional[float] = None


class _ElevationCriterion:
    """Visible while elevation is above the mask."""

    def __init__(self, satellite: SatelliteOrbit, station: GroundStation, min_elevation: float, in_pass_step: float) -> None:
        self.satellite = satellite
        self.calculator = LookAngleCalculator(station)
        self.min_elevation = min_elevation
        self.in_pass_step = timedelta(seconds=in_pass_step)

    def sample(self, timestamp: datetime) -> Optional[_Sample]:
        position = self.satellite.position_ecf(timestamp)
        if position is None:
            return None
        angles = self.calculator.look_angles(position)
        return _Sample(timestamp, angles.elevation_deg, angles.azimuth_deg)

    def is_visible(self, sample: _Sample) -> bool:
        return sample.value > self.min_elevation

    def is_better(self, sample: _Sample, best: _Sample) -> bool:
        return sample.value > best.value

    def is_receding(self, sample: _Sample, previous: Optional[_Sample]) -> bool:
        return previous is not None and sample.value < previous.value

    def search_step(self, sample: _Sample) -> timedelta:
        elevation = sample.value
        if elevation < -20:
            return timedelta(minutes=5)
        if elevation < -5:
            return timedelta(minutes=1)
        if elevation < -1:
            return timedelta(seconds=5)
        return timedelta(seconds=2)


class _SwathCriterion:
    """Visible while the station is within half a swath of the nadir point."""

    def __init__(self, satellite: SatelliteOrbit, station: GroundStation, swath_km: float, in_pass_step: float) -> None:
        self.satellite = satellite
        self.station = station
        self.swath_km = swath_km
        self.half_swath = swath_km / 2.0
        self.in_pass_step = timedelta(seconds=in_pass_step)

    def sample(self, timestamp: datetime) -> Optional[_Sample]:
        nadir = self.satellite.position_geodetic(timestamp)
        if nadir is None:
            return None
        distance = station_ground_distance_km(self.station, nadir.latitude, nadir.longitude)
        return _Sample(timestamp, distance)

    def is_visible(self, sample: _Sample) -> bool:
        return is_within_swath(sample.value, self.swath_km)

    def is_better(self, sample: _Sample, best: _Sample) -> bool:
        return sample.value < best.value

    def is_receding(self, sample: _Sample, previous: Optional[_Sample]) -> bool:
        return (
            previous is not None
            and sample.value > previous.value
            and sample.value > self.half_swath * 4
        )

    def search_step(self, sample: _Sample) -> timedelta:
        distance = sample.value
        if distance > self.half_swath * 3:
            return timedelta(minutes=5)
        if distance > self.half_swath * 2:
            return timedelta(minutes=2)
        if distance > self.half_swath * 1.2:
            return timedelta(minutes=1)
        return timedelta(seconds=15)


class PassFinder:
    """
    Finds passes of one satellite over ground stations.

    Example:
        finder = PassFinder(SatelliteOrbit(tle_lines))
        passes = finder.compute_passes_elevation(GroundStation(48.1, 11.6, 520))
    """

    def __init__(
        self,
        satellite: SatelliteOrbit,
        config: Optional[PredictionConfig] = None,
        eclipse_finder: Optional[EclipseTransitionFinder] = None,
    ) -> None:
        """
        Args:
            satellite: Propagator for the satellite
            config: Prediction settings (defaults if omitted)
            eclipse_finder: Shadow analysis for the satellite; one with its
                own cache is created if omitted
        """
        self.satellite = satellite
        self.config = config or PredictionConfig()
        self.eclipse_finder = eclipse_finder or EclipseTransitionFinder(
            satellite,
            cache=ShadowCache(self.config.eclipse_cache_size),
            bucket_seconds=self.config.eclipse_bucket_s,
        )
        self.last_stats: Optional[SearchStats] = None

    @property
    def orbital_period(self) -> timedelta:
        return timedelta(minutes=self.satellite.elements.orbital_period_minutes)

    def _max_passes(self, max_passes: Optional[int]) -> int:
        if max_passes is None:
            return self.config.max_passes
        if max_passes < 1:
            raise ValueError(f"max_passes must be at least 1, got {max_passes}")
        return max_passes

    def _window(self, start: Optional[datetime], end: Optional[datetime]) -> Tuple[datetime, datetime, bool]:
        """Resolve the search window and clamp it to shortly before a future epoch."""
        start = start or get_current_utc()
        end = end or start + timedelta(days=self.config.search_days)
        epoch = self.satellite.epoch
        earliest = epoch - timedelta(seconds=self.config.epoch_margin_s)
        epoch_in_future = epoch > start
        if start < earliest:
            logger.info(
                f"{self.satellite.satellite_name}: epoch {epoch} is in the future, "
                f"starting search at {earliest}"
            )
            start = earliest
        return start, end, epoch_in_future

    def compute_passes_elevation(
        self,
        station: GroundStation,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_elevation: Optional[float] = None,
        max_passes: Optional[int] = None,
    ) -> List[Pass]:
        """
        Find passes above a minimum elevation.

        Args:
            station: Observer position
            start: Window start (default: now)
            end: Window end (default: start + search_days)
            min_elevation: Elevation mask in degrees (default from config)
            max_passes: Stop after this many passes (default from config)

        Returns:
            Passes in time order; empty for geostationary-class orbits
        """
        min_elevation = self.config.min_elevation_deg if min_elevation is None else min_elevation
        max_passes = self._max_passes(max_passes)

        period_minutes = self.satellite.elements.orbital_period_minutes
        if period_minutes > self.config.geostationary_period_min:
            logger.info(
                f"{self.satellite.satellite_name}: orbital period {period_minutes:.0f} min, "
                f"no discrete passes"
            )
            self.last_stats = SearchStats()
            return []

        criterion = _ElevationCriterion(
            self.satellite, station, min_elevation, self.config.elevation_in_pass_step_s
        )
        return self._scan(criterion, PassMode.ELEVATION, station, start, end, max_passes)

    def compute_passes_swath(
        self,
        station: GroundStation,
        swath_km: float,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        max_passes: Optional[int] = None,
    ) -> List[Pass]:
        """
        Find passes during which the station lies inside the sensor swath.

        Args:
            station: Observer position
            swath_km: Full swath width in km
            start: Window start (default: now)
            end: Window end (default: start + search_days)
            max_passes: Stop after this many passes (default from config)

        Returns:
            Passes in time order

        Raises:
            ValueError: If swath_km is not positive
        """
        if swath_km <= 0:
            raise ValueError(f"swath_km must be positive, got {swath_km}")
        max_passes = self._max_passes(max_passes)
        criterion = _SwathCriterion(self.satellite, station, swath_km, self.config.swath_in_pass_step_s)
        return self._scan(criterion, PassMode.SWATH, station, start, end, max_passes)

    def _scan(
        self,
        criterion: Any,
        mode: PassMode,
        station: GroundStation,
        start: Optional[datetime],
        end: Optional[datetime],
        max_passes: int,
    ) -> List[Pass]:
        started = time.perf_counter()
        stats = SearchStats()
        window_start, window_end, epoch_in_future = self._window(start, end)

        gap_step = timedelta(seconds=self.config.propagation_gap_step_s)
        skip = self.orbital_period * self.config.post_pass_skip_fraction

        passes: List[Pass] = []
        state = SearchState.SEARCHING
        first: Optional[_Sample] = None
        best: Optional[_Sample] = None
        previous: Optional[_Sample] = None
        current = window_start

        while current < window_end:
            stats.iterations += 1
            stats.propagation_calls += 1
            sample = criterion.sample(current)
            if sample is None:
                stats.propagation_gaps += 1
                current += gap_step
                continue

            if criterion.is_visible(sample):
                if state == SearchState.SEARCHING:
                    state = SearchState.IN_PASS
                    first = best = sample
                elif criterion.is_better(sample, best):
                    best = sample
                current += criterion.in_pass_step
            elif state == SearchState.IN_PASS:
                passes.append(
                    self._finalize(criterion, mode, station, first, best, sample, epoch_in_future)
                )
                state = SearchState.SEARCHING
                first = best = previous = None
                if len(passes) >= max_passes:
                    break
                current += skip
            elif criterion.is_receding(sample, previous):
                previous = None
                current += skip
            else:
                previous = sample
                current += criterion.search_step(sample)

        stats.passes_found = len(passes)
        stats.elapsed_seconds = time.perf_counter() - started
        self.last_stats = stats

        if not passes and stats.propagation_gaps:
            logger.warning(
                f"{self.satellite.satellite_name}: no passes found, "
                f"{stats.propagation_gaps} samples had no valid position"
            )
        logger.debug(
            f"{self.satellite.satellite_name} {mode.value} search: {stats.iterations} iterations, "
            f"{stats.propagation_calls} propagations, {len(passes)} passes"
        )
        return passes

    def _finalize(
        self,
        criterion: Any,
        mode: PassMode,
        station: GroundStation,
        first: _Sample,
        best: _Sample,
        last: _Sample,
        epoch_in_future: bool,
    ) -> Pass:
        """Build the Pass record when the criterion stops holding."""
        start, end = first.time, last.time
        darkness = self.config.darkness_sun_altitude_deg
        transitions = self.eclipse_finder.find_transitions(
            start, end, self.config.transition_precision_s
        )
        eclipsed_at_start, eclipsed_at_end = self.eclipse_finder.edge_states(start, end)
        if eclipsed_at_start is None:
            eclipsed_at_start = self.eclipse_finder.is_in_shadow(start)
        if eclipsed_at_end is None:
            eclipsed_at_end = self.eclipse_finder.is_in_shadow(end)
        common: Dict[str, Any] = {
            "name": self.satellite.satellite_name,
            "mode": mode,
            "start": start,
            "end": end,
            "apex": best.time,
            "ground_station_dark_at_start": station.is_dark(start, darkness),
            "ground_station_dark_at_end": station.is_dark(end, darkness),
            "satellite_eclipsed_at_start": eclipsed_at_start,
            "satellite_eclipsed_at_end": eclipsed_at_end,
            "eclipse_transitions": tuple(transitions),
            "epoch": self.satellite.epoch,
            "epoch_in_future": epoch_in_future,
        }
        if mode == PassMode.ELEVATION:
            return Pass(
                max_elevation=best.value,
                azimuth_start=first.azimuth,
                azimuth_apex=best.azimuth,
                azimuth_end=last.azimuth,
                **common,
            )
        return Pass(
            min_distance=best.value,
            min_distance_time=best.time,
            swath_width=criterion.swath_km,
            **common,
        )


@dataclass
class PassSearchResult:
    """Passes plus the advisory data recorded alongside them."""

    passes: List[Pass]
    staleness: Optional[StalenessReport] = None
    stats: Optional[SearchStats] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"passes": [p.to_dict() for p in self.passes]}
        if self.staleness is not None:
            result["staleness"] = self.staleness.to_dict()
        if self.stats is not None:
            result["stats"] = self.stats.to_dict()
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result
