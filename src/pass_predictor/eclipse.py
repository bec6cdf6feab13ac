"""
Satellite eclipse analysis.

Shadow states are cached per satellite and per fixed-width time bucket, and
shadow entry/exit instants inside a pass are located by coarse sampling
followed by binary search.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Hashable, List, Optional, Tuple

import numpy as np

from .geometry import is_in_earth_shadow
from .result import ErrorKind, Result
from .sunlight import sun_position_eci

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_SECONDS = 30.0
DEFAULT_CACHE_SIZE = 10000
DEFAULT_PRECISION_SECONDS = 5.0

# Intervals shorter than this only compare their endpoints
MIN_SEARCH_INTERVAL_SECONDS = 30.0
MAX_COARSE_STEP_SECONDS = 120.0


@dataclass(frozen=True)
class EclipseTransition:
    """A shadow entry (to_shadow=True) or exit (to_shadow=False)."""

    time: datetime
    from_shadow: bool
    to_shadow: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.isoformat(),
            "fromShadow": self.from_shadow,
            "toShadow": self.to_shadow,
        }


class ShadowCache:
    """
    Bounded map of (satellite id, time bucket) -> in-shadow flag.

    Eviction is first-in first-out: once the cache is full, inserting a new
    key removes the key that was inserted earliest, regardless of how
    recently it was read. Access is guarded by a lock so one cache can be
    shared between finders on different threads.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self._entries: "OrderedDict[Hashable, bool]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Result[bool]:
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return Result.success(self._entries[key])
            self.misses += 1
        return Result.failure(ErrorKind.CACHE_MISS, f"No cached shadow state for {key}")

    def put(self, key: Hashable, in_shadow: bool) -> None:
        with self._lock:
            if key in self._entries:
                self._entries[key] = in_shadow
                return
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = in_shadow

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EclipseTransitionFinder:
    """
    Shadow lookups and shadow-transition search for one satellite.

    Each finder owns its cache unless one is passed in, so there is no
    process-wide shadow state.
    """

    def __init__(
        self,
        satellite: Any,
        cache: Optional[ShadowCache] = None,
        bucket_seconds: float = DEFAULT_BUCKET_SECONDS,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        """
        Args:
            satellite: SatelliteOrbit (anything with catalog_id and position_eci)
            cache: Shared cache; a private one of cache_size entries otherwise
            bucket_seconds: Width of a cache time bucket
            cache_size: Capacity of the private cache
        """
        if bucket_seconds <= 0:
            raise ValueError(f"bucket_seconds must be positive, got {bucket_seconds}")
        self.satellite = satellite
        self.cache = cache if cache is not None else ShadowCache(cache_size)
        self.bucket_seconds = bucket_seconds

    def _bucket(self, timestamp: datetime) -> int:
        epoch_seconds = (timestamp - datetime(1970, 1, 1)).total_seconds()
        return int(epoch_seconds // self.bucket_seconds)

    def _bucket_start(self, bucket: int) -> datetime:
        return datetime(1970, 1, 1) + timedelta(seconds=bucket * self.bucket_seconds)

    def cache_key(self, timestamp: datetime) -> Tuple[int, int]:
        return (self.satellite.catalog_id, self._bucket(timestamp))

    def shadow_state(self, timestamp: datetime) -> Result[bool]:
        """
        Cached in-shadow state for the bucket containing timestamp.

        The state is evaluated at the start of the bucket, so every instant
        in a bucket gets the same answer whichever one was asked first.

        Returns:
            Result holding the flag, or PROPAGATION_FAILED when the
            satellite has no position for that bucket (not cached)
        """
        key = self.cache_key(timestamp)
        cached = self.cache.get(key)
        if cached.ok:
            return cached

        sample_time = self._bucket_start(key[1])
        position = self.satellite.position_eci(sample_time)
        if position is None:
            return Result.failure(
                ErrorKind.PROPAGATION_FAILED, f"No position for shadow test at {sample_time}"
            )
        in_shadow = is_in_earth_shadow(position, sun_position_eci(sample_time))
        self.cache.put(key, in_shadow)
        return Result.success(in_shadow)

    def is_in_shadow(self, timestamp: datetime) -> bool:
        """In-shadow flag; a satellite without a position counts as lit."""
        return bool(self.shadow_state(timestamp).value_or(False))

    def _state_at(self, timestamp: datetime, sun: np.ndarray) -> Optional[bool]:
        """Uncached shadow state against a fixed sun position."""
        position = self.satellite.position_eci(timestamp)
        if position is None:
            return None
        return is_in_earth_shadow(position, sun)

    @staticmethod
    def _window_sun(start: datetime, end: datetime) -> np.ndarray:
        return sun_position_eci(start + (end - start) / 2)

    def edge_states(self, start: datetime, end: datetime) -> Tuple[Optional[bool], Optional[bool]]:
        """
        Exact shadow state at both ends of an interval.

        Uses the same sun position as find_transitions over the same
        interval, so the states agree with the transitions it reports.
        None marks an end without a position.
        """
        sun = self._window_sun(start, end)
        return self._state_at(start, sun), self._state_at(end, sun)

    def find_transitions(
        self,
        start: datetime,
        end: datetime,
        precision_seconds: float = DEFAULT_PRECISION_SECONDS,
    ) -> List[EclipseTransition]:
        """
        Find shadow entries and exits between start and end.

        The sun position is computed once at the midpoint; over a pass it
        moves by far less than the shadow test can resolve.

        Args:
            start: Interval start
            end: Interval end
            precision_seconds: Width of the final bracket around each transition

        Returns:
            Transitions in time order, each with start <= time <= end
        """
        if end <= start:
            return []
        if precision_seconds <= 0:
            raise ValueError(f"precision_seconds must be positive, got {precision_seconds}")

        duration = (end - start).total_seconds()
        sun = self._window_sun(start, end)

        if duration < MIN_SEARCH_INTERVAL_SECONDS:
            first = self._state_at(start, sun)
            last = self._state_at(end, sun)
            if first is None or last is None or first == last:
                return []
            return [
                EclipseTransition(
                    time=start + timedelta(seconds=duration / 2.0),
                    from_shadow=first,
                    to_shadow=last,
                )
            ]

        step = min(MAX_COARSE_STEP_SECONDS, duration / 4.0)
        samples: List[Tuple[datetime, bool]] = []
        offset = 0.0
        while True:
            timestamp = end if offset >= duration else start + timedelta(seconds=offset)
            state = self._state_at(timestamp, sun)
            if state is not None:
                samples.append((timestamp, state))
            if timestamp == end:
                break
            offset += step

        transitions = []
        for (t0, s0), (t1, s1) in zip(samples, samples[1:]):
            if s0 != s1:
                crossing = self._refine(t0, s0, t1, sun, precision_seconds)
                transitions.append(EclipseTransition(time=crossing, from_shadow=s0, to_shadow=s1))
        return transitions

    def _refine(
        self,
        low: datetime,
        low_state: bool,
        high: datetime,
        sun: np.ndarray,
        precision_seconds: float,
    ) -> datetime:
        """Binary-search the bracket [low, high] down to precision_seconds."""
        while (high - low).total_seconds() > precision_seconds:
            middle = low + (high - low) / 2
            state = self._state_at(middle, sun)
            if state is None:
                # No position inside the bracket; settle for its midpoint
                break
            if state == low_state:
                low = middle
            else:
                high = middle
        return low + (high - low) / 2
