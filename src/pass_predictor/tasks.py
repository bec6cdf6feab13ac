"""
Worker task vocabulary.

Requests are a closed set of frozen dataclasses, one per task type; a
message pairs a request with its task id and every message gets exactly
one response. TaskHandler executes requests inside a worker (or on the
caller's thread for the synchronous fallback) and keeps its own satellite
cache, so workers never share state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Union

from .config import PredictionConfig
from .geometry import GroundStation
from .orbit import SatelliteOrbit
from .passes import PassFinder, PassSearchResult

logger = logging.getLogger(__name__)

# Element sets a TaskHandler keeps decoded before evicting the oldest
MAX_CACHED_SATELLITES = 64


class TaskType(Enum):
    """Task types a worker understands."""

    PROPAGATE_POSITIONS = "PROPAGATE_POSITIONS"
    PROPAGATE_GEODETIC = "PROPAGATE_GEODETIC"
    COMPUTE_PASSES_ELEVATION = "COMPUTE_PASSES_ELEVATION"
    COMPUTE_PASSES_SWATH = "COMPUTE_PASSES_SWATH"
    CLEAR_CACHE = "CLEAR_CACHE"


@dataclass(frozen=True)
class PropagatePositionsRequest:
    """ECI/ECF positions (metres) at many instants."""

    tle: Tuple[str, ...]
    timestamps: Tuple[datetime, ...]
    task_type: ClassVar[TaskType] = TaskType.PROPAGATE_POSITIONS


@dataclass(frozen=True)
class PropagateGeodeticRequest:
    """Sub-satellite point at one instant."""

    tle: Tuple[str, ...]
    timestamp: datetime
    task_type: ClassVar[TaskType] = TaskType.PROPAGATE_GEODETIC


@dataclass(frozen=True)
class ComputePassesElevationRequest:
    tle: Tuple[str, ...]
    ground_station: GroundStation
    start: datetime
    end: datetime
    min_elevation: float = 5.0
    max_passes: int = 50
    collect_stats: bool = False
    task_type: ClassVar[TaskType] = TaskType.COMPUTE_PASSES_ELEVATION


@dataclass(frozen=True)
class ComputePassesSwathRequest:
    tle: Tuple[str, ...]
    ground_station: GroundStation
    swath_km: float
    start: datetime
    end: datetime
    max_passes: int = 50
    collect_stats: bool = False
    task_type: ClassVar[TaskType] = TaskType.COMPUTE_PASSES_SWATH


@dataclass(frozen=True)
class ClearCacheRequest:
    task_type: ClassVar[TaskType] = TaskType.CLEAR_CACHE


TaskRequest = Union[
    PropagatePositionsRequest,
    PropagateGeodeticRequest,
    ComputePassesElevationRequest,
    ComputePassesSwathRequest,
    ClearCacheRequest,
]


@dataclass(frozen=True)
class TaskMessage:
    """A request tagged with its task id."""

    id: int
    request: TaskRequest

    @property
    def task_type(self) -> TaskType:
        return self.request.task_type


@dataclass(frozen=True)
class TaskResponse:
    """Outcome of one task: a result on success, an error message otherwise."""

    id: int
    task_type: Optional[TaskType]
    success: bool
    result: Any = None
    error: Optional[str] = None
    worker_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.task_type.value if self.task_type else None,
            "success": self.success,
        }
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data


class TaskHandler:
    """
    Executes task requests against a private satellite cache.

    Satellites are decoded once per element set and reused across tasks,
    which is what makes repeated pass requests for the same satellite cheap.
    At most max_satellites element sets are held; the oldest one is dropped
    (with its pass finder) when a new one arrives.
    """

    def __init__(
        self, config: Optional[PredictionConfig] = None, max_satellites: int = MAX_CACHED_SATELLITES
    ) -> None:
        if max_satellites < 1:
            raise ValueError(f"max_satellites must be at least 1, got {max_satellites}")
        self.config = config or PredictionConfig()
        self.max_satellites = max_satellites
        self._satellites: Dict[Tuple[str, str], SatelliteOrbit] = {}
        self._finders: Dict[Tuple[str, str], PassFinder] = {}
        self._handlers: Dict[TaskType, Callable[[Any], Any]] = {
            TaskType.PROPAGATE_POSITIONS: self._propagate_positions,
            TaskType.PROPAGATE_GEODETIC: self._propagate_geodetic,
            TaskType.COMPUTE_PASSES_ELEVATION: self._compute_passes_elevation,
            TaskType.COMPUTE_PASSES_SWATH: self._compute_passes_swath,
            TaskType.CLEAR_CACHE: self._clear_cache,
        }
        missing = set(TaskType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for task types: {sorted(t.value for t in missing)}")

    @property
    def cached_satellites(self) -> int:
        return len(self._satellites)

    def _satellite(self, tle: Tuple[str, ...]) -> SatelliteOrbit:
        key = (tle[-2], tle[-1])
        satellite = self._satellites.get(key)
        if satellite is None:
            satellite = SatelliteOrbit(list(tle))
            if len(self._satellites) >= self.max_satellites:
                oldest = next(iter(self._satellites))
                del self._satellites[oldest]
                self._finders.pop(oldest, None)
            self._satellites[key] = satellite
        return satellite

    def _finder(self, tle: Tuple[str, ...]) -> PassFinder:
        key = (tle[-2], tle[-1])
        finder = self._finders.get(key)
        if finder is None:
            finder = PassFinder(self._satellite(tle), self.config)
            self._finders[key] = finder
        return finder

    def execute(self, request: TaskRequest) -> Any:
        """
        Run a request and return its result.

        Raises:
            TypeError: For an object that is not a task request
            ValueError: For invalid element sets or parameters
        """
        task_type = getattr(request, "task_type", None)
        handler = self._handlers.get(task_type) if isinstance(task_type, TaskType) else None
        if handler is None:
            raise TypeError(f"Unknown task request: {type(request).__name__}")
        return handler(request)

    def handle(self, message: TaskMessage) -> TaskResponse:
        """Run a message and convert any error into a failed response."""
        try:
            result = self.execute(message.request)
        except Exception as e:
            logger.error(f"Task {message.id} ({type(message.request).__name__}) failed: {e}")
            return TaskResponse(
                id=message.id,
                task_type=getattr(message.request, "task_type", None),
                success=False,
                error=f"{type(e).__name__}: {e}",
            )
        return TaskResponse(id=message.id, task_type=message.task_type, success=True, result=result)

    def _propagate_positions(self, request: PropagatePositionsRequest) -> List[Dict[str, Any]]:
        return self._satellite(request.tle).propagate_positions(request.timestamps)

    def _propagate_geodetic(self, request: PropagateGeodeticRequest) -> Optional[Dict[str, Any]]:
        geodetic = self._satellite(request.tle).position_geodetic(request.timestamp)
        if geodetic is None:
            return None
        return {"timestamp": request.timestamp, **geodetic.to_dict()}

    def _search_result(self, finder: PassFinder, passes: List[Any], collect_stats: bool) -> PassSearchResult:
        staleness = finder.satellite.check_staleness(
            aging_days=self.config.aging_epoch_days, stale_days=self.config.stale_epoch_days
        )
        warnings = [staleness.reason] if staleness.is_stale else []
        return PassSearchResult(
            passes=passes,
            staleness=staleness,
            stats=finder.last_stats if collect_stats else None,
            warnings=warnings,
        )

    def _compute_passes_elevation(self, request: ComputePassesElevationRequest) -> PassSearchResult:
        finder = self._finder(request.tle)
        passes = finder.compute_passes_elevation(
            request.ground_station,
            request.start,
            request.end,
            min_elevation=request.min_elevation,
            max_passes=request.max_passes,
        )
        return self._search_result(finder, passes, request.collect_stats)

    def _compute_passes_swath(self, request: ComputePassesSwathRequest) -> PassSearchResult:
        finder = self._finder(request.tle)
        passes = finder.compute_passes_swath(
            request.ground_station,
            request.swath_km,
            request.start,
            request.end,
            max_passes=request.max_passes,
        )
        return self._search_result(finder, passes, request.collect_stats)

    def _clear_cache(self, request: ClearCacheRequest) -> Dict[str, bool]:
        self._satellites.clear()
        self._finders.clear()
        return {"cleared": not self._satellites}
