"""
Tests for worker task handling.
"""

from datetime import datetime, timedelta
from typing import Tuple

import pytest

from pass_predictor.geometry import GroundStation
from pass_predictor.orbit import Staleness
from pass_predictor.passes import PassSearchResult
from pass_predictor.tasks import (
    ClearCacheRequest,
    ComputePassesElevationRequest,
    ComputePassesSwathRequest,
    PropagateGeodeticRequest,
    PropagatePositionsRequest,
    TaskHandler,
    TaskMessage,
    TaskResponse,
    TaskType,
)


@pytest.fixture
def handler() -> TaskHandler:
    return TaskHandler()


class TestTaskHandler:
    """Tests for TaskHandler."""

    def test_every_task_type_has_a_handler(self, handler: TaskHandler) -> None:
        assert set(handler._handlers) == set(TaskType)

    def test_propagate_positions(
        self, handler: TaskHandler, iss_tle_lines: Tuple[str, str, str], iss_epoch: datetime
    ) -> None:
        request = PropagatePositionsRequest(iss_tle_lines, (iss_epoch, iss_epoch + timedelta(minutes=1)))
        result = handler.execute(request)
        assert len(result) == 2
        assert "eci" in result[0]

    def test_propagate_geodetic(
        self, handler: TaskHandler, iss_tle_lines: Tuple[str, str, str], iss_epoch: datetime
    ) -> None:
        result = handler.execute(PropagateGeodeticRequest(iss_tle_lines, iss_epoch))
        assert result["timestamp"] == iss_epoch
        assert -90.0 <= result["latitude"] <= 90.0
        assert result["height"] > 300_000.0

    def test_compute_passes_elevation(
        self,
        handler: TaskHandler,
        iss_tle_lines: Tuple[str, str, str],
        munich_station: GroundStation,
        time_range: Tuple[datetime, datetime],
    ) -> None:
        request = ComputePassesElevationRequest(
            iss_tle_lines, munich_station, *time_range, min_elevation=10.0, collect_stats=True
        )
        result = handler.execute(request)
        assert isinstance(result, PassSearchResult)
        assert result.passes
        assert result.stats is not None
        # Element set from 2008 is far past its useful life
        assert result.staleness.status == Staleness.STALE
        assert result.warnings

    def test_compute_passes_swath(
        self,
        handler: TaskHandler,
        iss_tle_lines: Tuple[str, str, str],
        equator_station: GroundStation,
        time_range: Tuple[datetime, datetime],
    ) -> None:
        request = ComputePassesSwathRequest(iss_tle_lines, equator_station, 2000.0, *time_range)
        result = handler.execute(request)
        assert result.stats is None
        assert all(p.min_distance <= 1000.0 for p in result.passes)

    def test_satellite_cache(
        self, handler: TaskHandler, iss_tle_lines: Tuple[str, str, str], iss_epoch: datetime
    ) -> None:
        handler.execute(PropagateGeodeticRequest(iss_tle_lines, iss_epoch))
        handler.execute(PropagateGeodeticRequest(iss_tle_lines, iss_epoch + timedelta(minutes=1)))
        assert handler.cached_satellites == 1
        assert handler.execute(ClearCacheRequest()) == {"cleared": True}
        assert handler.cached_satellites == 0

    def test_satellite_cache_is_bounded(
        self, iss_tle_lines: Tuple[str, str, str], iss_epoch: datetime, munich_station: GroundStation
    ) -> None:
        name, line1, line2 = iss_tle_lines
        # Same orbit with different mean anomalies (columns 44-51)
        variants = [(name, line1, line2[:43] + f"{anomaly:8.4f}" + line2[51:]) for anomaly in (10.0, 20.0, 30.0)]
        handler = TaskHandler(max_satellites=2)
        end = iss_epoch + timedelta(hours=2)
        for tle in variants:
            handler.execute(ComputePassesElevationRequest(tle, munich_station, iss_epoch, end))
        assert handler.cached_satellites == 2
        assert len(handler._finders) == 2
        assert (variants[0][1], variants[0][2]) not in handler._satellites

    def test_invalid_cache_bound(self) -> None:
        with pytest.raises(ValueError, match="max_satellites"):
            TaskHandler(max_satellites=0)

    def test_unknown_request(self, handler: TaskHandler) -> None:
        with pytest.raises(TypeError, match="Unknown task request"):
            handler.execute("not a request")  # type: ignore[arg-type]


class TestHandleMessage:
    """Tests for message/response handling."""

    def test_success_response(
        self, handler: TaskHandler, iss_tle_lines: Tuple[str, str, str], iss_epoch: datetime
    ) -> None:
        response = handler.handle(TaskMessage(7, PropagateGeodeticRequest(iss_tle_lines, iss_epoch)))
        assert response.id == 7
        assert response.success
        assert response.task_type == TaskType.PROPAGATE_GEODETIC
        assert response.error is None

    def test_invalid_tle_fails(self, handler: TaskHandler, iss_epoch: datetime) -> None:
        bad = ("BROKEN", "1 garbage", "2 garbage")
        response = handler.handle(TaskMessage(3, PropagateGeodeticRequest(bad, iss_epoch)))
        assert response.id == 3
        assert not response.success
        assert response.error.startswith("ValueError:")

    def test_unknown_request_fails(self, handler: TaskHandler) -> None:
        response = handler.handle(TaskMessage(1, object()))  # type: ignore[arg-type]
        assert not response.success
        assert response.task_type is None
        assert response.error.startswith("TypeError:")

    def test_response_to_dict(self) -> None:
        ok = TaskResponse(1, TaskType.CLEAR_CACHE, True, result={"cleared": True})
        failed = TaskResponse(2, None, False, error="boom")
        assert ok.to_dict() == {"id": 1, "type": "CLEAR_CACHE", "success": True, "result": {"cleared": True}}
        assert failed.to_dict() == {"id": 2, "type": None, "success": False, "error": "boom"}
