"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Custom markers for test categorization
- Shared fixtures for common test setup
"""

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, List, Tuple

import pytest
from _pytest.config import Config
from _pytest.python import Function

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


# =============================================================================
# COLLECTION HOOKS
# =============================================================================


def pytest_collection_modifyitems(config: Config, items: List[Function]) -> None:
    """Auto-mark tests under tests/integration."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks integration tests")


# =============================================================================
# FIXTURES - Common test setup
# =============================================================================


@pytest.fixture
def iss_tle_lines() -> Tuple[str, str, str]:
    """ISS element set with epoch 2008-09-20 12:25:40 UTC."""
    return (
        "ISS (ZARYA)",
        "1 25544U 98067A   08264.51782528 -.00002182  00000-0 -11606-4 0  2927",
        "2 25544  51.6416 247.4627 0006703 130.5360 325.0288 15.72125391563537",
    )


@pytest.fixture
def iss_epoch() -> datetime:
    """Epoch of the ISS element set (to the second)."""
    return datetime(2008, 9, 20, 12, 25, 40)


@pytest.fixture
def iss(iss_tle_lines: Tuple[str, str, str]) -> Any:
    """SatelliteOrbit for the ISS."""
    from pass_predictor.orbit import SatelliteOrbit

    return SatelliteOrbit(list(iss_tle_lines))


@pytest.fixture
def tle_file(iss_tle_lines: Tuple[str, str, str], tmp_path: Path) -> Path:
    """TLE file holding the ISS and one other object."""
    path = tmp_path / "stations.tle"
    path.write_text(
        "\n".join(iss_tle_lines)
        + "\nNOAA 19\n"
        + "1 33591U 09005A   08264.51782528  .00000064  00000-0  59383-4 0  9990\n"
        + "2 33591  99.1929 231.8562 0013877 219.2385 140.7754 14.12190102 12347\n"
    )
    return path


@pytest.fixture
def equator_station() -> Any:
    """Ground station at the equator and prime meridian."""
    from pass_predictor.geometry import GroundStation

    return GroundStation(latitude=0.0, longitude=0.0, height=0.0, name="Null Island")


@pytest.fixture
def munich_station() -> Any:
    """Mid-latitude ground station."""
    from pass_predictor.geometry import GroundStation

    return GroundStation(latitude=48.1351, longitude=11.5820, height=520.0, name="Munich")


@pytest.fixture
def base_datetime(iss_epoch: datetime) -> datetime:
    """Start of the standard search window: one hour after the ISS epoch."""
    return iss_epoch + timedelta(hours=1)


@pytest.fixture
def time_range(base_datetime: datetime) -> Tuple[datetime, datetime]:
    """Standard 24-hour time range for tests."""
    return base_datetime, base_datetime + timedelta(hours=24)


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Undo handler and level changes made by setup_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def prediction_config() -> Any:
    """Default prediction configuration."""
    from pass_predictor.config import PredictionConfig

    return PredictionConfig()
