"""
Satellite Pass Predictor

Pass prediction, eclipse analysis and brightness estimation for
Earth-orbiting satellites, with a multiprocess worker pool for batch work.
"""

from .brightness import BrightnessEstimator
from .config import PredictionConfig, load_config
from .eclipse import EclipseTransition, EclipseTransitionFinder, ShadowCache
from .geometry import GroundStation, LookAngleCalculator
from .orbit import SatelliteOrbit, Staleness, StalenessReport
from .parallel import ParallelPassCalculator, WorkerPool
from .passes import Pass, PassFinder, PassMode
from .result import ErrorKind, Result

__version__ = "0.1.0"
__author__ = "Pass Predictor Team"

__all__ = [
    "BrightnessEstimator",
    "EclipseTransition",
    "EclipseTransitionFinder",
    "ErrorKind",
    "GroundStation",
    "LookAngleCalculator",
    "ParallelPassCalculator",
    "Pass",
    "PassFinder",
    "PassMode",
    "PredictionConfig",
    "Result",
    "SatelliteOrbit",
    "ShadowCache",
    "Staleness",
    "StalenessReport",
    "WorkerPool",
    "load_config",
]
