"""
Prediction settings.

Defaults match the behaviour described for the pass finder, eclipse
finder and worker pool. Settings can be overridden from a YAML file, and
are converted to a plain dict when they travel to worker processes.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PASS_PREDICTOR_CONFIG"
DEFAULT_CONFIG_PATH = Path("config") / "prediction.yaml"


@dataclass
class PredictionConfig:
    """Tunable parameters for pass prediction and task distribution."""

    # Query defaults
    min_elevation_deg: float = 5.0
    max_passes: int = 50
    search_days: float = 7.0

    # Pass finder stepping
    elevation_in_pass_step_s: float = 5.0
    swath_in_pass_step_s: float = 30.0
    post_pass_skip_fraction: float = 0.5  # of the orbital period
    geostationary_period_min: float = 600.0
    epoch_margin_s: float = 3600.0
    propagation_gap_step_s: float = 60.0

    # Eclipse analysis
    eclipse_bucket_s: float = 30.0
    eclipse_cache_size: int = 10000
    transition_precision_s: float = 5.0

    # Illumination
    darkness_sun_altitude_deg: float = -6.0

    # Element-set age advisory
    aging_epoch_days: float = 3.0
    stale_epoch_days: float = 14.0

    # Worker pool
    pool_size: Optional[int] = None
    task_timeout_s: float = 120.0

    # Brightness
    brightness_samples: int = 20

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not -90.0 <= self.min_elevation_deg <= 90.0:
            raise ValueError(
                f"min_elevation_deg must be between -90 and 90, got {self.min_elevation_deg}"
            )
        if self.max_passes < 1:
            raise ValueError(f"max_passes must be at least 1, got {self.max_passes}")
        for name in (
            "search_days",
            "elevation_in_pass_step_s",
            "swath_in_pass_step_s",
            "post_pass_skip_fraction",
            "geostationary_period_min",
            "propagation_gap_step_s",
            "eclipse_bucket_s",
            "transition_precision_s",
            "task_timeout_s",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.epoch_margin_s < 0:
            raise ValueError(f"epoch_margin_s cannot be negative, got {self.epoch_margin_s}")
        if self.eclipse_cache_size < 1:
            raise ValueError(f"eclipse_cache_size must be at least 1, got {self.eclipse_cache_size}")
        if self.aging_epoch_days > self.stale_epoch_days:
            raise ValueError(
                f"aging_epoch_days ({self.aging_epoch_days}) cannot exceed "
                f"stale_epoch_days ({self.stale_epoch_days})"
            )
        if self.pool_size is not None and self.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {self.pool_size}")
        if self.brightness_samples < 2:
            raise ValueError(f"brightness_samples must be at least 2, got {self.brightness_samples}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PredictionConfig":
        """Build a config from a dict, ignoring (and logging) unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})


def load_config(path: Optional[Union[str, Path]] = None) -> PredictionConfig:
    """
    Load prediction settings from YAML.

    The file is taken from ``path``, else the PASS_PREDICTOR_CONFIG
    environment variable, else ``config/prediction.yaml``. A missing file
    yields the defaults.

    Raises:
        FileNotFoundError: If an explicitly given path does not exist
        ValueError: If the file is not a valid YAML mapping or holds invalid values
    """
    explicit = path is not None
    config_path = Path(path) if path is not None else Path(os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH))

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        logger.info(f"No config file at {config_path}, using defaults")
        return PredictionConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    # Allow settings to be nested under a top-level "prediction" key
    if isinstance(data.get("prediction"), dict):
        data = data["prediction"]

    logger.info(f"Loaded prediction config from {config_path}")
    return PredictionConfig.from_dict(data)
