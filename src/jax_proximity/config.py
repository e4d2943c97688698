"""Validated settings for proximity queries and the offline builders.

Settings are pydantic models so that values loaded from YAML are checked on
construction. ``load_config`` merges a YAML file with keyword overrides.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ProximaSettings(BaseModel):
    """Runtime knobs shared by the Proxima caches."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Proxima1: position of the approximation between lower (0) and upper (1) bound
    interpolation: float = Field(default=0.5, ge=0.0, le=1.0)
    # Proxima1: pairs whose lower bound exceeds this are left out of the outputs
    cutoff_distance: float = Field(default=float("inf"), gt=0.0)
    # refresh any pair whose bound interval is wider than this
    max_bound_width: Optional[float] = Field(default=None, gt=0.0)
    # Proxima2: central difference step for the distance gradient
    gradient_step: float = Field(default=1e-4, gt=0.0)


class StatisticsSettings(BaseModel):
    """Sampling and skip rules for the distance statistics builder."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    num_samples: int = Field(default=1000, gt=0)
    seed: int = 0
    safety_margin: float = Field(default=0.05, ge=0.0)
    approach_fraction: float = Field(default=0.0, ge=0.0)
    always_colliding_tolerance: float = Field(default=1e-3, ge=0.0)
    skip_adjacent: bool = True


class ErrorModelSettings(BaseModel):
    """Dataset sizes and fit choice for Proxima2 error models."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    num_gradient_samples: int = Field(default=100, gt=0)
    num_samples_per_gradient: int = Field(default=100, gt=0)
    t_norm_max: float = Field(default=2.0, gt=0.0)
    delta_norm_max: float = Field(default=3.0, gt=0.0)
    polynomial: str = "cubic"
    lower_quantile: float = Field(default=0.01, gt=0.0, lt=1.0)
    upper_quantile: float = Field(default=0.99, gt=0.0, lt=1.0)
    seed: int = 0


class ProximityConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    proxima: ProximaSettings = ProximaSettings()
    statistics: StatisticsSettings = StatisticsSettings()
    error_models: ErrorModelSettings = ErrorModelSettings()


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ProximityConfig:
    """
    Load and validate a ProximityConfig.

    Args:
        path: Optional YAML file with ``proxima``, ``statistics`` and
            ``error_models`` sections.
        overrides: Optional nested dictionary applied on top of the file.

    Returns:
        Validated ProximityConfig

    Raises:
        pydantic.ValidationError: If a value is out of range or unknown.
    """
    values: Dict[str, Any] = {}
    if path is not None:
        with open(path, "r") as f:
            values = yaml.safe_load(f) or {}
        logger.info("Loaded proximity config from %s", path)
    return ProximityConfig(**_deep_merge(values, overrides or {}))
