"""Configuration management for crop_series.

This module provides dataclass-based configuration objects for time-series
runs, with support for validation and YAML-based configuration files.
"""

from .models import (
    DEFAULT_SEASON,
    AggregationConfig,
    CloudHeightRange,
    CloudMaskConfig,
    RunConfig,
    SeasonSpec,
)
from .yaml_loader import (
    ConfigurationError,
    RunPaths,
    load_run_config,
    load_run_paths,
    parse_run_config,
)

__all__ = [
    # Dataclasses
    "SeasonSpec",
    "DEFAULT_SEASON",
    "CloudHeightRange",
    "CloudMaskConfig",
    "AggregationConfig",
    "RunConfig",
    "RunPaths",
    # YAML loading
    "ConfigurationError",
    "parse_run_config",
    "load_run_config",
    "load_run_paths",
]
