"""YAML configuration file loading for crop_series.

This module builds a ``RunConfig`` (plus the input paths a run needs) from a
YAML file, with validation and readable error messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .models import (
    AggregationConfig,
    CloudHeightRange,
    CloudMaskConfig,
    RunConfig,
    SeasonSpec,
)


class ConfigurationError(Exception):
    """Raised when configuration loading or parsing fails."""
    pass


@dataclass
class RunPaths:
    """Input and output locations of a run, resolved against the config file."""

    parcels_path: Optional[Path] = None
    images_dir: Optional[Path] = None
    companions_dir: Optional[Path] = None
    output_path: Optional[Path] = None


def _resolve_path(base_dir: Path, path_str: Optional[str]) -> Optional[Path]:
    """Resolve a path string relative to the config file's directory."""
    if path_str is None:
        return None
    path = Path(path_str)
    if path.is_absolute():
        return path
    return base_dir / path


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def _parse_season(data: Dict[str, Any]) -> SeasonSpec:
    season = _section(data, "season")
    return SeasonSpec(
        start_month=int(season.get("start_month", SeasonSpec.start_month)),
        start_day=int(season.get("start_day", SeasonSpec.start_day)),
        end_month=int(season.get("end_month", SeasonSpec.end_month)),
        end_day=int(season.get("end_day", SeasonSpec.end_day)),
        end_inclusive=bool(season.get("end_inclusive", SeasonSpec.end_inclusive)),
        end_year_offset=int(season.get("end_year_offset", SeasonSpec.end_year_offset)),
    )


def _parse_cloud_heights(data: Dict[str, Any]) -> CloudHeightRange:
    heights = _section(data, "cloud_height_range")
    return CloudHeightRange(
        min=float(heights.get("min", CloudHeightRange.min)),
        max=float(heights.get("max", CloudHeightRange.max)),
        step=float(heights.get("step", CloudHeightRange.step)),
    )


def _parse_cloud_mask(data: Dict[str, Any]) -> CloudMaskConfig:
    defaults = CloudMaskConfig()
    ir_bands = data.get("ir_bands", defaults.ir_bands)
    return CloudMaskConfig(
        cloud_prob_threshold=float(data.get("cloud_prob_threshold", defaults.cloud_prob_threshold)),
        shadow_prob_threshold=float(data.get("shadow_prob_threshold", defaults.shadow_prob_threshold)),
        ndvi_water_threshold=float(data.get("ndvi_water_threshold", defaults.ndvi_water_threshold)),
        ir_dark_threshold=float(data.get("ir_dark_threshold", defaults.ir_dark_threshold)),
        erode_radius=float(data.get("erode_radius", defaults.erode_radius)),
        dilate_radius=float(data.get("dilate_radius", defaults.dilate_radius)),
        iterations=int(data.get("morphology_iterations", defaults.iterations)),
        neighborhood=int(data.get("neighborhood", defaults.neighborhood)),
        cloud_heights=_parse_cloud_heights(data),
        ir_bands=tuple(ir_bands),
        nir_band=data.get("nir_band", defaults.nir_band),
        red_band=data.get("red_band", defaults.red_band),
    )


def _parse_aggregation(data: Dict[str, Any]) -> AggregationConfig:
    defaults = AggregationConfig()
    return AggregationConfig(
        statistic=data.get("aggregation_statistic", defaults.statistic),
        timeout_seconds=data.get("aggregation_timeout", defaults.timeout_seconds),
        retries=int(data.get("aggregation_retries", defaults.retries)),
        backoff_seconds=float(data.get("aggregation_backoff", defaults.backoff_seconds)),
    )


def _parse_year_range(data: Dict[str, Any]) -> tuple:
    if "year_range" not in data:
        raise ConfigurationError("Missing required field: year_range")
    years = data["year_range"]
    if not isinstance(years, (list, tuple)) or len(years) != 2:
        raise ConfigurationError(f"year_range must be a list of [start_year, end_year], got {years}")
    return int(years[0]), int(years[1])


def parse_run_config(data: Dict[str, Any], validate: bool = True) -> RunConfig:
    """Build a RunConfig from an already parsed mapping."""
    start_year, end_year = _parse_year_range(data)
    defaults = RunConfig(start_year=start_year, end_year=end_year)
    config = RunConfig(
        start_year=start_year,
        end_year=end_year,
        index_kind=data.get("index_kind", defaults.index_kind),
        season=_parse_season(data),
        cloud_mask=_parse_cloud_mask(data),
        aggregation=_parse_aggregation(data),
        ndvi_quality=data.get("ndvi_quality", defaults.ndvi_quality),
        band_names=dict(data.get("band_names") or {}),
        companion_key=data.get("companion_key", defaults.companion_key),
        min_production=float(data.get("min_production", defaults.min_production)),
        max_workers=int(data.get("max_workers", defaults.max_workers)),
        backend_retries=int(data.get("backend_retries", defaults.backend_retries)),
        backend_backoff_seconds=float(
            data.get("backend_backoff", defaults.backend_backoff_seconds)
        ),
    )
    if validate:
        config.validate()
    return config


def _read_mapping(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML: {e}")
    if data is None:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a YAML mapping (dict)")
    return data


def load_run_config(
    config_path: Union[str, Path],
    validate: bool = True,
) -> RunConfig:
    """Load a RunConfig from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.
        validate: Whether to validate the configuration (default: True).

    Returns:
        A RunConfig instance.

    Raises:
        ConfigurationError: If the file cannot be parsed or lacks year_range.
        FileNotFoundError: If config_path doesn't exist.
        InputValidationError: If validate=True and the configuration is invalid.

    Example YAML structure:
        ```yaml
        index_kind: NDVI
        year_range: [2015, 2020]
        season:
          start_month: 10
          start_day: 1
          end_month: 7
          end_day: 31
          end_inclusive: true

        # Cloud and shadow masking
        cloud_prob_threshold: 65
        shadow_prob_threshold: 0.02
        ndvi_water_threshold: -0.1
        ir_dark_threshold: 0.3
        erode_radius: 1.5
        dilate_radius: 3
        cloud_height_range: {min: 200, max: 10000, step: 250}

        aggregation_statistic: mean

        # Inputs and output
        parcels_path: ./parcels.gpkg
        images_dir: ./images
        companions_dir: ./cloud_probability
        output_path: ./series.csv
        ```
    """
    return parse_run_config(_read_mapping(Path(config_path)), validate=validate)


def load_run_paths(config_path: Union[str, Path]) -> RunPaths:
    """Read the input/output locations of a run from its YAML file."""
    config_path = Path(config_path)
    data = _read_mapping(config_path)
    base_dir = config_path.parent
    return RunPaths(
        parcels_path=_resolve_path(base_dir, data.get("parcels_path")),
        images_dir=_resolve_path(base_dir, data.get("images_dir")),
        companions_dir=_resolve_path(base_dir, data.get("companions_dir")),
        output_path=_resolve_path(base_dir, data.get("output_path")),
    )


__all__ = [
    "ConfigurationError",
    "RunPaths",
    "parse_run_config",
    "load_run_config",
    "load_run_paths",
]
