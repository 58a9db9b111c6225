"""Season-aware vegetation and radar index time series over cultivated parcels."""

from .config import RunConfig, SeasonSpec, load_run_config
from .errors import (
    AggregationError,
    BackendUnavailableError,
    CropSeriesError,
    EmptyCohortWarning,
    InputValidationError,
    MissingCompanionError,
    TransientBackendError,
)
from .indices import IndexKind, compute_index
from .raster import CompanionRaster, RasterImage
from .seasons import Parcel, resolve_cohort, season_window
from .timeseries import RunResult, SeriesRecord, TimeSeries, TimeSeriesBuilder

__all__ = [
    # Configuration
    "RunConfig",
    "SeasonSpec",
    "load_run_config",
    # Errors
    "CropSeriesError",
    "InputValidationError",
    "MissingCompanionError",
    "AggregationError",
    "BackendUnavailableError",
    "TransientBackendError",
    "EmptyCohortWarning",
    # Data
    "RasterImage",
    "CompanionRaster",
    "Parcel",
    "IndexKind",
    "compute_index",
    "season_window",
    "resolve_cohort",
    # Series
    "SeriesRecord",
    "TimeSeries",
    "RunResult",
    "TimeSeriesBuilder",
]
