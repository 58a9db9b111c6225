"""Configuration dataclasses for crop_series runs.

These dataclasses hold every recognised run option with the defaults used
for barley monitoring on Sentinel data (season from 1 October to the end of
July, cloud probability threshold 65, shadow threshold 0.02). They can be
built directly, from CLI arguments, or from YAML files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union

from ..errors import InputValidationError
from ..indices import QUALITY_MODES, IndexKind, get_formula
from ..zonal import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    Statistic,
    parse_statistic,
)


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_CLOUD_PROB_THRESHOLD = 65.0
DEFAULT_SHADOW_PROB_THRESHOLD = 0.02
DEFAULT_NDVI_WATER_THRESHOLD = -0.1
DEFAULT_IR_DARK_THRESHOLD = 0.3

DEFAULT_ERODE_RADIUS = 1.5
DEFAULT_DILATE_RADIUS = 3.0
DEFAULT_MORPHOLOGY_ITERATIONS = 3
DEFAULT_NEIGHBORHOOD = 3

DEFAULT_CLOUD_HEIGHT_MIN = 200.0
DEFAULT_CLOUD_HEIGHT_MAX = 10000.0
DEFAULT_CLOUD_HEIGHT_STEP = 250.0

DEFAULT_IR_BANDS: Tuple[str, ...] = ("B8", "B11", "B12")
DEFAULT_NIR_BAND = "B8"
DEFAULT_RED_BAND = "B4"

DEFAULT_INDEX = IndexKind.NDVI
DEFAULT_NDVI_QUALITY = "clamp"
DEFAULT_MAX_WORKERS = 4
DEFAULT_MIN_PRODUCTION = 0.0
DEFAULT_COMPANION_KEY = "image_id"
DEFAULT_BACKEND_RETRIES = 3
DEFAULT_BACKEND_BACKOFF = 2.0


# =============================================================================
# Season Definition
# =============================================================================

@dataclass(frozen=True)
class SeasonSpec:
    """Agricultural season bounds applied to every season year.

    The window of season year ``Y`` is the half-open interval
    ``[date(Y, start_month, start_day), date(Y + end_year_offset, end_month, end_day))``.

    Attributes:
        start_month: Month the season starts (planting).
        start_day: Day of month the season starts.
        end_month: Month the season ends (harvest).
        end_day: Day of month the season ends.
        end_inclusive: Treat the end date as part of the season. The window
            end then moves one day later so it stays half-open.
        end_year_offset: Years between the start and end date, 1 for seasons
            crossing new year, 0 for seasons inside one calendar year.
    """

    start_month: int = 10
    start_day: int = 1
    end_month: int = 8
    end_day: int = 1
    end_inclusive: bool = False
    end_year_offset: int = 1

    def validate(self) -> None:
        """Validate the season definition.

        Raises:
            InputValidationError: If a bound is not a valid date or the window
                is empty or longer than one year.
        """
        for label, month, day in (
            ("start", self.start_month, self.start_day),
            ("end", self.end_month, self.end_day),
        ):
            try:
                date(2001, month, day)
            except (TypeError, ValueError):
                raise InputValidationError(
                    f"Season {label} {month}-{day} is not a valid date in every year"
                ) from None
        if self.end_year_offset not in (0, 1):
            raise InputValidationError(
                f"end_year_offset must be 0 or 1, got {self.end_year_offset}"
            )
        start, end = self.window(2001)
        if start >= end:
            raise InputValidationError(
                f"Season start {start:%m-%d} must be before season end {end:%m-%d}"
            )
        next_start, _ = self.window(2002)
        if end > next_start:
            raise InputValidationError("Season window is longer than one year")

    def window(self, year: int) -> Tuple[datetime, datetime]:
        """Half-open ``(start, end)`` bounds of the season starting in ``year``."""
        start = datetime(year, self.start_month, self.start_day)
        end = datetime(year + self.end_year_offset, self.end_month, self.end_day)
        if self.end_inclusive:
            end = end + timedelta(days=1)
        return start, end

    def harvest_year(self, year: int) -> int:
        """Year whose production column decides the cohort of season ``year``."""
        return year + self.end_year_offset


DEFAULT_SEASON = SeasonSpec()


# =============================================================================
# Component Configurations
# =============================================================================

@dataclass(frozen=True)
class CloudHeightRange:
    """Ascending cloud height hypotheses in metres, ``max`` included when on a step."""

    min: float = DEFAULT_CLOUD_HEIGHT_MIN
    max: float = DEFAULT_CLOUD_HEIGHT_MAX
    step: float = DEFAULT_CLOUD_HEIGHT_STEP

    def validate(self) -> None:
        if self.step <= 0:
            raise InputValidationError(f"cloud height step must be positive, got {self.step}")
        if self.min <= 0:
            raise InputValidationError(f"cloud height min must be positive, got {self.min}")
        if self.max < self.min:
            raise InputValidationError(
                f"cloud height max ({self.max}) must not be below min ({self.min})"
            )

    def heights(self) -> List[float]:
        self.validate()
        count = int((self.max - self.min) // self.step) + 1
        return [self.min + i * self.step for i in range(count)]


@dataclass
class CloudMaskConfig:
    """Thresholds and morphology for cloud and shadow masking.

    Attributes:
        cloud_prob_threshold: Cloud probability (0-100) above which a pixel is cloud.
        shadow_prob_threshold: Smoothed shadow score (0-1) above which a pixel is shadow.
        ndvi_water_threshold: Dark pixels with NDVI below this are water, not shadow.
        ir_dark_threshold: Sum of infrared reflectances below which a pixel is dark.
        erode_radius: Radius in pixels of the circular erosion footprint.
        dilate_radius: Radius in pixels of the circular dilation footprint.
        iterations: Repetitions of erosion and of dilation.
        neighborhood: Side of the square local-max window applied last.
        cloud_heights: Cloud height hypotheses for shadow projection.
        ir_bands: Bands summed for the dark-pixel test.
        nir_band: NIR band of the water NDVI test.
        red_band: Red band of the water NDVI test.
    """

    cloud_prob_threshold: float = DEFAULT_CLOUD_PROB_THRESHOLD
    shadow_prob_threshold: float = DEFAULT_SHADOW_PROB_THRESHOLD
    ndvi_water_threshold: float = DEFAULT_NDVI_WATER_THRESHOLD
    ir_dark_threshold: float = DEFAULT_IR_DARK_THRESHOLD
    erode_radius: float = DEFAULT_ERODE_RADIUS
    dilate_radius: float = DEFAULT_DILATE_RADIUS
    iterations: int = DEFAULT_MORPHOLOGY_ITERATIONS
    neighborhood: int = DEFAULT_NEIGHBORHOOD
    cloud_heights: CloudHeightRange = field(default_factory=CloudHeightRange)
    ir_bands: Tuple[str, ...] = DEFAULT_IR_BANDS
    nir_band: str = DEFAULT_NIR_BAND
    red_band: str = DEFAULT_RED_BAND

    def validate(self) -> None:
        if not 0 <= self.cloud_prob_threshold <= 100:
            raise InputValidationError(
                f"cloud_prob_threshold must be in [0, 100], got {self.cloud_prob_threshold}"
            )
        if not 0 <= self.shadow_prob_threshold <= 1:
            raise InputValidationError(
                f"shadow_prob_threshold must be in [0, 1], got {self.shadow_prob_threshold}"
            )
        if self.erode_radius < 0:
            raise InputValidationError(f"erode_radius must be non-negative, got {self.erode_radius}")
        if self.dilate_radius < 0:
            raise InputValidationError(f"dilate_radius must be non-negative, got {self.dilate_radius}")
        if self.iterations < 0:
            raise InputValidationError(f"iterations must be non-negative, got {self.iterations}")
        if self.neighborhood < 1:
            raise InputValidationError(f"neighborhood must be at least 1, got {self.neighborhood}")
        if not self.ir_bands:
            raise InputValidationError("ir_bands must name at least one band")
        self.cloud_heights.validate()


@dataclass
class AggregationConfig:
    """Zonal reduction settings.

    Attributes:
        statistic: Reduction over the clipped pixels (mean, median, sum, max, min, std).
        timeout_seconds: Upper bound per reduction attempt, None for no limit.
        retries: Extra attempts for transient failures.
        backoff_seconds: Linear backoff base between attempts.
    """

    statistic: Union[Statistic, str] = Statistic.MEAN
    timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS

    def validate(self) -> None:
        self.statistic = parse_statistic(self.statistic)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise InputValidationError(
                f"timeout_seconds must be positive, got {self.timeout_seconds}"
            )
        if self.retries < 0:
            raise InputValidationError(f"retries must be non-negative, got {self.retries}")
        if self.backoff_seconds < 0:
            raise InputValidationError(
                f"backoff_seconds must be non-negative, got {self.backoff_seconds}"
            )


# =============================================================================
# Run Configuration
# =============================================================================

@dataclass
class RunConfig:
    """Complete configuration of a time-series run.

    Attributes:
        start_year: First season start year.
        end_year: Last season end year; seasons run for start_year..end_year-1.
        index_kind: Index to compute (CR, NDVI, NDRE, IRECI).
        season: Season window definition.
        cloud_mask: Cloud and shadow masking settings (optical indices only).
        aggregation: Zonal reduction settings.
        ndvi_quality: NDVI quality handling: "clamp", "window" or None.
        band_names: Role -> band name overrides for the index formulas.
        companion_key: Primary image key matched against companions.
        min_production: Parcels with production above this are cultivated.
        max_workers: Size of the per-image worker pool.
        backend_retries: Extra attempts for transient backend failures.
        backend_backoff_seconds: Linear backoff base for backend retries.
    """

    start_year: int
    end_year: int
    index_kind: Union[IndexKind, str] = DEFAULT_INDEX
    season: SeasonSpec = DEFAULT_SEASON
    cloud_mask: CloudMaskConfig = field(default_factory=CloudMaskConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    ndvi_quality: Optional[str] = DEFAULT_NDVI_QUALITY
    band_names: Dict[str, str] = field(default_factory=dict)
    companion_key: str = DEFAULT_COMPANION_KEY
    min_production: float = DEFAULT_MIN_PRODUCTION
    max_workers: int = DEFAULT_MAX_WORKERS
    backend_retries: int = DEFAULT_BACKEND_RETRIES
    backend_backoff_seconds: float = DEFAULT_BACKEND_BACKOFF

    @property
    def year_range(self) -> Tuple[int, int]:
        return self.start_year, self.end_year

    @property
    def season_years(self) -> range:
        return range(self.start_year, self.end_year)

    def validate(self) -> None:
        """Validate the run configuration.

        Raises:
            InputValidationError: If any option is invalid.
        """
        if self.start_year >= self.end_year:
            raise InputValidationError(
                f"start_year ({self.start_year}) must be before end_year ({self.end_year})"
            )
        formula = get_formula(self.index_kind)
        if isinstance(self.index_kind, str) and formula.name in IndexKind.__members__:
            self.index_kind = IndexKind(formula.name)
        if self.ndvi_quality is not None and self.ndvi_quality not in QUALITY_MODES:
            raise InputValidationError(
                f"ndvi_quality must be one of {QUALITY_MODES} or None, got '{self.ndvi_quality}'"
            )
        if self.max_workers <= 0:
            raise InputValidationError(f"max_workers must be positive, got {self.max_workers}")
        if self.min_production < 0:
            raise InputValidationError(
                f"min_production must be non-negative, got {self.min_production}"
            )
        if self.backend_retries < 0:
            raise InputValidationError(
                f"backend_retries must be non-negative, got {self.backend_retries}"
            )
        self.season.validate()
        self.cloud_mask.validate()
        self.aggregation.validate()


__all__ = [
    "SeasonSpec",
    "CloudHeightRange",
    "CloudMaskConfig",
    "AggregationConfig",
    "RunConfig",
    "DEFAULT_SEASON",
    "DEFAULT_CLOUD_PROB_THRESHOLD",
    "DEFAULT_SHADOW_PROB_THRESHOLD",
    "DEFAULT_NDVI_WATER_THRESHOLD",
    "DEFAULT_IR_DARK_THRESHOLD",
    "DEFAULT_ERODE_RADIUS",
    "DEFAULT_DILATE_RADIUS",
    "DEFAULT_MORPHOLOGY_ITERATIONS",
    "DEFAULT_NEIGHBORHOOD",
    "DEFAULT_CLOUD_HEIGHT_MIN",
    "DEFAULT_CLOUD_HEIGHT_MAX",
    "DEFAULT_CLOUD_HEIGHT_STEP",
    "DEFAULT_IR_BANDS",
    "DEFAULT_NIR_BAND",
    "DEFAULT_RED_BAND",
    "DEFAULT_INDEX",
    "DEFAULT_NDVI_QUALITY",
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_MIN_PRODUCTION",
    "DEFAULT_COMPANION_KEY",
    "DEFAULT_BACKEND_RETRIES",
    "DEFAULT_BACKEND_BACKOFF",
]
