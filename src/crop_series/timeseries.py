"""Multi-season index time series over the cultivated parcels of a holding.

For each season the builder resolves the cohort of cultivated parcels,
queries the raster source with the cohort geometry and the season window,
and processes the images in parallel: companion join and cloud/shadow
masking for optical indices, index computation, then zonal reduction over
the cohort geometry. One record is produced per image that keeps at least
one valid pixel inside the cohort.

Failures are split in two levels. Per-image problems (no unique companion,
failed reduction, unusable image) drop that image and are reported in
``RunResult.issues``. Backends that stay unreachable after the retry budget
raise ``BackendUnavailableError`` and abort the run with no partial series.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .cloud_masking import join_companion, mask_image
from .config.models import CloudMaskConfig, RunConfig
from .errors import (
    AggregationError,
    BackendUnavailableError,
    EmptyCohortWarning,
    InputValidationError,
    MissingCompanionError,
    TransientBackendError,
)
from .geometry import reproject_geometry
from .indices import IndexKind, compute_index, get_formula
from .raster import RasterImage
from .seasons.cohort import SeasonCohort, iter_seasons, resolve_cohort
from .seasons.parcels import InMemoryParcelStore
from .sources.base import CompanionSource, FilterPredicate, ParcelStore, RasterSource
from .zonal import ZonalAggregator

LOGGER = logging.getLogger(__name__)

# Issue reasons reported in RunResult.issues
REASON_EMPTY_COHORT = "empty_cohort"
REASON_MISSING_COMPANION = "missing_companion"
REASON_AGGREGATION = "aggregation"
REASON_INVALID_IMAGE = "invalid_image"
REASON_DUPLICATE = "duplicate_image"

_RETRYABLE = (TransientBackendError, ConnectionError, TimeoutError)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class SeriesRecord:
    """One aggregated index value, dated by its image acquisition time."""

    date: datetime
    value: float
    image_id: str

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return self.date, self.image_id


@dataclass(frozen=True)
class TimeSeries:
    """Records sorted ascending by ``(date, image_id)``."""

    records: Tuple[SeriesRecord, ...] = ()

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.records, key=lambda record: record.sort_key))
        object.__setattr__(self, "records", ordered)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[SeriesRecord]:
        return iter(self.records)

    def __getitem__(self, index: int) -> SeriesRecord:
        return self.records[index]

    @property
    def dates(self) -> List[datetime]:
        return [record.date for record in self.records]

    @property
    def values(self) -> List[float]:
        return [record.value for record in self.records]

    @property
    def image_ids(self) -> List[str]:
        return [record.image_id for record in self.records]

    def to_frame(self, include_image_ids: bool = False) -> pd.DataFrame:
        """``date, value`` DataFrame (plus ``image_id`` when requested)."""
        columns: Dict[str, Any] = {
            "date": pd.to_datetime(pd.Series(self.dates, dtype="object")),
            "value": pd.Series(self.values, dtype="float64"),
        }
        if include_image_ids:
            columns["image_id"] = pd.Series(self.image_ids, dtype="object")
        return pd.DataFrame(columns)

    def write_csv(self, path: Union[str, Path], include_image_ids: bool = False) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame(include_image_ids=include_image_ids).to_csv(
            path, index=False, date_format="%Y-%m-%dT%H:%M:%S"
        )
        LOGGER.info("Wrote %d record(s) to %s", len(self), path)
        return path


@dataclass(frozen=True)
class RunIssue:
    """A dropped image or skipped season, with the reason it was dropped."""

    season_year: int
    image_id: Optional[str]
    error: str
    reason: str


@dataclass(frozen=True)
class RunResult:
    """Series of a run plus what was left out of it."""

    series: TimeSeries
    issues: Tuple[RunIssue, ...] = ()
    no_data_images: int = 0
    cancelled: bool = False

    @property
    def dropped_images(self) -> int:
        return sum(1 for issue in self.issues if issue.image_id is not None)

    @property
    def skipped_seasons(self) -> int:
        return sum(1 for issue in self.issues if issue.reason == REASON_EMPTY_COHORT)

    def issues_for(self, reason: str) -> List[RunIssue]:
        return [issue for issue in self.issues if issue.reason == reason]


@dataclass(frozen=True)
class SeasonContext:
    """Read-only state shared by every per-image call of one season."""

    cohort: SeasonCohort
    index_kind: Union[IndexKind, str]
    optical: bool
    quality: Optional[str]
    band_names: Mapping[str, str]
    cloud_mask: CloudMaskConfig
    companion_key: str

    @property
    def season_year(self) -> int:
        return self.cohort.window.year


@dataclass
class _SeasonOutcome:
    records: List[SeriesRecord] = field(default_factory=list)
    issues: List[RunIssue] = field(default_factory=list)
    no_data: int = 0
    cancelled: bool = False


# =============================================================================
# Builder
# =============================================================================

class TimeSeriesBuilder:
    """Build a chronological index series across several seasons.

    Args:
        config: Run configuration, validated on construction.
        raster_source: Source of primary images.
        parcel_store: Parcels with their production per harvest year.
        companion_source: Cloud probability companions, required for
            optical indices and unused for CR.
        aggregator: Zonal reducer. Built from ``config.aggregation`` when None.
        filters: Metadata predicates passed to every raster query, e.g.
            ``SENTINEL1_FILTERS`` or ``sentinel2_filters()``.

    Raises:
        InputValidationError: If the configuration is invalid, or an optical
            index is requested without a companion source.
    """

    def __init__(
        self,
        config: RunConfig,
        raster_source: RasterSource,
        parcel_store: ParcelStore,
        companion_source: Optional[CompanionSource] = None,
        aggregator: Optional[ZonalAggregator] = None,
        filters: Sequence[FilterPredicate] = (),
    ) -> None:
        config.validate()
        self.config = config
        self.formula = get_formula(config.index_kind)
        if self.formula.optical and companion_source is None:
            raise InputValidationError(
                f"Index {self.formula.name} needs a cloud probability companion source"
            )
        self.raster_source = raster_source
        self.parcel_store = parcel_store
        self.companion_source = companion_source
        self.filters = tuple(filters)
        self._owns_aggregator = aggregator is None
        if aggregator is None:
            aggregator = ZonalAggregator(
                statistic=config.aggregation.statistic,
                timeout_seconds=config.aggregation.timeout_seconds,
                retries=config.aggregation.retries,
                backoff_seconds=config.aggregation.backoff_seconds,
                max_workers=config.max_workers,
            )
        self.aggregator = aggregator

    # -------------------------------------------------------------------------
    # Backend access
    # -------------------------------------------------------------------------

    def _call_backend(
        self,
        description: str,
        func: Callable[..., Any],
        *args: Any,
        cancel_event: Optional[threading.Event] = None,
        **kwargs: Any,
    ) -> Any:
        """Call a backend, retrying transient failures with linear backoff.

        Raises:
            BackendUnavailableError: If every attempt failed.
        """
        retries = self.config.backend_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except _RETRYABLE as exc:
                if attempt > retries:
                    raise BackendUnavailableError(
                        f"{description} unavailable after {attempt} attempt(s): {exc}"
                    ) from exc
                wait = self.config.backend_backoff_seconds * attempt
                LOGGER.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1f s",
                    description,
                    attempt,
                    retries + 1,
                    exc,
                    wait,
                )
                if cancel_event is not None:
                    cancel_event.wait(wait)
                else:
                    time.sleep(wait)

    # -------------------------------------------------------------------------
    # Per-image work
    # -------------------------------------------------------------------------

    def _process_image(
        self,
        image: RasterImage,
        context: SeasonContext,
        cancel_event: Optional[threading.Event],
    ) -> Optional[SeriesRecord]:
        """Aggregate one image over the cohort geometry, None when no data remains."""
        if cancel_event is not None and cancel_event.is_set():
            return None

        mask = None
        if context.optical:
            joined = self._call_backend(
                f"Companion lookup for {image.image_id}",
                join_companion,
                image,
                self.companion_source,
                key=context.companion_key,
                cancel_event=cancel_event,
            )
            mask = mask_image(joined, context.cloud_mask).mask

        band = compute_index(
            image,
            context.index_kind,
            mask=mask,
            quality=context.quality,
            band_names=context.band_names,
        )
        if band.valid_pixels == 0:
            LOGGER.debug("Image %s has no valid pixels after masking", image.image_id)
            return None

        cohort = context.cohort
        geometry = reproject_geometry(cohort.geometry, cohort.crs, image.crs)
        value = self.aggregator.aggregate(band, geometry, cancel_event=cancel_event)
        if value is None:
            LOGGER.debug("Image %s has no valid pixels inside the cohort", image.image_id)
            return None
        return SeriesRecord(date=image.timestamp, value=value, image_id=image.image_id)

    # -------------------------------------------------------------------------
    # Per-season work
    # -------------------------------------------------------------------------

    def _context(self, cohort: SeasonCohort) -> SeasonContext:
        quality = self.config.ndvi_quality if self.formula.name == IndexKind.NDVI.value else None
        return SeasonContext(
            cohort=cohort,
            index_kind=self.config.index_kind,
            optical=self.formula.optical,
            quality=quality,
            band_names=dict(self.config.band_names),
            cloud_mask=self.config.cloud_mask,
            companion_key=self.config.companion_key,
        )

    @staticmethod
    def _unique_images(
        images: Sequence[RasterImage], season_year: int
    ) -> Tuple[List[RasterImage], List[RunIssue]]:
        unique: Dict[str, RasterImage] = {}
        issues: List[RunIssue] = []
        for image in images:
            if image.image_id in unique:
                LOGGER.warning("Ignoring duplicate image id %s", image.image_id)
                issues.append(
                    RunIssue(season_year, image.image_id, "duplicate image id", REASON_DUPLICATE)
                )
                continue
            unique[image.image_id] = image
        return list(unique.values()), issues

    def _run_season(
        self,
        cohort: SeasonCohort,
        cancel_event: Optional[threading.Event],
    ) -> _SeasonOutcome:
        outcome = _SeasonOutcome()
        year = cohort.window.year

        images = self._call_backend(
            f"Raster query for season {year}",
            self.raster_source.query,
            cohort.geometry,
            cohort.window.date_range,
            self.filters,
            cancel_event=cancel_event,
            crs=cohort.crs,
        )
        images, duplicates = self._unique_images(images, year)
        outcome.issues.extend(duplicates)
        if not images:
            LOGGER.info("Season %d: no images in window", year)
            return outcome

        context = self._context(cohort)
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures: Dict[Future, RasterImage] = {
                executor.submit(self._process_image, image, context, cancel_event): image
                for image in images
            }
            try:
                for future in as_completed(futures):
                    if cancel_event is not None and cancel_event.is_set():
                        outcome.cancelled = True
                        break
                    image = futures[future]
                    try:
                        record = future.result()
                    except MissingCompanionError as exc:
                        LOGGER.warning("Dropping image %s: %s", image.image_id, exc)
                        outcome.issues.append(
                            RunIssue(year, image.image_id, str(exc), REASON_MISSING_COMPANION)
                        )
                        continue
                    except AggregationError as exc:
                        LOGGER.warning("Dropping image %s: %s", image.image_id, exc)
                        outcome.issues.append(
                            RunIssue(year, image.image_id, str(exc), REASON_AGGREGATION)
                        )
                        continue
                    except (KeyError, ValueError) as exc:
                        LOGGER.warning("Dropping unusable image %s: %s", image.image_id, exc)
                        outcome.issues.append(
                            RunIssue(year, image.image_id, str(exc), REASON_INVALID_IMAGE)
                        )
                        continue
                    if record is None:
                        outcome.no_data += 1
                    else:
                        outcome.records.append(record)
            finally:
                for future in futures:
                    future.cancel()

        LOGGER.info(
            "Season %d: %d image(s), %d record(s), %d dropped, %d without data",
            year,
            len(images),
            len(outcome.records),
            sum(1 for issue in outcome.issues if issue.reason != REASON_DUPLICATE),
            outcome.no_data,
        )
        return outcome

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def run(self, cancel_event: Optional[threading.Event] = None) -> RunResult:
        """Build the series for every season of the configured year range.

        Args:
            cancel_event: When set, pending images are abandoned and the
                records committed so far are returned with ``cancelled=True``.
                A reduction already running is abandoned within
                ``zonal.CANCEL_POLL_SECONDS``; backend retries stop at their
                next backoff wait.

        Raises:
            BackendUnavailableError: If a backend stays unreachable.
        """
        config = self.config
        LOGGER.info(
            "Building %s series for seasons %d..%d",
            self.formula.name,
            config.start_year,
            config.end_year - 1,
        )
        records: List[SeriesRecord] = []
        issues: List[RunIssue] = []
        no_data = 0
        cancelled = False

        try:
            parcels = self._call_backend(
                "Parcel store", self.parcel_store.parcels, cancel_event=cancel_event
            )
            store = InMemoryParcelStore(parcels, crs=getattr(self.parcel_store, "crs", None))

            for year in iter_seasons(config.start_year, config.end_year):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                cohort = resolve_cohort(store, year, config.season, config.min_production)
                if cohort.is_empty:
                    warning = EmptyCohortWarning(year, cohort.window.harvest_year)
                    LOGGER.warning("Skipping season %d: %s", year, warning)
                    issues.append(RunIssue(year, None, str(warning), REASON_EMPTY_COHORT))
                    continue

                outcome = self._run_season(cohort, cancel_event)
                records.extend(outcome.records)
                issues.extend(outcome.issues)
                no_data += outcome.no_data
                if outcome.cancelled:
                    cancelled = True
                    break
        finally:
            if self._owns_aggregator:
                self.aggregator.close()

        result = RunResult(
            series=TimeSeries(tuple(records)),
            issues=tuple(issues),
            no_data_images=no_data,
            cancelled=cancelled,
        )
        LOGGER.info(
            "Series has %d record(s); %d image(s) dropped, %d without data, %d season(s) skipped%s",
            len(result.series),
            result.dropped_images,
            result.no_data_images,
            result.skipped_seasons,
            " (cancelled)" if cancelled else "",
        )
        return result

    def build(self) -> TimeSeries:
        """Run every season and return only the series."""
        return self.run().series


__all__ = [
    "REASON_EMPTY_COHORT",
    "REASON_MISSING_COMPANION",
    "REASON_AGGREGATION",
    "REASON_INVALID_IMAGE",
    "REASON_DUPLICATE",
    "SeriesRecord",
    "TimeSeries",
    "RunIssue",
    "RunResult",
    "SeasonContext",
    "TimeSeriesBuilder",
]
