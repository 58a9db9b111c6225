"""Error taxonomy for crop_series runs.

Run-level errors (``InputValidationError``, ``BackendUnavailableError``) abort
a run. Per-image errors (``MissingCompanionError``, ``AggregationError``) drop
the affected image and the run carries on with its siblings.
"""

from __future__ import annotations

from typing import Optional


class CropSeriesError(Exception):
    """Base class for all crop_series errors."""


class InputValidationError(CropSeriesError, ValueError):
    """Raised when run inputs or configuration values are invalid."""


class MissingCompanionError(CropSeriesError):
    """Raised when an image has zero or several companion rasters."""

    def __init__(self, image_id: str, key: object, candidates: int) -> None:
        self.image_id = image_id
        self.key = key
        self.candidates = candidates
        if candidates == 0:
            detail = "no companion raster"
        else:
            detail = f"{candidates} ambiguous companion rasters"
        super().__init__(f"Image '{image_id}' has {detail} for key {key!r}")


class AggregationError(CropSeriesError):
    """Raised when a zonal reduction fails after exhausting its retries."""

    def __init__(self, message: str, image_id: Optional[str] = None) -> None:
        self.image_id = image_id
        super().__init__(message)


class BackendUnavailableError(CropSeriesError):
    """Raised when a raster, parcel or companion backend stays unreachable."""


class TransientBackendError(CropSeriesError):
    """Raised by source adapters for failures worth retrying."""


class EmptyCohortWarning(UserWarning):
    """Reported when no parcel is cultivated in a season."""

    def __init__(self, season_year: int, harvest_year: int) -> None:
        self.season_year = season_year
        self.harvest_year = harvest_year
        super().__init__(
            f"No cultivated parcels for season {season_year}/{harvest_year}"
        )


__all__ = [
    "CropSeriesError",
    "InputValidationError",
    "MissingCompanionError",
    "AggregationError",
    "BackendUnavailableError",
    "TransientBackendError",
    "EmptyCohortWarning",
]
