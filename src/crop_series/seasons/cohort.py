"""Season windows and the cohort of parcels cultivated in each season.

Production is recorded against the harvest year, which for a season crossing
new year is the year after planting: the cohort of season ``Y`` is decided by
the ``Y + 1`` production column.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Tuple

from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from ..config.models import SeasonSpec
from ..errors import InputValidationError
from ..sources.base import ParcelStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeasonWindow:
    """Half-open acquisition window ``[start, end)`` of one season."""

    year: int
    harvest_year: int
    start: datetime
    end: datetime

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp < self.end

    @property
    def date_range(self) -> Tuple[datetime, datetime]:
        return self.start, self.end


@dataclass(frozen=True)
class SeasonCohort:
    """Parcels cultivated in one season and their merged geometry.

    ``crs`` is the CRS of ``geometry``; None means it already matches the
    image CRS.
    """

    window: SeasonWindow
    geometry: Optional[BaseGeometry]
    parcel_ids: Tuple[str, ...]
    crs: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.parcel_ids


def season_window(year: int, spec: SeasonSpec) -> SeasonWindow:
    start, end = spec.window(year)
    return SeasonWindow(year=year, harvest_year=spec.harvest_year(year), start=start, end=end)


def iter_seasons(start_year: int, end_year: int) -> Iterator[int]:
    """Season start years ``start_year .. end_year - 1``."""
    if start_year >= end_year:
        raise InputValidationError(
            f"start_year ({start_year}) must be before end_year ({end_year})"
        )
    return iter(range(start_year, end_year))


def resolve_cohort(
    store: ParcelStore,
    year: int,
    spec: SeasonSpec,
    min_production: float = 0.0,
) -> SeasonCohort:
    """Select the parcels cultivated in the season starting in ``year``.

    Args:
        store: Parcels of the holding.
        year: Season start year.
        spec: Season definition.
        min_production: Parcels need production strictly above this value.

    Returns:
        SeasonCohort; ``is_empty`` with ``geometry=None`` when nothing was grown.
    """
    window = season_window(year, spec)
    crs = getattr(store, "crs", None)
    active = [
        parcel
        for parcel in store.parcels()
        if parcel.is_cultivated(window.harvest_year, min_production)
    ]
    if not active:
        LOGGER.info("Season %d/%d: no cultivated parcels", year, window.harvest_year)
        return SeasonCohort(window=window, geometry=None, parcel_ids=(), crs=crs)

    geometry = unary_union([parcel.geometry for parcel in active])
    LOGGER.info(
        "Season %d/%d: %d cultivated parcel(s), window %s to %s",
        year,
        window.harvest_year,
        len(active),
        window.start.date(),
        window.end.date(),
    )
    return SeasonCohort(
        window=window,
        geometry=geometry,
        parcel_ids=tuple(parcel.parcel_id for parcel in active),
        crs=crs,
    )


__all__ = [
    "SeasonWindow",
    "SeasonCohort",
    "season_window",
    "iter_seasons",
    "resolve_cohort",
]
