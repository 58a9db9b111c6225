"""Agricultural seasons and parcel cohorts."""

from ..config.models import DEFAULT_SEASON, SeasonSpec
from .cohort import (
    SeasonCohort,
    SeasonWindow,
    iter_seasons,
    resolve_cohort,
    season_window,
)
from .parcels import (
    InMemoryParcelStore,
    Parcel,
    load_parcel_store,
    parcels_from_frame,
    year_columns,
)

__all__ = [
    "SeasonSpec",
    "DEFAULT_SEASON",
    "SeasonWindow",
    "SeasonCohort",
    "season_window",
    "iter_seasons",
    "resolve_cohort",
    "Parcel",
    "InMemoryParcelStore",
    "year_columns",
    "parcels_from_frame",
    "load_parcel_store",
]
