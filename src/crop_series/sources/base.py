"""Interfaces of the external collaborators a run reads from.

Raster, companion and parcel backends are typed as protocols so in-memory,
GeoTIFF or remote catalog adapters can be swapped freely. Image filters are
plain predicates over ``RasterImage`` metadata.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, Sequence, Tuple

from shapely.geometry.base import BaseGeometry

from ..raster import CompanionRaster, RasterImage

if TYPE_CHECKING:
    from ..seasons.parcels import Parcel

DateRange = Tuple[datetime, datetime]
FilterPredicate = Callable[[RasterImage], bool]


class RasterSource(Protocol):
    def query(
        self,
        geometry: Optional[BaseGeometry],
        date_range: DateRange,
        filters: Sequence[FilterPredicate] = (),
        crs: Optional[str] = None,
    ) -> Sequence[RasterImage]:
        """Images intersecting ``geometry`` acquired in ``[start, end)``, by time.

        ``crs`` is the coordinate system of ``geometry``; None means the
        geometry is already in the image CRS.
        """
        ...


class CompanionSource(Protocol):
    def lookup(self, key: Any) -> Optional[CompanionRaster]:
        """The single companion stored under ``key``, or None."""
        ...

    def matches(self, key: Any) -> Sequence[CompanionRaster]:
        """Every companion stored under ``key``."""
        ...


class ParcelStore(Protocol):
    crs: Optional[str]

    def parcels(self) -> Sequence["Parcel"]:
        ...


# =============================================================================
# Filter predicates
# =============================================================================

def metadata_equals(key: str, value: Any) -> FilterPredicate:
    """Keep images whose ``metadata[key] == value``."""

    def _predicate(image: RasterImage) -> bool:
        return image.metadata.get(key) == value

    _predicate.__name__ = f"{key}=={value!r}"
    return _predicate


def metadata_contains(key: str, value: Any) -> FilterPredicate:
    """Keep images whose ``metadata[key]`` is a collection containing ``value``."""

    def _predicate(image: RasterImage) -> bool:
        container = image.metadata.get(key)
        if container is None:
            return False
        return value in container

    _predicate.__name__ = f"{value!r} in {key}"
    return _predicate


def metadata_below(key: str, limit: float) -> FilterPredicate:
    """Keep images whose numeric ``metadata[key]`` is strictly below ``limit``."""

    def _predicate(image: RasterImage) -> bool:
        value = image.metadata.get(key)
        return value is not None and float(value) < limit

    _predicate.__name__ = f"{key}<{limit}"
    return _predicate


def matches_filters(image: RasterImage, filters: Sequence[FilterPredicate]) -> bool:
    return all(predicate(image) for predicate in filters)


# Dual polarisation, interferometric wide swath, high resolution, descending
# pass: the descending geometry has better incidence angles over the fields.
SENTINEL1_FILTERS: Tuple[FilterPredicate, ...] = (
    metadata_contains("polarisations", "VV"),
    metadata_contains("polarisations", "VH"),
    metadata_equals("instrument_mode", "IW"),
    metadata_equals("resolution_class", "H"),
    metadata_equals("orbit_pass", "DESCENDING"),
)

DEFAULT_MAX_CLOUD_COVER = 40.0


def sentinel2_filters(max_cloud_cover: float = DEFAULT_MAX_CLOUD_COVER) -> Tuple[FilterPredicate, ...]:
    """Scene-level cloud cover prefilter applied before per-pixel masking."""
    return (metadata_below("cloudy_pixel_percentage", max_cloud_cover),)


__all__ = [
    "DateRange",
    "FilterPredicate",
    "RasterSource",
    "CompanionSource",
    "ParcelStore",
    "metadata_equals",
    "metadata_contains",
    "metadata_below",
    "matches_filters",
    "SENTINEL1_FILTERS",
    "DEFAULT_MAX_CLOUD_COVER",
    "sentinel2_filters",
]
