"""Raster, companion and parcel sources."""

from .base import (
    DEFAULT_MAX_CLOUD_COVER,
    SENTINEL1_FILTERS,
    CompanionSource,
    DateRange,
    FilterPredicate,
    ParcelStore,
    RasterSource,
    matches_filters,
    metadata_below,
    metadata_contains,
    metadata_equals,
    sentinel2_filters,
)
from .geotiff import (
    SENTINEL_SCALE_FACTOR,
    GeoTiffCompanionSource,
    GeoTiffRasterSource,
    read_raster_image,
    write_raster_image,
)
from .memory import CompanionCatalog, InMemoryRasterSource

__all__ = [
    # Interfaces
    "DateRange",
    "FilterPredicate",
    "RasterSource",
    "CompanionSource",
    "ParcelStore",
    # Filters
    "metadata_equals",
    "metadata_contains",
    "metadata_below",
    "matches_filters",
    "SENTINEL1_FILTERS",
    "DEFAULT_MAX_CLOUD_COVER",
    "sentinel2_filters",
    # Adapters
    "InMemoryRasterSource",
    "CompanionCatalog",
    "SENTINEL_SCALE_FACTOR",
    "read_raster_image",
    "write_raster_image",
    "GeoTiffRasterSource",
    "GeoTiffCompanionSource",
]
