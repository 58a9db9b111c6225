"""Coordinate reference handling for parcel geometries.

Parcel layers and images often come in different CRSs (for example parcels
in EPSG:4326 next to UTM imagery). Geometries are moved onto the image CRS
before footprint tests and zonal reduction.
"""

from __future__ import annotations

from typing import Optional

import geopandas as gpd
from rasterio.crs import CRS
from rasterio.errors import CRSError
from shapely.geometry.base import BaseGeometry

from .errors import InputValidationError


def parse_crs(value: Optional[str]) -> Optional[CRS]:
    """Parse a CRS string (EPSG code, WKT, PROJ) or return None when unset."""
    if value is None:
        return None
    try:
        return CRS.from_user_input(value)
    except CRSError as exc:
        raise InputValidationError(f"Unrecognised CRS '{value}': {exc}") from exc


def same_crs(first: Optional[str], second: Optional[str]) -> bool:
    """True when either CRS is unknown or both describe the same system."""
    if first is None or second is None:
        return True
    if first == second:
        return True
    return parse_crs(first) == parse_crs(second)


def reproject_geometry(
    geometry: Optional[BaseGeometry],
    src_crs: Optional[str],
    dst_crs: Optional[str],
) -> Optional[BaseGeometry]:
    """Return ``geometry`` expressed in ``dst_crs``.

    The geometry is returned unchanged when it is empty or either CRS is
    unknown.

    Raises:
        InputValidationError: If a CRS string cannot be parsed.
    """
    if geometry is None or geometry.is_empty or same_crs(src_crs, dst_crs):
        return geometry
    series = gpd.GeoSeries([geometry], crs=parse_crs(src_crs).to_wkt())
    return series.to_crs(parse_crs(dst_crs).to_wkt()).iloc[0]


__all__ = ["parse_crs", "same_crs", "reproject_geometry"]
