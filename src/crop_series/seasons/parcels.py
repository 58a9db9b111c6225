"""Parcels of an agricultural holding and their yearly production.

Production is stored as an explicit ``year -> quantity`` mapping. Parcel
layers usually keep one attribute column per harvest year (``"2016"``,
``"2017"`` ...); ``load_parcel_store`` converts those columns once, at load
time, so the rest of the code never looks up attributes by string year.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence, Tuple, Union

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from ..errors import InputValidationError

LOGGER = logging.getLogger(__name__)

_YEAR_COLUMN = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class Parcel:
    """A parcel geometry with production recorded per harvest year."""

    parcel_id: str
    geometry: BaseGeometry
    production_by_year: Mapping[int, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cleaned = {}
        for year, value in self.production_by_year.items():
            if isinstance(year, bool) or not isinstance(year, int):
                raise InputValidationError(
                    f"Parcel '{self.parcel_id}' production years must be integers, got {year!r}"
                )
            value = float(value)
            if math.isnan(value) or value < 0:
                raise InputValidationError(
                    f"Parcel '{self.parcel_id}' has invalid production {value} for {year}"
                )
            cleaned[year] = value
        object.__setattr__(self, "production_by_year", MappingProxyType(cleaned))

    def production(self, year: int) -> float:
        """Production recorded for harvest ``year``, 0 when not recorded."""
        return self.production_by_year.get(year, 0.0)

    def is_cultivated(self, harvest_year: int, min_production: float = 0.0) -> bool:
        return self.production(harvest_year) > min_production


class InMemoryParcelStore:
    """Read-only ParcelStore over a fixed sequence of parcels.

    ``crs`` is the coordinate system of the parcel geometries, None when
    they share the CRS of the imagery.
    """

    def __init__(self, parcels: Iterable[Parcel], crs: Optional[str] = None) -> None:
        self._parcels: Tuple[Parcel, ...] = tuple(parcels)
        self.crs = crs

    def __len__(self) -> int:
        return len(self._parcels)

    def parcels(self) -> Sequence[Parcel]:
        return self._parcels


def year_columns(columns: Iterable[object]) -> Mapping[object, int]:
    """Map the attribute columns named after a year to that integer year."""
    return {column: int(str(column)) for column in columns if _YEAR_COLUMN.match(str(column))}


def parcels_from_frame(
    frame: gpd.GeoDataFrame,
    id_column: Optional[str] = None,
) -> Tuple[Parcel, ...]:
    """Build parcels from a GeoDataFrame with one production column per year."""
    columns = year_columns(frame.columns)
    if not columns:
        raise InputValidationError("Parcel layer has no production columns named by year")

    parcels = []
    for position, (_, row) in enumerate(frame.iterrows()):
        geometry = row.geometry
        if geometry is None or geometry.is_empty:
            LOGGER.warning("Skipping parcel row %d without geometry", position)
            continue
        if not geometry.is_valid:
            geometry = geometry.buffer(0)
        production = {}
        for column, year in columns.items():
            value = row[column]
            production[year] = 0.0 if value is None or value != value else float(value)
        parcel_id = str(row[id_column]) if id_column else str(position)
        parcels.append(Parcel(parcel_id, geometry, production))
    return tuple(parcels)


def load_parcel_store(
    path: Union[str, Path],
    id_column: Optional[str] = None,
    layer: Optional[str] = None,
) -> InMemoryParcelStore:
    """Read a parcel layer (GeoPackage, Shapefile, GeoJSON) into a ParcelStore.

    Args:
        path: Vector file with one feature per parcel.
        id_column: Attribute holding the parcel id. Row position when None.
        layer: Layer name for multi-layer files.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        InputValidationError: If the layer is empty or has no year columns.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parcel file not found: {path}")
    frame = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    if frame.empty:
        raise InputValidationError(f"Parcel file '{path}' contains no features.")
    crs = frame.crs.to_string() if frame.crs is not None else None
    if crs is None:
        LOGGER.warning("Parcel file %s has no CRS; assuming the image CRS.", path)
    parcels = parcels_from_frame(frame, id_column=id_column)
    LOGGER.info("Loaded %d parcel(s) from %s (CRS %s)", len(parcels), path, crs)
    return InMemoryParcelStore(parcels, crs=crs)


__all__ = [
    "Parcel",
    "InMemoryParcelStore",
    "year_columns",
    "parcels_from_frame",
    "load_parcel_store",
]
