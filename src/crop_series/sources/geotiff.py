"""GeoTIFF-backed raster and companion sources.

Each image is one GeoTIFF: band descriptions hold the band names and dataset
tags hold the acquisition timestamp and scalar metadata.

Expected tags
-------------
| Tag             | Meaning                                        |
|-----------------|------------------------------------------------|
| image_id        | Join key shared with the companion raster      |
| timestamp       | ISO 8601 acquisition time                      |
| solar_azimuth   | Mean solar azimuth in degrees                  |
| solar_zenith    | Mean solar zenith in degrees                   |
| polarisations   | Comma separated list, e.g. "VV,VH"             |

Numeric tags are converted to floats, comma separated tags to tuples.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from ..errors import TransientBackendError
from ..geometry import reproject_geometry
from ..raster import PROBABILITY_BAND, CompanionRaster, RasterImage, normalize_timestamp
from .base import DateRange, FilterPredicate, matches_filters
from .memory import CompanionCatalog

LOGGER = logging.getLogger(__name__)

# Sentinel-2 L2A products store reflectance * 10000
SENTINEL_SCALE_FACTOR = 1 / 10000

_RESERVED_TAGS = {"image_id", "timestamp", "AREA_OR_POINT"}


def _parse_tag(value: str) -> Any:
    if "," in value:
        return tuple(part.strip() for part in value.split(",") if part.strip())
    try:
        return float(value)
    except ValueError:
        return value


def _format_tag(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(part) for part in value)
    return str(value)


def _parse_timestamp(path: Path, tags: Mapping[str, str]) -> datetime:
    if "timestamp" not in tags:
        raise ValueError(f"Raster {path} has no 'timestamp' tag")
    try:
        return normalize_timestamp(datetime.fromisoformat(tags["timestamp"]))
    except ValueError as exc:
        raise ValueError(f"Raster {path} has an invalid 'timestamp' tag: {exc}") from None


def _read_header(path: Path) -> Dict[str, Any]:
    try:
        with rasterio.open(path) as src:
            tags = src.tags()
            bounds = tuple(src.bounds)
            crs = src.crs.to_string() if src.crs else None
    except RasterioIOError as exc:
        raise TransientBackendError(f"Cannot open raster {path}: {exc}") from exc
    return {
        "image_id": tags.get("image_id", path.stem),
        "timestamp": _parse_timestamp(path, tags),
        "bounds": bounds,
        "crs": crs,
    }


def read_raster_image(
    path: Union[str, Path],
    scale: Optional[float] = None,
    companion: bool = False,
) -> RasterImage:
    """Read one GeoTIFF into a RasterImage (or CompanionRaster).

    Args:
        path: GeoTIFF path.
        scale: Optional factor applied to every band (e.g. ``SENTINEL_SCALE_FACTOR``).
        companion: Build a CompanionRaster; a single unnamed band becomes
            the ``probability`` band.

    Raises:
        TransientBackendError: If the file cannot be opened.
        ValueError: If the file lacks a ``timestamp`` tag.
    """
    path = Path(path)
    try:
        with rasterio.open(path) as src:
            data = src.read().astype(np.float64)
            nodata = src.nodata
            descriptions = list(src.descriptions)
            tags = src.tags()
            transform = src.transform
            crs = src.crs.to_string() if src.crs else None
    except RasterioIOError as exc:
        raise TransientBackendError(f"Cannot read raster {path}: {exc}") from exc

    timestamp = _parse_timestamp(path, tags)
    if nodata is not None:
        data[data == nodata] = np.nan
    if scale is not None:
        data = data * scale

    names = [desc or f"band{idx}" for idx, desc in enumerate(descriptions, start=1)]
    if companion and PROBABILITY_BAND not in names and len(names) == 1:
        names = [PROBABILITY_BAND]

    metadata = {key: _parse_tag(value) for key, value in tags.items() if key not in _RESERVED_TAGS}
    cls = CompanionRaster if companion else RasterImage
    return cls(
        image_id=tags.get("image_id", path.stem),
        timestamp=timestamp,
        bands=dict(zip(names, data)),
        transform=transform,
        crs=crs,
        metadata=metadata,
    )


def write_raster_image(image: RasterImage, path: Union[str, Path]) -> Path:
    """Write ``image`` as a float32 GeoTIFF readable by ``read_raster_image``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    height, width = image.shape
    profile = {
        "driver": "GTiff",
        "dtype": "float32",
        "width": width,
        "height": height,
        "count": len(image.band_names),
        "transform": image.transform,
        "crs": image.crs,
        "nodata": np.nan,
        "compress": "deflate",
    }
    with rasterio.open(path, "w", **profile) as dst:
        for idx, name in enumerate(image.band_names, start=1):
            dst.write(image.band(name).astype(np.float32), idx)
            dst.set_band_description(idx, name)
        tags = {key: _format_tag(value) for key, value in image.metadata.items()}
        dst.update_tags(
            image_id=image.image_id,
            timestamp=image.timestamp.isoformat(),
            **tags,
        )
    return path


class GeoTiffRasterSource:
    """RasterSource over a directory of GeoTIFF images.

    Files that cannot be read or carry no usable ``timestamp`` tag are
    skipped with a warning and listed in ``skipped`` (path -> reason), so
    one bad file never aborts a query.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        pattern: str = "*.tif",
        scale: Optional[float] = None,
    ) -> None:
        self.directory = Path(directory)
        self.pattern = pattern
        self.scale = scale
        self.skipped: Dict[Path, str] = {}

    def _paths(self) -> List[Path]:
        if not self.directory.is_dir():
            raise TransientBackendError(f"Image directory not reachable: {self.directory}")
        return sorted(self.directory.glob(self.pattern))

    def _skip(self, path: Path, exc: Exception) -> None:
        if path not in self.skipped:
            LOGGER.warning("Skipping unusable raster %s: %s", path, exc)
        self.skipped[path] = str(exc)

    def query(
        self,
        geometry: Optional[BaseGeometry],
        date_range: DateRange,
        filters: Sequence[FilterPredicate] = (),
        crs: Optional[str] = None,
    ) -> List[RasterImage]:
        start, end = date_range
        images: List[RasterImage] = []
        for path in self._paths():
            try:
                header = _read_header(path)
            except (TransientBackendError, ValueError) as exc:
                self._skip(path, exc)
                continue
            if not start <= header["timestamp"] < end:
                continue
            if geometry is not None and not geometry.is_empty:
                footprint = reproject_geometry(geometry, crs, header["crs"])
                if not box(*header["bounds"]).intersects(footprint):
                    continue
            try:
                image = read_raster_image(path, scale=self.scale)
            except (TransientBackendError, ValueError) as exc:
                self._skip(path, exc)
                continue
            if matches_filters(image, filters):
                images.append(image)
        images.sort(key=lambda img: (img.timestamp, img.image_id))
        LOGGER.debug("Read %d image(s) from %s for [%s, %s)", len(images), self.directory, start, end)
        return images


class GeoTiffCompanionSource:
    """CompanionSource over a directory of cloud probability GeoTIFFs."""

    def __init__(
        self,
        directory: Union[str, Path],
        key: str = "image_id",
        pattern: str = "*.tif",
    ) -> None:
        self.directory = Path(directory)
        self.key = key
        self.pattern = pattern
        self._catalog: Optional[CompanionCatalog] = None
        self._lock = threading.Lock()

    def _load(self) -> CompanionCatalog:
        with self._lock:
            if self._catalog is None:
                if not self.directory.is_dir():
                    raise TransientBackendError(
                        f"Companion directory not reachable: {self.directory}"
                    )
                companions = []
                for path in sorted(self.directory.glob(self.pattern)):
                    try:
                        companions.append(read_raster_image(path, companion=True))
                    except (TransientBackendError, ValueError) as exc:
                        LOGGER.warning("Skipping unusable companion raster %s: %s", path, exc)
                LOGGER.info("Indexed %d companion raster(s) from %s", len(companions), self.directory)
                self._catalog = CompanionCatalog(companions, key=self.key)
            return self._catalog

    def matches(self, key: Any) -> List[CompanionRaster]:
        return self._load().matches(key)

    def lookup(self, key: Any) -> Optional[CompanionRaster]:
        return self._load().lookup(key)


__all__ = [
    "SENTINEL_SCALE_FACTOR",
    "read_raster_image",
    "write_raster_image",
    "GeoTiffRasterSource",
    "GeoTiffCompanionSource",
]
