"""Immutable raster values shared by every pipeline stage.

A ``RasterImage`` is a set of named 2-D bands on one grid plus the acquisition
timestamp and a small metadata mapping. Transforms never mutate an image:
they build a new one with ``with_bands`` or ``select`` and only the fields in
``PRESERVED_METADATA`` travel forward.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
from affine import Affine

# Metadata keys carried from a source image to every derived image.
PRESERVED_METADATA: Tuple[str, ...] = (
    "product_id",
    "file_id",
    "solar_azimuth",
    "solar_zenith",
    "resolution",
)

# Band name of the cloud probability raster, values in [0, 100]
PROBABILITY_BAND = "probability"


def normalize_timestamp(value: datetime) -> datetime:
    """Naive UTC datetime; timezone-aware values are converted to UTC first."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _freeze_band(values: Any) -> np.ndarray:
    array = np.array(values, dtype=np.float64, copy=True)
    if array.ndim != 2:
        raise ValueError(f"Bands must be 2-D arrays, got shape {array.shape}")
    array.flags.writeable = False
    return array


@dataclass(frozen=True)
class RasterImage:
    """Named bands on a single grid with acquisition time and metadata.

    Attributes:
        image_id: Identifier shared with the companion raster (e.g. product index).
        timestamp: Acquisition time, stored as naive UTC.
        bands: Mapping of band name to 2-D float array. Arrays are read-only.
        transform: Affine transform of the grid (pixel corner to map coords).
        crs: CRS string of the grid, if known.
        metadata: Scalar metadata (solar angles, product id, resolution, ...).
    """

    image_id: str
    timestamp: datetime
    bands: Mapping[str, np.ndarray]
    transform: Affine = Affine.identity()
    crs: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.bands:
            raise ValueError(f"Image '{self.image_id}' has no bands")
        frozen = {name: _freeze_band(values) for name, values in self.bands.items()}
        shapes = {array.shape for array in frozen.values()}
        if len(shapes) != 1:
            raise ValueError(
                f"Image '{self.image_id}' bands have mismatched shapes: {sorted(shapes)}"
            )
        object.__setattr__(self, "bands", MappingProxyType(frozen))
        object.__setattr__(self, "timestamp", normalize_timestamp(self.timestamp))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def band_names(self) -> Tuple[str, ...]:
        return tuple(self.bands)

    @property
    def shape(self) -> Tuple[int, int]:
        return next(iter(self.bands.values())).shape

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Grid extent as ``(minx, miny, maxx, maxy)`` in map units."""
        height, width = self.shape
        xs = (self.transform.c, self.transform.c + self.transform.a * width)
        ys = (self.transform.f, self.transform.f + self.transform.e * height)
        return min(xs), min(ys), max(xs), max(ys)

    @property
    def resolution(self) -> float:
        """Pixel size in map units, from metadata or the grid transform."""
        value = self.metadata.get("resolution")
        if value is not None:
            return float(value)
        return abs(self.transform.a)

    @property
    def solar_azimuth(self) -> float:
        return self._required_angle("solar_azimuth")

    @property
    def solar_zenith(self) -> float:
        return self._required_angle("solar_zenith")

    def _required_angle(self, key: str) -> float:
        if key not in self.metadata:
            raise KeyError(f"Image '{self.image_id}' is missing '{key}' metadata")
        return float(self.metadata[key])

    def band(self, name: str) -> np.ndarray:
        try:
            return self.bands[name]
        except KeyError:
            raise KeyError(
                f"Image '{self.image_id}' has no band '{name}' (bands: {list(self.bands)})"
            ) from None

    def preserved_metadata(self, extra: Iterable[str] = ()) -> dict:
        """Metadata subset that derived images inherit."""
        keys = tuple(PRESERVED_METADATA) + tuple(extra)
        return {key: self.metadata[key] for key in keys if key in self.metadata}

    def with_bands(
        self,
        bands: Mapping[str, np.ndarray],
        keep_existing: bool = True,
        extra_metadata: Iterable[str] = (),
    ) -> "RasterImage":
        """Return a new image with ``bands`` added (or replacing the old set)."""
        merged = dict(self.bands) if keep_existing else {}
        merged.update(bands)
        return RasterImage(
            image_id=self.image_id,
            timestamp=self.timestamp,
            bands=merged,
            transform=self.transform,
            crs=self.crs,
            metadata=self.preserved_metadata(extra_metadata),
        )

    def select(self, names: Sequence[str]) -> "RasterImage":
        return self.with_bands({name: self.band(name) for name in names}, keep_existing=False)


@dataclass(frozen=True)
class CompanionRaster(RasterImage):
    """Cloud probability raster associated to one primary image by key."""

    def __post_init__(self) -> None:
        super().__post_init__()
        if PROBABILITY_BAND not in self.bands:
            raise ValueError(
                f"Companion '{self.image_id}' must carry a '{PROBABILITY_BAND}' band"
            )

    @property
    def probability(self) -> np.ndarray:
        return self.bands[PROBABILITY_BAND]


def key_value(image: RasterImage, key: str) -> Any:
    """Return the value used to match ``image`` on ``key``.

    ``image_id`` and ``timestamp`` are attributes; any other key is looked up
    in the metadata mapping.
    """
    if key == "image_id":
        return image.image_id
    if key == "timestamp":
        return image.timestamp
    if key not in image.metadata:
        raise KeyError(f"Image '{image.image_id}' has no '{key}' metadata to join on")
    return image.metadata[key]


__all__ = [
    "PRESERVED_METADATA",
    "PROBABILITY_BAND",
    "RasterImage",
    "CompanionRaster",
    "normalize_timestamp",
    "key_value",
]
