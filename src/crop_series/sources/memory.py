"""In-memory raster and companion sources."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from ..errors import MissingCompanionError
from ..geometry import reproject_geometry
from ..raster import CompanionRaster, RasterImage, key_value
from .base import DateRange, FilterPredicate, matches_filters

LOGGER = logging.getLogger(__name__)


def in_window(image: RasterImage, date_range: DateRange) -> bool:
    """True when ``start <= image.timestamp < end``."""
    start, end = date_range
    return start <= image.timestamp < end


def intersects(
    image: RasterImage,
    geometry: Optional[BaseGeometry],
    crs: Optional[str] = None,
) -> bool:
    """Footprint test with ``geometry`` moved from ``crs`` onto the image CRS."""
    if geometry is None or geometry.is_empty:
        return True
    return box(*image.bounds).intersects(reproject_geometry(geometry, crs, image.crs))


class InMemoryRasterSource:
    """RasterSource over a fixed collection of images."""

    def __init__(self, images: Iterable[RasterImage]) -> None:
        self._images: List[RasterImage] = sorted(images, key=lambda img: (img.timestamp, img.image_id))

    def __len__(self) -> int:
        return len(self._images)

    def query(
        self,
        geometry: Optional[BaseGeometry],
        date_range: DateRange,
        filters: Sequence[FilterPredicate] = (),
        crs: Optional[str] = None,
    ) -> List[RasterImage]:
        selected = [
            image
            for image in self._images
            if in_window(image, date_range)
            and intersects(image, geometry, crs)
            and matches_filters(image, filters)
        ]
        LOGGER.debug(
            "Selected %d/%d images in [%s, %s)",
            len(selected),
            len(self._images),
            date_range[0].date(),
            date_range[1].date(),
        )
        return selected


class CompanionCatalog:
    """CompanionSource indexing companion rasters by one key.

    Args:
        companions: Companion rasters to index.
        key: ``image_id``, ``timestamp`` or a metadata field of the companions.
    """

    def __init__(self, companions: Iterable[CompanionRaster], key: str = "image_id") -> None:
        self.key = key
        self._index: Dict[Any, List[CompanionRaster]] = defaultdict(list)
        for companion in companions:
            self._index[key_value(companion, key)].append(companion)

    def __len__(self) -> int:
        return sum(len(items) for items in self._index.values())

    def matches(self, key: Any) -> List[CompanionRaster]:
        return list(self._index.get(key, ()))

    def lookup(self, key: Any) -> Optional[CompanionRaster]:
        """Return the companion under ``key``.

        Raises:
            MissingCompanionError: If several companions share ``key``.
        """
        found = self.matches(key)
        if not found:
            return None
        if len(found) > 1:
            raise MissingCompanionError(str(key), key, len(found))
        return found[0]


__all__ = ["in_window", "intersects", "InMemoryRasterSource", "CompanionCatalog"]
