"""Join each primary image to its cloud probability companion.

The join is an exact key match. Either a single companion matches, or the
image is rejected with ``MissingCompanionError``; an ambiguous match is never
resolved by picking one candidate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import MissingCompanionError
from ..raster import CompanionRaster, RasterImage, key_value
from ..sources.base import CompanionSource

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinedImage:
    """A primary image and the companion raster matched to it."""

    image: RasterImage
    companion: CompanionRaster

    @property
    def image_id(self) -> str:
        return self.image.image_id

    @property
    def cloud_probability(self):
        return self.companion.probability


def join_companion(
    image: RasterImage,
    source: CompanionSource,
    key: str = "image_id",
) -> JoinedImage:
    """Match ``image`` to exactly one companion raster.

    Args:
        image: Primary image.
        source: Companion source indexed by the same key scheme.
        key: ``image_id``, ``timestamp`` or a metadata field of ``image``
            (e.g. ``file_id`` for reprocessed products).

    Raises:
        MissingCompanionError: If zero or more than one companion matches.
    """
    value = key_value(image, key)
    candidates = source.matches(value)
    if len(candidates) != 1:
        raise MissingCompanionError(image.image_id, value, len(candidates))
    LOGGER.debug("Joined %s to companion on %s=%r", image.image_id, key, value)
    return JoinedImage(image=image, companion=candidates[0])


__all__ = ["JoinedImage", "join_companion"]
