"""Cloud shadow probability from solar geometry.

Shadows are located by displacing the cloud probability raster along the
solar illumination direction (Schmitt et al., 2019, "Aggregating cloud-free
Sentinel-2 images with Google Earth Engine"). The true cloud height of each
pixel is unknown, so the raster is displaced for every height in a range of
hypotheses and the candidates are averaged: a uniform prior over heights.

Geometry
--------
``azR = (azimuth + 180) * pi / 180`` and ``zenR = zenith * pi / 180``. For a
cloud at height ``h`` the shadow is cast ``tan(zenR) * h`` metres away, and a
ground pixel ``p`` is shadowed when the cloud probability at
``p + (-sin(azR), -cos(azR)) * distance`` (east, north) is high, i.e. when a
cloud lies between the pixel and the sun.

The averaged score is only kept on dark pixels: low summed infrared
reflectance, not water (NDVI at or above the water threshold) and not cloud.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence, Tuple

import numpy as np
from scipy import ndimage

from ..config.models import CloudMaskConfig
from ..indices import normalized_difference
from ..raster import RasterImage
from .companion import JoinedImage

LOGGER = logging.getLogger(__name__)

# Companion probabilities are percentages
PROBABILITY_SCALE = 100.0


def shadow_displacement(azimuth: float, zenith: float, height: float) -> Tuple[float, float]:
    """Offset ``(x, y)`` in metres (east, north) from a pixel to the cloud shadowing it."""
    az_r = (azimuth + 180.0) * math.pi / 180.0
    zen_r = zenith * math.pi / 180.0
    distance = math.tan(zen_r) * height
    x = -math.sin(az_r) * distance
    y = -math.cos(az_r) * distance
    return x, y


def pixel_offsets(image: RasterImage, x: float, y: float) -> Tuple[float, float]:
    """Convert a map offset ``(x, y)`` into ``(rows, cols)`` on the image grid."""
    col_size = image.transform.a
    row_size = image.transform.e
    if "resolution" in image.metadata:
        resolution = float(image.metadata["resolution"])
        col_size = math.copysign(resolution, col_size or 1.0)
        row_size = math.copysign(resolution, row_size or -1.0)
    return y / row_size, x / col_size


def displace(values: np.ndarray, rows: float, cols: float) -> np.ndarray:
    """Sample ``values`` at ``(r + rows, c + cols)``; zero outside the grid."""
    return ndimage.shift(
        values,
        shift=(-rows, -cols),
        order=1,
        mode="constant",
        cval=0.0,
        prefilter=False,
    )


def dark_pixel_mask(
    image: RasterImage,
    cloud_probability: np.ndarray,
    config: CloudMaskConfig,
) -> np.ndarray:
    """Pixels dark enough to be shadow that are neither water nor cloud."""
    ir_sum = np.sum([image.band(name) for name in config.ir_bands], axis=0)
    with np.errstate(invalid="ignore"):
        dark = ir_sum < config.ir_dark_threshold
        ndvi = normalized_difference(image.band(config.nir_band), image.band(config.red_band))
        water = ndvi < config.ndvi_water_threshold
        cloud = cloud_probability > config.cloud_prob_threshold
    return dark & ~water & ~cloud


def candidate_shadows(
    image: RasterImage,
    cloud_probability: np.ndarray,
    heights: Sequence[float],
) -> np.ndarray:
    """Stack of displaced cloud probabilities, one per height, scaled to [0, 1]."""
    probability = np.nan_to_num(cloud_probability, nan=0.0) / PROBABILITY_SCALE
    azimuth = image.solar_azimuth
    zenith = image.solar_zenith
    candidates = []
    for height in heights:
        x, y = shadow_displacement(azimuth, zenith, height)
        rows, cols = pixel_offsets(image, x, y)
        candidates.append(displace(probability, rows, cols))
    return np.stack(candidates, axis=0)


def project_shadows(joined: JoinedImage, config: CloudMaskConfig) -> np.ndarray:
    """Shadow probability band in [0, 1] for a joined image.

    Args:
        joined: Image with solar angle metadata and its cloud companion.
        config: Thresholds, dark-pixel bands and cloud height range.

    Returns:
        2-D float array on the image grid.

    Raises:
        KeyError: If solar angles or a dark-pixel band are missing.
        ValueError: If companion and image grids differ.
    """
    image = joined.image
    cloud_probability = joined.cloud_probability
    if cloud_probability.shape != image.shape:
        raise ValueError(
            f"Companion grid {cloud_probability.shape} does not match image "
            f"'{image.image_id}' grid {image.shape}"
        )
    heights = config.cloud_heights.heights()
    shadow = candidate_shadows(image, cloud_probability, heights).mean(axis=0)
    dark = dark_pixel_mask(image, cloud_probability, config)
    LOGGER.debug(
        "Projected shadows for %s over %d heights (%d dark pixels)",
        image.image_id,
        len(heights),
        int(dark.sum()),
    )
    return shadow * dark


__all__ = [
    "PROBABILITY_SCALE",
    "shadow_displacement",
    "pixel_offsets",
    "displace",
    "dark_pixel_mask",
    "candidate_shadows",
    "project_shadows",
]
