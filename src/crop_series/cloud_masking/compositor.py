"""Combine cloud probability and shadow score into one inclusion mask.

The shadow score is smoothed before thresholding: a morphological opening
(erosion then dilation with circular footprints) removes speckle, and a
local maximum extends the remaining score onto adjacent pixels so shadow
edges are masked too.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from skimage.morphology import dilation, erosion

from ..config.models import CloudMaskConfig
from .companion import JoinedImage
from .shadows import project_shadows

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloudShadowMask:
    """Inclusion mask plus the intermediate layers it was built from."""

    mask: np.ndarray
    cloud: np.ndarray
    shadow: np.ndarray
    shadow_score: np.ndarray

    @property
    def retained_pixels(self) -> int:
        return int(self.mask.sum())


def circular_footprint(radius: float) -> np.ndarray:
    """Boolean disk of pixels whose centre lies within ``radius`` of the centre."""
    half = int(math.floor(radius))
    yy, xx = np.ogrid[-half:half + 1, -half:half + 1]
    return (xx * xx + yy * yy) <= radius * radius


def smooth_shadow_score(score: np.ndarray, config: CloudMaskConfig) -> np.ndarray:
    """Open the shadow score, then take the local maximum over a square window."""
    smoothed = np.nan_to_num(np.asarray(score, dtype=np.float64), nan=0.0)
    erode_fp = circular_footprint(config.erode_radius)
    dilate_fp = circular_footprint(config.dilate_radius)
    for _ in range(config.iterations):
        smoothed = erosion(smoothed, footprint=erode_fp)
    for _ in range(config.iterations):
        smoothed = dilation(smoothed, footprint=dilate_fp)
    window = np.ones((config.neighborhood, config.neighborhood), dtype=bool)
    return dilation(smoothed, footprint=window)


def build_inclusion_mask(
    cloud_probability: np.ndarray,
    shadow_score: np.ndarray,
    config: CloudMaskConfig,
) -> CloudShadowMask:
    """Threshold cloud probability and shadow score into a retained-pixel mask.

    ``True`` pixels are neither cloud (probability above
    ``cloud_prob_threshold``) nor shadow (score above ``shadow_prob_threshold``).
    """
    cloud_probability = np.asarray(cloud_probability, dtype=np.float64)
    shadow_score = np.asarray(shadow_score, dtype=np.float64)
    if cloud_probability.shape != shadow_score.shape:
        raise ValueError(
            f"Cloud grid {cloud_probability.shape} does not match shadow grid {shadow_score.shape}"
        )
    with np.errstate(invalid="ignore"):
        cloud = cloud_probability > config.cloud_prob_threshold
        shadow = shadow_score > config.shadow_prob_threshold
    return CloudShadowMask(
        mask=~cloud & ~shadow,
        cloud=cloud,
        shadow=shadow,
        shadow_score=shadow_score,
    )


def mask_image(joined: JoinedImage, config: CloudMaskConfig) -> CloudShadowMask:
    """Project, smooth and threshold the cloud and shadow layers of ``joined``."""
    raw_score = project_shadows(joined, config)
    score = smooth_shadow_score(raw_score, config)
    result = build_inclusion_mask(joined.cloud_probability, score, config)
    LOGGER.debug(
        "Mask for %s keeps %d/%d pixels (%d cloud, %d shadow)",
        joined.image_id,
        result.retained_pixels,
        result.mask.size,
        int(result.cloud.sum()),
        int(result.shadow.sum()),
    )
    return result


__all__ = [
    "CloudShadowMask",
    "circular_footprint",
    "smooth_shadow_score",
    "build_inclusion_mask",
    "mask_image",
]
