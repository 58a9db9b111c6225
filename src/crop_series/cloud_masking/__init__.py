"""Cloud and shadow masking for optical imagery."""

from .companion import JoinedImage, join_companion
from .compositor import (
    CloudShadowMask,
    build_inclusion_mask,
    circular_footprint,
    mask_image,
    smooth_shadow_score,
)
from .shadows import (
    candidate_shadows,
    dark_pixel_mask,
    project_shadows,
    shadow_displacement,
)

__all__ = [
    # Companion join
    "JoinedImage",
    "join_companion",
    # Shadow projection
    "shadow_displacement",
    "candidate_shadows",
    "dark_pixel_mask",
    "project_shadows",
    # Mask composition
    "CloudShadowMask",
    "circular_footprint",
    "smooth_shadow_score",
    "build_inclusion_mask",
    "mask_image",
]
