"""Band-algebra index formulas (CR, NDVI, NDRE, IRECI).

Each formula is a pure per-pixel transform from a few named bands of a
``RasterImage`` to one ``IndexBand``. Formulas refer to bands by *role*
(``red``, ``nir``, ``vh`` ...); ``DEFAULT_BAND_NAMES`` maps roles to the
Sentinel-1/Sentinel-2 band names and callers may override any role.

Supported formulas
------------------
| Name  | Expression                                   | Unit  |
|-------|----------------------------------------------|-------|
| CR    | 10*log10(10^(VH/10) / 10^(VV/10))            | dB    |
| NDVI  | (NIR - RED) / (NIR + RED)                    | ratio |
| NDRE  | (RE3 - RED) / (RE3 + RED)                    | ratio |
| IRECI | (RE3 - RED) / (RE1 / RE2)                    | ratio |

The cross ratio goes back to linear backscatter before dividing so results
stay comparable with studies that compute the ratio on sigma0 values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from affine import Affine

from .errors import InputValidationError
from .raster import RasterImage

LOGGER = logging.getLogger(__name__)

# Role -> band name for Sentinel-1 GRD and Sentinel-2 L2A products
DEFAULT_BAND_NAMES: Dict[str, str] = {
    "vv": "VV",
    "vh": "VH",
    "red": "B4",
    "rededge1": "B5",
    "rededge2": "B6",
    "rededge3": "B7",
    "nir": "B8",
}

# NDVI quality handling: clamp into a range or drop pixels outside a window
QUALITY_CLAMP_RANGE: Tuple[float, float] = (0.1, 0.8)
QUALITY_WINDOW: Tuple[float, float] = (0.1, 0.9)
QUALITY_MODES = ("clamp", "window")

UNIT_RATIO = "ratio"
UNIT_DB = "dB"


class IndexKind(str, Enum):
    CR = "CR"
    NDVI = "NDVI"
    NDRE = "NDRE"
    IRECI = "IRECI"


@dataclass(frozen=True)
class IndexFormula:
    """A named band-algebra formula.

    Attributes:
        name: Index name, also used as the output band name.
        roles: Band roles the formula reads, in argument order.
        unit: ``"ratio"`` or ``"dB"``.
        func: Callable receiving one array per role.
        optical: Whether inputs are optical bands that need cloud masking.
    """

    name: str
    roles: Tuple[str, ...]
    unit: str
    func: Callable[..., np.ndarray]
    optical: bool = True


@dataclass(frozen=True)
class IndexBand:
    """One derived band per pixel, tagged with formula name and unit."""

    name: str
    unit: str
    values: np.ndarray
    image_id: str
    timestamp: datetime
    transform: Affine = Affine.identity()
    crs: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=np.float64, copy=True)
        values.flags.writeable = False
        object.__setattr__(self, "values", values)

    @property
    def valid_pixels(self) -> int:
        return int(np.isfinite(self.values).sum())


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        result = numerator / denominator
    return np.where(np.isfinite(result), result, np.nan)


def normalized_difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """(a - b) / (a + b), NaN where the sum is zero."""
    return _safe_divide(a - b, a + b)


def cross_ratio_db(vh: np.ndarray, vv: np.ndarray) -> np.ndarray:
    # Both channels are scaled by the larger one so the linear values stay in (0, 1]
    ref = np.maximum(vh, vv)
    with np.errstate(invalid="ignore"):
        vh_linear = np.power(10.0, (vh - ref) / 10.0)
        vv_linear = np.power(10.0, (vv - ref) / 10.0)
    ratio = _safe_divide(vh_linear, vv_linear)
    with np.errstate(divide="ignore", invalid="ignore"):
        result = 10.0 * np.log10(ratio)
    return np.where(np.isfinite(result), result, np.nan)


def ireci(rededge3: np.ndarray, red: np.ndarray, rededge1: np.ndarray, rededge2: np.ndarray) -> np.ndarray:
    return _safe_divide(rededge3 - red, _safe_divide(rededge1, rededge2))


_FORMULAS: Dict[str, IndexFormula] = {}


def register_formula(formula: IndexFormula) -> None:
    """Register (or replace) a formula under ``formula.name``."""
    if formula.unit not in (UNIT_RATIO, UNIT_DB):
        raise InputValidationError(f"Unsupported unit '{formula.unit}' for {formula.name}")
    _FORMULAS[formula.name] = formula


register_formula(IndexFormula("CR", ("vh", "vv"), UNIT_DB, cross_ratio_db, optical=False))
register_formula(IndexFormula("NDVI", ("nir", "red"), UNIT_RATIO, normalized_difference))
register_formula(IndexFormula("NDRE", ("rededge3", "red"), UNIT_RATIO, normalized_difference))
register_formula(IndexFormula("IRECI", ("rededge3", "red", "rededge1", "rededge2"), UNIT_RATIO, ireci))


def get_formula(kind: Union[IndexKind, str]) -> IndexFormula:
    name = kind.value if isinstance(kind, IndexKind) else str(kind).upper()
    try:
        return _FORMULAS[name]
    except KeyError:
        raise InputValidationError(
            f"Unsupported index '{kind}'. Supported: {sorted(_FORMULAS)}"
        ) from None


def available_indices() -> Sequence[str]:
    return sorted(_FORMULAS)


def apply_quality(values: np.ndarray, quality: Optional[str]) -> np.ndarray:
    """Clamp to ``QUALITY_CLAMP_RANGE`` or blank values outside ``QUALITY_WINDOW``."""
    if quality is None:
        return values
    if quality == "clamp":
        low, high = QUALITY_CLAMP_RANGE
        return np.clip(values, low, high)
    if quality == "window":
        low, high = QUALITY_WINDOW
        keep = (values > low) & (values < high)
        return np.where(keep, values, np.nan)
    raise InputValidationError(f"Unknown quality mode '{quality}'. Use one of {QUALITY_MODES}")


def compute_index(
    image: RasterImage,
    kind: Union[IndexKind, str],
    mask: Optional[np.ndarray] = None,
    quality: Optional[str] = None,
    band_names: Optional[Mapping[str, str]] = None,
) -> IndexBand:
    """Evaluate an index formula over ``image``.

    Args:
        image: Source image holding the bands the formula needs.
        kind: Index to compute (``IndexKind`` or registered name).
        mask: Optional boolean inclusion mask; ``False`` pixels become NaN.
        quality: Optional quality handling, ``"clamp"`` or ``"window"``.
        band_names: Role -> band name overrides on top of ``DEFAULT_BAND_NAMES``.

    Returns:
        IndexBand carrying the image id, timestamp and grid of ``image``.

    Raises:
        InputValidationError: If the index is unknown or the mask grid differs.
        KeyError: If the image lacks a band the formula needs.
    """
    formula = get_formula(kind)
    names = dict(DEFAULT_BAND_NAMES)
    if band_names:
        names.update(band_names)

    arrays = [image.band(names.get(role, role)) for role in formula.roles]
    values = formula.func(*arrays)
    values = apply_quality(values, quality)

    if mask is not None:
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != values.shape:
            raise InputValidationError(
                f"Mask shape {mask.shape} does not match image grid {values.shape}"
            )
        values = np.where(mask, values, np.nan)

    return IndexBand(
        name=formula.name,
        unit=formula.unit,
        values=values,
        image_id=image.image_id,
        timestamp=image.timestamp,
        transform=image.transform,
        crs=image.crs,
        metadata=image.preserved_metadata(),
    )


__all__ = [
    "DEFAULT_BAND_NAMES",
    "QUALITY_CLAMP_RANGE",
    "QUALITY_WINDOW",
    "QUALITY_MODES",
    "UNIT_RATIO",
    "UNIT_DB",
    "IndexKind",
    "IndexFormula",
    "IndexBand",
    "normalized_difference",
    "cross_ratio_db",
    "ireci",
    "register_formula",
    "get_formula",
    "available_indices",
    "apply_quality",
    "compute_index",
]
