"""Zonal reduction of an index band over a parcel geometry.

``zonal_statistic`` is the pure reduction: rasterise the geometry on the band
grid, keep finite pixels inside it and reduce them. ``ZonalAggregator`` wraps
it for pipeline use, treating each reduction as a blocking call with a
timeout, bounded retries and linear backoff.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Callable, Dict, Optional, Union

import numpy as np
from rasterio.features import geometry_mask
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from .errors import AggregationError, InputValidationError, TransientBackendError
from .indices import IndexBand

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 2.0
# Interval at which a running reduction checks the cancellation event
CANCEL_POLL_SECONDS = 0.1


class Statistic(str, Enum):
    MEAN = "mean"
    MEDIAN = "median"
    SUM = "sum"
    MAX = "max"
    MIN = "min"
    STD = "std"


_REDUCERS: Dict[Statistic, Callable[[np.ndarray], float]] = {
    Statistic.MEAN: np.mean,
    Statistic.MEDIAN: np.median,
    Statistic.SUM: np.sum,
    Statistic.MAX: np.max,
    Statistic.MIN: np.min,
    Statistic.STD: np.std,
}


def parse_statistic(value: Union[Statistic, str]) -> Statistic:
    if isinstance(value, Statistic):
        return value
    try:
        return Statistic(str(value).lower())
    except ValueError:
        raise InputValidationError(
            f"Unsupported statistic '{value}'. Supported: {[s.value for s in Statistic]}"
        ) from None


def geometry_pixels(band: IndexBand, geometry: BaseGeometry) -> np.ndarray:
    """Boolean array, True where the pixel centre falls inside ``geometry``."""
    if geometry is None or geometry.is_empty:
        return np.zeros(band.values.shape, dtype=bool)
    return geometry_mask(
        [mapping(geometry)],
        out_shape=band.values.shape,
        transform=band.transform,
        invert=True,
    )


def zonal_statistic(
    band: IndexBand,
    geometry: BaseGeometry,
    statistic: Union[Statistic, str] = Statistic.MEAN,
) -> Optional[float]:
    """Reduce the finite pixels of ``band`` inside ``geometry``.

    Returns:
        The statistic as a float, or None when no unmasked pixel lies inside
        the geometry.
    """
    statistic = parse_statistic(statistic)
    inside = geometry_pixels(band, geometry)
    selected = band.values[inside & np.isfinite(band.values)]
    if selected.size == 0:
        return None
    return float(_REDUCERS[statistic](selected))


class ZonalAggregator:
    """Timeout-bound, retrying zonal reduction.

    Args:
        statistic: Reduction applied to the clipped pixels.
        timeout_seconds: Upper bound for a single attempt. None disables it.
        retries: Extra attempts after the first one for transient failures.
        backoff_seconds: Wait before retry ``n`` is ``backoff_seconds * n``.
        reducer: Reduction callable, ``zonal_statistic`` by default. Remote
            backends plug in here.

    When a ``cancel_event`` is passed to ``aggregate`` the attempt is run on
    the worker pool and abandoned within ``CANCEL_POLL_SECONDS`` of the event
    being set; the reducer thread itself is not interrupted.
    """

    def __init__(
        self,
        statistic: Union[Statistic, str] = Statistic.MEAN,
        timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        retries: int = DEFAULT_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        reducer: Callable[[IndexBand, BaseGeometry, Statistic], Optional[float]] = zonal_statistic,
        max_workers: int = 4,
    ) -> None:
        if retries < 0:
            raise InputValidationError(f"retries must be non-negative, got {retries}")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise InputValidationError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self.statistic = parse_statistic(statistic)
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.reducer = reducer
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="zonal"
                )
            return self._executor

    def _attempt(
        self,
        band: IndexBand,
        geometry: BaseGeometry,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[float]:
        if self.timeout_seconds is None and cancel_event is None:
            return self.reducer(band, geometry, self.statistic)
        future = self._pool().submit(self.reducer, band, geometry, self.statistic)
        deadline = None if self.timeout_seconds is None else time.monotonic() + self.timeout_seconds
        while True:
            wait = CANCEL_POLL_SECONDS if cancel_event is not None else None
            if deadline is not None:
                remaining = max(deadline - time.monotonic(), 0.0)
                wait = remaining if wait is None else min(wait, remaining)
            try:
                return future.result(timeout=wait)
            except FutureTimeoutError:
                pass
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                raise AggregationError(
                    f"Zonal reduction for '{band.image_id}' cancelled",
                    image_id=band.image_id,
                )
            if deadline is not None and time.monotonic() >= deadline:
                future.cancel()
                raise TimeoutError(
                    f"Zonal reduction exceeded {self.timeout_seconds:.1f} s"
                ) from None

    def aggregate(
        self,
        band: IndexBand,
        geometry: BaseGeometry,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[float]:
        """Reduce ``band`` over ``geometry``, retrying transient failures.

        Raises:
            AggregationError: If every attempt failed or timed out, or the
                reducer raised a non-transient error.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._attempt(band, geometry, cancel_event)
            except (TransientBackendError, TimeoutError) as exc:
                if attempt > self.retries:
                    raise AggregationError(
                        f"Zonal reduction for '{band.image_id}' failed after "
                        f"{attempt} attempt(s): {exc}",
                        image_id=band.image_id,
                    ) from exc
                wait = self.backoff_seconds * attempt
                LOGGER.warning(
                    "Zonal reduction for %s failed (%s); retrying in %.1f s",
                    band.image_id,
                    exc,
                    wait,
                )
                if cancel_event is not None:
                    if cancel_event.wait(wait):
                        raise AggregationError(
                            f"Zonal reduction for '{band.image_id}' cancelled",
                            image_id=band.image_id,
                        ) from exc
                else:
                    time.sleep(wait)
            except AggregationError:
                raise
            except Exception as exc:
                raise AggregationError(
                    f"Zonal reduction for '{band.image_id}' failed: {exc}",
                    image_id=band.image_id,
                ) from exc

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def __enter__(self) -> "ZonalAggregator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_RETRIES",
    "DEFAULT_BACKOFF_SECONDS",
    "CANCEL_POLL_SECONDS",
    "Statistic",
    "parse_statistic",
    "geometry_pixels",
    "zonal_statistic",
    "ZonalAggregator",
]
