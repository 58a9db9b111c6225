"""Shared test fixtures for crop_series tests."""

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

import geopandas as gpd
import numpy as np
import pytest
from affine import Affine
from rasterio.crs import CRS
from shapely.geometry import box

from crop_series.raster import CompanionRaster, RasterImage
from crop_series.seasons.parcels import InMemoryParcelStore, Parcel
from crop_series.sources.geotiff import write_raster_image


GRID_SHAPE = (20, 20)
GRID_TRANSFORM = Affine(10.0, 0.0, 500000.0, 0.0, -10.0, 4500000.0)  # 10m pixels
GRID_CRS = CRS.from_epsg(32616).to_string()  # UTM Zone 16N

# Constant reflectances of a healthy crop canopy; NDVI = 0.3 / 0.4 = 0.75
OPTICAL_BANDS: Dict[str, float] = {
    "B4": 0.05,
    "B5": 0.10,
    "B6": 0.20,
    "B7": 0.30,
    "B8": 0.35,
    "B11": 0.20,
    "B12": 0.10,
}


def parcel_box(col_min: int, row_min: int, col_max: int, row_max: int):
    """Polygon covering whole pixels ``[col_min, col_max) x [row_min, row_max)`` of the test grid."""
    x0, y0 = GRID_TRANSFORM * (col_min, row_max)
    x1, y1 = GRID_TRANSFORM * (col_max, row_min)
    return box(x0, y0, x1, y1)


@pytest.fixture
def optical_image_factory() -> Callable[..., RasterImage]:
    """Build Sentinel-2 style images on the 20x20 test grid.

    Band values default to ``OPTICAL_BANDS``; keyword overrides replace a band
    with a constant or a full array. Solar angles are set so shadow
    projection can run.
    """

    def _make(
        image_id: str,
        timestamp: datetime,
        metadata: Optional[dict] = None,
        **bands,
    ) -> RasterImage:
        values = {}
        for name, default in OPTICAL_BANDS.items():
            value = bands.get(name, default)
            values[name] = np.broadcast_to(np.asarray(value, dtype=np.float64), GRID_SHAPE)
        meta = {"solar_azimuth": 160.0, "solar_zenith": 40.0, "product_id": f"P_{image_id}"}
        meta.update(metadata or {})
        return RasterImage(
            image_id=image_id,
            timestamp=timestamp,
            bands=values,
            transform=GRID_TRANSFORM,
            crs=GRID_CRS,
            metadata=meta,
        )

    return _make


@pytest.fixture
def companion_factory() -> Callable[..., CompanionRaster]:
    """Build cloud probability companions, clear sky unless ``probability`` is given."""

    def _make(
        image_id: str,
        timestamp: datetime,
        probability=0.0,
        metadata: Optional[dict] = None,
    ) -> CompanionRaster:
        values = np.broadcast_to(np.asarray(probability, dtype=np.float64), GRID_SHAPE)
        return CompanionRaster(
            image_id=image_id,
            timestamp=timestamp,
            bands={"probability": values},
            transform=GRID_TRANSFORM,
            crs=GRID_CRS,
            metadata=metadata or {},
        )

    return _make


@pytest.fixture
def radar_image_factory() -> Callable[..., RasterImage]:
    """Build Sentinel-1 style images with VV/VH backscatter in dB."""

    def _make(image_id: str, timestamp: datetime, vv=-12.0, vh=-18.0, metadata=None) -> RasterImage:
        meta = {
            "polarisations": ("VV", "VH"),
            "instrument_mode": "IW",
            "resolution_class": "H",
            "orbit_pass": "DESCENDING",
        }
        meta.update(metadata or {})
        return RasterImage(
            image_id=image_id,
            timestamp=timestamp,
            bands={
                "VV": np.broadcast_to(np.asarray(vv, dtype=np.float64), GRID_SHAPE),
                "VH": np.broadcast_to(np.asarray(vh, dtype=np.float64), GRID_SHAPE),
            },
            transform=GRID_TRANSFORM,
            crs=GRID_CRS,
            metadata=meta,
        )

    return _make


@pytest.fixture
def scenario_a_parcels() -> InMemoryParcelStore:
    """Three parcels whose cultivation changes between harvest years.

    Season 2015 reads the 2016 column (only ``north`` grown); season 2016
    reads the 2017 column (``south`` and ``east`` grown, although ``east``
    had nothing in 2016).
    """
    return InMemoryParcelStore(
        [
            Parcel("north", parcel_box(2, 2, 8, 8), {2015: 0, 2016: 400, 2017: 0}),
            Parcel("south", parcel_box(2, 12, 8, 18), {2015: 0, 2016: 0, 2017: 250}),
            Parcel("east", parcel_box(12, 2, 18, 8), {2015: 400, 2016: 0, 2017: 250}),
        ]
    )


@pytest.fixture
def geotiff_inputs(tmp_path: Path, optical_image_factory, companion_factory) -> Dict[str, Path]:
    """Images, companions and a parcel GeoPackage on disk for CLI runs.

    Three clear images in season 2019 (one of them outside the window) and
    one parcel cultivated in harvest year 2020.
    """
    images_dir = tmp_path / "images"
    companions_dir = tmp_path / "cloud_probability"
    stamps = {
        "S2_20191015": datetime(2019, 10, 15, 10, 30),
        "S2_20200310": datetime(2020, 3, 10, 10, 30),
        "S2_20200801": datetime(2020, 8, 1, 10, 30),
    }
    for image_id, stamp in stamps.items():
        write_raster_image(optical_image_factory(image_id, stamp), images_dir / f"{image_id}.tif")
        write_raster_image(companion_factory(image_id, stamp), companions_dir / f"{image_id}.tif")

    parcels_path = tmp_path / "parcels.gpkg"
    gdf = gpd.GeoDataFrame(
        {
            "name": ["field_1"],
            "2019": [0.0],
            "2020": [320.0],
            "geometry": [parcel_box(4, 4, 12, 12)],
        },
        crs=GRID_CRS,
    )
    gdf.to_file(parcels_path, driver="GPKG")

    return {
        "images_dir": images_dir,
        "companions_dir": companions_dir,
        "parcels": parcels_path,
        "output": tmp_path / "out" / "series.csv",
    }
