"""Smoke tests for the crop-series command line entry point.

These run the whole pipeline on small GeoTIFFs written to a temporary
directory by the ``geotiff_inputs`` fixture.
"""

from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio

from crop_series.cli import build_run_config, main, parse_args
from crop_series.indices import IndexKind
from crop_series.zonal import Statistic


def _base_args(inputs, *extra):
    return [
        "--parcels", str(inputs["parcels"]),
        "--images-dir", str(inputs["images_dir"]),
        "--companions-dir", str(inputs["companions_dir"]),
        "--output", str(inputs["output"]),
        *extra,
    ]


class TestParser:
    """Argument validation for parse_args()."""

    def test_years_required_without_config(self):
        with pytest.raises(SystemExit):
            parse_args(["--parcels", "p.gpkg", "--images-dir", "imgs", "--output", "out.csv"])

    def test_paths_required_without_config(self):
        with pytest.raises(SystemExit):
            parse_args(["--start-year", "2019", "--end-year", "2020"])

    def test_unknown_index_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["--config", "run.yaml", "--index", "EVI"])

    def test_config_alone_is_enough(self):
        args = parse_args(["--config", "run.yaml"])
        assert args.config == Path("run.yaml")
        assert args.filters == "none"

    def test_overrides_applied(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("year_range: [2015, 2018]\nindex_kind: NDVI\n")
        args = parse_args(
            ["--config", str(config_yaml), "--index", "NDRE", "--end-year", "2017", "--statistic", "median"]
        )
        config = build_run_config(args)
        assert config.index_kind is IndexKind.NDRE
        assert config.year_range == (2015, 2017)
        assert config.aggregation.statistic is Statistic.MEDIAN


class TestMain:
    """End-to-end runs through main()."""

    def test_writes_series_csv(self, geotiff_inputs):
        """Two clear images inside season 2019 give two NDVI records."""
        code = main(_base_args(geotiff_inputs, "--start-year", "2019", "--end-year", "2020"))
        assert code == 0

        frame = pd.read_csv(geotiff_inputs["output"])
        assert list(frame.columns) == ["date", "value"]
        assert list(frame["date"]) == ["2019-10-15T10:30:00", "2020-03-10T10:30:00"]
        assert frame["value"].tolist() == pytest.approx([0.75, 0.75], rel=1e-5)

    def test_yaml_config_run(self, geotiff_inputs, tmp_path: Path):
        """Paths and settings can all come from a YAML file."""
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text(
            f"""
year_range: [2019, 2021]
index_kind: NDVI
aggregation_statistic: median
max_workers: 2
parcels_path: {geotiff_inputs["parcels"]}
images_dir: {geotiff_inputs["images_dir"]}
companions_dir: {geotiff_inputs["companions_dir"]}
output_path: {geotiff_inputs["output"]}
"""
        )
        assert main(["--config", str(config_yaml)]) == 0
        frame = pd.read_csv(geotiff_inputs["output"])
        # Season 2020 has no cultivated parcels and is skipped
        assert len(frame) == 2

    def test_empty_series_still_written(self, geotiff_inputs):
        code = main(_base_args(geotiff_inputs, "--start-year", "2020", "--end-year", "2021"))
        assert code == 0
        frame = pd.read_csv(geotiff_inputs["output"])
        assert list(frame.columns) == ["date", "value"]
        assert frame.empty

    def test_invalid_year_range_returns_error(self, geotiff_inputs):
        code = main(_base_args(geotiff_inputs, "--start-year", "2020", "--end-year", "2019"))
        assert code == 1
        assert not geotiff_inputs["output"].exists()

    def test_optical_index_without_companions_returns_error(self, geotiff_inputs):
        args = [
            "--parcels", str(geotiff_inputs["parcels"]),
            "--images-dir", str(geotiff_inputs["images_dir"]),
            "--output", str(geotiff_inputs["output"]),
            "--start-year", "2019",
            "--end-year", "2020",
        ]
        assert main(args) == 1

    def test_missing_parcels_returns_error(self, geotiff_inputs, tmp_path: Path):
        args = _base_args(geotiff_inputs, "--start-year", "2019", "--end-year", "2020")
        args[1] = str(tmp_path / "missing.gpkg")
        assert main(args) == 1

    def test_unreachable_images_returns_backend_error(self, geotiff_inputs, tmp_path: Path):
        """An images directory that never appears aborts with exit code 2."""
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("year_range: [2019, 2020]\nbackend_retries: 1\nbackend_backoff: 0\n")
        args = _base_args(geotiff_inputs, "--config", str(config_yaml))
        args[3] = str(tmp_path / "offline")
        assert main(args) == 2
        assert not geotiff_inputs["output"].exists()

    def test_lonlat_parcels_against_utm_images(self, geotiff_inputs, tmp_path: Path):
        """A parcel layer in EPSG:4326 is matched against UTM images."""
        lonlat_path = tmp_path / "parcels_4326.gpkg"
        gpd.read_file(geotiff_inputs["parcels"]).to_crs("EPSG:4326").to_file(lonlat_path, driver="GPKG")
        args = _base_args(geotiff_inputs, "--start-year", "2019", "--end-year", "2020")
        args[1] = str(lonlat_path)

        assert main(args) == 0
        frame = pd.read_csv(geotiff_inputs["output"])
        assert len(frame) == 2
        assert frame["value"].tolist() == pytest.approx([0.75, 0.75], rel=1e-5)

    def test_untagged_image_is_skipped(self, geotiff_inputs):
        """A stray GeoTIFF without a timestamp does not abort the run."""
        with rasterio.open(
            geotiff_inputs["images_dir"] / "stray.tif",
            "w",
            driver="GTiff",
            width=2,
            height=2,
            count=1,
            dtype="float32",
        ) as dst:
            dst.write(np.zeros((1, 2, 2), dtype=np.float32))

        assert main(_base_args(geotiff_inputs, "--start-year", "2019", "--end-year", "2020")) == 0
        frame = pd.read_csv(geotiff_inputs["output"])
        assert list(frame["date"]) == ["2019-10-15T10:30:00", "2020-03-10T10:30:00"]
