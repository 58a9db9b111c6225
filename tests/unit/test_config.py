"""Unit tests for configuration dataclasses and YAML loading."""

from pathlib import Path

import pytest

from crop_series.config import (
    AggregationConfig,
    CloudHeightRange,
    CloudMaskConfig,
    ConfigurationError,
    RunConfig,
    SeasonSpec,
    load_run_config,
    load_run_paths,
    parse_run_config,
)
from crop_series.errors import InputValidationError
from crop_series.indices import IndexKind
from crop_series.zonal import Statistic


class TestCloudHeightRange:
    """Tests for CloudHeightRange dataclass."""

    def test_default_heights(self):
        heights = CloudHeightRange().heights()
        assert heights[0] == 200.0
        assert heights[1] == 450.0
        assert heights[-1] <= 10000.0
        assert len(heights) == 40

    def test_max_included_on_step(self):
        assert CloudHeightRange(200, 1200, 250).heights() == [200.0, 450.0, 700.0, 950.0, 1200.0]

    def test_step_must_be_positive(self):
        with pytest.raises(InputValidationError, match="step must be positive"):
            CloudHeightRange(step=0).validate()

    def test_max_not_below_min(self):
        with pytest.raises(InputValidationError, match="must not be below min"):
            CloudHeightRange(min=500, max=100).validate()


class TestCloudMaskConfig:
    """Tests for CloudMaskConfig dataclass."""

    def test_default_values(self):
        config = CloudMaskConfig()
        assert config.cloud_prob_threshold == 65.0
        assert config.shadow_prob_threshold == 0.02
        assert config.ndvi_water_threshold == -0.1
        assert config.ir_dark_threshold == 0.3
        assert config.erode_radius == 1.5
        assert config.dilate_radius == 3.0
        assert config.iterations == 3
        assert config.ir_bands == ("B8", "B11", "B12")

    def test_validate_valid_config(self):
        CloudMaskConfig().validate()  # Should not raise

    def test_validate_cloud_threshold_range(self):
        with pytest.raises(InputValidationError, match="cloud_prob_threshold"):
            CloudMaskConfig(cloud_prob_threshold=120).validate()

    def test_validate_shadow_threshold_range(self):
        with pytest.raises(InputValidationError, match="shadow_prob_threshold"):
            CloudMaskConfig(shadow_prob_threshold=2.0).validate()

    def test_validate_radius_non_negative(self):
        with pytest.raises(InputValidationError, match="erode_radius"):
            CloudMaskConfig(erode_radius=-1).validate()

    def test_validate_neighborhood(self):
        with pytest.raises(InputValidationError, match="neighborhood"):
            CloudMaskConfig(neighborhood=0).validate()


class TestAggregationConfig:
    """Tests for AggregationConfig dataclass."""

    def test_statistic_normalised(self):
        config = AggregationConfig(statistic="Median")
        config.validate()
        assert config.statistic is Statistic.MEDIAN

    def test_unknown_statistic(self):
        with pytest.raises(InputValidationError, match="Unsupported statistic"):
            AggregationConfig(statistic="mode").validate()

    def test_timeout_positive(self):
        with pytest.raises(InputValidationError, match="timeout_seconds"):
            AggregationConfig(timeout_seconds=0).validate()


class TestRunConfig:
    """Tests for RunConfig dataclass."""

    def test_default_values(self):
        config = RunConfig(start_year=2015, end_year=2020)
        assert config.index_kind is IndexKind.NDVI
        assert config.season == SeasonSpec()
        assert config.ndvi_quality == "clamp"
        assert config.min_production == 0.0
        assert list(config.season_years) == [2015, 2016, 2017, 2018, 2019]

    def test_start_year_before_end_year(self):
        with pytest.raises(InputValidationError, match="must be before end_year"):
            RunConfig(start_year=2020, end_year=2020).validate()

    def test_input_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            RunConfig(start_year=2021, end_year=2020).validate()

    def test_index_kind_normalised(self):
        config = RunConfig(start_year=2015, end_year=2016, index_kind="ireci")
        config.validate()
        assert config.index_kind is IndexKind.IRECI

    def test_unknown_index(self):
        with pytest.raises(InputValidationError, match="Unsupported index"):
            RunConfig(start_year=2015, end_year=2016, index_kind="EVI").validate()

    def test_unknown_quality(self):
        with pytest.raises(InputValidationError, match="ndvi_quality"):
            RunConfig(start_year=2015, end_year=2016, ndvi_quality="trim").validate()

    def test_workers_positive(self):
        with pytest.raises(InputValidationError, match="max_workers"):
            RunConfig(start_year=2015, end_year=2016, max_workers=0).validate()

    def test_nested_configs_validated(self):
        config = RunConfig(start_year=2015, end_year=2016, season=SeasonSpec(start_month=13))
        with pytest.raises(InputValidationError, match="not a valid date"):
            config.validate()


class TestYamlRunConfig:
    """Tests for YAML RunConfig loading."""

    def test_load_valid_config(self, tmp_path: Path):
        """Test loading a complete run config YAML."""
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("""
index_kind: IRECI
year_range: [2015, 2020]
season:
  start_month: 10
  start_day: 1
  end_month: 7
  end_day: 31
  end_inclusive: true

cloud_prob_threshold: 50
shadow_prob_threshold: 0.05
ndvi_water_threshold: -0.2
ir_dark_threshold: 0.25
erode_radius: 1
dilate_radius: 2
cloud_height_range: {min: 500, max: 5000, step: 500}

aggregation_statistic: median
aggregation_timeout: 60
min_production: 1
max_workers: 2
""")

        config = load_run_config(config_yaml)

        assert config.index_kind is IndexKind.IRECI
        assert config.year_range == (2015, 2020)
        assert config.season == SeasonSpec(end_month=7, end_day=31, end_inclusive=True)
        assert config.cloud_mask.cloud_prob_threshold == 50.0
        assert config.cloud_mask.shadow_prob_threshold == 0.05
        assert config.cloud_mask.ndvi_water_threshold == -0.2
        assert config.cloud_mask.ir_dark_threshold == 0.25
        assert config.cloud_mask.erode_radius == 1.0
        assert config.cloud_mask.dilate_radius == 2.0
        assert config.cloud_mask.cloud_heights == CloudHeightRange(500, 5000, 500)
        assert config.aggregation.statistic is Statistic.MEDIAN
        assert config.aggregation.timeout_seconds == 60
        assert config.min_production == 1.0
        assert config.max_workers == 2

    def test_defaults_when_sections_missing(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("year_range: [2018, 2019]\n")
        config = load_run_config(config_yaml)
        assert config.season == SeasonSpec()
        assert config.cloud_mask == CloudMaskConfig()
        assert config.aggregation.statistic is Statistic.MEAN

    def test_missing_year_range(self, tmp_path: Path):
        """Test that missing year_range raises ConfigurationError."""
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("index_kind: NDVI\n")
        with pytest.raises(ConfigurationError, match="Missing required field: year_range"):
            load_run_config(config_yaml)

    def test_malformed_year_range(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("year_range: 2015\n")
        with pytest.raises(ConfigurationError, match="year_range must be a list"):
            load_run_config(config_yaml)

    def test_invalid_values_raise_validation_error(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("year_range: [2020, 2015]\n")
        with pytest.raises(InputValidationError, match="must be before end_year"):
            load_run_config(config_yaml)

    def test_validation_can_be_deferred(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("year_range: [2020, 2015]\n")
        config = load_run_config(config_yaml, validate=False)
        assert config.start_year == 2020

    def test_file_not_found(self, tmp_path: Path):
        """Test that non-existent config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            load_run_config(tmp_path / "nonexistent.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        """Test that invalid YAML raises ConfigurationError."""
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("""
index_kind: NDVI
  bad_indentation: true
""")
        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_run_config(config_yaml)

    def test_empty_file(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("")
        with pytest.raises(ConfigurationError, match="empty"):
            load_run_config(config_yaml)

    def test_non_mapping(self, tmp_path: Path):
        config_yaml = tmp_path / "run.yaml"
        config_yaml.write_text("- 2015\n- 2016\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_run_config(config_yaml)

    def test_season_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="'season' must be a mapping"):
            parse_run_config({"year_range": [2015, 2016], "season": "autumn"})


class TestYamlRunPaths:
    """Tests for input/output path resolution."""

    def test_relative_paths(self, tmp_path: Path):
        """Relative paths are resolved against the config file directory."""
        config_dir = tmp_path / "configs"
        config_dir.mkdir()
        config_yaml = config_dir / "run.yaml"
        config_yaml.write_text("""
year_range: [2015, 2016]
parcels_path: parcels.gpkg
images_dir: data/images
output_path: /tmp/series.csv
""")
        paths = load_run_paths(config_yaml)
        assert paths.parcels_path == config_dir / "parcels.gpkg"
        assert paths.images_dir == config_dir / "data" / "images"
        assert paths.companions_dir is None
        assert paths.output_path == Path("/tmp/series.csv")
