"""Unit tests for series records and run results."""

from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest

from crop_series.timeseries import (
    REASON_AGGREGATION,
    REASON_EMPTY_COHORT,
    RunIssue,
    RunResult,
    SeriesRecord,
    TimeSeries,
)


@pytest.fixture
def series() -> TimeSeries:
    return TimeSeries(
        (
            SeriesRecord(datetime(2016, 3, 15, 10, 40), 0.61, "S2_B"),
            SeriesRecord(datetime(2015, 11, 3, 10, 40), 0.42, "S2_A"),
            SeriesRecord(datetime(2016, 3, 15, 10, 40), 0.58, "S2_AB"),
        )
    )


class TestTimeSeries:
    """Tests for TimeSeries ordering and export."""

    def test_sorted_on_construction(self, series: TimeSeries):
        assert series.image_ids == ["S2_A", "S2_AB", "S2_B"]
        assert series.values == [0.42, 0.58, 0.61]

    def test_equality_ignores_input_order(self, series: TimeSeries):
        assert TimeSeries(tuple(reversed(series.records))) == series

    def test_to_frame(self, series: TimeSeries):
        frame = series.to_frame()
        assert list(frame.columns) == ["date", "value"]
        assert pd.api.types.is_datetime64_any_dtype(frame["date"])
        assert frame["date"].iloc[0] == pd.Timestamp("2015-11-03 10:40")

    def test_to_frame_with_ids(self, series: TimeSeries):
        assert list(series.to_frame(include_image_ids=True).columns) == ["date", "value", "image_id"]

    def test_empty_frame(self):
        frame = TimeSeries().to_frame()
        assert frame.empty
        assert list(frame.columns) == ["date", "value"]

    def test_write_csv(self, series: TimeSeries, tmp_path: Path):
        path = series.write_csv(tmp_path / "nested" / "series.csv")
        lines = path.read_text().splitlines()
        assert lines[0] == "date,value"
        assert lines[1] == "2015-11-03T10:40:00,0.42"
        assert len(lines) == 4


class TestRunResult:
    """Tests for RunResult counters."""

    def test_counters(self, series: TimeSeries):
        result = RunResult(
            series=series,
            issues=(
                RunIssue(2015, "S2_X", "failed", REASON_AGGREGATION),
                RunIssue(2016, None, "no parcels", REASON_EMPTY_COHORT),
            ),
            no_data_images=2,
        )
        assert result.dropped_images == 1
        assert result.skipped_seasons == 1
        assert [issue.image_id for issue in result.issues_for(REASON_AGGREGATION)] == ["S2_X"]
        assert not result.cancelled
