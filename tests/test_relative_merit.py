"""Tests for relative merit calculation."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from energy_miner.emissions.relative_merit import FLOOR, calculate_relative_merit

T = datetime(2024, 1, 1, 0, 0)


@dataclass
class Row:
    datetime_utc: datetime
    marginal: Optional[float] = None
    marginal_forecast: Optional[float] = None


def hourly(*values):
    return [Row(T + timedelta(hours=i), v) for i, v in enumerate(values)]


class TestRelativeMerit:
    """Test position within the trailing window."""

    def test_positions_with_floor(self):
        results = calculate_relative_merit(hourly(100.0, 200.0, 300.0))

        assert [r.relative_merit for r in results] == pytest.approx([FLOOR, 0.5, 1.0])

    def test_zero_emissions_stay_zero(self):
        results = calculate_relative_merit(hourly(0.0, 100.0, 200.0))
        assert results[0].relative_merit == 0.0

    def test_flat_window_has_no_merit(self):
        assert calculate_relative_merit(hourly(50.0, 50.0)) == []

    def test_empty(self):
        assert calculate_relative_merit([]) == []

    def test_window_excludes_points_past_lookahead(self):
        rows = hourly(100.0, 200.0) + [Row(T + timedelta(hours=5), 1000.0)]

        results = calculate_relative_merit(rows, end=T + timedelta(hours=1))

        assert [r.relative_merit for r in results] == pytest.approx([FLOOR, 1.0])

    def test_window_excludes_points_older_than_a_week(self):
        rows = [Row(T - timedelta(days=8), 0.0), Row(T, 100.0), Row(T + timedelta(minutes=30), 300.0)]

        results = calculate_relative_merit(rows, start=T)

        assert results[0].relative_merit == FLOOR
        assert results[1].relative_merit == 1.0

    def test_aware_bounds(self):
        rows = hourly(100.0, 200.0, 300.0)
        start = (T + timedelta(hours=2)).replace(tzinfo=timezone.utc)

        results = calculate_relative_merit(rows, start=start)

        assert [r.datetime_utc for r in results] == [T + timedelta(hours=2)]

    def test_forecast_merit(self):
        rows = [
            Row(T, 100.0, 400.0),
            Row(T + timedelta(hours=1), 200.0, 600.0),
        ]

        results = calculate_relative_merit(rows, start=T + timedelta(hours=1))

        assert results[0].relative_merit_forecast == 1.0

    def test_rows_without_marginal_only_get_forecast_merit(self):
        rows = [Row(T, 100.0, 400.0), Row(T + timedelta(minutes=30), 300.0, 800.0),
                Row(T + timedelta(minutes=45), None, 600.0)]

        results = calculate_relative_merit(rows, start=T + timedelta(minutes=45))

        assert results[0].relative_merit is None
        assert results[0].relative_merit_forecast == pytest.approx(0.5)
