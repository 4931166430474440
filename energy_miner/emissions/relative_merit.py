"""
Relative merit of grid emissions: where a point sits between the cleanest
and dirtiest marginal intensity recently observed, as a value in 0..1.

Zero is reserved for zero-emission points, so any positive intensity that
computes below FLOOR is raised to FLOOR.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import pandas as pd

from energy_miner.utils.time_utils import to_naive_utc

logger = logging.getLogger(__name__)

FLOOR = 0.2
LOOKBACK = timedelta(days=7)
LOOKAHEAD = timedelta(hours=1)


@dataclass
class RelativeMeritPoint:
    """Relative merit for one stored emissions point."""

    datetime_utc: datetime
    relative_merit: Optional[float] = None
    relative_merit_forecast: Optional[float] = None


def _position(value: float, low: float, high: float) -> Optional[float]:
    spread = high - low
    if spread <= 0:
        return None
    merit = (value - low) / spread
    if merit < FLOOR and value > 0:
        merit = FLOOR
    return float(merit)


def calculate_relative_merit(
    points: Iterable,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[RelativeMeritPoint]:
    """
    Compute relative merit for every point between start and end.

    Args:
        points: Emissions rows (anything with datetime_utc, marginal and
            marginal_forecast attributes). Must cover the trailing week
            before `start` for the windows to be complete.
        start: First point to score (default: earliest point)
        end: Last point to score (default: latest point)

    Returns:
        One RelativeMeritPoint per scored point that produced a value
    """
    df = pd.DataFrame(
        [
            {"datetime_utc": p.datetime_utc, "marginal": p.marginal, "marginal_forecast": p.marginal_forecast}
            for p in points
        ],
        columns=["datetime_utc", "marginal", "marginal_forecast"],
    )
    if df.empty:
        return []

    df = df.astype({"marginal": "float64", "marginal_forecast": "float64"})
    df = df.drop_duplicates(subset=["datetime_utc"], keep="last").sort_values("datetime_utc")
    # Windows only consider points with an observed marginal value
    observed = df.dropna(subset=["marginal"])

    targets = df
    if start is not None:
        targets = targets[targets["datetime_utc"] >= to_naive_utc(start)]
    if end is not None:
        targets = targets[targets["datetime_utc"] <= to_naive_utc(end)]

    results: List[RelativeMeritPoint] = []
    for row in targets.itertuples(index=False):
        window = observed[
            (observed["datetime_utc"] >= row.datetime_utc - LOOKBACK)
            & (observed["datetime_utc"] <= row.datetime_utc + LOOKAHEAD)
        ]
        if window.empty:
            continue

        merit = None
        if pd.notna(row.marginal):
            merit = _position(row.marginal, window["marginal"].min(), window["marginal"].max())

        merit_forecast = None
        forecasts = window["marginal_forecast"].dropna()
        if pd.notna(row.marginal_forecast) and not forecasts.empty:
            merit_forecast = _position(row.marginal_forecast, forecasts.min(), forecasts.max())

        if merit is not None or merit_forecast is not None:
            results.append(RelativeMeritPoint(
                datetime_utc=pd.Timestamp(row.datetime_utc).to_pydatetime(),
                relative_merit=merit,
                relative_merit_forecast=merit_forecast,
            ))

    logger.debug(f"Calculated relative merit for {len(results)} of {len(targets)} points")
    return results
