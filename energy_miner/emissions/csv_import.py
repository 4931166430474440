"""
Import of historical emissions from CSV exports.

Expected columns: DateTimeUtc, SystemWideEmissions, SystemWideEmissionsUnit,
marginalEmissions, marginalEmissionsUnit. Values reported in lbs/MWh are
converted to gCO2/kWh, anything else is stored as given.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from energy_miner.db.upsert import SeriesType, UpsertStore
from energy_miner.emissions.units import to_g_per_kwh

logger = logging.getLogger(__name__)

DEFAULT_DATETIME_FORMAT = "%m/%d/%Y %H:%M:%S"

REQUIRED_COLUMNS = ["DateTimeUtc", "SystemWideEmissions", "marginalEmissions"]


@dataclass
class CsvImportResult:
    """Row counts for one import."""

    imported: int = 0
    skipped: int = 0


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isna(value) or str(value).strip() == "":
        return None
    return float(value)


def _optional_str(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    return str(value)


def import_emissions_csv(
    path: Union[str, Path],
    region_id: int,
    store: UpsertStore,
    datetime_format: str = DEFAULT_DATETIME_FORMAT,
    ignore_parsing_errors: bool = True,
) -> CsvImportResult:
    """
    Upsert every row of an emissions CSV into the store.

    Args:
        path: CSV file
        region_id: Emissions region the rows belong to
        store: Destination store
        datetime_format: strptime format of DateTimeUtc
        ignore_parsing_errors: Skip unparseable rows instead of raising

    Returns:
        CsvImportResult with imported/skipped counts
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=True)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {missing}")

    result = CsvImportResult()
    for line, row in enumerate(df.to_dict(orient="records"), start=2):
        try:
            timestamp = datetime.strptime(str(row["DateTimeUtc"]).strip(), datetime_format)
            system_wide = to_g_per_kwh(
                _optional_float(row.get("SystemWideEmissions")),
                _optional_str(row.get("SystemWideEmissionsUnit")),
            )
            marginal = to_g_per_kwh(
                _optional_float(row.get("marginalEmissions")),
                _optional_str(row.get("marginalEmissionsUnit")),
            )
        except (ValueError, TypeError) as e:
            if not ignore_parsing_errors:
                raise
            logger.warning(f"{path}:{line} skipped: {e}")
            result.skipped += 1
            continue

        store.upsert(
            SeriesType.EMISSIONS,
            region_id,
            timestamp,
            {"system_wide": system_wide, "marginal": marginal},
            is_forecast=False,
        )
        result.imported += 1

    logger.info(f"Imported {result.imported} emissions rows from {path} ({result.skipped} skipped)")
    return result
