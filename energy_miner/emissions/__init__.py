"""Grid carbon emissions: WattTime client, unit conversion, relative merit and CSV import."""

from energy_miner.emissions.csv_import import CsvImportResult, import_emissions_csv
from energy_miner.emissions.relative_merit import RelativeMeritPoint, calculate_relative_merit
from energy_miner.emissions.units import POUND_IN_GRAMS, lbs_per_mwh_to_g_per_kwh, to_g_per_kwh
from energy_miner.emissions.watttime import WattTimeClient

__all__ = [
    "CsvImportResult",
    "import_emissions_csv",
    "RelativeMeritPoint",
    "calculate_relative_merit",
    "POUND_IN_GRAMS",
    "lbs_per_mwh_to_g_per_kwh",
    "to_g_per_kwh",
    "WattTimeClient",
]
