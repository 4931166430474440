"""Database module."""

from energy_miner.db.call_ledger import DurableCallLedger
from energy_miner.db.connection import (
    check_connection,
    dispose_engine,
    get_engine,
    get_session_factory,
    init_db,
)
from energy_miner.db.models import (
    ApiCallRecord,
    Base,
    CarbonEmissionsDataPoint,
    MarketDataPoint,
    Region,
    RegionMapping,
    WeatherDataPoint,
)
from energy_miner.db.upsert import SeriesType, UpsertStore, utc_offset_minutes

__all__ = [
    # Connection
    "get_engine",
    "get_session_factory",
    "init_db",
    "check_connection",
    "dispose_engine",
    # Models
    "Base",
    "Region",
    "RegionMapping",
    "CarbonEmissionsDataPoint",
    "WeatherDataPoint",
    "MarketDataPoint",
    "ApiCallRecord",
    # Storage
    "DurableCallLedger",
    "SeriesType",
    "UpsertStore",
    "utc_offset_minutes",
]
