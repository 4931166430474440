"""Carbon intensity unit conversion. Canonical unit is gCO2/kWh."""

from typing import Optional

POUND_IN_GRAMS = 453.592

# Unit labels seen in provider payloads and CSV exports that mean lbs CO2 per MWh
LBS_PER_MWH_UNITS = frozenset({"lbs/mwh", "lb/mwh", "lb/mw", "lbs/mw"})


def lbs_per_mwh_to_g_per_kwh(value: float) -> float:
    """1 lb/MWh = 453.592 g / 1000 kWh."""
    return value * POUND_IN_GRAMS / 1000


def to_g_per_kwh(value: Optional[float], units: Optional[str]) -> Optional[float]:
    """Normalise a value to gCO2/kWh given its unit label. Unknown labels pass through."""
    if value is None:
        return None
    if units is not None and units.strip().lower() in LBS_PER_MWH_UNITS:
        return lbs_per_mwh_to_g_per_kwh(value)
    return value
