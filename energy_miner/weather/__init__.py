"""Weather data clients."""

from energy_miner.weather.darksky import DarkSkyClient, weather_rows

__all__ = [
    "DarkSkyClient",
    "weather_rows",
]
