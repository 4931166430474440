"""
Dark Sky weather API client.

One time-machine request per day of the window:
    {api_url}forecast/{key}/{lat},{lon},{unix}?units=si
Historic requests also pass exclude=currently. The hourly blocks of all days
are flattened, de-duplicated by timestamp and sorted.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from energy_miner.api.http import ApiRequest
from energy_miner.api.throttled import ThrottledCaller, make_caller_key
from energy_miner.utils.time_utils import from_unix, to_unix

logger = logging.getLogger(__name__)

API_NAME = "DarkSky"
DEFAULT_URL = "https://api.darksky.net/"

# Provider sentinel for "no reading"
SENTINEL_THRESHOLD = -9000.0

# Dark Sky hourly field -> weather_data_point column
FIELD_MAP = {
    "temperature": "temperature_celsius",
    "dewPoint": "dew_point_celsius",
    "apparentTemperature": "apparent_temperature_celsius",
    "windSpeed": "wind_speed_mps",
    "windGust": "wind_gust_mps",
    "windBearing": "wind_direction_degrees",
    "visibility": "visibility_km",
    "uvIndex": "uv_index",
    "precipIntensity": "precipitation_mm",
    "precipProbability": "precipitation_probability",
    "pressure": "pressure_hpa",
    "humidity": "humidity_percent",
    "cloudCover": "cloud_cover_percent",
    "summary": "condition_description",
}

# Reported as 0..1 fractions, stored as percentages
FRACTION_FIELDS = ("humidity", "cloudCover")


class DarkSkyClient:
    """Client for Dark Sky hourly weather by location."""

    def __init__(
        self,
        caller: ThrottledCaller,
        api_key: str,
        api_url: str = DEFAULT_URL,
        timeout: Optional[float] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.caller = caller
        self.api_key = api_key
        self.api_url = api_url if api_url.endswith("/") else api_url + "/"
        self.timeout = timeout
        self.log = log or logger
        self.caller_key = make_caller_key(API_NAME, api_key)

        self.log.info(f"Dark Sky client initialized ({self.api_url})")

    def _fetch_day(self, latitude: float, longitude: float, day: datetime, historic: bool) -> List[Dict[str, Any]]:
        params = {"units": "si"}
        if historic:
            params["exclude"] = "currently"
        request = ApiRequest(
            url=f"{self.api_url}forecast/{self.api_key}/{latitude},{longitude},{to_unix(day)}",
            params=params,
        )
        payload = self.caller.execute(request, self.caller_key, API_NAME, timeout=self.timeout) or {}
        return (payload.get("hourly") or {}).get("data") or []

    def _fetch_window(
        self,
        latitude: float,
        longitude: float,
        start: datetime,
        end: datetime,
        historic: bool,
    ) -> pd.DataFrame:
        hours: List[Dict[str, Any]] = []
        day = start
        while day <= end:
            hours.extend(self._fetch_day(latitude, longitude, day, historic))
            day += timedelta(days=1)

        if not hours:
            return pd.DataFrame(columns=["datetime_utc", *FIELD_MAP.values()])

        df = pd.DataFrame(hours)
        df = df.dropna(subset=["time"])
        df["datetime_utc"] = df["time"].map(lambda t: from_unix(int(t)))
        df = df.drop_duplicates(subset=["datetime_utc"], keep="last").sort_values("datetime_utc")

        for field in FIELD_MAP:
            if field not in df.columns:
                df[field] = None
        numeric = [f for f in FIELD_MAP if f != "summary"]
        df[numeric] = df[numeric].apply(pd.to_numeric, errors="coerce")
        df[numeric] = df[numeric].mask(df[numeric] < SENTINEL_THRESHOLD)
        for field in FRACTION_FIELDS:
            df[field] = df[field] * 100.0

        df = df.rename(columns=FIELD_MAP)[["datetime_utc", *FIELD_MAP.values()]]
        self.log.info(f"{API_NAME}: {len(df)} hourly rows for {latitude},{longitude}")
        return df.reset_index(drop=True)

    def get_historic_weather(
        self,
        latitude: float,
        longitude: float,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """Observed hourly weather, one request per day from start to end."""
        return self._fetch_window(latitude, longitude, start, end, historic=True)

    def get_forecast_weather(
        self,
        latitude: float,
        longitude: float,
        start: datetime,
        end: datetime,
    ) -> pd.DataFrame:
        """Forecast hourly weather, one request per day from start to end."""
        return self._fetch_window(latitude, longitude, start, end, historic=False)


def weather_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as dicts with NaN replaced by None and plain datetimes, ready for upsert."""
    records = df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
    for record in records:
        timestamp = record.get("datetime_utc")
        if isinstance(timestamp, pd.Timestamp):
            record["datetime_utc"] = timestamp.to_pydatetime()
    return records
