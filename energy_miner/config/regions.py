"""
Per-region mining descriptors.

The descriptor file is JSON of the form::

    {"regions": [
        {"friendly_name": "US_PJM",
         "emissions": {"friendly_name": "PJM", "watttime_abbreviation": "PJM", ...},
         "weather": {"friendly_name": "Philadelphia", "latitude": 39.95, ...}}
    ]}

Each region is validated on its own so one bad entry never hides the others.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from energy_miner.config.settings import Settings
from energy_miner.errors import ConfigurationError
from energy_miner.utils.rate_limiter import ThrottleMode, ThrottlePolicy

logger = logging.getLogger(__name__)

RELATIVE_MERIT_SOURCES = ("None", "WattTime", "CustomInternalCalculation")


class ThrottleConfig(BaseModel):
    """Self-throttling settings. -1 means unlimited."""

    model_config = {"extra": "allow"}

    mode: str = "None"
    max_calls_per_minute: int = -1
    max_calls_per_day: int = -1

    @field_validator("mode")
    @classmethod
    def _known_mode(cls, value: str) -> str:
        try:
            ThrottleMode.parse(value)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        return value

    def to_policy(self) -> ThrottlePolicy:
        return ThrottlePolicy.from_limits(self.mode, self.max_calls_per_minute, self.max_calls_per_day)


class SourceConfig(BaseModel):
    """Fields shared by every mined source."""

    model_config = {"extra": "allow"}

    friendly_name: str
    timezone: str = "UTC"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    mining_method: str
    api_url: str
    api_key: Optional[str] = None
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)

    @field_validator("api_key", mode="before")
    @classmethod
    def _none_literal_means_unset(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", "none"):
            return None
        return value

    @field_validator("api_url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else value + "/"


class EmissionsSourceConfig(SourceConfig):
    """Emissions mining settings for one grid balancing authority."""

    mining_method: str = "WattTime"
    api_url: str = "https://api.watttime.org/api/v1/"
    watttime_abbreviation: str
    v2_api_url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    relative_merit_source: str = "None"

    @field_validator("relative_merit_source")
    @classmethod
    def _known_relative_merit_source(cls, value: str) -> str:
        if value not in RELATIVE_MERIT_SOURCES:
            raise ValueError(f"relative_merit_source must be one of {RELATIVE_MERIT_SOURCES}")
        return value

    @field_validator("v2_api_url")
    @classmethod
    def _v2_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.endswith("/"):
            return value + "/"
        return value

    @property
    def has_v2_credentials(self) -> bool:
        return bool(self.v2_api_url and self.username and self.password)


class WeatherSourceConfig(SourceConfig):
    """Weather mining settings for one location."""

    mining_method: str = "DarkSky"
    api_url: str = "https://api.darksky.net/"
    latitude: float
    longitude: float


class RegionConfig(BaseModel):
    """A configured region grouping an emissions source and a weather source."""

    model_config = {"extra": "allow"}

    friendly_name: str
    emissions: Optional[EmissionsSourceConfig] = None
    weather: Optional[WeatherSourceConfig] = None


def apply_settings_overrides(region: RegionConfig, settings: Optional[Settings]) -> RegionConfig:
    """Replace descriptor credentials with any set in the environment."""
    if settings is None:
        return region

    updates: Dict[str, Any] = {}
    if region.emissions is not None:
        emissions_updates = {
            k: v for k, v in {
                "api_key": settings.watttime_api_key,
                "username": settings.watttime_username,
                "password": settings.watttime_password,
            }.items() if v is not None
        }
        if emissions_updates:
            updates["emissions"] = region.emissions.model_copy(update=emissions_updates)
    if region.weather is not None and settings.darksky_api_key is not None:
        updates["weather"] = region.weather.model_copy(update={"api_key": settings.darksky_api_key})

    return region.model_copy(update=updates) if updates else region


def parse_region_configs(
    document: Dict[str, Any],
    settings: Optional[Settings] = None,
) -> Tuple[List[RegionConfig], List[ConfigurationError]]:
    """
    Validate every region in a descriptor document.

    Args:
        document: Parsed JSON with a top-level "regions" list
        settings: Optional settings whose credential overrides are applied

    Returns:
        (valid regions, one ConfigurationError per rejected region)
    """
    raw_regions = document.get("regions")
    if not isinstance(raw_regions, list):
        raise ConfigurationError("Descriptor must contain a 'regions' list")

    regions: List[RegionConfig] = []
    errors: List[ConfigurationError] = []
    for index, raw in enumerate(raw_regions):
        name = raw.get("friendly_name", f"#{index}") if isinstance(raw, dict) else f"#{index}"
        try:
            region = RegionConfig.model_validate(raw)
        except ValidationError as e:
            error = ConfigurationError(f"Region {name} is invalid: {e}")
            logger.error(str(error))
            errors.append(error)
            continue
        regions.append(apply_settings_overrides(region, settings))

    logger.info(f"Loaded {len(regions)} region(s), rejected {len(errors)}")
    return regions, errors


def load_miner_config(
    path: Union[str, Path],
    settings: Optional[Settings] = None,
) -> List[RegionConfig]:
    """Load and validate the descriptor file, skipping invalid regions."""
    path = Path(path)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read miner config {path}: {e}") from e

    regions, _ = parse_region_configs(document, settings)
    return regions
