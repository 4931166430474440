"""Configuration module."""

from energy_miner.config.regions import (
    EmissionsSourceConfig,
    RegionConfig,
    ThrottleConfig,
    WeatherSourceConfig,
    load_miner_config,
    parse_region_configs,
)
from energy_miner.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "EmissionsSourceConfig",
    "RegionConfig",
    "ThrottleConfig",
    "WeatherSourceConfig",
    "load_miner_config",
    "parse_region_configs",
]
