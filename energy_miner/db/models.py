"""
SQLAlchemy ORM models for regions, time series points and the call ledger.

All datetimes are stored as naive UTC truncated to the second.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Regions
# =============================================================================


class Region(Base):
    """A weather, emissions or market region, unique per type by case-insensitive name."""

    __tablename__ = "region"
    __table_args__ = (
        UniqueConstraint("region_type", "friendly_name_key", name="uq_region_type_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_type: Mapped[str] = mapped_column(String(16), nullable=False)  # 'weather' | 'emissions' | 'market'
    friendly_name: Mapped[str] = mapped_column(Text, nullable=False)
    friendly_name_key: Mapped[str] = mapped_column(Text, nullable=False)  # lower-cased friendly_name
    timezone_name: Mapped[str] = mapped_column(Text, nullable=False, default="UTC")
    utc_offset_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # WattTime balancing authority abbreviation, weather station id, ...
    provider_sub_identifier: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class RegionMapping(Base):
    """Links the weather, emissions and market regions of one configured region."""

    __tablename__ = "region_mapping"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    friendly_name: Mapped[str] = mapped_column(Text, nullable=False)
    friendly_name_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    weather_region_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("region.id", ondelete="SET NULL"), nullable=True
    )
    emissions_region_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("region.id", ondelete="SET NULL"), nullable=True
    )
    market_region_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("region.id", ondelete="SET NULL"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


# =============================================================================
# Time series points
# =============================================================================


class CarbonEmissionsDataPoint(Base):
    """Grid carbon intensity at one instant, in gCO2/kWh."""

    __tablename__ = "carbon_emissions_data_point"
    __table_args__ = (
        UniqueConstraint("region_id", "datetime_utc", name="uq_emissions_region_time"),
        Index("ix_emissions_time", "datetime_utc"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(Integer, ForeignKey("region.id", ondelete="CASCADE"), nullable=False)
    datetime_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    system_wide: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    system_wide_forecast: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    marginal: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    marginal_forecast: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    relative_merit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 0..1
    relative_merit_forecast: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_forecast: Mapped[bool] = mapped_column(default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class WeatherDataPoint(Base):
    """Hourly weather at one instant (SI units)."""

    __tablename__ = "weather_data_point"
    __table_args__ = (
        UniqueConstraint("region_id", "datetime_utc", name="uq_weather_region_time"),
        Index("ix_weather_time", "datetime_utc"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(Integer, ForeignKey("region.id", ondelete="CASCADE"), nullable=False)
    datetime_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    temperature_celsius: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    dew_point_celsius: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    apparent_temperature_celsius: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_speed_mps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_gust_mps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_direction_degrees: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    visibility_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    uv_index: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    precipitation_mm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    precipitation_probability: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pressure_hpa: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    humidity_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cloud_cover_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    condition_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_forecast: Mapped[bool] = mapped_column(default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class MarketDataPoint(Base):
    """Wholesale market price and generation mix at one instant."""

    __tablename__ = "market_data_point"
    __table_args__ = (
        UniqueConstraint("region_id", "datetime_utc", name="uq_market_region_time"),
        Index("ix_market_time", "datetime_utc"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(Integer, ForeignKey("region.id", ondelete="CASCADE"), nullable=False)
    datetime_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    demand_mw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    renewables_mw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    renewables_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_mw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    solar_mw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    solar_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    carbon_price_per_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_forecast: Mapped[bool] = mapped_column(default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


# =============================================================================
# Call ledger
# =============================================================================


class ApiCallRecord(Base):
    """One upstream call that passed the rate gate. Insert-only."""

    __tablename__ = "api_call_record"
    __table_args__ = (
        Index("ix_api_call_lookup", "caller_key", "api_name", "called_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    caller_key: Mapped[str] = mapped_column(String(128), nullable=False)
    api_name: Mapped[str] = mapped_column(String(64), nullable=False)
    called_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
