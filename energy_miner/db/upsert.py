"""
Idempotent storage of time series points and regions.

Points are keyed by (region, timestamp truncated to the second) per series
type. An upsert inserts a missing point, otherwise merges field by field:
a supplied value overwrites the stored one only when it is not null, while
is_forecast is always overwritten when given.

Two recovery paths exist:
- upsert(): the read-modify-write runs under a bounded tenacity retry on
  StorageConflictError (default 3 attempts), then the last error is raised.
- region/mapping creation and deletes: on conflict, reload once and retry
  exactly once more.
"""

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Type, TypeVar, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from energy_miner.db.models import (
    Base,
    CarbonEmissionsDataPoint,
    MarketDataPoint,
    Region,
    RegionMapping,
    WeatherDataPoint,
)
from energy_miner.errors import ConfigurationError, StorageConflictError
from energy_miner.utils.retry import create_retry_decorator
from energy_miner.utils.time_utils import truncate_to_second, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

_KEY_COLUMNS = {"id", "region_id", "datetime_utc", "is_forecast", "version"}


class SeriesType(str, Enum):
    """Kind of time series, also used as the region type."""

    WEATHER = "weather"
    EMISSIONS = "emissions"
    MARKET = "market"

    @property
    def model(self) -> Type[Base]:
        return _SERIES_MODELS[self]

    @property
    def fields(self) -> FrozenSet[str]:
        """Mergeable metric columns for this series."""
        return frozenset(c.key for c in self.model.__table__.columns if c.key not in _KEY_COLUMNS)


_SERIES_MODELS = {
    SeriesType.WEATHER: WeatherDataPoint,
    SeriesType.EMISSIONS: CarbonEmissionsDataPoint,
    SeriesType.MARKET: MarketDataPoint,
}


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def utc_offset_minutes(timezone_name: str, at: Optional[datetime] = None) -> int:
    """Current UTC offset of an IANA timezone, in minutes.

    Raises:
        ConfigurationError: unknown timezone name
    """
    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Unknown timezone: {timezone_name!r}") from e
    offset = (at or utc_now()).astimezone(zone).utcoffset()
    return int(offset.total_seconds() // 60)


class UpsertStore:
    """Insert-or-merge access to regions and time series points."""

    def __init__(
        self,
        session_factory: sessionmaker,
        max_attempts: int = 3,
        min_wait: float = 0.1,
        max_wait: float = 2.0,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory. Regions and mappings
                returned by the store are loaded before their session closes, so
                any expire_on_commit setting works.
            max_attempts: Total attempts for a conflicting upsert
            min_wait: Minimum backoff between attempts (seconds)
            max_wait: Maximum backoff between attempts (seconds)
            log: Logger (default: module logger)
        """
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.log = log or logger
        self._retry = create_retry_decorator(
            max_attempts=max_attempts,
            min_wait=min_wait,
            max_wait=max_wait,
            exceptions=(StorageConflictError,),
            log=self.log,
        )

    # ------------------------------------------------------------------
    # Time series points
    # ------------------------------------------------------------------

    def upsert(
        self,
        series: Union[SeriesType, str],
        region_id: int,
        timestamp_utc: datetime,
        fields: Mapping[str, Any],
        is_forecast: Optional[bool] = None,
    ) -> None:
        """
        Insert or merge one point.

        Args:
            series: Series type
            region_id: Owning region
            timestamp_utc: Point time; sub-second precision is dropped
            fields: Metric values. None/NaN values never erase stored ones.
            is_forecast: Overwrites the stored flag when not None

        Raises:
            ValueError: unknown field names or unknown region
            StorageConflictError: still conflicting after max_attempts
        """
        series = SeriesType(series)
        unknown = set(fields) - series.fields
        if unknown:
            raise ValueError(f"Unknown {series.value} fields: {sorted(unknown)}")

        timestamp = truncate_to_second(timestamp_utc)
        self._retry(self._upsert_once)(series, region_id, timestamp, dict(fields), is_forecast)

    def _upsert_once(
        self,
        series: SeriesType,
        region_id: int,
        timestamp: datetime,
        fields: Dict[str, Any],
        is_forecast: Optional[bool],
    ) -> None:
        model = series.model
        session = self.session_factory()
        try:
            if session.get(Region, region_id) is None:
                raise ValueError(f"Unknown region id {region_id}")

            existing = session.execute(
                select(model).where(and_(model.region_id == region_id, model.datetime_utc == timestamp))
            ).scalar_one_or_none()

            if existing is None:
                values = {k: v for k, v in fields.items() if not _is_null(v)}
                session.add(model(
                    region_id=region_id,
                    datetime_utc=timestamp,
                    is_forecast=bool(is_forecast),
                    **values,
                ))
            else:
                for name, value in fields.items():
                    if not _is_null(value):
                        setattr(existing, name, value)
                if is_forecast is not None:
                    existing.is_forecast = is_forecast

            session.commit()
        except (StaleDataError, IntegrityError) as e:
            session.rollback()
            raise StorageConflictError(
                f"Conflict saving {series.value} point {region_id}@{timestamp}: {e}"
            ) from e
        finally:
            session.close()

    def find_one(
        self,
        series: Union[SeriesType, str],
        region_id: int,
        timestamp_utc: datetime,
    ) -> Optional[Base]:
        """The point at the truncated second, or None."""
        model = SeriesType(series).model
        timestamp = truncate_to_second(timestamp_utc)
        with self.session_factory() as session:
            return session.execute(
                select(model).where(and_(model.region_id == region_id, model.datetime_utc == timestamp))
            ).scalar_one_or_none()

    def find_range(
        self,
        series: Union[SeriesType, str],
        region_id: int,
        start_utc: datetime,
        end_utc: datetime,
    ) -> List[Base]:
        """Points with start <= time <= end, ordered by time."""
        model = SeriesType(series).model
        start = truncate_to_second(start_utc)
        end = truncate_to_second(end_utc)
        with self.session_factory() as session:
            return list(session.execute(
                select(model)
                .where(and_(
                    model.region_id == region_id,
                    model.datetime_utc >= start,
                    model.datetime_utc <= end,
                ))
                .order_by(model.datetime_utc)
            ).scalars().all())

    def delete_point(
        self,
        series: Union[SeriesType, str],
        region_id: int,
        timestamp_utc: datetime,
    ) -> bool:
        """Administrative delete of one point. Returns False when absent."""
        model = SeriesType(series).model
        timestamp = truncate_to_second(timestamp_utc)

        def _delete(session: Session) -> bool:
            row = session.execute(
                select(model).where(and_(model.region_id == region_id, model.datetime_utc == timestamp))
            ).scalar_one_or_none()
            if row is None:
                return False
            session.delete(row)
            return True

        return self._with_single_reload(_delete, f"delete {model.__tablename__} {region_id}@{timestamp}")

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------

    def find_region(self, region_type: Union[SeriesType, str], friendly_name: str) -> Optional[Region]:
        """Case-insensitive lookup by friendly name."""
        region_type = SeriesType(region_type)
        with self.session_factory() as session:
            return self._query_region(session, region_type, friendly_name)

    @staticmethod
    def _query_region(session: Session, region_type: SeriesType, friendly_name: str) -> Optional[Region]:
        return session.execute(
            select(Region).where(and_(
                Region.region_type == region_type.value,
                Region.friendly_name_key == friendly_name.strip().lower(),
            ))
        ).scalar_one_or_none()

    def list_regions(self, region_type: Union[SeriesType, str, None] = None) -> List[Region]:
        query = select(Region).order_by(Region.id)
        if region_type is not None:
            query = query.where(Region.region_type == SeriesType(region_type).value)
        with self.session_factory() as session:
            return list(session.execute(query).scalars().all())

    def find_or_create_region(
        self,
        region_type: Union[SeriesType, str],
        friendly_name: str,
        timezone_name: str = "UTC",
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        provider_sub_identifier: Optional[str] = None,
    ) -> Region:
        """
        Return the region with this friendly name, creating it if needed.

        A concurrent creator that wins the unique constraint is found and
        returned instead of inserting a duplicate.

        Raises:
            ConfigurationError: unknown timezone name
            StorageConflictError: insert kept conflicting and no winner row exists
        """
        region_type = SeriesType(region_type)
        offset = utc_offset_minutes(timezone_name)

        existing = self.find_region(region_type, friendly_name)
        if existing is not None:
            return existing

        def _create(session: Session) -> Region:
            winner = self._query_region(session, region_type, friendly_name)
            if winner is not None:
                return winner
            region = Region(
                region_type=region_type.value,
                friendly_name=friendly_name.strip(),
                friendly_name_key=friendly_name.strip().lower(),
                timezone_name=timezone_name,
                utc_offset_minutes=offset,
                latitude=latitude,
                longitude=longitude,
                provider_sub_identifier=provider_sub_identifier,
            )
            session.add(region)
            return region

        region = self._with_single_reload(_create, f"create {region_type.value} region {friendly_name}")
        self.log.info(f"Using {region_type.value} region {region.friendly_name} (id={region.id})")
        return region

    def delete_region(self, region_type: Union[SeriesType, str], friendly_name: str) -> bool:
        """Administrative delete of a region together with its points and mapping links."""
        region_type = SeriesType(region_type)

        def _delete(session: Session) -> bool:
            region = self._query_region(session, region_type, friendly_name)
            if region is None:
                return False
            for model in _SERIES_MODELS.values():
                session.execute(delete(model).where(model.region_id == region.id))
            for column in (
                RegionMapping.weather_region_id,
                RegionMapping.emissions_region_id,
                RegionMapping.market_region_id,
            ):
                session.execute(update(RegionMapping).where(column == region.id).values({column.key: None}))
            session.delete(region)
            return True

        return self._with_single_reload(_delete, f"delete {region_type.value} region {friendly_name}")

    # ------------------------------------------------------------------
    # Region mappings
    # ------------------------------------------------------------------

    def upsert_region_mapping(
        self,
        friendly_name: str,
        weather_region_id: Optional[int] = None,
        emissions_region_id: Optional[int] = None,
        market_region_id: Optional[int] = None,
    ) -> RegionMapping:
        """
        Link a configured region to its weather/emissions/market regions.

        Only links that are still null are filled; existing links are kept.
        """
        links = {
            "weather_region_id": weather_region_id,
            "emissions_region_id": emissions_region_id,
            "market_region_id": market_region_id,
        }

        def _upsert(session: Session) -> RegionMapping:
            mapping = session.execute(
                select(RegionMapping).where(RegionMapping.friendly_name_key == friendly_name.strip().lower())
            ).scalar_one_or_none()
            if mapping is None:
                mapping = RegionMapping(
                    friendly_name=friendly_name.strip(),
                    friendly_name_key=friendly_name.strip().lower(),
                    **links,
                )
                session.add(mapping)
                return mapping
            for column, value in links.items():
                if value is not None and getattr(mapping, column) is None:
                    setattr(mapping, column, value)
            return mapping

        return self._with_single_reload(_upsert, f"map region {friendly_name}")

    def find_region_mapping(self, friendly_name: str) -> Optional[RegionMapping]:
        with self.session_factory() as session:
            return session.execute(
                select(RegionMapping).where(RegionMapping.friendly_name_key == friendly_name.strip().lower())
            ).scalar_one_or_none()

    # ------------------------------------------------------------------

    def _run_in_session(self, operation: Callable[[Session], T]) -> T:
        session = self.session_factory()
        try:
            result = operation(session)
            session.commit()
            if isinstance(result, Base):
                # Load state while attached so callers can read it after close
                session.refresh(result)
            return result
        except (StaleDataError, IntegrityError):
            session.rollback()
            raise
        finally:
            session.close()

    def _with_single_reload(self, operation: Callable[[Session], T], description: str) -> T:
        """Run operation in a fresh session; on conflict reload and retry exactly once."""
        try:
            return self._run_in_session(operation)
        except (StaleDataError, IntegrityError) as e:
            self.log.warning(f"Conflict during {description}, reloading and retrying once: {e}")
        try:
            return self._run_in_session(operation)
        except (StaleDataError, IntegrityError) as e:
            raise StorageConflictError(f"Conflict during {description}: {e}") from e
