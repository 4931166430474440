"""
Ingestion orchestrator: mines every configured region's emissions and
weather series into the store.

Per region:
1. resolve (find-or-create) the emissions and weather regions
2. run each metric family in isolation, upserting point by point
3. link the regions through a region mapping

A failure in one family or one region is logged and recorded in the
RunReport; it never stops the rest of the run. Cancellation is checked
between regions and between families.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from energy_miner.api.http import DEFAULT_TIMEOUT_SECONDS, HttpExecutor
from energy_miner.api.throttled import DEFAULT_BACKOFF_SECONDS, ThrottledCaller, make_caller_key
from energy_miner.config.regions import EmissionsSourceConfig, RegionConfig, ThrottleConfig, WeatherSourceConfig
from energy_miner.db.upsert import SeriesType, UpsertStore
from energy_miner.emissions.relative_merit import LOOKAHEAD, LOOKBACK, calculate_relative_merit
from energy_miner.emissions.units import lbs_per_mwh_to_g_per_kwh, to_g_per_kwh
from energy_miner.emissions.watttime import API_NAME as WATTTIME, WattTimeClient
from energy_miner.errors import EnergyMinerError
from energy_miner.utils.rate_limiter import CallLedger, ThrottleMode
from energy_miner.utils.time_utils import Clock, utc_now
from energy_miner.utils.timing import timed_operation
from energy_miner.weather.darksky import API_NAME as DARKSKY, DarkSkyClient, weather_rows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MiningWindows:
    """Default [start, end] windows relative to now."""

    emissions_history: Tuple[timedelta, timedelta] = (timedelta(days=-15), timedelta(days=1))
    emissions_forecast: Tuple[timedelta, timedelta] = (timedelta(days=-2), timedelta(days=10))
    weather_history: Tuple[timedelta, timedelta] = (timedelta(days=-1), timedelta(days=1))
    weather_forecast: Tuple[timedelta, timedelta] = (timedelta(0), timedelta(days=10))

    @staticmethod
    def resolve(window: Tuple[timedelta, timedelta], now: datetime) -> Tuple[datetime, datetime]:
        return now + window[0], now + window[1]


@dataclass
class PointUpdate:
    """One point to upsert."""

    timestamp: datetime
    fields: Dict[str, Any]
    is_forecast: Optional[bool] = None


@dataclass
class FamilyOutcome:
    """Result of one metric family for one region."""

    name: str
    points: int = 0
    failed_points: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.failed_points == 0


@dataclass
class RegionOutcome:
    """Result of mining one configured region."""

    friendly_name: str
    families: List[FamilyOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and all(f.succeeded for f in self.families)

    def family(self, name: str) -> Optional[FamilyOutcome]:
        return next((f for f in self.families if f.name == name), None)


@dataclass
class RunReport:
    """Partial-success outcome of one orchestrator run."""

    regions: List[RegionOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and all(r.succeeded for r in self.regions)

    @property
    def points(self) -> int:
        return sum(f.points for r in self.regions for f in r.families)

    def region(self, friendly_name: str) -> Optional[RegionOutcome]:
        return next((r for r in self.regions if r.friendly_name == friendly_name), None)


class IngestionOrchestrator:
    """Drives the throttled clients and routes their points into the UpsertStore."""

    def __init__(
        self,
        store: UpsertStore,
        executor: Optional[HttpExecutor] = None,
        shared_ledger: Optional[CallLedger] = None,
        windows: MiningWindows = MiningWindows(),
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        max_wait_seconds: Optional[float] = None,
        request_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        emissions_client_factory: Optional[Callable[[ThrottledCaller, EmissionsSourceConfig], WattTimeClient]] = None,
        weather_client_factory: Optional[Callable[[ThrottledCaller, WeatherSourceConfig], DarkSkyClient]] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Destination store
            executor: HTTP executor shared by every caller
            shared_ledger: Durable ledger for sources throttled in durable mode
            windows: Default mining windows
            clock: Current time source
            sleep: Sleep used while waiting for quota
            backoff_seconds: Wait between quota checks
            max_wait_seconds: Optional cap on a single quota wait
            request_timeout: Per-call timeout in seconds
            emissions_client_factory: Builds the emissions client for a source
            weather_client_factory: Builds the weather client for a source
            log: Logger (default: module logger)
        """
        self.store = store
        self.executor = executor or HttpExecutor()
        self.shared_ledger = shared_ledger
        self.windows = windows
        self.clock = clock
        self.sleep = sleep
        self.backoff_seconds = backoff_seconds
        self.max_wait_seconds = max_wait_seconds
        self.request_timeout = request_timeout
        self.emissions_client_factory = emissions_client_factory or self._default_emissions_client
        self.weather_client_factory = weather_client_factory or self._default_weather_client
        self.log = log or logger
        # Callers live across runs so in-memory ledgers keep their history
        self._callers: Dict[tuple, ThrottledCaller] = {}

    # ------------------------------------------------------------------
    # Client construction
    # ------------------------------------------------------------------

    def caller_for(self, api_name: str, credential: Optional[str], throttle: ThrottleConfig) -> ThrottledCaller:
        """Throttled caller for one account on one API, reused between runs."""
        policy = throttle.to_policy()
        key = (api_name, make_caller_key(api_name, credential), policy)
        if key not in self._callers:
            ledger = self.shared_ledger if policy.mode is ThrottleMode.DURABLE else None
            self._callers[key] = ThrottledCaller(
                policy,
                executor=self.executor,
                ledger=ledger,
                clock=self.clock,
                sleep=self.sleep,
                backoff_seconds=self.backoff_seconds,
                max_wait_seconds=self.max_wait_seconds,
                default_timeout=self.request_timeout,
                log=self.log,
            )
        return self._callers[key]

    def _default_emissions_client(self, caller: ThrottledCaller, source: EmissionsSourceConfig) -> WattTimeClient:
        return WattTimeClient(
            caller,
            api_url=source.api_url,
            api_key=source.api_key,
            v2_api_url=source.v2_api_url,
            username=source.username,
            password=source.password,
            clock=self.clock,
            log=self.log,
        )

    def _default_weather_client(self, caller: ThrottledCaller, source: WeatherSourceConfig) -> DarkSkyClient:
        return DarkSkyClient(caller, api_key=source.api_key, api_url=source.api_url, log=self.log)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    @staticmethod
    def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def run(
        self,
        regions: Sequence[RegionConfig],
        cancel_event: Optional[threading.Event] = None,
    ) -> RunReport:
        """
        Mine every region once.

        Args:
            regions: Validated region descriptors
            cancel_event: Checked between regions and between families

        Returns:
            RunReport with per-region, per-family outcomes
        """
        report = RunReport()
        for region in regions:
            if self._is_cancelled(cancel_event):
                report.cancelled = True
                break

            outcome = RegionOutcome(region.friendly_name)
            report.regions.append(outcome)
            try:
                with timed_operation(f"mining region {region.friendly_name}", self.log):
                    self._mine_region(region, outcome, cancel_event)
            except Exception as e:
                self.log.exception(f"Mining region {region.friendly_name} failed")
                outcome.error = f"{type(e).__name__}: {e}"

        if self._is_cancelled(cancel_event):
            report.cancelled = True
            self.log.warning("Run cancelled before all regions were mined")

        failed = [r.friendly_name for r in report.regions if not r.succeeded]
        self.log.info(
            f"Run finished: {len(report.regions)} region(s), {report.points} point(s) stored, "
            f"{len(failed)} with failures{': ' + ', '.join(failed) if failed else ''}"
        )
        return report

    def _mine_region(
        self,
        region: RegionConfig,
        outcome: RegionOutcome,
        cancel_event: Optional[threading.Event],
    ) -> None:
        emissions_region_id = None
        weather_region_id = None

        if region.emissions is not None:
            emissions_region_id = self._mine_source(
                "emissions", outcome, lambda: self._mine_emissions(region.emissions, outcome, cancel_event)
            )
        if region.weather is not None and not self._is_cancelled(cancel_event):
            weather_region_id = self._mine_source(
                "weather", outcome, lambda: self._mine_weather(region.weather, outcome, cancel_event)
            )

        if emissions_region_id is not None or weather_region_id is not None:
            self.store.upsert_region_mapping(
                region.friendly_name,
                weather_region_id=weather_region_id,
                emissions_region_id=emissions_region_id,
            )

    def _mine_source(self, kind: str, outcome: RegionOutcome, mine: Callable[[], Optional[int]]) -> Optional[int]:
        """Run a source, recording a failure to resolve it as a '<kind>_region' family."""
        try:
            return mine()
        except Exception as e:
            self.log.exception(f"Could not mine {kind} source of {outcome.friendly_name}")
            outcome.families.append(FamilyOutcome(f"{kind}_region", error=f"{type(e).__name__}: {e}"))
            return None

    def _run_families(
        self,
        series: SeriesType,
        region_id: int,
        families: List[Tuple[str, Optional[Callable[[], List[PointUpdate]]]]],
        outcome: RegionOutcome,
        cancel_event: Optional[threading.Event],
    ) -> None:
        for name, fetch in families:
            if self._is_cancelled(cancel_event):
                return
            if fetch is None:
                outcome.families.append(FamilyOutcome(name, skipped=True))
                continue
            outcome.families.append(self._run_family(name, series, region_id, fetch))

    def _run_family(
        self,
        name: str,
        series: SeriesType,
        region_id: int,
        fetch: Callable[[], List[PointUpdate]],
    ) -> FamilyOutcome:
        family = FamilyOutcome(name)
        try:
            updates = fetch()
        except Exception as e:
            self.log.exception(f"{name} for region {region_id} failed")
            family.error = f"{type(e).__name__}: {e}"
            return family

        for update in updates:
            try:
                self.store.upsert(series, region_id, update.timestamp, update.fields, update.is_forecast)
                family.points += 1
            except (EnergyMinerError, ValueError, SQLAlchemyError) as e:
                family.failed_points += 1
                self.log.error(f"{name}: could not store point {update.timestamp} for region {region_id}: {e}")

        self.log.info(f"{name}: stored {family.points} point(s) for region {region_id}"
                      f"{f', {family.failed_points} failed' if family.failed_points else ''}")
        return family

    # ------------------------------------------------------------------
    # Emissions
    # ------------------------------------------------------------------

    def _mine_emissions(
        self,
        source: EmissionsSourceConfig,
        outcome: RegionOutcome,
        cancel_event: Optional[threading.Event],
    ) -> Optional[int]:
        if not source.api_key and not source.has_v2_credentials:
            self.log.warning(f"No {WATTTIME} credentials for {source.friendly_name}, skipping emissions")
            return None

        region = self.store.find_or_create_region(
            SeriesType.EMISSIONS,
            source.friendly_name,
            timezone_name=source.timezone,
            latitude=source.latitude,
            longitude=source.longitude,
            provider_sub_identifier=source.watttime_abbreviation,
        )
        caller = self.caller_for(WATTTIME, source.api_key or source.username, source.throttle)
        client = self.emissions_client_factory(caller, source)
        ba = source.watttime_abbreviation

        now = self.clock()
        history_start, history_end = MiningWindows.resolve(self.windows.emissions_history, now)
        forecast_start, forecast_end = MiningWindows.resolve(self.windows.emissions_forecast, now)
        use_v2 = source.has_v2_credentials

        def system_wide() -> List[PointUpdate]:
            return [
                PointUpdate(r.timestamp, {"system_wide": to_g_per_kwh(r.carbon, "lb/MW")}, is_forecast=False)
                for r in client.get_generation_mix(ba, history_start, history_end)
                if r.carbon is not None
            ]

        def marginal() -> List[PointUpdate]:
            if use_v2:
                return [
                    PointUpdate(p.point_time, {"marginal": lbs_per_mwh_to_g_per_kwh(p.value)}, is_forecast=False)
                    for p in client.get_marginal_carbon_v2(ba, history_start, history_end)
                    if p.value is not None
                ]
            return [
                PointUpdate(
                    r.timestamp,
                    {"marginal": to_g_per_kwh(r.marginal_carbon.value, r.marginal_carbon.units)},
                    is_forecast=False,
                )
                for r in client.get_observed_marginal_carbon(ba, history_start, history_end)
                if r.marginal_carbon is not None and r.marginal_carbon.value is not None
            ]

        def marginal_forecast() -> List[PointUpdate]:
            if use_v2:
                return [
                    PointUpdate(p.point_time, {"marginal_forecast": lbs_per_mwh_to_g_per_kwh(p.value)}, is_forecast=True)
                    for p in client.get_forecast_marginal_carbon_v2(ba, forecast_start, forecast_end)
                    if p.value is not None
                ]
            return [
                PointUpdate(
                    r.timestamp,
                    {"marginal_forecast": to_g_per_kwh(r.marginal_carbon.value, r.marginal_carbon.units)},
                    is_forecast=True,
                )
                for r in client.get_forecast_marginal_carbon(ba, forecast_start, forecast_end)
                if r.marginal_carbon is not None and r.marginal_carbon.value is not None
            ]

        def relative_merit_from_provider() -> List[PointUpdate]:
            index = client.get_relative_merit(ba)
            return [PointUpdate(index.valid_until, {"relative_merit": index.percent / 100})]

        def relative_merit_calculated() -> List[PointUpdate]:
            rows = self.store.find_range(
                SeriesType.EMISSIONS, region.id, history_start - LOOKBACK, history_end + LOOKAHEAD
            )
            return [
                PointUpdate(p.datetime_utc, {
                    "relative_merit": p.relative_merit,
                    "relative_merit_forecast": p.relative_merit_forecast,
                })
                for p in calculate_relative_merit(rows, history_start, history_end)
            ]

        relative_merit = {
            "WattTime": relative_merit_from_provider if use_v2 else None,
            "CustomInternalCalculation": relative_merit_calculated,
        }.get(source.relative_merit_source)

        families = [
            ("system_wide_emissions", system_wide if source.api_key else None),
            ("marginal_emissions", marginal),
            ("marginal_forecast", marginal_forecast),
            ("relative_merit", relative_merit),
        ]
        self._run_families(SeriesType.EMISSIONS, region.id, families, outcome, cancel_event)
        return region.id

    # ------------------------------------------------------------------
    # Weather
    # ------------------------------------------------------------------

    def _mine_weather(
        self,
        source: WeatherSourceConfig,
        outcome: RegionOutcome,
        cancel_event: Optional[threading.Event],
    ) -> Optional[int]:
        if not source.api_key:
            self.log.warning(f"No {DARKSKY} API key for {source.friendly_name}, skipping weather")
            return None

        region = self.store.find_or_create_region(
            SeriesType.WEATHER,
            source.friendly_name,
            timezone_name=source.timezone,
            latitude=source.latitude,
            longitude=source.longitude,
        )
        caller = self.caller_for(DARKSKY, source.api_key, source.throttle)
        client = self.weather_client_factory(caller, source)

        now = self.clock()
        history_start, history_end = MiningWindows.resolve(self.windows.weather_history, now)
        forecast_start, forecast_end = MiningWindows.resolve(self.windows.weather_forecast, now)

        def to_updates(df, is_forecast: bool) -> List[PointUpdate]:
            return [
                PointUpdate(row.pop("datetime_utc"), row, is_forecast=is_forecast)
                for row in weather_rows(df)
            ]

        families = [
            ("weather_historic", lambda: to_updates(
                client.get_historic_weather(source.latitude, source.longitude, history_start, history_end), False)),
            ("weather_forecast", lambda: to_updates(
                client.get_forecast_weather(source.latitude, source.longitude, forecast_start, forecast_end), True)),
        ]
        self._run_families(SeriesType.WEATHER, region.id, families, outcome, cancel_event)
        return region.id
