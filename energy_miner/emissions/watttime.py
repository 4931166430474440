"""
WattTime emissions API client.

v1 (https://api.watttime.org/api/v1/):
- API key sent as "Authorization: Token <key>"
- start_at/end_at with an explicit UTC offset
- cursor pagination through the "next" URL, page_size=1000

v2 (https://api2.watttime.org/v2/):
- bearer token obtained from login/ with basic auth
- starttime/endtime without offset, unpaginated list responses

Every call goes through a ThrottledCaller so quota is spent and checked
consistently with every other process sharing the ledger.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from energy_miner.api.http import ApiRequest, BasicAuth, TokenAuth
from energy_miner.api.paging import PagedFetcher, WindowStyle, window_params
from energy_miner.api.throttled import ThrottledCaller, make_caller_key
from energy_miner.emissions.schemas import (
    GenerationMixResult,
    LoginResponse,
    MarginalCarbonResult,
    MarginalCarbonV2Point,
    RelativeMeritIndex,
)
from energy_miner.errors import ConfigurationError, InvalidResponseError, TransportError
from energy_miner.utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

API_NAME = "WattTime"
DEFAULT_V1_URL = "https://api.watttime.org/api/v1/"
DEFAULT_PAGE_SIZE = 1000

# Markets
REAL_TIME_5_MIN = "RT5M"
REAL_TIME_HOURLY = "RTHR"
DAY_AHEAD_HOURLY = "DAHR"

M = TypeVar("M", bound=BaseModel)


def _parse_all(model: Type[M], items: List[Any]) -> List[M]:
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as e:
        raise InvalidResponseError(f"{API_NAME} returned malformed {model.__name__}: {e}") from e


class WattTimeClient:
    """Client for the WattTime marginal and system-wide emissions endpoints."""

    def __init__(
        self,
        caller: ThrottledCaller,
        api_url: str = DEFAULT_V1_URL,
        api_key: Optional[str] = None,
        v2_api_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: Optional[float] = None,
        clock: Clock = utc_now,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize WattTime client.

        Args:
            caller: Throttled caller spending this account's quota
            api_url: v1 base URL (trailing slash)
            api_key: v1 API key
            v2_api_url: v2 base URL (trailing slash), optional
            username: v2 account name
            password: v2 account password
            page_size: v1 page size
            timeout: Per-call timeout in seconds (default: the caller's)
            clock: Current time source, used for default windows
            log: Logger (default: module logger)
        """
        self.caller = caller
        self.api_url = api_url if api_url.endswith("/") else api_url + "/"
        self.api_key = api_key
        self.v2_api_url = v2_api_url if not v2_api_url or v2_api_url.endswith("/") else v2_api_url + "/"
        self.username = username
        self.password = password
        self.page_size = page_size
        self.timeout = timeout
        self.clock = clock
        self.log = log or logger
        self.fetcher = PagedFetcher(caller, results_key="results", next_key="next", log=self.log)
        self.caller_key = make_caller_key(API_NAME, api_key or username)
        self._token: Optional[str] = None

    # ------------------------------------------------------------------
    # v1
    # ------------------------------------------------------------------

    def _v1_auth(self) -> Optional[TokenAuth]:
        return TokenAuth(self.api_key, scheme="Token") if self.api_key else None

    def _v1_params(
        self,
        ba: str,
        start: Optional[datetime],
        end: Optional[datetime],
        market: Optional[str] = None,
    ) -> dict:
        params = {"ba": ba, "page_size": self.page_size}
        params.update(window_params(start, end, WindowStyle.OFFSET))
        if market:
            params["market"] = market
        return params

    def get_marginal_carbon(
        self,
        ba: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        market: Optional[str] = None,
    ) -> List[MarginalCarbonResult]:
        """
        Fetch marginal carbon results from the v1 marginal/ endpoint.

        Args:
            ba: Balancing authority abbreviation (e.g., "PJM")
            start: Window start (UTC)
            end: Window end (UTC)
            market: Optional market filter (RT5M, RTHR, DAHR)

        Returns:
            All results across every page, in arrival order
        """
        request = ApiRequest(
            url=f"{self.api_url}marginal/",
            params=self._v1_params(ba, start, end, market),
            auth=self._v1_auth(),
        )
        raw = self.fetcher.fetch_all(request, self.caller_key, API_NAME, timeout=self.timeout)
        results = _parse_all(MarginalCarbonResult, raw)
        self.log.info(f"{API_NAME}: {len(results)} marginal results for {ba} (market={market or 'any'})")
        return results

    def get_observed_marginal_carbon(
        self,
        ba: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MarginalCarbonResult]:
        """Real-time 5-minute marginal results, falling back to hourly when none exist."""
        results = self.get_marginal_carbon(ba, start, end, market=REAL_TIME_5_MIN)
        if results:
            return results
        self.log.info(f"{API_NAME}: no {REAL_TIME_5_MIN} results for {ba}, trying {REAL_TIME_HOURLY}")
        return self.get_marginal_carbon(ba, start, end, market=REAL_TIME_HOURLY)

    def get_forecast_marginal_carbon(
        self,
        ba: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MarginalCarbonResult]:
        """Day-ahead hourly marginal forecast."""
        return self.get_marginal_carbon(ba, start, end, market=DAY_AHEAD_HOURLY)

    def get_most_recent_marginal_carbon(self, ba: str) -> Optional[MarginalCarbonResult]:
        """Latest real-time 5-minute result within an hour either side of now."""
        now = self.clock()
        results = self.get_marginal_carbon(
            ba, now - timedelta(hours=1), now + timedelta(hours=1), market=REAL_TIME_5_MIN
        )
        if not results:
            return None
        return max(results, key=lambda r: r.timestamp)

    def get_generation_mix(
        self,
        ba: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[GenerationMixResult]:
        """Generation mix and system-wide carbon from the v1 datapoints/ endpoint."""
        request = ApiRequest(
            url=f"{self.api_url}datapoints/",
            params=self._v1_params(ba, start, end),
            auth=self._v1_auth(),
        )
        raw = self.fetcher.fetch_all(request, self.caller_key, API_NAME, timeout=self.timeout)
        results = _parse_all(GenerationMixResult, raw)
        self.log.info(f"{API_NAME}: {len(results)} generation mix results for {ba}")
        return results

    # ------------------------------------------------------------------
    # v2
    # ------------------------------------------------------------------

    @property
    def has_v2(self) -> bool:
        return bool(self.v2_api_url and self.username and self.password)

    def login(self) -> str:
        """Obtain (and cache) a v2 bearer token using basic auth."""
        if not self.has_v2:
            raise ConfigurationError(f"{API_NAME} v2 needs a URL, username and password")
        response = self.caller.execute(
            ApiRequest(url=f"{self.v2_api_url}login/", auth=BasicAuth(self.username, self.password)),
            self.caller_key,
            API_NAME,
            timeout=self.timeout,
            response_model=LoginResponse,
        )
        self._token = response.token
        self.log.info(f"{API_NAME}: logged in to v2 API as {self.username}")
        return self._token

    def _v2_get(self, endpoint: str, params: dict) -> Any:
        """GET a v2 endpoint, logging in first and once more if the token was rejected."""
        if self._token is None:
            self.login()
        request = ApiRequest(url=f"{self.v2_api_url}{endpoint}", params=params, auth=TokenAuth(self._token))
        try:
            return self.caller.execute(request, self.caller_key, API_NAME, timeout=self.timeout)
        except TransportError as e:
            if e.status_code != 401:
                raise
            self.log.info(f"{API_NAME}: v2 token rejected, logging in again")
            self.login()
            request = ApiRequest(url=request.url, params=params, auth=TokenAuth(self._token))
            return self.caller.execute(request, self.caller_key, API_NAME, timeout=self.timeout)

    def get_marginal_carbon_v2(
        self,
        ba: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MarginalCarbonV2Point]:
        """Observed marginal emissions (lbs/MWh) from the v2 data/ endpoint."""
        params = {"ba": ba}
        params.update(window_params(start, end, WindowStyle.PLAIN))
        payload = self._v2_get("data/", params)
        results = _parse_all(MarginalCarbonV2Point, payload or [])
        self.log.info(f"{API_NAME}: {len(results)} v2 marginal points for {ba}")
        return results

    def get_forecast_marginal_carbon_v2(
        self,
        ba: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MarginalCarbonV2Point]:
        """Forecast marginal emissions (lbs/MWh) from the v2 forecast/ endpoint."""
        params = {"ba": ba}
        params.update(window_params(start, end, WindowStyle.PLAIN))
        payload = self._v2_get("forecast/", params)

        # Either one {"generated_at", "forecast": [...]} block or a list of them
        blocks = payload if isinstance(payload, list) else [payload or {}]
        points: List[Any] = []
        for block in blocks:
            if isinstance(block, dict) and "forecast" in block:
                points.extend(block.get("forecast") or [])
            else:
                points.append(block)
        results = _parse_all(MarginalCarbonV2Point, points)
        self.log.info(f"{API_NAME}: {len(results)} v2 forecast points for {ba}")
        return results

    def get_relative_merit(self, ba: str) -> RelativeMeritIndex:
        """Current emissions index of the grid (percent 0..100) from the v2 index/ endpoint."""
        payload = self._v2_get("index/", {"ba": ba})
        try:
            return RelativeMeritIndex.model_validate(payload)
        except ValidationError as e:
            raise InvalidResponseError(f"{API_NAME} returned malformed index: {e}") from e
