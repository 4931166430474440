"""
Throttled execution of single upstream calls.

ThrottledCaller blocks on its RateGate, records the call in the ledger as
soon as permission is granted, then performs the call. A slow or failing
call therefore still counts against quota. Transport errors propagate
without retry.
"""

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Optional, Type

from pydantic import BaseModel, ValidationError

from energy_miner.api.http import DEFAULT_TIMEOUT_SECONDS, ApiRequest, HttpExecutor
from energy_miner.errors import ConfigurationError, InvalidResponseError, ThrottleWaitTimeout
from energy_miner.utils.rate_limiter import (
    CallLedger,
    InMemoryCallLedger,
    RateGate,
    ThrottleMode,
    ThrottlePolicy,
)
from energy_miner.utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = 0.5


def make_caller_key(api_name: str, credential: Optional[str]) -> str:
    """Stable quota identity for a credential that never exposes the credential itself."""
    if not credential:
        return f"{api_name}:anonymous"
    digest = hashlib.sha256(credential.encode("utf-8")).hexdigest()[:16]
    return f"{api_name}:{digest}"


class ThrottledCaller:
    """Wraps outbound calls with quota-window throttling."""

    def __init__(
        self,
        policy: ThrottlePolicy,
        executor: Optional[HttpExecutor] = None,
        ledger: Optional[CallLedger] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        max_wait_seconds: Optional[float] = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize a throttled caller.

        Args:
            policy: Quota settings
            executor: HTTP executor (default: a fresh HttpExecutor)
            ledger: Call ledger. Required for durable mode; in-memory mode
                creates a private one when omitted.
            clock: Returns the current aware UTC time
            sleep: Sleep function used between gate checks
            backoff_seconds: Fixed wait between gate checks
            max_wait_seconds: None waits for quota indefinitely, otherwise
                ThrottleWaitTimeout is raised once exceeded
            default_timeout: Per-call timeout when execute() gets none
            log: Logger (default: module logger)
        """
        if ledger is None:
            if policy.mode is ThrottleMode.DURABLE:
                raise ConfigurationError("Durable throttling requires a shared call ledger")
            if policy.mode is ThrottleMode.IN_MEMORY:
                ledger = InMemoryCallLedger()

        self.policy = policy
        self.executor = executor or HttpExecutor()
        self.ledger = ledger
        self.clock = clock
        self.sleep = sleep
        self.backoff_seconds = backoff_seconds
        self.max_wait_seconds = max_wait_seconds
        self.default_timeout = default_timeout
        self.log = log or logger
        self.gate = RateGate(policy, ledger, clock=clock, log=self.log)
        self._admit_lock = threading.Lock()

    def _try_admit(self, caller_key: str, api_name: str) -> bool:
        """Check the gate and, when admitted, record the call as one step."""
        with self._admit_lock:
            if not self.gate.can_proceed(caller_key, api_name):
                return False
            if self.policy.mode is not ThrottleMode.NONE:
                self.ledger.record(caller_key, api_name, self.clock())
            return True

    def wait_for_quota(self, caller_key: str, api_name: str) -> float:
        """Block until the gate admits a call and record it. Returns seconds waited.

        Threads sharing this caller cannot both pass the gate on the same spare
        quota. The lock is not held while sleeping.
        """
        waited = 0.0
        logged = False
        while not self._try_admit(caller_key, api_name):
            if self.max_wait_seconds is not None and waited >= self.max_wait_seconds:
                raise ThrottleWaitTimeout(caller_key, api_name, waited)
            if not logged:
                self.log.info(f"Quota exhausted for {api_name}, waiting for capacity")
                logged = True
            self.sleep(self.backoff_seconds)
            waited += self.backoff_seconds
        if logged:
            self.log.info(f"Quota available for {api_name} after {waited:.1f}s")
        return waited

    def execute(
        self,
        request: ApiRequest,
        caller_key: str,
        api_name: str,
        timeout: Optional[float] = None,
        response_model: Optional[Type[BaseModel]] = None,
    ) -> Any:
        """
        Perform one throttled call and decode its JSON body.

        Args:
            request: URL, query parameters and auth
            caller_key: Identity whose quota is spent
            api_name: Upstream API name
            timeout: Seconds (default: the caller's default timeout)
            response_model: Optional pydantic model to validate the body with

        Returns:
            Decoded JSON, or a response_model instance

        Raises:
            TransportError: network failure or non-2xx status (not retried)
            InvalidResponseError: body is not JSON or does not fit the model
            ThrottleWaitTimeout: only when max_wait_seconds is set
        """
        self.wait_for_quota(caller_key, api_name)

        body = self.executor.invoke(
            request.url,
            params=request.params,
            auth=request.auth,
            timeout=timeout if timeout is not None else self.default_timeout,
        )

        try:
            payload = json.loads(body) if body else None
        except ValueError as e:
            raise InvalidResponseError(f"{api_name} returned non-JSON body", url=request.url) from e

        if response_model is None:
            return payload
        try:
            return response_model.model_validate(payload)
        except ValidationError as e:
            raise InvalidResponseError(
                f"{api_name} response does not match {response_model.__name__}: {e}",
                url=request.url,
            ) from e
