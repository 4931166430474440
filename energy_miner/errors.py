"""
Error taxonomy for the ingestion pipeline.

Being over quota is not an error: RateGate.can_proceed simply returns False
and the throttled caller keeps waiting.
"""

from typing import Optional


class EnergyMinerError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(EnergyMinerError):
    """Malformed region descriptor, unknown throttling mode or bad timezone name.

    Fatal for the affected region only.
    """


class TransportError(EnergyMinerError):
    """HTTP or network failure while talking to an upstream API."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class InvalidResponseError(TransportError):
    """Upstream answered 2xx but the body could not be decoded into the expected shape."""


class StorageConflictError(EnergyMinerError):
    """Optimistic-concurrency or uniqueness conflict while saving. Retryable."""


class LedgerWriteError(EnergyMinerError):
    """A call record could not be persisted. Reported, never raised to the caller."""


class LedgerReadError(EnergyMinerError):
    """Call records could not be read back, so quota usage cannot be verified."""


class ThrottleWaitTimeout(EnergyMinerError):
    """The optional maximum throttle wait elapsed before quota became available."""

    def __init__(self, caller_key: str, api_name: str, waited_seconds: float):
        super().__init__(
            f"Gave up waiting for quota on {api_name} after {waited_seconds:.1f}s"
        )
        self.caller_key = caller_key
        self.api_name = api_name
        self.waited_seconds = waited_seconds
