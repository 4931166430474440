"""Utility modules for the ingestion pipeline."""

from energy_miner.utils.rate_limiter import (
    UNLIMITED,
    CallLedger,
    CallRecord,
    InMemoryCallLedger,
    Limited,
    RateGate,
    ThrottleMode,
    ThrottlePolicy,
    Unlimited,
    quota_from_int,
)
from energy_miner.utils.retry import create_retry_decorator
from energy_miner.utils.timing import timed_operation

__all__ = [
    "UNLIMITED",
    "CallLedger",
    "CallRecord",
    "InMemoryCallLedger",
    "Limited",
    "RateGate",
    "ThrottleMode",
    "ThrottlePolicy",
    "Unlimited",
    "quota_from_int",
    "create_retry_decorator",
    "timed_operation",
]
