"""
Quota-window rate limiting for upstream APIs.

A RateGate answers "may this call go out now?" by counting the calls a
CallLedger has recorded for the same (caller key, api name) pair over the
trailing minute and the trailing day.

Ledger choice:
- InMemoryCallLedger: one process only, nothing is coordinated across hosts.
- A durable ledger (see energy_miner.db.call_ledger) shared by every process
  that spends the same quota.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

from energy_miner.errors import ConfigurationError, LedgerReadError
from energy_miner.utils.time_utils import Clock, to_naive_utc, utc_now

logger = logging.getLogger(__name__)

MINUTE_WINDOW = timedelta(minutes=1)
DAY_WINDOW = timedelta(days=1)


@dataclass(frozen=True)
class Unlimited:
    """Quota that never limits."""

    def allows(self, count: int) -> bool:
        return True

    def __str__(self) -> str:
        return "unlimited"


@dataclass(frozen=True)
class Limited:
    """Quota of at most `calls` calls per window. Zero blocks permanently."""

    calls: int

    def __post_init__(self):
        if self.calls < 0:
            raise ConfigurationError(f"Quota must be >= 0, got {self.calls}")

    def allows(self, count: int) -> bool:
        return count < self.calls

    def __str__(self) -> str:
        return str(self.calls)


Quota = Union[Unlimited, Limited]

UNLIMITED = Unlimited()


def quota_from_int(value: Optional[int]) -> Quota:
    """Convert a descriptor integer (-1 or None = unlimited) into a tagged quota."""
    if value is None or value == -1:
        return UNLIMITED
    if value < -1:
        raise ConfigurationError(f"Invalid quota value: {value}")
    return Limited(value)


class ThrottleMode(str, Enum):
    """Where past calls are remembered."""

    NONE = "None"
    IN_MEMORY = "InMemory"
    DURABLE = "Durable"

    @classmethod
    def parse(cls, value: Union[str, "ThrottleMode", None]) -> "ThrottleMode":
        """Parse a mode name, accepting the long legacy names as aliases."""
        if isinstance(value, ThrottleMode):
            return value
        if value is None:
            return cls.NONE
        key = str(value).strip().lower()
        aliases = {
            "none": cls.NONE,
            "": cls.NONE,
            "inmemory": cls.IN_MEMORY,
            "inmemorycallrecollection": cls.IN_MEMORY,
            "durable": cls.DURABLE,
            "azuretablestoragecallrecollection": cls.DURABLE,
        }
        if key not in aliases:
            raise ConfigurationError(f"Unknown throttling mode: {value!r}")
        return aliases[key]


@dataclass(frozen=True)
class ThrottlePolicy:
    """Immutable quota settings for one throttled caller."""

    mode: ThrottleMode = ThrottleMode.NONE
    per_minute: Quota = UNLIMITED
    per_day: Quota = UNLIMITED

    @classmethod
    def from_limits(
        cls,
        mode: Union[str, ThrottleMode, None],
        max_calls_per_minute: Optional[int] = -1,
        max_calls_per_day: Optional[int] = -1,
    ) -> "ThrottlePolicy":
        return cls(
            mode=ThrottleMode.parse(mode),
            per_minute=quota_from_int(max_calls_per_minute),
            per_day=quota_from_int(max_calls_per_day),
        )


@dataclass(frozen=True)
class CallRecord:
    """One call that was allowed to go out."""

    caller_key: str
    api_name: str
    called_at: datetime


class CallLedger(ABC):
    """Append-only record of past calls, queried by RateGate."""

    @abstractmethod
    def record(self, caller_key: str, api_name: str, called_at: datetime) -> None:
        """Append a call record. Implementations must not raise on write failure."""

    @abstractmethod
    def calls_since(self, caller_key: str, api_name: str, since: datetime) -> List[CallRecord]:
        """Records for the pair with called_at >= since. May raise LedgerReadError."""

    def count_since(self, caller_key: str, api_name: str, since: datetime) -> int:
        return len(self.calls_since(caller_key, api_name, since))


class InMemoryCallLedger(CallLedger):
    """Process-local ledger, pruned of entries older than the retention window."""

    def __init__(self, retention: timedelta = DAY_WINDOW):
        self.retention = retention
        self._records: List[CallRecord] = []
        self._lock = threading.Lock()

    def record(self, caller_key: str, api_name: str, called_at: datetime) -> None:
        called_at = to_naive_utc(called_at)
        with self._lock:
            self._records.append(CallRecord(caller_key, api_name, called_at))
            self._prune(called_at)

    def calls_since(self, caller_key: str, api_name: str, since: datetime) -> List[CallRecord]:
        since = to_naive_utc(since)
        with self._lock:
            return [
                r for r in self._records
                if r.caller_key == caller_key and r.api_name == api_name and r.called_at >= since
            ]

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.retention
        self._records = [r for r in self._records if r.called_at >= cutoff]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RateGate:
    """Decides whether a call may proceed under a ThrottlePolicy.

    can_proceed() is a pure query and safe to poll. A ledger that cannot be
    read makes the gate fail closed.
    """

    def __init__(
        self,
        policy: ThrottlePolicy,
        ledger: Optional[CallLedger] = None,
        clock: Clock = utc_now,
        log: Optional[logging.Logger] = None,
    ):
        if policy.mode is not ThrottleMode.NONE and ledger is None:
            raise ConfigurationError(f"Throttling mode {policy.mode.value} needs a call ledger")
        self.policy = policy
        self.ledger = ledger
        self.clock = clock
        self.log = log or logger

    def can_proceed(self, caller_key: str, api_name: str) -> bool:
        if self.policy.mode is ThrottleMode.NONE:
            return True

        now = to_naive_utc(self.clock())
        try:
            last_minute = self.ledger.count_since(caller_key, api_name, now - MINUTE_WINDOW)
            last_day = self.ledger.count_since(caller_key, api_name, now - DAY_WINDOW)
        except LedgerReadError as e:
            self.log.error(f"Cannot read call ledger for {api_name}, holding call: {e}")
            return False

        if not self.policy.per_minute.allows(last_minute):
            self.log.debug(
                f"{api_name}: {last_minute} calls in last minute (limit {self.policy.per_minute})"
            )
            return False
        if not self.policy.per_day.allows(last_day):
            self.log.debug(
                f"{api_name}: {last_day} calls in last day (limit {self.policy.per_day})"
            )
            return False
        return True
