"""
Tests for the durable call ledger.

Includes:
- Recording and counting per (caller, api) pair
- Visibility across ledgers sharing one database
- Write failures reported through the error channel
- Read failures making the gate fail closed
- Pruning of expired records
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from energy_miner.db.call_ledger import DurableCallLedger
from energy_miner.errors import LedgerReadError, LedgerWriteError
from energy_miner.utils.rate_limiter import RateGate, ThrottlePolicy

CALLER = "WattTime:abc"
API = "WattTime"


def broken_session_factory():
    raise OperationalError("SELECT 1", {}, Exception("database is down"))


@pytest.fixture
def ledger(session_factory):
    return DurableCallLedger(session_factory)


class TestDurableCallLedger:
    """Test DurableCallLedger on SQLite."""

    def test_record_and_count(self, ledger, t0):
        ledger.record(CALLER, API, t0)
        ledger.record(CALLER, API, t0 + timedelta(seconds=30))
        ledger.record("other", API, t0)
        ledger.record(CALLER, "DarkSky", t0)

        assert ledger.count_since(CALLER, API, t0) == 2
        assert ledger.count_since(CALLER, API, t0 + timedelta(seconds=30)) == 1
        assert ledger.count_since(CALLER, API, t0 + timedelta(seconds=31)) == 0

    def test_calls_since_ordered(self, ledger, t0):
        ledger.record(CALLER, API, t0 + timedelta(seconds=10))
        ledger.record(CALLER, API, t0)

        records = ledger.calls_since(CALLER, API, t0)
        assert [r.called_at for r in records] == [
            t0.replace(tzinfo=None),
            (t0 + timedelta(seconds=10)).replace(tzinfo=None),
        ]
        assert all(r.caller_key == CALLER and r.api_name == API for r in records)

    def test_ledgers_sharing_a_database_see_each_other(self, session_factory, t0, clock):
        first = DurableCallLedger(session_factory)
        second = DurableCallLedger(session_factory)
        policy = ThrottlePolicy.from_limits("Durable", max_calls_per_minute=2)

        first.record(CALLER, API, t0)
        second.record(CALLER, API, t0)

        gate = RateGate(policy, first, clock=clock)
        assert not gate.can_proceed(CALLER, API)
        assert first.count_since(CALLER, API, t0) == 2

    def test_write_failure_does_not_raise(self, t0):
        errors = []
        ledger = DurableCallLedger(broken_session_factory, on_write_error=errors.append)

        ledger.record(CALLER, API, t0)

        assert len(errors) == 1
        assert isinstance(errors[0], LedgerWriteError)

    def test_read_failure_raises(self, t0):
        ledger = DurableCallLedger(broken_session_factory)
        with pytest.raises(LedgerReadError):
            ledger.count_since(CALLER, API, t0)
        with pytest.raises(LedgerReadError):
            ledger.calls_since(CALLER, API, t0)

    def test_unreadable_ledger_blocks_calls(self, clock):
        ledger = DurableCallLedger(broken_session_factory)
        gate = RateGate(ThrottlePolicy.from_limits("Durable", 100, 1000), ledger, clock=clock)
        assert gate.can_proceed(CALLER, API) is False

    def test_prune(self, ledger, t0):
        ledger.record(CALLER, API, t0 - timedelta(days=2))
        ledger.record(CALLER, API, t0 - timedelta(hours=1))

        assert ledger.prune(t0 - timedelta(days=1)) == 1
        assert ledger.count_since(CALLER, API, t0 - timedelta(days=3)) == 1

    def test_prune_expired_keeps_day_window(self, ledger, t0):
        ledger.record(CALLER, API, t0 - timedelta(hours=23))
        ledger.record(CALLER, API, t0 - timedelta(hours=25))

        assert ledger.prune_expired(t0) == 1
        assert ledger.count_since(CALLER, API, t0 - timedelta(days=1)) == 1
