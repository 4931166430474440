"""
Tests for the throttled caller.

Covers the blocking quota wait, ledger-before-call ordering, error
propagation without retry, timeouts and typed responses.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel

from energy_miner.api.http import ApiRequest, TokenAuth
from energy_miner.api.throttled import ThrottledCaller, make_caller_key
from energy_miner.errors import (
    ConfigurationError,
    InvalidResponseError,
    ThrottleWaitTimeout,
    TransportError,
)
from energy_miner.utils.rate_limiter import InMemoryCallLedger, ThrottlePolicy

REQUEST = ApiRequest(url="https://api.example.org/v1/marginal/", params={"ba": "PJM"})
CALLER = "WattTime:abc"
API = "WattTime"


def make_executor(body='{"ok": true}'):
    executor = MagicMock()
    executor.invoke.return_value = body
    return executor


class Token(BaseModel):
    token: str


class TestThrottledCaller:
    """Test ThrottledCaller.execute."""

    def test_third_call_waits_for_oldest_to_age_out(self, clock, fake_sleep):
        executor = make_executor()
        caller = ThrottledCaller(
            ThrottlePolicy.from_limits("InMemory", 2, -1),
            executor=executor,
            clock=clock,
            sleep=fake_sleep,
        )

        caller.execute(REQUEST, CALLER, API)
        caller.execute(REQUEST, CALLER, API)
        assert fake_sleep.calls == []

        caller.execute(REQUEST, CALLER, API)

        # Both earlier calls happened at t0; the window frees just after 60s
        assert fake_sleep.total == pytest.approx(60.5)
        assert all(s == 0.5 for s in fake_sleep.calls)
        assert executor.invoke.call_count == 3

    def test_call_is_recorded_before_it_is_made(self, clock):
        ledger = InMemoryCallLedger()
        executor = MagicMock()

        def invoke(*args, **kwargs):
            assert len(ledger) == 1
            return "{}"

        executor.invoke.side_effect = invoke
        caller = ThrottledCaller(
            ThrottlePolicy.from_limits("InMemory", 5, -1), executor=executor, ledger=ledger, clock=clock
        )
        caller.execute(REQUEST, CALLER, API)
        assert executor.invoke.call_count == 1

    def test_failed_call_still_counts_and_is_not_retried(self, clock):
        ledger = InMemoryCallLedger()
        executor = MagicMock()
        executor.invoke.side_effect = TransportError("HTTP 500", url=REQUEST.url, status_code=500)
        caller = ThrottledCaller(
            ThrottlePolicy.from_limits("InMemory", 5, -1), executor=executor, ledger=ledger, clock=clock
        )

        with pytest.raises(TransportError) as exc_info:
            caller.execute(REQUEST, CALLER, API)

        assert exc_info.value.status_code == 500
        assert executor.invoke.call_count == 1
        assert len(ledger) == 1

    def test_default_timeout_is_five_minutes(self, clock):
        executor = make_executor()
        auth = TokenAuth("secret", scheme="Token")
        request = ApiRequest(url=REQUEST.url, params=REQUEST.params, auth=auth)
        caller = ThrottledCaller(ThrottlePolicy(), executor=executor, clock=clock)

        caller.execute(request, CALLER, API)
        executor.invoke.assert_called_once_with(REQUEST.url, params={"ba": "PJM"}, auth=auth, timeout=300.0)

        caller.execute(request, CALLER, API, timeout=12)
        assert executor.invoke.call_args.kwargs["timeout"] == 12

    def test_explicit_zero_timeout_is_passed_through(self, clock):
        executor = make_executor()
        caller = ThrottledCaller(ThrottlePolicy(), executor=executor, clock=clock)

        caller.execute(REQUEST, CALLER, API, timeout=0)

        assert executor.invoke.call_args.kwargs["timeout"] == 0

    def test_returns_decoded_json(self, clock):
        caller = ThrottledCaller(ThrottlePolicy(), executor=make_executor('{"results": [1, 2]}'), clock=clock)
        assert caller.execute(REQUEST, CALLER, API) == {"results": [1, 2]}

    def test_non_json_body(self, clock):
        caller = ThrottledCaller(ThrottlePolicy(), executor=make_executor("<html>"), clock=clock)
        with pytest.raises(InvalidResponseError):
            caller.execute(REQUEST, CALLER, API)

    def test_response_model(self, clock):
        caller = ThrottledCaller(ThrottlePolicy(), executor=make_executor('{"token": "abc"}'), clock=clock)
        result = caller.execute(REQUEST, CALLER, API, response_model=Token)
        assert isinstance(result, Token)
        assert result.token == "abc"

    def test_response_model_mismatch(self, clock):
        caller = ThrottledCaller(ThrottlePolicy(), executor=make_executor('{"nope": 1}'), clock=clock)
        with pytest.raises(InvalidResponseError):
            caller.execute(REQUEST, CALLER, API, response_model=Token)

    def test_max_wait_escape_hatch(self, clock, fake_sleep):
        executor = make_executor()
        caller = ThrottledCaller(
            ThrottlePolicy.from_limits("InMemory", 0, -1),
            executor=executor,
            clock=clock,
            sleep=fake_sleep,
            max_wait_seconds=2.0,
        )

        with pytest.raises(ThrottleWaitTimeout):
            caller.execute(REQUEST, CALLER, API)

        assert fake_sleep.total == pytest.approx(2.0)
        executor.invoke.assert_not_called()

    def test_none_mode_keeps_no_ledger(self, clock):
        caller = ThrottledCaller(ThrottlePolicy(), executor=make_executor(), clock=clock)
        caller.execute(REQUEST, CALLER, API)
        assert caller.ledger is None

    def test_durable_mode_requires_shared_ledger(self):
        with pytest.raises(ConfigurationError):
            ThrottledCaller(ThrottlePolicy.from_limits("Durable", 5, 5), executor=make_executor())


class SlowCountLedger(InMemoryCallLedger):
    """In-memory ledger whose reads are slow enough for threads to overlap."""

    def count_since(self, caller_key, api_name, since):
        count = super().count_since(caller_key, api_name, since)
        time.sleep(0.01)
        return count


class TestConcurrentCallers:
    """Test one caller shared by several threads."""

    def test_threads_cannot_overspend_quota(self, clock):
        executor = make_executor()
        ledger = SlowCountLedger()
        caller = ThrottledCaller(
            ThrottlePolicy.from_limits("InMemory", 2, 100),
            executor=executor,
            ledger=ledger,
            clock=clock,
            sleep=lambda seconds: None,
            max_wait_seconds=0.0,
        )
        start = threading.Barrier(6)
        outcomes = []
        outcomes_lock = threading.Lock()

        def call():
            start.wait()
            try:
                caller.execute(REQUEST, CALLER, API)
                outcome = "admitted"
            except ThrottleWaitTimeout:
                outcome = "held"
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=call) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(outcomes) == ["admitted"] * 2 + ["held"] * 4
        assert executor.invoke.call_count == 2
        assert len(ledger) == 2


class TestCallerKey:
    """Test quota identities."""

    def test_stable_and_does_not_leak_credential(self):
        key = make_caller_key("WattTime", "super-secret")
        assert key == make_caller_key("WattTime", "super-secret")
        assert "super-secret" not in key
        assert key.startswith("WattTime:")

    def test_anonymous(self):
        assert make_caller_key("DarkSky", None) == "DarkSky:anonymous"
