"""
Tests for cursor pagination and window parameters.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from energy_miner.api.http import ApiRequest, TokenAuth
from energy_miner.api.paging import PagedFetcher, WindowStyle, window_params
from energy_miner.errors import TransportError

AUTH = TokenAuth("key", scheme="Token")
FIRST = ApiRequest(url="https://api.example.org/v1/marginal/", params={"ba": "PJM", "page_size": 1000}, auth=AUTH)


def make_caller(payloads):
    caller = MagicMock()
    caller.execute.side_effect = payloads
    return caller


class TestPagedFetcher:
    """Test PagedFetcher.fetch_all."""

    def test_concatenates_pages_in_order(self):
        pages = [
            {"results": list(range(0, 100)), "next": "https://api.example.org/v1/marginal/?page=2&ba=PJM"},
            {"results": list(range(100, 200)), "next": "https://api.example.org/v1/marginal/?page=3&ba=PJM"},
            {"results": list(range(200, 237)), "next": None},
        ]
        caller = make_caller(pages)
        fetcher = PagedFetcher(caller)

        results = fetcher.fetch_all(FIRST, "k", "WattTime")

        assert len(results) == 237
        assert results == list(range(237))
        assert caller.execute.call_count == 3

    def test_cursor_is_used_verbatim(self):
        cursor = "https://api.example.org/v1/marginal/?page=2&ba=PJM&start_at=2024-01-01T00%3A00%3A00%2B00%3A00"
        caller = make_caller([
            {"results": [1], "next": cursor},
            {"results": [2], "next": None},
        ])

        PagedFetcher(caller).fetch_all(FIRST, "k", "WattTime")

        first_request = caller.execute.call_args_list[0].args[0]
        second_request = caller.execute.call_args_list[1].args[0]
        assert first_request is FIRST
        assert second_request.url == cursor
        assert second_request.params is None
        assert second_request.auth == AUTH

    def test_list_payload_is_a_single_page(self):
        caller = make_caller([[{"value": 1}, {"value": 2}]])
        assert PagedFetcher(caller).fetch_all(FIRST, "k", "WattTime") == [{"value": 1}, {"value": 2}]

    def test_empty_results(self):
        caller = make_caller([{"results": [], "next": None}])
        assert PagedFetcher(caller).fetch_all(FIRST, "k", "WattTime") == []

    def test_transport_error_propagates_without_retry(self):
        caller = make_caller([
            {"results": [1], "next": "https://api.example.org/v1/marginal/?page=2"},
            TransportError("HTTP 503", status_code=503),
        ])

        with pytest.raises(TransportError):
            PagedFetcher(caller).fetch_all(FIRST, "k", "WattTime")
        assert caller.execute.call_count == 2

    def test_fetch_pages_keeps_cursors(self):
        caller = make_caller([
            {"results": [1], "next": "https://x/?p=2"},
            {"results": [2]},
        ])
        pages = PagedFetcher(caller).fetch_pages(FIRST, "k", "WattTime")
        assert [p.next_cursor for p in pages] == ["https://x/?p=2", None]


class TestWindowParams:
    """Test provider window formatting."""

    def test_offset_style(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 2, 12, 30, tzinfo=timezone.utc)
        assert window_params(start, end, WindowStyle.OFFSET) == {
            "start_at": "2024-01-01T00:00:00+00:00",
            "end_at": "2024-01-02T12:30:00+00:00",
        }

    def test_offset_plus_is_escaped_on_the_wire(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        prepared = requests.Request(
            "GET", "https://api.example.org/v1/marginal/", params=window_params(start, None)
        ).prepare()
        assert "%2B00%3A00" in prepared.url
        assert "+" not in prepared.url

    def test_plain_style(self):
        start = datetime(2024, 1, 1, 6, 0)
        assert window_params(start, None, WindowStyle.PLAIN) == {"starttime": "2024-01-01T06:00:00"}

    def test_non_utc_input_is_converted(self):
        eastern = timezone(timedelta(hours=-5))
        start = datetime(2024, 1, 1, 7, 0, tzinfo=eastern)
        assert window_params(start, None, WindowStyle.PLAIN) == {"starttime": "2024-01-01T12:00:00"}
