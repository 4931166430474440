"""Upstream API access: HTTP execution, throttling and pagination."""

from energy_miner.api.http import ApiRequest, BasicAuth, HttpExecutor, TokenAuth
from energy_miner.api.paging import Page, PagedFetcher, WindowStyle, window_params
from energy_miner.api.throttled import ThrottledCaller, make_caller_key

__all__ = [
    "ApiRequest",
    "BasicAuth",
    "HttpExecutor",
    "TokenAuth",
    "Page",
    "PagedFetcher",
    "WindowStyle",
    "window_params",
    "ThrottledCaller",
    "make_caller_key",
]
