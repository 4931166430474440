"""
Cursor pagination and time-window query parameters.

PagedFetcher follows the "next" URL of each response verbatim until it is
null. There is no page-count bound: a finite cursor chain is trusted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from energy_miner.api.http import ApiRequest
from energy_miner.api.throttled import ThrottledCaller

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """One page of results plus the cursor to the next one (None when exhausted)."""

    results: List[Any]
    next_cursor: Optional[str] = None


class PagedFetcher:
    """Accumulates all pages of a cursor-paginated endpoint, in arrival order."""

    def __init__(
        self,
        caller: ThrottledCaller,
        results_key: str = "results",
        next_key: str = "next",
        log: Optional[logging.Logger] = None,
    ):
        self.caller = caller
        self.results_key = results_key
        self.next_key = next_key
        self.log = log or logger

    def _to_page(self, payload: Any) -> Page:
        if payload is None:
            return Page(results=[])
        if isinstance(payload, list):
            return Page(results=payload)
        results = payload.get(self.results_key) or []
        return Page(results=list(results), next_cursor=payload.get(self.next_key) or None)

    def iter_pages(
        self,
        request: ApiRequest,
        caller_key: str,
        api_name: str,
        timeout: Optional[float] = None,
    ) -> Iterator[Page]:
        """Yield pages, requesting each cursor URL verbatim with the same auth."""
        page = self._to_page(self.caller.execute(request, caller_key, api_name, timeout=timeout))
        yield page
        while page.next_cursor is not None:
            next_request = ApiRequest(url=page.next_cursor, params=None, auth=request.auth)
            page = self._to_page(self.caller.execute(next_request, caller_key, api_name, timeout=timeout))
            yield page

    def fetch_pages(
        self,
        request: ApiRequest,
        caller_key: str,
        api_name: str,
        timeout: Optional[float] = None,
    ) -> List[Page]:
        return list(self.iter_pages(request, caller_key, api_name, timeout=timeout))

    def fetch_all(
        self,
        request: ApiRequest,
        caller_key: str,
        api_name: str,
        timeout: Optional[float] = None,
    ) -> List[Any]:
        """
        Fetch every page and concatenate the result lists.

        Transport errors propagate; nothing is retried.
        """
        results: List[Any] = []
        pages = 0
        for page in self.iter_pages(request, caller_key, api_name, timeout=timeout):
            results.extend(page.results)
            pages += 1
        self.log.debug(f"{api_name}: fetched {len(results)} results over {pages} page(s)")
        return results


class WindowStyle(str, Enum):
    """How a provider expects a [start, end] window in its query string."""

    # start_at/end_at with an explicit +00:00 offset; requests encodes "+" as %2B
    OFFSET = "offset"
    # starttime/endtime without offset
    PLAIN = "plain"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def window_params(
    start: Optional[datetime],
    end: Optional[datetime],
    style: WindowStyle = WindowStyle.OFFSET,
) -> Dict[str, str]:
    """Query parameters for a time window. Missing bounds are omitted."""
    if style is WindowStyle.OFFSET:
        start_key, end_key, fmt = "start_at", "end_at", "%Y-%m-%dT%H:%M:%S+00:00"
    else:
        start_key, end_key, fmt = "starttime", "endtime", "%Y-%m-%dT%H:%M:%S"

    params: Dict[str, str] = {}
    if start is not None:
        params[start_key] = _as_utc(start).strftime(fmt)
    if end is not None:
        params[end_key] = _as_utc(end).strftime(fmt)
    return params
