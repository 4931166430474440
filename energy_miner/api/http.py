"""
HTTP executor used by the throttled caller.

Thin wrapper over a requests.Session that turns every failure into a
TransportError carrying the URL and status code.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import requests
from requests.auth import HTTPBasicAuth

from energy_miner.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0


@dataclass(frozen=True)
class TokenAuth:
    """Authorization header token. WattTime v1 uses the "Token" scheme, v2 "Bearer"."""

    token: str
    scheme: str = "Bearer"

    def header(self) -> str:
        return f"{self.scheme} {self.token}"

    def __repr__(self) -> str:
        return f"TokenAuth(scheme={self.scheme!r}, token=***)"


@dataclass(frozen=True)
class BasicAuth:
    """Username/password credentials, used for token login."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicAuth(username={self.username!r}, password=***)"


Auth = Union[TokenAuth, BasicAuth, None]


@dataclass(frozen=True)
class ApiRequest:
    """One outbound GET. params=None means the URL is sent verbatim."""

    url: str
    params: Optional[Dict[str, Any]] = field(default=None)
    auth: Auth = None


class HttpExecutor:
    """Executes GET requests and returns the raw body text."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def invoke(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        auth: Auth = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Perform a GET request.

        Args:
            url: Absolute URL
            params: Query parameters, encoded by requests
            auth: TokenAuth, BasicAuth or None
            timeout: Seconds (default 300)

        Returns:
            Response body as text

        Raises:
            TransportError: on network failure or a non-2xx status
        """
        headers = {}
        basic = None
        if isinstance(auth, TokenAuth):
            headers["Authorization"] = auth.header()
        elif isinstance(auth, BasicAuth):
            basic = HTTPBasicAuth(auth.username, auth.password)

        try:
            response = self.session.get(
                url,
                params=params,
                headers=headers,
                auth=basic,
                timeout=timeout if timeout is not None else DEFAULT_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}", url=url) from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"HTTP {response.status_code} from {response.url}: {response.text[:200]}",
                url=url,
                status_code=response.status_code,
            )
        return response.text

    def close(self) -> None:
        self.session.close()
