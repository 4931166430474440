"""Tests for the HTTP executor."""

from unittest.mock import MagicMock

import pytest
import requests
from requests.auth import HTTPBasicAuth

from energy_miner.api.http import BasicAuth, HttpExecutor, TokenAuth
from energy_miner.errors import TransportError

URL = "https://api.watttime.org/api/v1/marginal/"


def make_response(status_code=200, text='{"ok": true}'):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.url = URL
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = make_response()
    return session


class TestHttpExecutor:
    """Test HttpExecutor.invoke."""

    def test_returns_body(self, session):
        executor = HttpExecutor(session)

        body = executor.invoke(URL, params={"ba": "PJM"}, timeout=10)

        assert body == '{"ok": true}'
        call = session.get.call_args
        assert call.kwargs["params"] == {"ba": "PJM"}
        assert call.kwargs["timeout"] == 10
        assert session.headers["Accept"] == "application/json"

    def test_default_timeout(self, session):
        HttpExecutor(session).invoke(URL)
        assert session.get.call_args.kwargs["timeout"] == 300.0

    def test_explicit_zero_timeout(self, session):
        HttpExecutor(session).invoke(URL, timeout=0)
        assert session.get.call_args.kwargs["timeout"] == 0

    def test_token_auth_header(self, session):
        HttpExecutor(session).invoke(URL, auth=TokenAuth("abc", scheme="Token"))

        call = session.get.call_args
        assert call.kwargs["headers"] == {"Authorization": "Token abc"}
        assert call.kwargs["auth"] is None

    def test_basic_auth(self, session):
        HttpExecutor(session).invoke(URL, auth=BasicAuth("miner", "pw"))

        basic = session.get.call_args.kwargs["auth"]
        assert isinstance(basic, HTTPBasicAuth)
        assert (basic.username, basic.password) == ("miner", "pw")

    def test_non_success_status(self, session):
        session.get.return_value = make_response(status_code=429, text="slow down")

        with pytest.raises(TransportError) as exc_info:
            HttpExecutor(session).invoke(URL)

        assert exc_info.value.status_code == 429
        assert exc_info.value.url == URL

    def test_network_failure(self, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError) as exc_info:
            HttpExecutor(session).invoke(URL)

        assert exc_info.value.status_code is None

    def test_credentials_are_masked(self):
        assert "abc" not in repr(TokenAuth("abc"))
        assert "pw" not in repr(BasicAuth("miner", "pw"))
