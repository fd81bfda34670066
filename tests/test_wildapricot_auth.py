from __future__ import annotations

import base64
import threading
import time

import pytest
import requests

from clubsync.importer.adapters.wildapricot.auth import TokenManager
from clubsync.importer.adapters.wildapricot.errors import TokenError


class FakeResponse:
    def __init__(self, *, status_code=200, json_data=None, text: str = ""):
        self.status_code = status_code
        self._json_data = json_data or {}
        self.text = text
        self.headers = {}
        self.ok = status_code < 400

    def json(self):
        return self._json_data


class FakeAuthSession:
    def __init__(self, responses=None, *, delay: float = 0.0):
        self.responses = list(responses or [])
        self.delay = delay
        self.post_calls = []
        self._lock = threading.Lock()

    def post(self, url, headers=None, data=None, timeout=None):
        with self._lock:
            self.post_calls.append({"url": url, "headers": headers, "data": data, "timeout": timeout})
        if self.delay:
            time.sleep(self.delay)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return _token_response()


def _token_response(token="tok-1", expires_in=1800, account_id=12345):
    return FakeResponse(
        json_data={
            "access_token": token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "refresh_token": "refresh-1",
            "Permissions": [{"AccountId": account_id}],
        }
    )


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _manager(session, clock=None, **kwargs) -> TokenManager:
    return TokenManager(
        api_key="secret-key",
        auth_url="https://oauth.test/auth/token",
        account_id="999",
        session=session,
        clock=clock or FakeClock(),
        **kwargs,
    )


def test_token_request_uses_client_credentials_grant():
    session = FakeAuthSession([_token_response()])
    manager = _manager(session)

    assert manager.get_access_token() == "tok-1"

    call = session.post_calls[0]
    expected = base64.b64encode(b"APIKEY:secret-key").decode("ascii")
    assert call["headers"]["Authorization"] == f"Basic {expected}"
    assert call["data"] == {"grant_type": "client_credentials", "scope": "auto"}
    assert manager.account_id == "12345"


def test_token_is_cached_until_expiry_buffer():
    clock = FakeClock()
    session = FakeAuthSession([_token_response("tok-1"), _token_response("tok-2")])
    manager = _manager(session, clock=clock, expiry_buffer=300.0)

    assert manager.get_access_token() == "tok-1"
    clock.now += 1_000
    assert manager.get_access_token() == "tok-1"
    assert len(session.post_calls) == 1

    # Inside the 5 minute buffer the token counts as expired.
    clock.now += 600
    assert manager.get_access_token() == "tok-2"
    assert len(session.post_calls) == 2


class HtmlResponse(FakeResponse):
    def json(self):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


def test_non_json_token_response_raises_token_error():
    session = FakeAuthSession([HtmlResponse(text="<html>maintenance</html>")])
    manager = _manager(session)

    with pytest.raises(TokenError, match="not valid JSON") as exc:
        manager.get_access_token()

    assert exc.value.status_code == 200


def test_refresh_token_replaces_valid_cached_token():
    session = FakeAuthSession([_token_response("tok-1"), _token_response("tok-2")])
    manager = _manager(session)
    assert manager.get_access_token() == "tok-1"

    refreshed = manager.refresh_token()

    assert refreshed.access_token == "tok-2"
    assert manager.get_access_token() == "tok-2"
    assert len(session.post_calls) == 2


def test_account_id_falls_back_to_configuration_without_permissions():
    session = FakeAuthSession([FakeResponse(json_data={"access_token": "tok", "expires_in": 1800})])
    manager = _manager(session)

    token = manager.get_token()

    assert token.account_id == "999"


def test_rejected_credentials_raise_token_error():
    session = FakeAuthSession([FakeResponse(status_code=400, text='{"error":"invalid_client"}')])
    manager = _manager(session)

    with pytest.raises(TokenError) as exc:
        manager.get_access_token()

    assert "Failed to obtain access token" in str(exc.value)
    assert exc.value.status_code == 400


def test_network_failure_raises_token_error():
    session = FakeAuthSession([requests.ConnectionError("boom")])
    manager = _manager(session)

    with pytest.raises(TokenError):
        manager.get_access_token()


def test_clear_token_forces_new_request():
    session = FakeAuthSession([_token_response("tok-1"), _token_response("tok-2")])
    manager = _manager(session)

    manager.get_access_token()
    manager.clear_token()

    assert manager.get_access_token() == "tok-2"
    assert len(session.post_calls) == 2


def test_concurrent_callers_share_one_refresh():
    session = FakeAuthSession(delay=0.05)
    manager = TokenManager(
        api_key="secret-key",
        auth_url="https://oauth.test/auth/token",
        session=session,
    )
    results: list[str] = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(manager.get_access_token())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(session.post_calls) == 1
    assert results == ["tok-1"] * 8


def test_failed_refresh_propagates_to_waiters_and_allows_retry():
    session = FakeAuthSession([FakeResponse(status_code=401, text="nope"), _token_response("tok-2")])
    manager = _manager(session)

    with pytest.raises(TokenError):
        manager.get_access_token()

    assert manager.get_access_token() == "tok-2"
