from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
import requests

from clubsync.importer.adapters.wildapricot.client import WildApricotClient
from clubsync.importer.adapters.wildapricot.errors import (
    ApiError,
    AsyncQueryFailed,
    AsyncQueryTimeout,
    RateLimitExceeded,
    RequestFailed,
)

ACCOUNT_URL = "https://api.test/v2.2/accounts/12345"


class FakeResponse:
    def __init__(self, *, status_code=200, json_data=None, text: str = "", headers=None):
        self.status_code = status_code
        self._json_data = json_data
        self.text = text
        self.headers = headers or {}
        self.ok = status_code < 400

    def json(self):
        if self._json_data is None:
            raise ValueError("no json")
        return self._json_data


class FakeSession:
    """Replays queued API responses and hands out sequential tokens."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.request_calls = []
        self.post_calls = []

    def post(self, url, headers=None, data=None, timeout=None):
        self.post_calls.append(url)
        return FakeResponse(
            json_data={
                "access_token": f"tok-{len(self.post_calls)}",
                "expires_in": 1800,
                "Permissions": [{"AccountId": 12345}],
            }
        )

    def request(self, method, url, headers=None, params=None, timeout=None):
        self.request_calls.append({"method": method, "url": url, "headers": headers, "params": params})
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(config, session, sleeps=None):
    return WildApricotClient(
        config,
        session=session,
        sleep_fn=(sleeps.append if sleeps is not None else lambda _delay: None),
        jitter_fn=lambda: 0.0,
    )


def test_fetch_contacts_follows_pages_until_short_page(wa_config):
    session = FakeSession(
        [
            FakeResponse(json_data={"Contacts": [{"Id": 1}, {"Id": 2}]}),
            FakeResponse(json_data={"Contacts": [{"Id": 3}]}),
        ]
    )
    client = _client(wa_config, session)

    contacts = client.fetch_contacts()

    assert [contact["Id"] for contact in contacts] == [1, 2, 3]
    assert len(session.request_calls) == 2
    first, second = session.request_calls
    assert first["url"] == f"{ACCOUNT_URL}/contacts"
    assert first["params"] == {"$async": "false", "$top": 2, "$skip": 0}
    assert second["params"]["$skip"] == 2
    assert first["headers"]["Authorization"] == "Bearer tok-1"


def test_pagination_stops_on_empty_page(wa_config):
    session = FakeSession(
        [
            FakeResponse(json_data={"Events": [{"Id": 1}, {"Id": 2}]}),
            FakeResponse(json_data={"Events": []}),
        ]
    )
    client = _client(wa_config, session)

    assert len(client.fetch_events()) == 2
    assert len(session.request_calls) == 2


def test_server_errors_retry_until_max_retries(wa_config):
    sleeps: list[float] = []
    session = FakeSession([FakeResponse(status_code=503, text="down") for _ in range(3)])
    client = _client(wa_config, session, sleeps)

    with pytest.raises(RequestFailed) as exc:
        client.get("contacts")

    assert len(session.request_calls) == 3
    assert sleeps == [1.0, 2.0]
    assert exc.value.status_code == 503


def test_rate_limit_honours_retry_after(wa_config):
    sleeps: list[float] = []
    session = FakeSession(
        [
            FakeResponse(status_code=429, headers={"Retry-After": "1"}),
            FakeResponse(json_data={"Contacts": []}),
        ]
    )
    client = _client(wa_config, session, sleeps)

    client.get("contacts")

    assert len(session.request_calls) == 2
    assert len(sleeps) == 1
    assert sleeps[0] >= 1.0


def test_rate_limit_without_header_backs_off_and_eventually_fails(wa_config):
    sleeps: list[float] = []
    session = FakeSession([FakeResponse(status_code=429) for _ in range(3)])
    client = _client(wa_config, session, sleeps)

    with pytest.raises(RateLimitExceeded):
        client.get("contacts")

    assert sleeps == [1.0, 2.0]


def test_backoff_is_capped_at_max_delay(wa_config):
    client = _client(wa_config, FakeSession())

    assert client._backoff_delay(10) == wa_config.retry_max_delay


def test_network_errors_are_retried(wa_config):
    sleeps: list[float] = []
    session = FakeSession([requests.ConnectionError("reset"), FakeResponse(json_data={"ok": True})])
    client = _client(wa_config, session, sleeps)

    assert client.get("contacts") == {"ok": True}
    assert sleeps == [1.0]


def test_client_errors_fail_without_retry(wa_config):
    sleeps: list[float] = []
    session = FakeSession([FakeResponse(status_code=404, text="missing")])
    client = _client(wa_config, session, sleeps)

    with pytest.raises(ApiError) as exc:
        client.get("contacts/1")

    assert exc.value.status_code == 404
    assert len(session.request_calls) == 1
    assert sleeps == []


def test_unauthorized_refreshes_token_once(wa_config):
    session = FakeSession([FakeResponse(status_code=401), FakeResponse(json_data={"Id": 12345})])
    client = _client(wa_config, session)

    assert client.get("") == {"Id": 12345}
    assert len(session.post_calls) == 2
    assert session.request_calls[1]["headers"]["Authorization"] == "Bearer tok-2"


def test_repeated_unauthorized_raises(wa_config):
    session = FakeSession([FakeResponse(status_code=401), FakeResponse(status_code=401)])
    client = _client(wa_config, session)

    with pytest.raises(ApiError):
        client.get("contacts")
    assert len(session.request_calls) == 2


def test_async_query_times_out_after_max_attempts(wa_config):
    sleeps: list[float] = []
    result_url = f"{ACCOUNT_URL}/contacts/async/abc"
    session = FakeSession(
        [FakeResponse(json_data={"ResultUrl": result_url})]
        + [FakeResponse(json_data={"State": "Processing"}) for _ in range(3)]
    )
    client = _client(wa_config, session, sleeps)

    with pytest.raises(AsyncQueryTimeout) as exc:
        client.fetch_contacts()

    polls = [call for call in session.request_calls if call["url"] == result_url]
    assert len(polls) == 3
    assert exc.value.attempts == 3
    assert sleeps == [0.5, 0.5]


def test_async_query_returns_items_when_complete(wa_config):
    result_url = f"{ACCOUNT_URL}/contacts/async/abc"
    session = FakeSession(
        [
            FakeResponse(json_data={"ResultUrl": result_url}),
            FakeResponse(json_data={"State": "Waiting"}),
            FakeResponse(json_data={"State": "Complete", "Contacts": [{"Id": 7}]}),
        ]
    )
    client = _client(wa_config, session)

    assert client.fetch_contacts() == [{"Id": 7}]


def test_async_query_failure_raises(wa_config):
    session = FakeSession(
        [
            FakeResponse(json_data={"ResultUrl": f"{ACCOUNT_URL}/contacts/async/abc"}),
            FakeResponse(json_data={"State": "Failed", "ErrorDetails": "bad filter"}),
        ]
    )
    client = _client(wa_config, session)

    with pytest.raises(AsyncQueryFailed) as exc:
        client.fetch_contacts()
    assert exc.value.details == "bad filter"


def test_incremental_filters_are_formatted(wa_config):
    session = FakeSession([FakeResponse(json_data={"Contacts": []}), FakeResponse(json_data={"Events": []})])
    client = _client(wa_config, session)

    client.fetch_contacts_modified_since(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    client.fetch_events_from_date(date(2023, 6, 1))

    contacts_call, events_call = session.request_calls
    assert contacts_call["params"]["$filter"] == "'Profile last updated' ge 2024-01-02T03:04:05Z"
    assert events_call["params"]["$filter"] == "StartDate ge 2023-06-01"


def test_fetch_event_registrations_passes_event_id(wa_config):
    session = FakeSession([FakeResponse(json_data=[{"Id": 1}, {"Id": 2}])])
    client = _client(wa_config, session)

    registrations = client.fetch_event_registrations(55)

    assert len(registrations) == 2
    assert session.request_calls[0]["url"] == f"{ACCOUNT_URL}/eventregistrations"
    assert session.request_calls[0]["params"] == {"eventId": 55}


def test_health_check_reports_failure_without_raising(wa_config):
    session = FakeSession([FakeResponse(status_code=403, text="forbidden")])
    client = _client(wa_config, session)

    health = client.health_check()

    assert health["ok"] is False
    assert "403" in health["error"]
