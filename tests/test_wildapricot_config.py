from __future__ import annotations

import pytest

from clubsync.importer.adapters.wildapricot import (
    WildApricotConfig,
    WildApricotConfigError,
    check_wildapricot_adapter_readiness,
    ensure_wildapricot_adapter_ready,
    is_dry_run,
    validate_production_safety,
)
from clubsync.importer.adapters.wildapricot.errors import ProductionSafetyError
from config.validation import validate_wildapricot_environment

BASE_ENV = {"WA_API_KEY": "key-123456", "WA_ACCOUNT_ID": "12345"}


class FakeResponse:
    def __init__(self, *, status_code=200, json_data=None, text: str = ""):
        self.status_code = status_code
        self._json_data = json_data
        self.text = text
        self.headers = {}
        self.ok = status_code < 400

    def json(self):
        return self._json_data


class FakePingSession:
    def __init__(self, *, token_status=200):
        self.token_status = token_status
        self.request_calls = []

    def post(self, url, headers=None, data=None, timeout=None):
        if self.token_status != 200:
            return FakeResponse(status_code=self.token_status, text="invalid_client")
        return FakeResponse(
            json_data={"access_token": "tok", "expires_in": 1800, "Permissions": [{"AccountId": 777}]}
        )

    def request(self, method, url, headers=None, params=None, timeout=None):
        self.request_calls.append(url)
        return FakeResponse(json_data=[{"Id": 1, "Name": "Regular"}])


def test_from_env_applies_defaults_and_converts_milliseconds():
    config = WildApricotConfig.from_env(
        {**BASE_ENV, "WA_ASYNC_POLL_INTERVAL_MS": "1500", "WA_REQUEST_TIMEOUT_MS": "5000"}
    )

    assert config.api_key == "key-123456"
    assert config.account_id == "12345"
    assert config.api_base_url == "https://api.wildapricot.org/v2.2"
    assert config.page_size == 100
    assert config.async_poll_interval == 1.5
    assert config.request_timeout == 5.0
    assert config.retry_max_delay == 60.0
    assert config.events_lookback_days == 730


@pytest.mark.parametrize("missing", ["WA_API_KEY", "WA_ACCOUNT_ID"])
def test_from_env_requires_credentials(missing):
    env = dict(BASE_ENV)
    env.pop(missing)

    with pytest.raises(WildApricotConfigError, match=missing):
        WildApricotConfig.from_env(env)


def test_from_env_rejects_non_integer_values():
    with pytest.raises(WildApricotConfigError, match="WA_PAGE_SIZE"):
        WildApricotConfig.from_env({**BASE_ENV, "WA_PAGE_SIZE": "lots"})


def test_as_dict_masks_api_key():
    payload = WildApricotConfig.from_env(BASE_ENV).as_dict()

    assert payload["api_key"] == "key-..."
    assert "key-123456" not in payload.values()


def test_dry_run_flag_requires_exact_value():
    assert is_dry_run({"DRY_RUN": "1"}) is True
    assert is_dry_run({"DRY_RUN": "true"}) is False
    assert is_dry_run({}) is False


def test_production_import_requires_opt_in():
    validate_production_safety({"FLASK_ENV": "development"})
    validate_production_safety({"FLASK_ENV": "production", "ALLOW_PROD_IMPORT": "1"})

    with pytest.raises(ProductionSafetyError, match="ALLOW_PROD_IMPORT"):
        validate_production_safety({"FLASK_ENV": "production"})


def test_readiness_reports_missing_env():
    readiness = check_wildapricot_adapter_readiness({})

    assert readiness.status == "missing-env"
    assert readiness.missing_env_vars == ("WA_ACCOUNT_ID", "WA_API_KEY")
    assert "WA_API_KEY" in readiness.messages()[0]


def test_readiness_reports_invalid_config():
    readiness = check_wildapricot_adapter_readiness({**BASE_ENV, "WA_MAX_RETRIES": "-1"})

    assert readiness.status == "invalid-config"
    assert readiness.as_dict()["config_errors"]


def test_readiness_ready_without_ping():
    readiness = check_wildapricot_adapter_readiness(BASE_ENV)

    assert readiness.status == "ready"
    assert readiness.auth_status == "skipped"
    assert readiness.as_dict()["account_id"] == "12345"


def test_readiness_auth_ping_success_uses_token_account():
    session = FakePingSession()

    readiness = check_wildapricot_adapter_readiness(BASE_ENV, require_auth_ping=True, session=session)

    assert readiness.status == "ready"
    assert readiness.auth_status == "ok"
    assert readiness.account_id == "777"
    assert session.request_calls == ["https://api.wildapricot.org/v2.2/accounts/12345/membershiplevels"]


def test_readiness_auth_ping_failure():
    readiness = check_wildapricot_adapter_readiness(
        BASE_ENV, require_auth_ping=True, session=FakePingSession(token_status=401)
    )

    assert readiness.status == "auth-error"
    assert readiness.auth_status == "failed"
    assert any("health check failed" in message for message in readiness.messages())


def test_ensure_ready_raises_with_messages():
    with pytest.raises(WildApricotConfigError, match="Missing required Wild Apricot env vars"):
        ensure_wildapricot_adapter_ready({})


def test_environment_validation_only_when_adapter_enabled():
    assert validate_wildapricot_environment({"IMPORTER_ENABLED": "false"}) == []

    errors = validate_wildapricot_environment(
        {"IMPORTER_ENABLED": "true", "IMPORTER_ADAPTERS": "wildapricot", "WA_DB_BATCH_SIZE": "ten"}
    )

    assert any("WA_API_KEY" in error for error in errors)
    assert any("WA_ACCOUNT_ID" in error for error in errors)
    assert any("WA_DB_BATCH_SIZE" in error for error in errors)
