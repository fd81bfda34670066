"""
Wild Apricot adapter configuration.

Settings are read from environment variables (``.env`` is loaded by the app
entrypoint). Millisecond values from the environment are stored as seconds so
they can be handed straight to ``requests`` and ``time.sleep``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ProductionSafetyError, WildApricotConfigError

DEFAULT_API_BASE_URL = "https://api.wildapricot.org/v2.2"
DEFAULT_AUTH_URL = "https://oauth.wildapricot.org/auth/token"


def _read_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise WildApricotConfigError(f"{name} must be an integer (got {raw!r}).") from exc
    if value < minimum:
        raise WildApricotConfigError(f"{name} must be >= {minimum} (got {value}).")
    return value


@dataclass(frozen=True)
class WildApricotConfig:
    api_key: str
    account_id: str
    api_base_url: str = DEFAULT_API_BASE_URL
    auth_url: str = DEFAULT_AUTH_URL
    page_size: int = 100
    async_poll_interval: float = 3.0
    async_max_attempts: int = 40
    request_timeout: float = 30.0
    token_expiry_buffer: float = 300.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0
    contacts_lookback_days: int = 1
    events_lookback_days: int = 730
    db_batch_size: int = 100

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "WildApricotConfig":
        """Build configuration from ``WA_*`` environment variables."""

        env = os.environ if env is None else env
        api_key = (env.get("WA_API_KEY") or "").strip()
        if not api_key:
            raise WildApricotConfigError("WA_API_KEY environment variable is required.")
        account_id = (env.get("WA_ACCOUNT_ID") or "").strip()
        if not account_id:
            raise WildApricotConfigError("WA_ACCOUNT_ID environment variable is required.")

        return cls(
            api_key=api_key,
            account_id=account_id,
            api_base_url=(env.get("WA_API_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/"),
            auth_url=env.get("WA_AUTH_URL") or DEFAULT_AUTH_URL,
            page_size=_read_int(env, "WA_PAGE_SIZE", 100, minimum=1),
            async_poll_interval=_read_int(env, "WA_ASYNC_POLL_INTERVAL_MS", 3000) / 1000.0,
            async_max_attempts=_read_int(env, "WA_ASYNC_MAX_ATTEMPTS", 40, minimum=1),
            request_timeout=_read_int(env, "WA_REQUEST_TIMEOUT_MS", 30000, minimum=1) / 1000.0,
            token_expiry_buffer=_read_int(env, "WA_TOKEN_EXPIRY_BUFFER_MS", 300000) / 1000.0,
            max_retries=_read_int(env, "WA_MAX_RETRIES", 3),
            retry_base_delay=_read_int(env, "WA_RETRY_BASE_DELAY_MS", 1000) / 1000.0,
            retry_max_delay=_read_int(env, "WA_RETRY_MAX_DELAY_MS", 60000) / 1000.0,
            contacts_lookback_days=_read_int(env, "WA_CONTACTS_LOOKBACK_DAYS", 1),
            events_lookback_days=_read_int(env, "WA_EVENTS_LOOKBACK_DAYS", 730),
            db_batch_size=_read_int(env, "WA_DB_BATCH_SIZE", 100, minimum=1),
        )

    def as_dict(self) -> dict[str, object]:
        """Return a loggable view of the configuration with the API key masked."""

        masked_key = f"{self.api_key[:4]}..." if len(self.api_key) > 4 else "***"
        return {
            "api_key": masked_key,
            "account_id": self.account_id,
            "api_base_url": self.api_base_url,
            "auth_url": self.auth_url,
            "page_size": self.page_size,
            "async_poll_interval": self.async_poll_interval,
            "async_max_attempts": self.async_max_attempts,
            "request_timeout": self.request_timeout,
            "token_expiry_buffer": self.token_expiry_buffer,
            "max_retries": self.max_retries,
            "retry_base_delay": self.retry_base_delay,
            "retry_max_delay": self.retry_max_delay,
            "contacts_lookback_days": self.contacts_lookback_days,
            "events_lookback_days": self.events_lookback_days,
            "db_batch_size": self.db_batch_size,
        }


def is_dry_run(env: Mapping[str, str] | None = None) -> bool:
    """Dry-run mode is enabled with ``DRY_RUN=1``."""
    env = os.environ if env is None else env
    return env.get("DRY_RUN") == "1"


def is_production_import_allowed(env: Mapping[str, str] | None = None) -> bool:
    env = os.environ if env is None else env
    if env.get("FLASK_ENV", "development") != "production":
        return True
    return env.get("ALLOW_PROD_IMPORT") == "1"


def validate_production_safety(env: Mapping[str, str] | None = None) -> None:
    """
    Refuse live imports in production unless ``ALLOW_PROD_IMPORT=1`` is set.

    Raises:
        ProductionSafetyError: when running with ``FLASK_ENV=production`` without opt-in.
    """
    if not is_production_import_allowed(env):
        raise ProductionSafetyError(
            "Production import requires ALLOW_PROD_IMPORT=1 environment variable."
        )
