"""Wild Apricot adapter readiness and configuration validation utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping, Tuple

from .config import WildApricotConfig, is_dry_run, validate_production_safety
from .errors import (
    ApiError,
    AsyncQueryFailed,
    AsyncQueryTimeout,
    ProductionSafetyError,
    RateLimitExceeded,
    RequestFailed,
    TokenError,
    WildApricotConfigError,
    WildApricotError,
)

REQUIRED_ENV_VARS: Tuple[str, ...] = ("WA_API_KEY", "WA_ACCOUNT_ID")
OPTIONAL_ENV_VARS: Tuple[str, ...] = (
    "WA_API_BASE_URL",
    "WA_AUTH_URL",
    "WA_PAGE_SIZE",
    "WA_MAX_RETRIES",
    "DRY_RUN",
    "ALLOW_PROD_IMPORT",
)

__all__ = [
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "WildApricotAdapterReadiness",
    "check_wildapricot_adapter_readiness",
    "ensure_wildapricot_adapter_ready",
    "WildApricotConfig",
    "is_dry_run",
    "validate_production_safety",
    "WildApricotError",
    "WildApricotConfigError",
    "ProductionSafetyError",
    "TokenError",
    "ApiError",
    "RequestFailed",
    "RateLimitExceeded",
    "AsyncQueryFailed",
    "AsyncQueryTimeout",
]


@dataclass(frozen=True)
class WildApricotAdapterReadiness:
    missing_env_vars: Tuple[str, ...]
    config_errors: Tuple[str, ...]
    auth_status: Literal["skipped", "ok", "failed"]
    auth_error: str | None = None
    account_id: str | None = None

    @property
    def status(self) -> str:
        if self.missing_env_vars:
            return "missing-env"
        if self.config_errors:
            return "invalid-config"
        if self.auth_status == "failed":
            return "auth-error"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.missing_env_vars:
            messages.append(f"Missing required Wild Apricot env vars: {', '.join(self.missing_env_vars)}")
        messages.extend(self.config_errors)
        if self.auth_status == "failed" and self.auth_error:
            messages.append(self.auth_error)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "missing_env_vars": list(self.missing_env_vars),
            "config_errors": list(self.config_errors),
            "auth_status": self.auth_status,
            "messages": list(self.messages()),
        }
        if self.auth_error:
            payload["auth_error"] = self.auth_error
        if self.account_id:
            payload["account_id"] = self.account_id
        return payload


def check_wildapricot_adapter_readiness(
    env: Mapping[str, str] | None = None,
    *,
    require_auth_ping: bool = False,
    session=None,
) -> WildApricotAdapterReadiness:
    """
    Perform a non-raising readiness check for the Wild Apricot adapter.

    Args:
        env: Optional mapping of environment variables to inspect. Defaults to os.environ.
        require_auth_ping: Whether to call the API to validate credentials.
        session: Optional ``requests.Session`` used for the auth ping.
    """

    env = os.environ if env is None else env
    missing_env = tuple(sorted(var for var in REQUIRED_ENV_VARS if not env.get(var)))
    config_errors: list[str] = []
    config: WildApricotConfig | None = None
    if not missing_env:
        try:
            config = WildApricotConfig.from_env(env)
        except WildApricotConfigError as exc:
            config_errors.append(str(exc))

    auth_status: Literal["skipped", "ok", "failed"] = "skipped"
    auth_error: str | None = None
    account_id = config.account_id if config else None
    if require_auth_ping and config is not None:
        from .client import WildApricotClient

        health = WildApricotClient(config, session=session).health_check()
        if health["ok"]:
            auth_status = "ok"
            account_id = health["account_id"]
        else:
            auth_status = "failed"
            auth_error = f"Wild Apricot health check failed: {health['error']}"

    return WildApricotAdapterReadiness(
        missing_env_vars=missing_env,
        config_errors=tuple(config_errors),
        auth_status=auth_status,
        auth_error=auth_error,
        account_id=account_id,
    )


def ensure_wildapricot_adapter_ready(
    env: Mapping[str, str] | None = None,
    *,
    require_auth_ping: bool = False,
) -> WildApricotAdapterReadiness:
    """Raise ``WildApricotConfigError`` unless the adapter reports ready."""

    readiness = check_wildapricot_adapter_readiness(env, require_auth_ping=require_auth_ping)
    if readiness.status != "ready":
        raise WildApricotConfigError("; ".join(readiness.messages()) or "Wild Apricot adapter is not ready.")
    return readiness
