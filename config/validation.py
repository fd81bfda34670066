# config/validation.py

"""
Environment variable validation for ClubSync.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Mapping, Tuple

_WA_REQUIRED = ("WA_API_KEY", "WA_ACCOUNT_ID")
_WA_NUMERIC = (
    "WA_PAGE_SIZE",
    "WA_ASYNC_POLL_INTERVAL_MS",
    "WA_ASYNC_MAX_ATTEMPTS",
    "WA_REQUEST_TIMEOUT_MS",
    "WA_MAX_RETRIES",
    "WA_RETRY_BASE_DELAY_MS",
    "WA_RETRY_MAX_DELAY_MS",
    "WA_TOKEN_EXPIRY_BUFFER_MS",
    "WA_CONTACTS_LOOKBACK_DAYS",
    "WA_EVENTS_LOOKBACK_DAYS",
    "WA_DB_BATCH_SIZE",
)


def _enabled_adapters(env: Mapping[str, str]) -> List[str]:
    if env.get("IMPORTER_ENABLED", "false").strip().lower() not in {"1", "true", "yes", "on"}:
        return []
    raw = env.get("IMPORTER_ADAPTERS", "wildapricot")
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


def validate_wildapricot_environment(env: Mapping[str, str] = None) -> List[str]:
    """Return problems with the WA_* variables when the wildapricot adapter is enabled."""
    env = os.environ if env is None else env
    if "wildapricot" not in _enabled_adapters(env):
        return []

    errors = [
        f"{name} is required when the wildapricot importer adapter is enabled"
        for name in _WA_REQUIRED
        if not env.get(name)
    ]
    for name in _WA_NUMERIC:
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            int(raw)
        except ValueError:
            errors.append(f"{name} must be an integer (got {raw!r})")
    return errors


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    # Only validate in production
    if flask_env != "production":
        return True, []

    errors = []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    errors.extend(validate_wildapricot_environment())

    return len(errors) == 0, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("See .env.example for required configuration.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
