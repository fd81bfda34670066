# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
# and mounts the importer with in-memory Celery transports.
os.environ["FLASK_ENV"] = "testing"
os.environ["IMPORTER_ENABLED"] = "true"
os.environ["IMPORTER_ADAPTERS"] = "wildapricot"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from app import app as flask_app  # noqa: E402
from clubsync.importer import init_importer  # noqa: E402
from clubsync.importer.adapters.wildapricot import WildApricotConfig  # noqa: E402
from clubsync.importer.pipeline.preflight import seed_membership_statuses  # noqa: E402
from clubsync.models import db  # noqa: E402

WA_ENV_VARS = (
    "WA_API_KEY",
    "WA_ACCOUNT_ID",
    "WA_API_BASE_URL",
    "WA_AUTH_URL",
    "WA_PAGE_SIZE",
    "WA_MAX_RETRIES",
    "DRY_RUN",
    "ALLOW_PROD_IMPORT",
)


@pytest.fixture(autouse=True)
def clean_wildapricot_env(monkeypatch):
    """Keep developer WA_* settings out of the test run."""
    for name in WA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="function")
def app(clean_wildapricot_env):
    """Module-level app with a fresh schema and importer state per test."""
    flask_app.config.update(
        {
            "TESTING": True,
            "IMPORTER_ENABLED": True,
            "IMPORTER_ADAPTERS": ("wildapricot",),
            "IMPORTER_WORKER_ENABLED": False,
        }
    )
    init_importer(flask_app)

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def seeded_statuses(app):
    """Insert the default membership statuses and return them keyed by code."""
    from clubsync.models import MembershipStatus

    seed_membership_statuses(db.session)
    return {status.code: status for status in db.session.query(MembershipStatus).all()}


@pytest.fixture
def wa_config():
    return WildApricotConfig(
        api_key="test-api-key",
        account_id="12345",
        api_base_url="https://api.test/v2.2",
        auth_url="https://oauth.test/auth/token",
        page_size=2,
        async_poll_interval=0.5,
        async_max_attempts=3,
        max_retries=2,
        retry_base_delay=1.0,
        retry_max_delay=60.0,
        db_batch_size=2,
    )
