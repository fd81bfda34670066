import json
import logging
import sys
from logging.handlers import RotatingFileHandler

import pytest
from flask import Flask

from clubsync.utils.logging_config import build_json_formatter, setup_logging


@pytest.fixture
def logging_app():
    app = Flask(__name__)
    yield app
    for logger in (app.logger, logging.getLogger("clubsync")):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)


class TestJSONFormatting:
    def test_includes_extra_fields(self):
        formatter = build_json_formatter(app_name="ClubSync", app_version="1.0")
        record = logging.LogRecord("clubsync.test", logging.INFO, __file__, 1, "Synced %s", ("members",), None)
        record.wa_sync_run_id = "run-1"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "Synced members"
        assert payload["level"] == "info"
        assert payload["logger"] == "clubsync.test"
        assert "timestamp" in payload
        assert payload["app"] == "ClubSync"
        assert payload["wa_sync_run_id"] == "run-1"
        assert "args" not in payload

    def test_renders_exceptions(self):
        formatter = build_json_formatter()
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = logging.LogRecord("clubsync", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        payload = json.loads(formatter.format(record))

        assert "ValueError: bad payload" in payload["exception"]


class TestSetupLogging:
    def test_file_logging_writes_to_log_dir(self, logging_app, tmp_path):
        logging_app.config.update(
            LOG_LEVEL="DEBUG",
            LOG_FORMAT="text",
            ENABLE_CONSOLE_LOGGING=False,
            ENABLE_FILE_LOGGING=True,
            LOG_DIR=str(tmp_path),
        )

        setup_logging(logging_app)

        handlers = logging_app.logger.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], RotatingFileHandler)
        assert logging_app.logger.level == logging.DEBUG
        assert (tmp_path / "clubsync.log").exists()

    def test_repeated_setup_replaces_handlers(self, logging_app):
        logging_app.config.update(ENABLE_CONSOLE_LOGGING=True, ENABLE_FILE_LOGGING=False, LOG_LEVEL="bogus")

        setup_logging(logging_app)
        setup_logging(logging_app)

        assert len(logging_app.logger.handlers) == 1
        assert logging_app.logger.level == logging.INFO

    def test_json_file_logging_keeps_extra_fields(self, logging_app, tmp_path):
        logging_app.config.update(
            LOG_FORMAT="json",
            APP_NAME="ClubSync",
            ENABLE_CONSOLE_LOGGING=False,
            ENABLE_FILE_LOGGING=True,
            LOG_DIR=str(tmp_path),
        )
        setup_logging(logging_app)

        logging.getLogger("clubsync.importer.pipeline").info("Sync finished", extra={"wa_sync_run_id": "run-7"})
        for handler in logging.getLogger("clubsync").handlers:
            handler.flush()

        lines = (tmp_path / "clubsync.log").read_text(encoding="utf-8").splitlines()
        payload = json.loads(lines[-1])
        assert payload["message"] == "Sync finished"
        assert payload["wa_sync_run_id"] == "run-7"
        assert payload["app"] == "ClubSync"
