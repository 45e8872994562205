"""
Tests for log record formatting, secret masking and level resolution.
"""

import json
import logging

import pytest

from returnsync.utils import logging as log_setup
from returnsync.utils.logging import (
    REDACTED,
    LocalFormatter,
    RedactingFilter,
    redact,
    resolve_level,
)


def make_record(json_fields=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="returnsync.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Refreshed inbox access token",
        args=(),
        exc_info=None,
    )
    if json_fields is not None:
        record.json_fields = json_fields
    return record


class TestRedact:
    def test_masks_secret_keys_at_any_depth(self):
        fields = {
            "run_id": "r1",
            "access_token": "ya29.secret",
            "session": {"Refresh_Token": "1//secret", "expires_in": 3600},
            "requests": [{"authorization": "Bearer ya29.secret"}],
        }

        assert redact(fields) == {
            "run_id": "r1",
            "access_token": REDACTED,
            "session": {"Refresh_Token": REDACTED, "expires_in": 3600},
            "requests": [{"authorization": REDACTED}],
        }
        # Original left intact
        assert fields["access_token"] == "ya29.secret"

    def test_plain_values_pass_through(self):
        assert redact("code") == "code"
        assert redact(None) is None


class TestRedactingFilter:
    def test_masks_json_fields(self):
        record = make_record({"code": "4/0Adeu5B", "item_id": "nike"})

        assert RedactingFilter().filter(record) is True
        assert record.json_fields == {"code": REDACTED, "item_id": "nike"}

    def test_record_without_fields(self):
        record = make_record()
        assert RedactingFilter().filter(record) is True
        assert not hasattr(record, "json_fields")


class TestLocalFormatter:
    def test_appends_json_fields(self):
        formatter = LocalFormatter("%(levelname)s - %(message)s")

        output = formatter.format(make_record({"run_id": "r1", "items_updated": 2}))

        first_line, fields = output.split("\n", 1)
        assert first_line == "INFO - Refreshed inbox access token"
        assert json.loads(fields) == {"items_updated": 2, "run_id": "r1"}

    def test_without_json_fields(self):
        formatter = LocalFormatter("%(message)s")
        assert formatter.format(make_record()) == "Refreshed inbox access token"


class TestResolveLevel:
    @pytest.mark.parametrize(
        "level,expected",
        [
            (logging.DEBUG, logging.DEBUG),
            ("warning", logging.WARNING),
            (" ERROR ", logging.ERROR),
            ("chatty", logging.INFO),
        ],
    )
    def test_levels(self, level, expected):
        assert resolve_level(level) == expected


class TestSetupLogging:
    @pytest.fixture
    def fresh_root(self, monkeypatch):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        noisy = {name: logging.getLogger(name).level for name in log_setup.NOISY_LOGGERS}
        monkeypatch.setattr(log_setup, "_logging_configured", False)
        monkeypatch.delenv("K_SERVICE", raising=False)
        yield root
        root.handlers = handlers
        root.setLevel(level)
        for name, noisy_level in noisy.items():
            logging.getLogger(name).setLevel(noisy_level)

    def test_local_setup_once(self, fresh_root, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        before = len(fresh_root.handlers)

        log_setup.setup_logging("returnsync-test")
        log_setup.setup_logging("returnsync-test")

        assert len(fresh_root.handlers) == before + 1
        handler = fresh_root.handlers[-1]
        assert isinstance(handler.formatter, LocalFormatter)
        assert any(isinstance(f, RedactingFilter) for f in handler.filters)
        assert fresh_root.level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.WARNING
