"""
Unit tests for logging configuration.
"""

import json
import logging

from sidecar_controller.logging_config import HealthCheckFilter, JSONFormatter, get_logging_config


def make_record(name="sidecar_controller.controller", msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord(name, level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_includes_extra_fields(self):
        record = make_record(key="default/job-pod", phase="Running", c_total=2)

        payload = json.loads(JSONFormatter().format(record))

        assert payload["msg"] == "hello"
        assert payload["level"] == "info"
        assert payload["logger"] == "sidecar_controller.controller"
        assert payload["key"] == "default/job-pod"
        assert payload["phase"] == "Running"
        assert payload["c_total"] == 2
        assert "args" not in payload

    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        payload = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in payload["error"]


class TestHealthCheckFilter:
    """Test suite for HealthCheckFilter."""

    def test_suppresses_probe_access_logs(self):
        log_filter = HealthCheckFilter()

        assert not log_filter.filter(make_record("uvicorn.access", 'GET /healthz HTTP/1.1" 200'))
        assert not log_filter.filter(make_record("uvicorn.access", 'GET /readyz HTTP/1.1" 200'))
        assert log_filter.filter(make_record("uvicorn.access", 'GET /status HTTP/1.1" 200'))
        assert log_filter.filter(make_record("sidecar_controller", "GET /healthz"))


class TestGetLoggingConfig:
    """Test suite for get_logging_config."""

    def test_json_format(self):
        config = get_logging_config("DEBUG", "json")

        assert config["root"]["level"] == "DEBUG"
        assert config["handlers"]["default"]["formatter"] == "json"

    def test_text_format(self):
        config = get_logging_config("INFO", "text")
        assert config["handlers"]["default"]["formatter"] == "default"
