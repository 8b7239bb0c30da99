"""Tests for logging setup."""

import sys

import pytest
import structlog

from courier.infrastructure.logger import install_exception_hooks, setup_logging


@pytest.fixture
def restore_logging(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    yield
    setup_logging("console")


class TestSetupLogging:
    def test_console_renderer_by_default(self, restore_logging, monkeypatch):
        monkeypatch.delenv("COURIER_LOG_FORMAT", raising=False)
        setup_logging()
        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)

    def test_json_from_environment(self, restore_logging, monkeypatch):
        monkeypatch.setenv("COURIER_LOG_FORMAT", "JSON")
        setup_logging()
        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)


class TestExceptionHooks:
    def test_replaces_excepthook(self, restore_logging):
        install_exception_hooks()
        assert sys.excepthook is not sys.__excepthook__
