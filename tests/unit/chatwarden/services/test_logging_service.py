# -*- coding: utf-8 -*-
"""Tests for the logging service."""

# Standard
import logging

# Third-Party
from pythonjsonlogger import jsonlogger
import pytest

# First-Party
from chatwarden.config import Settings
from chatwarden.services.logging_service import get_logging_service, LoggingService


@pytest.fixture
def service():
    logging_service = LoggingService()
    yield logging_service
    logging_service.shutdown()
    logging.getLogger().setLevel(logging.WARNING)


def test_configure_text_console(service):
    root = logging.getLogger()
    before = len(root.handlers)
    service.configure(Settings(_env_file=None, log_level="WARNING"))
    assert len(root.handlers) == before + 1
    assert root.level == logging.WARNING
    assert not isinstance(root.handlers[-1].formatter, jsonlogger.JsonFormatter)


def test_configure_json_console(service):
    service.configure(Settings(_env_file=None, log_format="json"))
    assert isinstance(logging.getLogger().handlers[-1].formatter, jsonlogger.JsonFormatter)


def test_reconfigure_replaces_handlers(service):
    root = logging.getLogger()
    before = len(root.handlers)
    service.configure(Settings(_env_file=None))
    service.configure(Settings(_env_file=None))
    assert len(root.handlers) == before + 1


def test_file_logging(service, tmp_path):
    folder = tmp_path / "logs"
    service.configure(Settings(_env_file=None, log_to_file=True, log_file="bot.log", log_folder=str(folder)))
    logging.getLogger("chatwarden.test").warning("written to file")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "written to file" in (folder / "bot.log").read_text()


def test_set_level_updates_tracked_loggers(service):
    tracked = service.get_logger("chatwarden.tracked")
    service.set_level("error")
    assert service.level == "ERROR"
    assert tracked.level == logging.ERROR
    assert service.get_logger("chatwarden.tracked") is tracked


def test_shutdown_removes_handlers(service):
    root = logging.getLogger()
    before = len(root.handlers)
    service.configure(Settings(_env_file=None))
    service.shutdown()
    assert len(root.handlers) == before


def test_get_logging_service_is_shared():
    assert get_logging_service() is get_logging_service()
