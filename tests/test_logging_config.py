"""Tests for structlog configuration."""

import json

import pytest
import structlog

from killthenoise.logging_config import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_output(capsys) -> None:
    configure_logging("INFO", "json")
    structlog.get_logger("killthenoise.test").info("issue_groups_fetched", count=3)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    event = json.loads(line)
    assert event["event"] == "issue_groups_fetched"
    assert event["count"] == 3
    assert event["level"] == "info"
    assert "timestamp" in event


def test_level_filters(capsys) -> None:
    configure_logging("ERROR", "json")
    structlog.get_logger("killthenoise.test").warning("auth_poll_failed")
    assert capsys.readouterr().err == ""
