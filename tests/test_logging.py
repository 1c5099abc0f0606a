"""Tests covering service log configuration."""

from __future__ import annotations

import logging

import pytest

from studycycle.main import parse_args
from studycycle.utils.logging import ENV_LEVEL_VAR, configure_logging, resolve_level


@pytest.fixture(autouse=True)
def reset_package_logger():
    logger = logging.getLogger("studycycle")
    previous = logger.level
    yield
    logger.setLevel(previous)


def test_resolve_level_prefers_argument_then_environment(monkeypatch) -> None:
    monkeypatch.setenv(ENV_LEVEL_VAR, "warning")

    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.ERROR) == logging.ERROR
    assert resolve_level() == logging.WARNING
    assert resolve_level("15") == 15


def test_resolve_level_defaults_to_info(monkeypatch) -> None:
    monkeypatch.delenv(ENV_LEVEL_VAR, raising=False)

    assert resolve_level() == logging.INFO
    assert resolve_level("chatty") == logging.INFO


def test_configure_logging_sets_package_level(monkeypatch) -> None:
    monkeypatch.setenv(ENV_LEVEL_VAR, "DEBUG")

    assert configure_logging() == logging.DEBUG
    assert logging.getLogger("studycycle.player").getEffectiveLevel() == logging.DEBUG


def test_cli_accepts_log_level() -> None:
    args = parse_args(["--profile", "demo", "--log-level", "DEBUG"])

    assert args.profile == "demo"
    assert args.log_level == "DEBUG"
    assert parse_args([]).log_level is None
