"""Tests for interaction_engine._logger module."""

from __future__ import annotations

import logging

from interaction_engine._logger import LOGGER_NAME, ColoredFormatter, _get_module_log_level, get_logger


def test_get_logger_names():
    """Test relative and absolute names map under the engine logger."""
    assert get_logger().name == LOGGER_NAME
    assert get_logger(LOGGER_NAME) is get_logger()
    assert get_logger("approval").name == f"{LOGGER_NAME}.approval"
    assert get_logger(f"{LOGGER_NAME}.session").name == f"{LOGGER_NAME}.session"


def test_engine_logger_does_not_propagate():
    """Test engine logs stay on the engine handler."""
    assert get_logger().propagate is False
    assert get_logger().handlers


def test_module_log_level_from_env(monkeypatch):
    """Test module-specific levels, most specific first."""
    monkeypatch.setenv("INTERACTION_ENGINE_LOG_LEVEL_SCRATCH", "ERROR")
    monkeypatch.setenv("INTERACTION_ENGINE_LOG_LEVEL_SCRATCH_INNER", "DEBUG")

    assert _get_module_log_level("scratch.inner") == logging.DEBUG
    assert _get_module_log_level("scratch.other") == logging.ERROR
    assert _get_module_log_level("unrelated") is None

    assert get_logger("scratch.configured").level == logging.ERROR


def test_invalid_module_level_ignored(monkeypatch):
    """Test unknown level names are ignored."""
    monkeypatch.setenv("INTERACTION_ENGINE_LOG_LEVEL_NOISY", "LOUD")

    assert _get_module_log_level("noisy") is None


def test_colored_formatter_strips_engine_prefix():
    """Test the formatter shortens engine logger names."""
    record = logging.LogRecord(
        name=f"{LOGGER_NAME}.commands",
        level=logging.WARNING,
        pathname="commands.py",
        lineno=10,
        msg="Dropping %s",
        args=("event",),
        exc_info=None,
        func="handle_status",
    )

    output = ColoredFormatter().format(record)

    assert "commands:handle_status:10" in output
    assert f"{LOGGER_NAME}.commands" not in output
    assert "Dropping event" in output
