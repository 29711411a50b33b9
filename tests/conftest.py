"""Fixtures for interaction_engine tests."""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from interaction_engine.config import ConfigManager
from interaction_engine.events import EngineEvent


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_home(tmp_path: Path) -> Path:
    """Create a temporary home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def temp_config_dir(temp_home: Path) -> Path:
    """Create a temporary config directory under fake home."""
    config_dir = temp_home / ".config" / "interaction-engine"
    config_dir.mkdir(parents=True)
    return config_dir


@pytest.fixture
def temp_project_dir(tmp_path: Path) -> Path:
    """Create a temporary project directory."""
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def config_manager(temp_config_dir: Path, temp_project_dir: Path) -> ConfigManager:
    """Create a ConfigManager with temp directories."""
    return ConfigManager(config_dir=temp_config_dir, project_dir=temp_project_dir)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Clear INTERACTION_ENGINE_* environment variables and run away from any .env file."""
    for key in list(os.environ.keys()):
        if key.startswith("INTERACTION_ENGINE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def channel() -> MagicMock:
    """Host channel whose ``post`` is an AsyncMock."""
    mock = MagicMock()
    mock.post = AsyncMock()
    return mock


@pytest.fixture
def events() -> list[EngineEvent]:
    """List to collect engine events into (pass ``events.append`` as listener)."""
    return []


@pytest.fixture
def posted(channel: MagicMock) -> Callable[[], list[Any]]:
    """Return a function listing the messages posted to ``channel``, in order."""

    def _posted() -> list[Any]:
        return [call.args[0] for call in channel.post.await_args_list]

    return _posted
