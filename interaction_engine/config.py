"""Configuration management for the interaction engine.

Configuration is loaded with project-level priority (no merging between files):

1. **config.toml**:
   - Global: ~/.config/interaction-engine/config.toml
   - Project: .interaction-engine/config.toml (overrides global entirely)
   - Contains: visibility, composer, commands, auto_approve

2. **Environment variables** (INTERACTION_ENGINE_*):
   - Merged on top of config.toml
"""

from __future__ import annotations

import tomllib
from importlib import resources
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from interaction_engine._config import EngineSettings
from interaction_engine.commands import DEFAULT_ORPHAN_CAPACITY, DEFAULT_ORPHAN_TTL_SECONDS
from interaction_engine.policy import AutoApprovalPolicy
from interaction_engine.visibility import DEFAULT_CAPACITY, DEFAULT_TTL_SECONDS

MAX_IMAGES_PER_MESSAGE = 20

# =============================================================================
# Configuration Models
# =============================================================================


class VisibilityConfig(BaseModel):
    """Bounds of the "ever shown" memory."""

    capacity: int = Field(default=DEFAULT_CAPACITY, ge=0)
    ttl_seconds: float = Field(default=DEFAULT_TTL_SECONDS, ge=0)
    short_log_threshold: int = Field(default=1, ge=0)


class ComposerConfig(BaseModel):
    max_images_per_message: int = Field(default=MAX_IMAGES_PER_MESSAGE, ge=0)


class CommandsConfig(BaseModel):
    """Command execution correlation."""

    orphan_capacity: int = Field(default=DEFAULT_ORPHAN_CAPACITY, ge=0)
    orphan_ttl_seconds: float = Field(default=DEFAULT_ORPHAN_TTL_SECONDS, ge=0)
    shell_integration_disabled: bool = False


class EngineConfig(BaseModel):
    """Root configuration model."""

    visibility: VisibilityConfig = Field(default_factory=VisibilityConfig)
    composer: ComposerConfig = Field(default_factory=ComposerConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    auto_approve: AutoApprovalPolicy = Field(default_factory=AutoApprovalPolicy)


# =============================================================================
# ConfigManager
# =============================================================================


class ConfigManager:
    """Manages configuration loading from global, project, and environment sources."""

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "interaction-engine"
    PROJECT_CONFIG_DIR = ".interaction-engine"

    def __init__(
        self,
        config_dir: Path | None = None,
        project_dir: Path | None = None,
    ) -> None:
        self._config_dir = config_dir or self.DEFAULT_CONFIG_DIR
        self._project_dir = project_dir or Path.cwd()
        self._config: EngineConfig | None = None
        self._loaded_sources: list[str] = []

    @property
    def config(self) -> EngineConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def loaded_sources(self) -> list[str]:
        """Get list of loaded configuration sources."""
        return self._loaded_sources.copy()

    def load(self) -> EngineConfig:
        """Load configuration from all sources.

        Priority (higher wins):
        1. Environment overrides (merged on top)
        2. config.toml: Project > Global (no merge)
        """
        self._loaded_sources = []
        merged: dict[str, Any] = {}

        project_config_file = self.get_project_config_file()
        global_config_file = self.get_global_config_file()

        if project_config_file.exists():
            with open(project_config_file, "rb") as f:
                merged = tomllib.load(f)
            self._loaded_sources.append(str(project_config_file))
        elif global_config_file.exists():
            with open(global_config_file, "rb") as f:
                merged = tomllib.load(f)
            self._loaded_sources.append(str(global_config_file))

        env_overrides = self._load_env_overrides()
        if env_overrides:
            merged = _deep_merge(merged, env_overrides)
            self._loaded_sources.append("environment")

        self._config = EngineConfig.model_validate(merged)
        return self._config

    def reload(self) -> EngineConfig:
        """Force reload configuration."""
        self._config = None
        return self.load()

    def _load_env_overrides(self) -> dict[str, Any]:
        """Load overrides from environment using pydantic-settings."""
        env = EngineSettings()
        overrides: dict[str, Any] = {}

        visibility: dict[str, Any] = {}
        if env.visible_capacity is not None:
            visibility["capacity"] = env.visible_capacity
        if env.visible_ttl_seconds is not None:
            visibility["ttl_seconds"] = env.visible_ttl_seconds
        if env.short_log_threshold is not None:
            visibility["short_log_threshold"] = env.short_log_threshold
        if visibility:
            overrides["visibility"] = visibility

        if env.max_images_per_message is not None:
            overrides["composer"] = {"max_images_per_message": env.max_images_per_message}

        commands: dict[str, Any] = {}
        if env.orphan_capacity is not None:
            commands["orphan_capacity"] = env.orphan_capacity
        if env.orphan_ttl_seconds is not None:
            commands["orphan_ttl_seconds"] = env.orphan_ttl_seconds
        if env.shell_integration_disabled is not None:
            commands["shell_integration_disabled"] = env.shell_integration_disabled
        if commands:
            overrides["commands"] = commands

        auto_approve: dict[str, Any] = {}
        if env.auto_approval_enabled is not None:
            auto_approve["auto_approval_enabled"] = env.auto_approval_enabled
        if env.write_delay_ms is not None:
            auto_approve["write_delay_ms"] = env.write_delay_ms
        if auto_approve:
            overrides["auto_approve"] = auto_approve

        return overrides

    def ensure_config_dir(self) -> None:
        """Create global config directory."""
        self._config_dir.mkdir(parents=True, exist_ok=True)

    def save_default_config(self, force: bool = False) -> Path | None:
        """Save default global configuration."""
        config_file = self.get_global_config_file()
        if config_file.exists() and not force:
            return None

        self.ensure_config_dir()
        config_file.write_text(_load_template("config.toml"))
        return config_file

    def get_global_config_file(self) -> Path:
        return self._config_dir / "config.toml"

    def get_project_config_file(self) -> Path:
        return self._project_dir / self.PROJECT_CONFIG_DIR / "config.toml"


# =============================================================================
# Internal Utilities
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_template(name: str) -> str:
    """Load a template file."""
    template_files = resources.files("interaction_engine").joinpath("templates")
    return template_files.joinpath(name).read_text(encoding="utf-8")


def load_config(
    config_dir: Path | None = None,
    project_dir: Path | None = None,
) -> EngineConfig:
    """Load configuration from all sources.

    Args:
        config_dir: Optional custom global config directory.
        project_dir: Optional custom project directory.
    """
    return ConfigManager(config_dir=config_dir, project_dir=project_dir).load()


__all__ = [
    "MAX_IMAGES_PER_MESSAGE",
    "CommandsConfig",
    "ComposerConfig",
    "ConfigManager",
    "EngineConfig",
    "VisibilityConfig",
    "load_config",
]
