"""Pydantic settings for claude-code-collective.

This module defines the CollectiveSettings class that loads configuration from
environment variables and .env files using pydantic-settings.

Settings Categories:
    - Core: debug mode and log level
    - Paths: project-relative directories the installer and hooks use
    - Install: default installation mode and backup strategy
    - Experiments: statistical thresholds for the A/B framework
    - Metrics: buffering and retention for research metrics
    - Hooks: directive enforcement and transcript handling

Environment Variables:
    COLLECTIVE_DEBUG: Enable debug mode (default: false)
    COLLECTIVE_LOG_LEVEL: Logging level (default: INFO)
    COLLECTIVE_INSTALL__MODE: smart-merge, force or skip-conflicts
    COLLECTIVE_INSTALL__BACKUP: full, simple or none
    COLLECTIVE_EXPERIMENTS__SIGNIFICANCE_LEVEL: Alpha for z-tests (default: 0.05)
    COLLECTIVE_METRICS__RETENTION_DAYS: Snapshot retention (default: 30)
    COLLECTIVE_HOOKS__ENFORCE_DIRECTIVES: Block edits to protected paths (default: true)

Usage:
    from collective.config.settings import get_settings

    settings = get_settings()
    print(settings.install.mode)
    print(settings.paths.resolve_collective_dir(Path.cwd()))
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Default Constants
# =============================================================================

INSTALL_MODES = ("smart-merge", "force", "skip-conflicts")
BACKUP_STRATEGIES = ("full", "simple", "none")
CORRECTION_METHODS = ("bonferroni", "none")

DEFAULT_PROTECTED_PATHS = [".claude/hooks/", ".claude/settings.json"]
"""Project-relative paths the directive enforcer refuses to let agents edit."""

DEFAULT_CONFIGURATION_AGENTS = ["hook-integration-agent"]
"""Agents allowed to edit protected paths."""


# =============================================================================
# Nested Settings Models
# =============================================================================


class PathSettings(BaseModel):
    """Project-relative directory layout.

    Attributes:
        claude_dir: Claude Code configuration directory.
        collective_dir: Behavioral system, tests and runtime state.
        taskmaster_dir: TaskMaster scaffold directory.
        backups_dir: Where conflicting files are backed up.
        log_dir: Where hook and CLI logs are written.
    """

    claude_dir: Path = Field(default=Path(".claude"), description="Claude Code directory")
    collective_dir: Path = Field(
        default=Path(".claude-collective"), description="Collective runtime directory"
    )
    taskmaster_dir: Path = Field(default=Path(".taskmaster"), description="TaskMaster directory")
    backups_dir: Path = Field(default=Path(".claude-backups"), description="Backup directory")
    log_dir: Path = Field(
        default=Path(".claude-collective/logs"), description="Hook and CLI log directory"
    )

    @field_validator("claude_dir", "collective_dir", "taskmaster_dir", "backups_dir", "log_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v

    def _resolve(self, project_dir: Path, path: Path) -> Path:
        return path if path.is_absolute() else Path(project_dir) / path

    def resolve_claude_dir(self, project_dir: Path) -> Path:
        return self._resolve(project_dir, self.claude_dir)

    def resolve_collective_dir(self, project_dir: Path) -> Path:
        return self._resolve(project_dir, self.collective_dir)

    def resolve_taskmaster_dir(self, project_dir: Path) -> Path:
        return self._resolve(project_dir, self.taskmaster_dir)

    def resolve_backups_dir(self, project_dir: Path) -> Path:
        return self._resolve(project_dir, self.backups_dir)

    def resolve_log_dir(self, project_dir: Path) -> Path:
        return self._resolve(project_dir, self.log_dir)


class InstallSettings(BaseModel):
    """Installer defaults.

    Attributes:
        mode: Conflict handling mode (smart-merge, force, skip-conflicts).
        backup: Backup strategy (full, simple, none).
        minimal: Install only required files.
        identical_size_threshold: Files larger than this are compared by hash.
    """

    mode: str = Field(default="smart-merge", description="Installation mode")
    backup: str = Field(default="full", description="Backup strategy")
    minimal: bool = Field(default=False, description="Minimal installation")
    identical_size_threshold: int = Field(
        default=100 * 1024,
        ge=0,
        description="Byte size above which files are compared by SHA-256",
    )

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        """Validate installation mode."""
        normalized = v.lower().strip()
        if normalized not in INSTALL_MODES:
            raise ValueError(
                f"Invalid install mode '{v}'. Must be one of: {', '.join(INSTALL_MODES)}"
            )
        return normalized

    @field_validator("backup")
    @classmethod
    def validate_backup(cls, v: str) -> str:
        """Validate backup strategy."""
        normalized = v.lower().strip()
        if normalized not in BACKUP_STRATEGIES:
            raise ValueError(
                f"Invalid backup strategy '{v}'. Must be one of: {', '.join(BACKUP_STRATEGIES)}"
            )
        return normalized


class ExperimentSettings(BaseModel):
    """Statistical defaults for the experiment framework.

    Attributes:
        storage_subdir: Directory under the collective dir for experiment state.
        significance_level: Alpha used by the two-proportion z-test.
        min_sample_size: Total assignments required before results are trusted.
        minimum_effect: Smallest relative effect worth detecting.
        power_target: Statistical power the experiment should reach.
        multiple_testing_correction: bonferroni or none.
    """

    storage_subdir: str = Field(default="experiments", description="Experiment storage subdir")
    significance_level: float = Field(default=0.05, gt=0.0, lt=1.0, description="Alpha")
    min_sample_size: int = Field(default=30, ge=1, description="Minimum total sample size")
    minimum_effect: float = Field(default=0.1, ge=0.0, description="Minimum effect size")
    power_target: float = Field(default=0.8, gt=0.0, le=1.0, description="Target power")
    multiple_testing_correction: str = Field(
        default="bonferroni", description="Multiple comparison correction"
    )

    @field_validator("multiple_testing_correction")
    @classmethod
    def validate_correction(cls, v: str) -> str:
        """Validate correction method."""
        normalized = v.lower().strip()
        if normalized not in CORRECTION_METHODS:
            raise ValueError(
                f"Invalid correction '{v}'. Must be one of: {', '.join(CORRECTION_METHODS)}"
            )
        return normalized


class MetricsSettings(BaseModel):
    """Research metrics collection settings.

    Attributes:
        storage_subdir: Directory under the collective dir for metrics.
        buffer_size: Metrics buffered before a snapshot is flushed.
        retention_days: Age after which snapshots and aggregations are deleted.
        hook_retention_days: Age after which per-day hook metrics are deleted.
        enable_validation: Validate required fields before buffering.
        min_sample_size: Samples required for a "confident" aggregation.
    """

    storage_subdir: str = Field(default="metrics", description="Metrics storage subdir")
    buffer_size: int = Field(default=100, ge=1, description="Buffer size before flush")
    retention_days: int = Field(default=30, ge=1, description="Snapshot retention days")
    hook_retention_days: int = Field(default=7, ge=1, description="Hook metrics retention days")
    enable_validation: bool = Field(default=True, description="Validate metrics")
    min_sample_size: int = Field(default=30, ge=1, description="Minimum sample size")


class HookSettings(BaseModel):
    """Hook runtime settings.

    Attributes:
        log_file: Log file name inside the log directory.
        enforce_directives: Block tool edits that target protected paths.
        protected_paths: Project-relative paths agents may not edit.
        allowed_agents: Agents that may edit protected paths.
        transcript_tail_lines: Transcript lines scanned for routing directives.
    """

    log_file: str = Field(default="hooks.log", description="Hook log file name")
    enforce_directives: bool = Field(default=True, description="Block protected edits")
    protected_paths: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_PATHS),
        description="Paths agents may not edit",
    )
    allowed_agents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CONFIGURATION_AGENTS),
        description="Agents allowed to edit protected paths",
    )
    transcript_tail_lines: int = Field(default=50, ge=1, description="Transcript tail size")


# =============================================================================
# Main Settings Class
# =============================================================================


class CollectiveSettings(BaseSettings):
    """Main settings class for claude-code-collective.

    Loads configuration from environment variables (COLLECTIVE_ prefix) and
    a .env file. Nested groups use ``__`` as the delimiter, e.g.
    ``COLLECTIVE_METRICS__BUFFER_SIZE=50``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COLLECTIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # Core settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Nested configuration groups
    paths: PathSettings = Field(default_factory=PathSettings, description="Path configuration")
    install: InstallSettings = Field(
        default_factory=InstallSettings, description="Installer configuration"
    )
    experiments: ExperimentSettings = Field(
        default_factory=ExperimentSettings, description="Experiment configuration"
    )
    metrics: MetricsSettings = Field(
        default_factory=MetricsSettings, description="Metrics configuration"
    )
    hooks: HookSettings = Field(default_factory=HookSettings, description="Hook configuration")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        normalized = v.upper()
        if normalized not in valid_levels:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return normalized

    def ensure_directories(self, project_dir: Path) -> None:
        """Create the runtime directories under a project root."""
        self.paths.resolve_collective_dir(project_dir).mkdir(parents=True, exist_ok=True)
        self.paths.resolve_log_dir(project_dir).mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a JSON-friendly dictionary."""
        return self.model_dump(mode="json")


# =============================================================================
# Singleton Pattern
# =============================================================================

_settings_instance: Optional[CollectiveSettings] = None


def get_settings() -> CollectiveSettings:
    """Get the cached settings instance.

    The settings are created once and cached for subsequent calls to avoid
    repeated .env parsing.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = CollectiveSettings()
    return _settings_instance


def reload_settings() -> CollectiveSettings:
    """Reload settings from environment, clearing the cache.

    Example:
        ```python
        os.environ["COLLECTIVE_DEBUG"] = "true"
        settings = reload_settings()
        assert settings.debug is True
        ```
    """
    global _settings_instance
    _settings_instance = CollectiveSettings()
    return _settings_instance


def clear_settings_cache() -> None:
    """Clear the settings cache without creating a new instance."""
    global _settings_instance
    _settings_instance = None


__all__ = [
    "CollectiveSettings",
    "PathSettings",
    "InstallSettings",
    "ExperimentSettings",
    "MetricsSettings",
    "HookSettings",
    "get_settings",
    "reload_settings",
    "clear_settings_cache",
    "INSTALL_MODES",
    "BACKUP_STRATEGIES",
    "CORRECTION_METHODS",
    "DEFAULT_PROTECTED_PATHS",
    "DEFAULT_CONFIGURATION_AGENTS",
]
