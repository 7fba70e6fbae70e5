"""Tests for collective settings.

Test Coverage:
- Default values without any environment
- Nested overrides through COLLECTIVE_<GROUP>__<FIELD>
- Validation of install mode, backup strategy, correction and log level
- Path resolution against a project root
- Singleton caching, reload and clear
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from collective.config.settings import (
    BACKUP_STRATEGIES,
    DEFAULT_PROTECTED_PATHS,
    INSTALL_MODES,
    CollectiveSettings,
    InstallSettings,
    PathSettings,
    clear_settings_cache,
    get_settings,
    reload_settings,
)


class TestDefaults:
    """Defaults work with no environment configured."""

    def test_core_defaults(self):
        settings = CollectiveSettings()

        assert settings.debug is False
        assert settings.log_level == "INFO"

    def test_path_defaults(self):
        paths = CollectiveSettings().paths

        assert paths.claude_dir == Path(".claude")
        assert paths.collective_dir == Path(".claude-collective")
        assert paths.taskmaster_dir == Path(".taskmaster")
        assert paths.log_dir == Path(".claude-collective/logs")

    def test_group_defaults(self):
        settings = CollectiveSettings()

        assert settings.install.mode == "smart-merge"
        assert settings.install.backup == "full"
        assert settings.experiments.significance_level == 0.05
        assert settings.experiments.multiple_testing_correction == "bonferroni"
        assert settings.metrics.buffer_size == 100
        assert settings.metrics.retention_days == 30
        assert settings.hooks.enforce_directives is True
        assert settings.hooks.protected_paths == DEFAULT_PROTECTED_PATHS
        assert settings.hooks.allowed_agents == ["hook-integration-agent"]

    def test_protected_paths_are_not_shared(self):
        first = CollectiveSettings()
        first.hooks.protected_paths.append("secrets/")

        assert "secrets/" not in CollectiveSettings().hooks.protected_paths

    def test_constants(self):
        assert INSTALL_MODES == ("smart-merge", "force", "skip-conflicts")
        assert BACKUP_STRATEGIES == ("full", "simple", "none")


class TestEnvironmentOverrides:
    """COLLECTIVE_ variables override defaults."""

    def test_top_level_override(self, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_DEBUG", "true")
        monkeypatch.setenv("COLLECTIVE_LOG_LEVEL", "debug")

        settings = CollectiveSettings()

        assert settings.debug is True
        assert settings.log_level == "DEBUG"

    def test_nested_override(self, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_INSTALL__MODE", "skip-conflicts")
        monkeypatch.setenv("COLLECTIVE_METRICS__BUFFER_SIZE", "5")
        monkeypatch.setenv("COLLECTIVE_HOOKS__ENFORCE_DIRECTIVES", "false")

        settings = CollectiveSettings()

        assert settings.install.mode == "skip-conflicts"
        assert settings.metrics.buffer_size == 5
        assert settings.hooks.enforce_directives is False

    def test_dotenv_file_is_read(self, clean_env):
        (clean_env / ".env").write_text("COLLECTIVE_EXPERIMENTS__MIN_SAMPLE_SIZE=12\n")

        assert CollectiveSettings().experiments.min_sample_size == 12


class TestValidation:
    """Invalid values raise clear errors."""

    def test_invalid_install_mode(self):
        with pytest.raises(ValidationError, match="Invalid install mode"):
            InstallSettings(mode="overwrite-everything")

    def test_install_mode_normalized(self):
        assert InstallSettings(mode=" FORCE ").mode == "force"

    def test_invalid_backup_strategy(self):
        with pytest.raises(ValidationError, match="Invalid backup strategy"):
            InstallSettings(backup="cloud")

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_LOG_LEVEL", "chatty")

        with pytest.raises(ValidationError, match="Invalid log level"):
            CollectiveSettings()

    def test_invalid_correction(self, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_EXPERIMENTS__MULTIPLE_TESTING_CORRECTION", "holm")

        with pytest.raises(ValidationError, match="Invalid correction"):
            CollectiveSettings()

    def test_significance_bounds(self, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_EXPERIMENTS__SIGNIFICANCE_LEVEL", "1.5")

        with pytest.raises(ValidationError):
            CollectiveSettings()


class TestPathResolution:
    def test_relative_paths_resolve_under_project(self, tmp_path):
        paths = PathSettings()

        assert paths.resolve_claude_dir(tmp_path) == tmp_path / ".claude"
        assert paths.resolve_collective_dir(tmp_path) == tmp_path / ".claude-collective"
        assert paths.resolve_backups_dir(tmp_path) == tmp_path / ".claude-backups"

    def test_absolute_paths_are_kept(self, tmp_path):
        logs = tmp_path / "elsewhere" / "logs"
        paths = PathSettings(log_dir=str(logs))

        assert paths.resolve_log_dir(Path("/work/app")) == logs

    def test_ensure_directories(self, tmp_path):
        CollectiveSettings().ensure_directories(tmp_path)

        assert (tmp_path / ".claude-collective").is_dir()
        assert (tmp_path / ".claude-collective" / "logs").is_dir()

    def test_to_dict_is_json_friendly(self):
        data = CollectiveSettings().to_dict()

        assert data["paths"]["claude_dir"] == ".claude"
        assert data["install"]["mode"] == "smart-merge"


class TestSingleton:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reload_picks_up_environment(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("COLLECTIVE_DEBUG", "true")

        reloaded = reload_settings()

        assert reloaded is not first
        assert reloaded.debug is True
        assert get_settings() is reloaded

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()

        assert get_settings() is not first
