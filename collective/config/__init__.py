"""Configuration for claude-code-collective.

Usage:
    from collective.config import get_settings

    settings = get_settings()
    print(settings.install.mode)
"""

from collective.config.settings import (
    CollectiveSettings,
    PathSettings,
    InstallSettings,
    ExperimentSettings,
    MetricsSettings,
    HookSettings,
    get_settings,
    reload_settings,
    clear_settings_cache,
    INSTALL_MODES,
    BACKUP_STRATEGIES,
)

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
]
