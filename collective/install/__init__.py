"""Installation subsystem: file mapping, merging, installing and validating.

Usage:
    from collective.install import CollectiveInstaller, InstallOptions

    result = CollectiveInstaller(InstallOptions(express=True)).install()
"""

from collective.install.file_mapping import (
    TEMPLATE_DIR,
    FileMapping,
    FileMappingEntry,
    MappingType,
    process_template,
    render_template,
)
from collective.install.merge import MergeStrategies, SetupAnalysis, deep_merge_settings
from collective.install.installer import (
    CollectiveInstaller,
    InstallOptions,
    InstallReport,
    InstallResult,
)
from collective.install.validator import CheckResult, CollectiveValidator, parse_frontmatter
from collective.install.interactive import InteractiveInstaller

__all__ = [
    "TEMPLATE_DIR",
    "FileMapping",
    "FileMappingEntry",
    "MappingType",
    "process_template",
    "render_template",
    "MergeStrategies",
    "SetupAnalysis",
    "deep_merge_settings",
    "CollectiveInstaller",
    "InstallOptions",
    "InstallReport",
    "InstallResult",
    "CheckResult",
    "CollectiveValidator",
    "parse_frontmatter",
    "InteractiveInstaller",
]
