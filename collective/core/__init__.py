"""Core building blocks shared across the collective package.

Usage:
    from collective.core import CollectiveError, read_json, write_json
"""

from collective.core.exceptions import (
    CollectiveError,
    ConfigurationError,
    StorageError,
    InstallationError,
    TemplateNotFoundError,
    InstallationValidationError,
    MergeError,
    ExperimentError,
    ExperimentNotFoundError,
    ExperimentStateError,
    ExperimentValidationError,
    MetricsError,
    UnsupportedExportFormatError,
    HookError,
    UnknownHookError,
)
from collective.core.storage import (
    append_json_array,
    append_json_line,
    read_json,
    read_json_lines,
    write_json,
)

__all__ = [
    # Exceptions
    "CollectiveError",
    "ConfigurationError",
    "StorageError",
    "InstallationError",
    "TemplateNotFoundError",
    "InstallationValidationError",
    "MergeError",
    "ExperimentError",
    "ExperimentNotFoundError",
    "ExperimentStateError",
    "ExperimentValidationError",
    "MetricsError",
    "UnsupportedExportFormatError",
    "HookError",
    "UnknownHookError",
    # Storage
    "read_json",
    "write_json",
    "append_json_array",
    "append_json_line",
    "read_json_lines",
]
