"""Custom exceptions for claude-code-collective.

All exceptions inherit from CollectiveError, enabling catch-all handling in
the CLI while still allowing callers to catch specific failure types.

Exception Hierarchy:
    CollectiveError (base)
    ├── ConfigurationError: Invalid configuration or settings
    ├── StorageError: JSON persistence or file locking failures
    ├── InstallationError: Installer failures
    │   ├── TemplateNotFoundError: Packaged template missing
    │   └── InstallationValidationError: Post-install checks failed
    ├── MergeError: Settings merge or backup failures
    ├── ExperimentError: A/B experiment failures
    │   ├── ExperimentNotFoundError: Unknown experiment id
    │   ├── ExperimentStateError: Illegal lifecycle transition
    │   └── ExperimentValidationError: Invalid experiment configuration
    ├── MetricsError: Metrics collection failures
    │   └── UnsupportedExportFormatError: Unknown export format
    └── HookError: Hook dispatch failures
        └── UnknownHookError: No handler registered for the hook name

Features:
    - Error codes for programmatic handling
    - Context information included in each exception type
    - Structured logging support via to_log_dict method
"""

from typing import Any, Optional


class CollectiveError(Exception):
    """Base exception for all collective errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        context: Additional context information about the error
        recoverable: Whether the error is potentially recoverable
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "COLLECTIVE_ERROR"
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_log_dict(self) -> dict[str, Any]:
        """Return structured dict for logging.

        Returns:
            Dictionary with error details suitable for structured logging
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ConfigurationError(CollectiveError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, code="CONFIG_ERROR", context=context, **kwargs)
        self.config_key = config_key


class StorageError(CollectiveError):
    """Raised when a JSON file cannot be read, written or locked.

    Attributes:
        path: The file that was being accessed
    """

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if path:
            context["path"] = str(path)
        super().__init__(message, code="STORAGE_ERROR", context=context, **kwargs)
        self.path = path


# =============================================================================
# Installation
# =============================================================================


class InstallationError(CollectiveError):
    """Base exception for installer failures.

    Attributes:
        project_dir: Target project directory of the installation
    """

    def __init__(self, message: str, project_dir: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if project_dir:
            context["project_dir"] = str(project_dir)
        kwargs.setdefault("code", "INSTALL_ERROR")
        super().__init__(message, context=context, **kwargs)
        self.project_dir = project_dir


class TemplateNotFoundError(InstallationError):
    """Raised when a packaged template file does not exist."""

    def __init__(self, template: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        context["template"] = template
        super().__init__(
            f"Template not found: {template}",
            code="TEMPLATE_NOT_FOUND",
            context=context,
            **kwargs,
        )
        self.template = template


class InstallationValidationError(InstallationError):
    """Raised when post-install validation finds missing components.

    Attributes:
        results: The individual check results (name/passed/error dicts)
    """

    def __init__(
        self,
        message: str,
        results: Optional[list[dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        failed = [r for r in (results or []) if not r.get("passed")]
        if failed:
            context["failed_checks"] = [r.get("name") for r in failed]
        super().__init__(message, code="INSTALL_VALIDATION_ERROR", context=context, **kwargs)
        self.results = results or []


class MergeError(CollectiveError):
    """Raised when settings cannot be merged or backups cannot be made."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if path:
            context["path"] = str(path)
        super().__init__(message, code="MERGE_ERROR", context=context, **kwargs)
        self.path = path


# =============================================================================
# Experiments
# =============================================================================


class ExperimentError(CollectiveError):
    """Base exception for experiment failures.

    Attributes:
        experiment_id: Identifier of the experiment involved
    """

    def __init__(self, message: str, experiment_id: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if experiment_id:
            context["experiment_id"] = experiment_id
        kwargs.setdefault("code", "EXPERIMENT_ERROR")
        super().__init__(message, context=context, **kwargs)
        self.experiment_id = experiment_id


class ExperimentNotFoundError(ExperimentError):
    """Raised when an experiment id is unknown."""

    def __init__(self, experiment_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Experiment {experiment_id} not found",
            experiment_id=experiment_id,
            code="EXPERIMENT_NOT_FOUND",
            **kwargs,
        )


class ExperimentStateError(ExperimentError):
    """Raised on an illegal lifecycle transition (e.g. starting twice)."""

    def __init__(
        self,
        message: str,
        experiment_id: Optional[str] = None,
        status: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if status:
            context["status"] = status
        super().__init__(
            message,
            experiment_id=experiment_id,
            code="EXPERIMENT_STATE_ERROR",
            context=context,
            **kwargs,
        )
        self.status = status


class ExperimentValidationError(ExperimentError):
    """Raised when an experiment configuration is invalid."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if field:
            context["field"] = field
        super().__init__(
            message, code="EXPERIMENT_VALIDATION_ERROR", context=context, **kwargs
        )
        self.field = field


# =============================================================================
# Metrics
# =============================================================================


class MetricsError(CollectiveError):
    """Base exception for metrics collection failures."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "METRICS_ERROR")
        super().__init__(message, **kwargs)


class UnsupportedExportFormatError(MetricsError):
    """Raised when metrics are exported in an unknown format."""

    def __init__(self, fmt: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        context["format"] = fmt
        super().__init__(
            f"Unsupported export format: {fmt}",
            code="UNSUPPORTED_EXPORT_FORMAT",
            context=context,
            **kwargs,
        )
        self.format = fmt


# =============================================================================
# Hooks
# =============================================================================


class HookError(CollectiveError):
    """Base exception for hook dispatch failures.

    Attributes:
        hook_name: Name of the hook being executed
    """

    def __init__(self, message: str, hook_name: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if hook_name:
            context["hook_name"] = hook_name
        kwargs.setdefault("code", "HOOK_ERROR")
        super().__init__(message, context=context, **kwargs)
        self.hook_name = hook_name


class UnknownHookError(HookError):
    """Raised when no handler is registered for a hook name."""

    def __init__(self, hook_name: str, available: Optional[list[str]] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if available:
            context["available"] = available
        super().__init__(
            f"Unknown hook: {hook_name}",
            hook_name=hook_name,
            code="UNKNOWN_HOOK",
            context=context,
            **kwargs,
        )


__all__ = [
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
]
