"""Tests for the collective exception hierarchy.

Test Coverage:
- Every error derives from CollectiveError
- Error codes and context for each subtype
- String form and structured log dict
"""

from __future__ import annotations

import pytest

from collective.core.exceptions import (
    CollectiveError,
    ConfigurationError,
    ExperimentError,
    ExperimentNotFoundError,
    ExperimentStateError,
    ExperimentValidationError,
    HookError,
    InstallationError,
    InstallationValidationError,
    MergeError,
    MetricsError,
    StorageError,
    TemplateNotFoundError,
    UnknownHookError,
    UnsupportedExportFormatError,
)


class TestCollectiveError:
    def test_defaults(self):
        error = CollectiveError("boom")

        assert error.message == "boom"
        assert error.code == "COLLECTIVE_ERROR"
        assert error.context == {}
        assert error.recoverable is False
        assert str(error) == "[COLLECTIVE_ERROR] boom"

    def test_to_log_dict(self):
        error = StorageError("disk full", path="/tmp/x.json")

        data = error.to_log_dict()

        assert data["error_type"] == "StorageError"
        assert data["error_code"] == "STORAGE_ERROR"
        assert data["message"] == "disk full"
        assert data["context"] == {"path": "/tmp/x.json"}


class TestHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError("bad", config_key="install.mode"),
            StorageError("bad"),
            InstallationError("bad"),
            TemplateNotFoundError("agents/x.md"),
            InstallationValidationError("bad"),
            MergeError("bad"),
            ExperimentNotFoundError("exp_1"),
            ExperimentStateError("bad"),
            ExperimentValidationError("bad"),
            UnsupportedExportFormatError("xml"),
            UnknownHookError("nope"),
        ],
    )
    def test_all_errors_are_collective_errors(self, error):
        assert isinstance(error, CollectiveError)

    def test_subtypes(self):
        assert issubclass(TemplateNotFoundError, InstallationError)
        assert issubclass(InstallationValidationError, InstallationError)
        assert issubclass(ExperimentNotFoundError, ExperimentError)
        assert issubclass(UnsupportedExportFormatError, MetricsError)
        assert issubclass(UnknownHookError, HookError)


class TestContext:
    def test_configuration_error(self):
        error = ConfigurationError("bad", config_key="install.mode")

        assert error.code == "CONFIG_ERROR"
        assert error.context["config_key"] == "install.mode"

    def test_template_not_found(self):
        error = TemplateNotFoundError("agents/missing.md")

        assert error.code == "TEMPLATE_NOT_FOUND"
        assert error.template == "agents/missing.md"
        assert "agents/missing.md" in str(error)

    def test_installation_validation_lists_failed_checks(self):
        results = [
            {"name": "Settings", "passed": True},
            {"name": "Hooks directory", "passed": False},
        ]
        error = InstallationValidationError("failed", results=results, project_dir="/work/app")

        assert error.code == "INSTALL_VALIDATION_ERROR"
        assert error.context["failed_checks"] == ["Hooks directory"]
        assert error.context["project_dir"] == "/work/app"
        assert error.results == results

    def test_experiment_state_error(self):
        error = ExperimentStateError("not created", experiment_id="exp_1", status="running")

        assert error.code == "EXPERIMENT_STATE_ERROR"
        assert error.context == {"status": "running", "experiment_id": "exp_1"}

    def test_experiment_not_found(self):
        error = ExperimentNotFoundError("exp_9")

        assert error.code == "EXPERIMENT_NOT_FOUND"
        assert error.experiment_id == "exp_9"

    def test_experiment_validation_field(self):
        error = ExperimentValidationError("need two variants", field="variants")

        assert error.field == "variants"
        assert error.context["field"] == "variants"

    def test_unsupported_export_format(self):
        error = UnsupportedExportFormatError("xml")

        assert error.code == "UNSUPPORTED_EXPORT_FORMAT"
        assert error.format == "xml"

    def test_unknown_hook(self):
        error = UnknownHookError("nope", available=["agent-detection"])

        assert error.code == "UNKNOWN_HOOK"
        assert error.hook_name == "nope"
        assert error.context["available"] == ["agent-detection"]
