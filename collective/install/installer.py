"""Collective installer.

Installs the behavioral system, agents, hooks, commands, test harness and
TaskMaster scaffold into a target project. The installer never prompts;
interactive conflict resolution lives in ``collective.install.interactive``
and drives this class through InstallOptions.

Key Components:
    - InstallOptions: Flags controlling one installation
    - InstallReport: What happened to every mapped file
    - InstallResult: Outcome returned to the CLI
    - CollectiveInstaller: The installation pipeline

Installation Modes:
    - smart-merge: merge settings.json, back up and replace changed files
    - force: back up and overwrite everything, including CLAUDE.md
    - skip-conflicts: leave every differing existing file untouched

Example:
    >>> installer = CollectiveInstaller(InstallOptions(target_path=Path("/work/app"), express=True))
    >>> result = installer.install()
    >>> result.success
    True
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from collective import __version__
from collective.config.settings import CollectiveSettings, get_settings
from collective.core.exceptions import InstallationError, InstallationValidationError, MergeError
from collective.core.storage import write_json
from collective.install.file_mapping import (
    TEMPLATE_DIR,
    FileMapping,
    FileMappingEntry,
    MappingType,
    load_template,
    process_template,
)
from collective.install.merge import MergeStrategies, SetupAnalysis

logger = logging.getLogger(__name__)

TASKMASTER_MODEL = "claude-3-5-sonnet-20241022"


@dataclass
class InstallOptions:
    """Flags controlling an installation.

    Attributes:
        target_path: Project root to install into (defaults to cwd).
        force: Overwrite user-owned files such as CLAUDE.md.
        minimal: Install only required files and the routing agent.
        mode: smart-merge, force or skip-conflicts (defaults from settings).
        backup: full, simple or none (defaults from settings).
        express: Non-interactive installation.
        conflict_strategies: Per-file overrides (merge, replace, skip).
    """

    target_path: Optional[Path] = None
    force: bool = False
    minimal: bool = False
    mode: Optional[str] = None
    backup: Optional[str] = None
    express: bool = False
    conflict_strategies: dict[str, str] = field(default_factory=dict)


@dataclass
class InstallReport:
    """Per-file outcome of an installation (project-relative paths)."""

    installed: list[str] = field(default_factory=list)
    identical: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    merged: list[str] = field(default_factory=list)
    backed_up: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    backup_dir: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed": self.installed,
            "identical": self.identical,
            "skipped": self.skipped,
            "merged": self.merged,
            "backed_up": self.backed_up,
            "missing": self.missing,
            "backup_dir": self.backup_dir,
        }


@dataclass
class InstallResult:
    success: bool
    path: Path
    express_mode: bool = False
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    report: InstallReport = field(default_factory=InstallReport)


class CollectiveInstaller:
    """Installs the collective into a project.

    Attributes:
        options: The InstallOptions for this run.
        project_dir: Absolute project root.
        config: Values substituted into ``{{KEY}}`` template placeholders.
        report: Per-file outcome, filled as files are installed.
    """

    DIRECTORIES = [
        ".claude/agents",
        ".claude/hooks",
        ".claude/commands",
        ".claude-collective/tests/handoffs",
        ".claude-collective/tests/directives",
        ".claude-collective/tests/contracts",
        ".claude-collective/metrics",
        ".taskmaster/tasks",
        ".taskmaster/docs",
        ".taskmaster/reports",
        ".taskmaster/templates",
    ]

    def __init__(
        self,
        options: Optional[InstallOptions] = None,
        settings: Optional[CollectiveSettings] = None,
        template_dir: Path = TEMPLATE_DIR,
    ) -> None:
        self.options = options or InstallOptions()
        self.settings = settings or get_settings()
        self.template_dir = Path(template_dir)
        self.project_dir = Path(self.options.target_path or os.getcwd()).resolve()

        paths = self.settings.paths
        self.claude_dir = paths.resolve_claude_dir(self.project_dir)
        self.collective_dir = paths.resolve_collective_dir(self.project_dir)
        self.taskmaster_dir = paths.resolve_taskmaster_dir(self.project_dir)

        self.mode = self.options.mode or ("force" if self.options.force else self.settings.install.mode)
        self.backup = self.options.backup or self.settings.install.backup
        self.force = self.options.force or self.mode == "force"
        self.minimal = self.options.minimal or self.settings.install.minimal

        self.config = {
            "PROJECT_ROOT": str(self.project_dir),
            "INSTALL_DATE": datetime.now(timezone.utc).isoformat(),
            "VERSION": __version__,
            "USER_NAME": os.environ.get("USER") or os.environ.get("USERNAME") or "developer",
            "PROJECT_NAME": self.project_dir.name,
            "PYTHON": sys.executable,
        }

        self.file_mapping = FileMapping(
            self.project_dir, force=self.force, minimal=self.minimal, settings=self.settings
        )
        self.merge = MergeStrategies(
            self.project_dir,
            backup_root=paths.resolve_backups_dir(self.project_dir),
            size_threshold=self.settings.install.identical_size_threshold,
            template_dir=self.template_dir,
        )
        self.report = InstallReport()
        self._backed_up: set[Path] = set()

    # =========================================================================
    # Pipeline
    # =========================================================================

    def install(self) -> InstallResult:
        """Run the full installation pipeline.

        Raises:
            InstallationError: If a step fails or validation does not pass.
        """
        logger.info("Installing claude-code-collective into %s (mode=%s)", self.project_dir, self.mode)

        analysis = self.analyze()
        if analysis.backup_required and self.backup != "none" and self.mode != "skip-conflicts":
            self._backup_paths(analysis.existing_paths())

        try:
            self.create_directories()
            self.setup_taskmaster()
            self.install_templates()
            self.configure_settings()
            self.setup_hooks()
            self.install_agents()
        except OSError as e:
            raise InstallationError(
                f"Installation failed: {e}", project_dir=str(self.project_dir)
            ) from e

        self.validate_installation()

        logger.info(
            "Installation complete: %d installed, %d merged, %d skipped",
            len(self.report.installed),
            len(self.report.merged),
            len(self.report.skipped),
        )
        return InstallResult(
            success=True,
            path=self.claude_dir,
            express_mode=self.options.express,
            conflicts=analysis.conflicts,
            report=self.report,
        )

    def analyze(self) -> SetupAnalysis:
        return self.merge.analyze_existing_setup(self.config)

    @property
    def installation_type(self) -> str:
        return "minimal" if self.minimal else "full"

    def create_directories(self) -> None:
        for directory in self.DIRECTORIES:
            (self.project_dir / directory).mkdir(parents=True, exist_ok=True)
        for directory in self.file_mapping.get_directory_structure():
            directory.mkdir(parents=True, exist_ok=True)

    def process_template(self, content: str, variables: Optional[dict[str, Any]] = None) -> str:
        """Substitute installer config and extra variables into a template."""
        return process_template(content, {**self.config, **(variables or {})})

    def _mappings_of(self, *kinds: MappingType) -> list[FileMappingEntry]:
        return [
            m for m in self.file_mapping.get_filtered_mapping(self.installation_type)
            if m.type in kinds
        ]

    def install_templates(self) -> None:
        """Install behavioral docs, commands, tests and documentation."""
        for mapping in self._mappings_of(
            MappingType.BEHAVIORAL,
            MappingType.COLLECTIVE,
            MappingType.COMMAND,
            MappingType.TEST,
            MappingType.DOCS,
        ):
            self.install_mapped_file(mapping)

    def configure_settings(self) -> None:
        for mapping in self._mappings_of(MappingType.CONFIG):
            self.install_mapped_file(mapping)

    def setup_hooks(self) -> None:
        for mapping in self._mappings_of(MappingType.HOOK):
            self.install_mapped_file(mapping)

    def install_agents(self) -> None:
        for mapping in self._mappings_of(MappingType.AGENT):
            self.install_mapped_file(mapping)

    # =========================================================================
    # Single File Installation
    # =========================================================================

    def _relative(self, path: Path) -> str:
        try:
            return str(Path(path).relative_to(self.project_dir))
        except ValueError:
            return str(path)

    def _backup_paths(self, paths: list[Path]) -> None:
        pending = [p for p in paths if p.exists() and p not in self._backed_up]
        if not pending:
            return
        self.merge.create_backups(pending, with_restore_script=self.backup == "full")
        for path in pending:
            self._backed_up.add(path)
            self.report.backed_up.append(self._relative(path))
        self.report.backup_dir = str(self.merge.backup_dir)

    def _strategy_for(self, mapping: FileMappingEntry) -> Optional[str]:
        return self.options.conflict_strategies.get(mapping.target.name)

    def install_mapped_file(self, mapping: FileMappingEntry) -> None:
        """Render and install one mapped template, honouring conflicts."""
        relative = self._relative(mapping.target)

        try:
            template = load_template(mapping.source, self.template_dir)
        except InstallationError:
            logger.warning("Template not found: %s", mapping.source)
            self.report.missing.append(mapping.source)
            return

        rendered = self.process_template(template)
        target = mapping.target

        if target.exists():
            if self.merge.matches_content(target, rendered):
                self.report.identical.append(relative)
                self._ensure_mode(mapping)
                return

            strategy = self._strategy_for(mapping)
            if self.mode == "skip-conflicts" or strategy == "skip":
                logger.info("Skipping existing file %s", relative)
                self.report.skipped.append(relative)
                return

            is_settings = mapping.type is MappingType.CONFIG and target.name == "settings.json"
            if is_settings and not self.force and strategy != "replace":
                self._merge_settings(mapping, rendered)
                return

            if not (mapping.overwrite or self.force or strategy == "replace"):
                logger.info("Keeping user-owned file %s", relative)
                self.report.skipped.append(relative)
                return

            if self.backup != "none":
                self._backup_paths([target])

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(rendered, encoding="utf-8")
        self._ensure_mode(mapping)
        self.report.installed.append(relative)
        logger.debug("Installed %s", relative)

    def _ensure_mode(self, mapping: FileMappingEntry) -> None:
        if mapping.executable:
            mapping.target.chmod(0o755)

    def _merge_settings(self, mapping: FileMappingEntry, rendered: str) -> None:
        if self.backup != "none":
            self._backup_paths([mapping.target])
        try:
            merged = self.merge.smart_merge_settings(mapping.target, json.loads(rendered))
        except MergeError as e:
            # nothing to merge into; keep a copy whatever the backup strategy
            logger.warning("Replacing unreadable %s: %s", mapping.target, e)
            self._backup_paths([mapping.target])
            mapping.target.write_text(rendered, encoding="utf-8")
            self.report.installed.append(self._relative(mapping.target))
            return
        write_json(mapping.target, merged)
        self.report.merged.append(self._relative(mapping.target))
        logger.info("Merged collective hooks into %s", mapping.target)

    # =========================================================================
    # TaskMaster
    # =========================================================================

    def setup_taskmaster(self) -> None:
        """Create the minimal TaskMaster files, keeping any that exist."""
        now = datetime.now(timezone.utc).isoformat()
        files = {
            self.taskmaster_dir / "config.json": {
                "main": TASKMASTER_MODEL,
                "research": TASKMASTER_MODEL,
                "fallback": TASKMASTER_MODEL,
            },
            self.taskmaster_dir / "state.json": {
                "currentTag": "master",
                "availableTags": ["master"],
                "projectRoot": str(self.project_dir),
            },
            self.taskmaster_dir / "tasks" / "tasks.json": {
                "master": {
                    "tasks": [],
                    "metadata": {"createdAt": now, "lastModified": now},
                }
            },
        }
        for path, content in files.items():
            if path.exists():
                continue
            write_json(path, content)
            self.report.installed.append(self._relative(path))

    # =========================================================================
    # Validation and Status
    # =========================================================================

    def validate_installation(self) -> list[dict[str, Any]]:
        """Check that the core installation paths exist.

        Raises:
            InstallationValidationError: If any path is missing.
        """
        checks = [
            ("Behavioral system", self.project_dir / "CLAUDE.md"),
            ("Settings", self.claude_dir / "settings.json"),
            ("Hooks directory", self.claude_dir / "hooks"),
            ("Agents directory", self.claude_dir / "agents"),
            ("Test framework", self.collective_dir / "tests"),
        ]
        results = [
            {"name": name, "passed": path.exists(), "path": str(path)} for name, path in checks
        ]
        failed = [r["name"] for r in results if not r["passed"]]
        if failed:
            raise InstallationValidationError(
                f"Installation validation failed: {', '.join(failed)}",
                results=results,
                project_dir=str(self.project_dir),
            )
        return results

    def get_installation_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "version": __version__,
            "installed": self.claude_dir.exists(),
            "behavioral": False,
            "testing": False,
            "hooks": False,
            "agents": [],
            "issues": [],
        }
        if not status["installed"]:
            return status

        status["behavioral"] = (self.project_dir / "CLAUDE.md").exists()
        status["testing"] = (self.collective_dir / "tests").exists()
        status["hooks"] = (self.claude_dir / "hooks").exists()

        agents_dir = self.claude_dir / "agents"
        if agents_dir.is_dir():
            status["agents"] = sorted(
                p.stem for p in agents_dir.iterdir() if p.suffix in (".md", ".json")
            )

        if not status["behavioral"]:
            status["issues"].append("CLAUDE.md missing")
        if not status["testing"]:
            status["issues"].append("Testing framework not installed")
        if not status["hooks"]:
            status["issues"].append("Hooks not installed")
        if not status["agents"]:
            status["issues"].append("No agents installed")

        return status


__all__ = [
    "InstallOptions",
    "InstallReport",
    "InstallResult",
    "CollectiveInstaller",
]
