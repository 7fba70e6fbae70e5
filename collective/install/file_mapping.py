"""Template-to-project file mapping for the collective installer.

Defines where every packaged template lands inside a target project and
which of those files are required, executable, or overwritten on reinstall.

Key Components:
    - MappingType: Category of an installed file
    - FileMappingEntry: One template source and its install target
    - FileMapping: Builds, filters, validates and summarises the mapping
    - TEMPLATE_DIR: Location of the packaged templates

Installation Types:
    - full: every mapped file
    - minimal: required files plus the routing agent
    - testing-only: test harness, config and behavioral system
    - hooks-only: hooks, config and behavioral system

Example:
    >>> mapping = FileMapping(Path("/work/app"), minimal=True)
    >>> [e.source for e in mapping.get_agent_mapping()]
    ['agents/routing-agent.md']
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from collective.config.settings import CollectiveSettings, get_settings
from collective.core.exceptions import TemplateNotFoundError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
"""Root of the packaged templates."""


class MappingType(str, Enum):
    """Category of an installed file."""

    BEHAVIORAL = "behavioral"
    COLLECTIVE = "collective"
    AGENT = "agent"
    HOOK = "hook"
    COMMAND = "command"
    TEST = "test"
    CONFIG = "config"
    DOCS = "docs"


INSTALLATION_TYPES = ("full", "minimal", "testing-only", "hooks-only")

ROUTING_AGENT = "routing-agent.md"

AGENT_FILES = [
    ROUTING_AGENT,
    "behavioral-transformation-agent.md",
    "testing-implementation-agent.md",
    "hook-integration-agent.md",
    "enhanced-project-manager-agent.md",
    "component-implementation-agent.md",
    "feature-implementation-agent.md",
    "infrastructure-implementation-agent.md",
    "research-agent.md",
    "prd-research-agent.md",
    "van-maintenance-agent.md",
]

COLLECTIVE_DOCS = {
    "CLAUDE.md": "Collective behavioral operating system",
    "DECISION.md": "Decision engine for request routing",
    "agents.md": "Available specialized agent catalog",
    "hooks.md": "Hook integration reference",
    "quality.md": "Quality gates and TDD contracts",
    "research.md": "Research hypotheses and metrics",
}

# (name, required, description)
HOOK_FILES = [
    ("directive-enforcer", True, "Blocks agent edits to protected collective files"),
    ("collective-metrics", True, "Records tool usage and coordination metrics"),
    ("routing-executor", True, "Executes routing decisions and agent handoffs"),
    ("load-behavioral-system", True, "Loads the behavioral system at session start"),
    ("test-driven-handoff", True, "Validates handoff contracts during agent transitions"),
    ("handoff-automation", False, "Generates the next agent prompt after a subagent stops"),
    ("agent-detection", False, "Reminds the hub to route explicit agent requests"),
]

COMMAND_FILES = {
    "autocompact.md": "Compact the conversation and keep handoff state",
    "continue-handoff.md": "Resume a pending agent handoff",
    "reset-handoff.md": "Clear stale handoff state",
    "van.md": "Run van maintenance health checks",
    "tm.md": "TaskMaster quick reference",
}

TEST_FILES = {
    "tests/conftest.py": "Shared fixtures for collective contract tests",
    "tests/handoffs/test_handoff_contracts.py": "Handoff contract validation tests",
    "tests/directives/test_directives.py": "Directive enforcement tests",
    "tests/contracts/test_routing_contracts.py": "Routing decision contract tests",
}

DOC_FILES = {
    "README.md": "Collective documentation",
    "TROUBLESHOOTING.md": "Troubleshooting guide",
}


@dataclass
class FileMappingEntry:
    """A single template file and where it is installed.

    Attributes:
        source: Path relative to the template directory.
        target: Absolute install path.
        type: Category of the file.
        required: Installation is invalid without it.
        overwrite: Replace an existing target on reinstall.
        executable: chmod 755 after installing.
        description: Human-readable purpose.
    """

    source: str
    target: Path
    type: MappingType
    required: bool = False
    overwrite: bool = False
    executable: bool = False
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": str(self.target),
            "type": self.type.value,
            "required": self.required,
            "overwrite": self.overwrite,
            "executable": self.executable,
            "description": self.description,
        }


class FileMapping:
    """Builds the template-to-target mapping for a project.

    Attributes:
        project_root: Absolute root of the target project.
        force: Overwrite user-owned files (CLAUDE.md, settings.json).
        minimal: Map only the routing agent.
    """

    def __init__(
        self,
        project_root: Path,
        force: bool = False,
        minimal: bool = False,
        settings: Optional[CollectiveSettings] = None,
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.force = force
        self.minimal = minimal
        self.settings = settings or get_settings()
        paths = self.settings.paths
        self.claude_dir = paths.resolve_claude_dir(self.project_root)
        self.collective_dir = paths.resolve_collective_dir(self.project_root)

    # =========================================================================
    # Mapping Groups
    # =========================================================================

    def get_behavioral_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source="CLAUDE.md",
                target=self.project_root / "CLAUDE.md",
                type=MappingType.BEHAVIORAL,
                required=True,
                overwrite=self.force,
                description="Behavioral operating system entry point",
            )
        ]

    def get_collective_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source=f"collective/{name}",
                target=self.collective_dir / name,
                type=MappingType.COLLECTIVE,
                required=True,
                overwrite=True,
                description=description,
            )
            for name, description in COLLECTIVE_DOCS.items()
        ]

    def get_agent_mapping(self) -> list[FileMappingEntry]:
        agents = [ROUTING_AGENT] if self.minimal else AGENT_FILES
        return [
            FileMappingEntry(
                source=f"agents/{agent}",
                target=self.claude_dir / "agents" / agent,
                type=MappingType.AGENT,
                required=agent == ROUTING_AGENT,
                overwrite=True,
                description=f"Agent definition: {agent[:-3]}",
            )
            for agent in agents
        ]

    def get_hook_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source=f"hooks/{name}.sh",
                target=self.claude_dir / "hooks" / f"{name}.sh",
                type=MappingType.HOOK,
                required=required,
                overwrite=True,
                executable=True,
                description=description,
            )
            for name, required, description in HOOK_FILES
        ]

    def get_command_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source=f"commands/{name}",
                target=self.claude_dir / "commands" / name,
                type=MappingType.COMMAND,
                overwrite=True,
                description=description,
            )
            for name, description in COMMAND_FILES.items()
        ]

    def get_test_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source=f"collective/{name}",
                target=self.collective_dir / name,
                type=MappingType.TEST,
                overwrite=True,
                description=description,
            )
            for name, description in TEST_FILES.items()
        ]

    def get_config_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source="settings.json.template",
                target=self.claude_dir / "settings.json",
                type=MappingType.CONFIG,
                required=True,
                overwrite=self.force,
                description="Claude Code hook configuration",
            ),
            FileMappingEntry(
                source="collective/pytest.ini",
                target=self.collective_dir / "pytest.ini",
                type=MappingType.CONFIG,
                overwrite=True,
                description="pytest configuration for contract tests",
            ),
            FileMappingEntry(
                source="collective/metrics/baseline.json",
                target=self.collective_dir / "metrics" / "baseline.json",
                type=MappingType.CONFIG,
                description="Research metrics baseline",
            ),
        ]

    def get_docs_mapping(self) -> list[FileMappingEntry]:
        return [
            FileMappingEntry(
                source=f"docs/{name}",
                target=self.claude_dir / "docs" / name,
                type=MappingType.DOCS,
                overwrite=True,
                description=description,
            )
            for name, description in DOC_FILES.items()
        ]

    def get_file_mapping(self) -> list[FileMappingEntry]:
        """Return every mapped file in installation order."""
        return [
            *self.get_behavioral_mapping(),
            *self.get_collective_mapping(),
            *self.get_agent_mapping(),
            *self.get_hook_mapping(),
            *self.get_command_mapping(),
            *self.get_test_mapping(),
            *self.get_config_mapping(),
            *self.get_docs_mapping(),
        ]

    def get_filtered_mapping(self, installation_type: str = "full") -> list[FileMappingEntry]:
        """Return the mapping for an installation type.

        Unknown installation types fall back to the full mapping.
        """
        all_mappings = self.get_file_mapping()

        if installation_type == "minimal":
            return [
                m for m in all_mappings
                if m.required or (m.type is MappingType.AGENT and ROUTING_AGENT in m.source)
            ]
        if installation_type == "testing-only":
            kinds = {MappingType.TEST, MappingType.CONFIG, MappingType.COLLECTIVE}
            return [
                m for m in all_mappings
                if m.type in kinds or (m.type is MappingType.BEHAVIORAL and m.required)
            ]
        if installation_type == "hooks-only":
            kinds = {MappingType.HOOK, MappingType.CONFIG, MappingType.COLLECTIVE}
            return [
                m for m in all_mappings
                if m.type in kinds or (m.type is MappingType.BEHAVIORAL and m.required)
            ]
        if installation_type != "full":
            logger.warning("Unknown installation type '%s', using full", installation_type)
        return all_mappings

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_directory_structure(self) -> list[Path]:
        """Return every directory the mapping needs, parents first."""
        directories: set[Path] = set()
        for mapping in self.get_file_mapping():
            parent = mapping.target.parent
            while parent != self.project_root and self.project_root in parent.parents:
                directories.add(parent)
                parent = parent.parent
        return sorted(directories)

    def validate_mapping(self) -> dict[str, Any]:
        """Check the mapping for duplicate targets and overwrite warnings."""
        mappings = self.get_file_mapping()
        issues: list[str] = []
        warnings: list[str] = []

        counts = Counter(m.target for m in mappings)
        for target, count in counts.items():
            if count > 1:
                issues.append(f"Duplicate target path: {target}")

        required = [m for m in mappings if m.required]
        if not required:
            issues.append("No required files defined")

        if not self.force:
            for mapping in mappings:
                if mapping.overwrite and mapping.target.exists():
                    warnings.append(f"Will overwrite: {mapping.target}")

        return {
            "valid": not issues,
            "issues": issues,
            "warnings": warnings,
            "total_files": len(mappings),
            "required_files": len(required),
        }

    def get_summary(self) -> dict[str, Any]:
        mappings = self.get_file_mapping()
        required = sum(1 for m in mappings if m.required)
        return {
            "total_files": len(mappings),
            "by_type": dict(Counter(m.type.value for m in mappings)),
            "directories": len(self.get_directory_structure()),
            "required_files": required,
            "optional_files": len(mappings) - required,
        }


# =============================================================================
# Template Rendering
# =============================================================================


def process_template(content: str, variables: dict[str, Any]) -> str:
    """Replace ``{{KEY}}`` placeholders with their values."""
    for key, value in variables.items():
        content = content.replace("{{" + key + "}}", str(value))
    return content


def load_template(source: str, template_dir: Path = TEMPLATE_DIR) -> str:
    """Read a packaged template as text.

    Raises:
        TemplateNotFoundError: If the template does not exist.
    """
    path = Path(template_dir) / source
    if not path.is_file():
        raise TemplateNotFoundError(source)
    return path.read_text(encoding="utf-8")


def render_template(
    source: str,
    variables: dict[str, Any],
    template_dir: Path = TEMPLATE_DIR,
) -> str:
    return process_template(load_template(source, template_dir), variables)


__all__ = [
    "TEMPLATE_DIR",
    "process_template",
    "load_template",
    "render_template",
    "MappingType",
    "FileMappingEntry",
    "FileMapping",
    "INSTALLATION_TYPES",
    "AGENT_FILES",
    "HOOK_FILES",
    "ROUTING_AGENT",
]
