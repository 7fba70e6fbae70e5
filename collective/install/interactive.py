"""Interactive installation flow.

Walks the user through conflicts with an existing Claude Code setup using
click prompts, then drives CollectiveInstaller with the chosen mode, backup
strategy and per-file conflict strategies.

Flow:
    1. Analyze the project and show what already exists
    2. No conflicts: confirm and run a smart-merge install
    3. Conflicts: choose smart-merge, force, skip-conflicts, analyze or cancel
    4. smart-merge asks per conflict (merge, replace, skip, diff) and for a backup strategy
    5. force and skip-conflicts ask for confirmation before running
"""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Any, Optional

import click

from collective.config.settings import BACKUP_STRATEGIES, CollectiveSettings
from collective.install.file_mapping import render_template
from collective.install.installer import CollectiveInstaller, InstallOptions, InstallResult
from collective.install.merge import SetupAnalysis

logger = logging.getLogger(__name__)

MENU_CHOICES = ["smart-merge", "force", "skip-conflicts", "analyze", "cancel"]
CONFLICT_CHOICES = ["merge", "replace", "skip", "diff"]


class InteractiveInstaller:
    """Prompt-driven wrapper around CollectiveInstaller."""

    def __init__(
        self,
        options: Optional[InstallOptions] = None,
        settings: Optional[CollectiveSettings] = None,
    ) -> None:
        self.options = options or InstallOptions()
        self.settings = settings
        self.installer = CollectiveInstaller(self.options, settings=settings)

    def run(self) -> Optional[InstallResult]:
        """Run the interactive flow.

        Returns:
            The InstallResult, or None when the user cancels.
        """
        click.echo(click.style("claude-code-collective interactive installer", bold=True))
        click.echo(f"Project: {self.installer.project_dir}\n")

        analysis = self.installer.analyze()
        self.display_analysis(analysis)

        if not analysis.has_conflicts:
            if not click.confirm("Proceed with installation?", default=True):
                click.echo("Installation cancelled")
                return None
            return self.execute(mode="smart-merge", backup=self.options.backup or "full")

        while True:
            choice = click.prompt(
                "How should existing configuration be handled?",
                type=click.Choice(MENU_CHOICES),
                default="smart-merge",
            )
            if choice == "analyze":
                self.display_detailed_analysis(analysis)
                continue
            if choice == "cancel":
                click.echo("Installation cancelled")
                return None
            if choice == "smart-merge":
                return self.smart_merge_flow(analysis)
            if choice == "force":
                return self.force_overwrite_flow()
            return self.skip_conflicts_flow(analysis)

    # =========================================================================
    # Display
    # =========================================================================

    def display_analysis(self, analysis: SetupAnalysis) -> None:
        if analysis.existing_files:
            click.echo("Existing files:")
            for existing in analysis.existing_files:
                click.echo(f"  - {existing['name']} ({existing['type']})")
        if analysis.has_conflicts:
            click.echo(click.style(f"\n{len(analysis.conflicts)} conflict(s) detected:", fg="yellow"))
            for conflict in analysis.conflicts:
                click.echo(f"  - {conflict['message']}")
        for recommendation in analysis.recommendations:
            click.echo(f"  * {recommendation}")
        click.echo()

    def display_detailed_analysis(self, analysis: SetupAnalysis) -> None:
        click.echo(click.style("\nDetailed analysis", bold=True))
        for conflict in analysis.conflicts:
            if conflict["type"] == "settings":
                click.echo(f"settings.json: {conflict['message']}")
                for sub in conflict["conflicts"]:
                    click.echo(f"  - {sub['message']}")
            elif conflict["type"] == "hooks":
                click.echo(
                    f"Hooks ({conflict['total_existing']} existing): "
                    f"{', '.join(conflict['conflicting_files'])}"
                )
        click.echo()

    def show_diff(self, path: Path) -> None:
        """Print a unified diff between an existing file and our version."""
        source = self._template_source(path)
        if source is None:
            click.echo(f"No collective template for {path.name}")
            return
        ours = render_template(source, self.installer.config, self.installer.template_dir)
        try:
            theirs = path.read_text(encoding="utf-8")
        except OSError as e:
            click.echo(f"Cannot read {path}: {e}")
            return
        diff = difflib.unified_diff(
            theirs.splitlines(keepends=True),
            ours.splitlines(keepends=True),
            fromfile=f"existing/{path.name}",
            tofile=f"collective/{path.name}",
        )
        click.echo("".join(diff) or "(no differences)")

    def _template_source(self, path: Path) -> Optional[str]:
        for mapping in self.installer.file_mapping.get_file_mapping():
            if mapping.target == path.resolve():
                return mapping.source
        return None

    # =========================================================================
    # Flows
    # =========================================================================

    def _conflict_paths(self, analysis: SetupAnalysis) -> list[Path]:
        return analysis.existing_paths()

    def smart_merge_flow(self, analysis: SetupAnalysis) -> Optional[InstallResult]:
        strategies: dict[str, str] = {}
        for path in self._conflict_paths(analysis):
            while True:
                choice = click.prompt(
                    f"Conflict in {path.name}",
                    type=click.Choice(CONFLICT_CHOICES),
                    default="merge",
                )
                if choice == "diff":
                    self.show_diff(path)
                    continue
                strategies[path.name] = choice
                break

        backup = click.prompt(
            "Backup strategy",
            type=click.Choice(list(BACKUP_STRATEGIES)),
            default=self.options.backup or "full",
        )

        click.echo()
        click.echo(self.installer.merge.generate_merge_preview(analysis))
        if not click.confirm("Apply these changes?", default=True):
            click.echo("Installation cancelled")
            return None

        return self.execute(mode="smart-merge", backup=backup, conflict_strategies=strategies)

    def force_overwrite_flow(self) -> Optional[InstallResult]:
        click.echo(click.style("Force mode overwrites existing collective files.", fg="red"))
        if not click.confirm("Are you sure you want to overwrite existing files?", default=False):
            click.echo("Installation cancelled")
            return None
        backup = "full" if click.confirm("Create backups first?", default=True) else "none"
        return self.execute(mode="force", backup=backup, force=True)

    def skip_conflicts_flow(self, analysis: SetupAnalysis) -> Optional[InstallResult]:
        paths = self._conflict_paths(analysis)
        if paths:
            click.echo("These files will be left untouched:")
            for path in paths:
                click.echo(f"  - {path.name}")
        if not click.confirm("Install without touching conflicting files?", default=True):
            click.echo("Installation cancelled")
            return None
        return self.execute(mode="skip-conflicts", backup="none")

    def execute(self, mode: str, backup: str, force: bool = False, **overrides: Any) -> InstallResult:
        """Build a configured CollectiveInstaller and run it."""
        options = InstallOptions(
            target_path=self.installer.project_dir,
            force=force or self.options.force,
            minimal=self.options.minimal,
            mode=mode,
            backup=backup,
            express=False,
            conflict_strategies=overrides.get("conflict_strategies", {}),
        )
        logger.info("Interactive install: mode=%s backup=%s", mode, backup)
        return CollectiveInstaller(options, settings=self.settings).install()


__all__ = ["InteractiveInstaller", "MENU_CHOICES", "CONFLICT_CHOICES"]
