"""Merge strategies for installing into projects that already use Claude Code.

Handles conflict detection against an existing ``.claude`` setup, smart
merging of ``settings.json`` hook configuration, and timestamped backups
with a restore script.

Key Components:
    - SetupAnalysis: Result of scanning a project for conflicts
    - MergeStrategies: File comparison, conflict analysis, merge and backup
    - deep_merge_settings: Pure settings merge used by smart merge

Merge Rules:
    - Objects merge recursively; scalars take the incoming value
    - Arrays are unioned and de-duplicated by their canonical JSON form
    - ``hooks`` merge per event and per matcher so user hooks survive
    - ``deniedTools`` is unioned

Example:
    >>> strategies = MergeStrategies(Path("/work/app"))
    >>> analysis = strategies.analyze_existing_setup(variables)
    >>> if analysis.has_conflicts:
    ...     strategies.create_backups([Path(f["path"]) for f in analysis.existing_files])
"""

from __future__ import annotations

import copy
import hashlib
import hmac
import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from collective.core.exceptions import MergeError
from collective.install.file_mapping import (
    HOOK_FILES,
    TEMPLATE_DIR,
    render_template,
)

logger = logging.getLogger(__name__)

SIZE_THRESHOLD = 100 * 1024

SETTINGS_TEMPLATE = "settings.json.template"


@dataclass
class SetupAnalysis:
    """Conflicts found in an existing project.

    Attributes:
        has_conflicts: Whether any installed file would change user files.
        conflicts: Settings and hook conflict records.
        existing_files: Files that already exist and may be touched.
        recommendations: Suggested next steps for the user.
        backup_required: Whether existing files should be backed up first.
    """

    has_conflicts: bool = False
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    existing_files: list[dict[str, Any]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    backup_required: bool = False

    def existing_paths(self) -> list[Path]:
        return [Path(f["path"]) for f in self.existing_files]

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "conflicts": self.conflicts,
            "existing_files": self.existing_files,
            "recommendations": self.recommendations,
            "backup_required": self.backup_required,
        }


# =============================================================================
# Pure Merge Helpers
# =============================================================================


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def union_lists(existing: list[Any], incoming: list[Any]) -> list[Any]:
    """Concatenate two lists, dropping entries already seen (by JSON form)."""
    seen: set[str] = set()
    result = []
    for item in [*(existing or []), *(incoming or [])]:
        key = _canonical(item)
        if key not in seen:
            seen.add(key)
            result.append(item)
    return result


def merge_hooks(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Merge hook configuration per event and per matcher."""
    merged = copy.deepcopy(existing or {})

    for event_type, new_entries in (incoming or {}).items():
        if event_type not in merged or not isinstance(merged[event_type], list):
            merged[event_type] = copy.deepcopy(new_entries)
            continue

        for new_entry in new_entries:
            match = next(
                (
                    e for e in merged[event_type]
                    if isinstance(e, dict) and e.get("matcher") == new_entry.get("matcher")
                ),
                None,
            )
            if match is None:
                merged[event_type].append(copy.deepcopy(new_entry))
            else:
                match["hooks"] = union_lists(match.get("hooks", []), new_entry.get("hooks", []))

    return merged


def deep_merge_settings(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Merge ``incoming`` settings into a copy of ``existing``."""
    merged = copy.deepcopy(existing)

    for key, value in incoming.items():
        current = merged.get(key)
        if key == "hooks" and isinstance(value, dict):
            merged[key] = merge_hooks(current if isinstance(current, dict) else {}, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge_settings(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            merged[key] = union_lists(current, value)
        else:
            merged[key] = copy.deepcopy(value)

    return merged


# =============================================================================
# MergeStrategies
# =============================================================================


class MergeStrategies:
    """Conflict analysis, settings merging and backups for one project.

    Attributes:
        project_dir: Root of the target project.
        backup_dir: Timestamped backup directory used for this run.
        size_threshold: Files above this size are compared by SHA-256.
    """

    def __init__(
        self,
        project_dir: Path,
        backup_root: Optional[Path] = None,
        size_threshold: int = SIZE_THRESHOLD,
        template_dir: Path = TEMPLATE_DIR,
    ) -> None:
        self.project_dir = Path(project_dir).resolve()
        root = Path(backup_root) if backup_root else self.project_dir / ".claude-backups"
        self.backup_dir = root / str(int(time.time() * 1000))
        self.size_threshold = size_threshold
        self.template_dir = Path(template_dir)

    # =========================================================================
    # File Comparison
    # =========================================================================

    def are_files_identical(self, file_a: Path, file_b: Path) -> bool:
        """Compare two files by size, then content or SHA-256 digest."""
        try:
            file_a, file_b = Path(file_a), Path(file_b)
            if not file_a.is_file() or not file_b.is_file():
                return False

            size = file_a.stat().st_size
            if size != file_b.stat().st_size:
                return False

            if size < self.size_threshold:
                return file_a.read_bytes() == file_b.read_bytes()

            return hmac.compare_digest(_sha256_file(file_a), _sha256_file(file_b))
        except OSError as e:
            logger.warning("Could not compare %s and %s: %s", file_a, file_b, e)
            return False

    def matches_content(self, path: Path, content: str) -> bool:
        """Compare a file on disk to rendered template text."""
        try:
            path = Path(path)
            if not path.is_file():
                return False
            expected = content.encode("utf-8")
            if path.stat().st_size != len(expected):
                return False
            if len(expected) < self.size_threshold:
                return path.read_bytes() == expected
            return hmac.compare_digest(
                _sha256_file(path), hashlib.sha256(expected).hexdigest()
            )
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            return False

    # =========================================================================
    # Conflict Analysis
    # =========================================================================

    def get_our_settings_template(self, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Return the packaged settings template as a dict."""
        content = render_template(SETTINGS_TEMPLATE, variables or {}, self.template_dir)
        return json.loads(content)

    def analyze_existing_setup(self, variables: Optional[dict[str, Any]] = None) -> SetupAnalysis:
        """Scan the project for files the installer would change."""
        variables = variables or {}
        analysis = SetupAnalysis()
        claude_dir = self.project_dir / ".claude"

        settings_path = claude_dir / "settings.json"
        if settings_path.exists():
            analysis.existing_files.append(
                {"path": str(settings_path), "type": "settings", "name": "settings.json"}
            )
            rendered = render_template(SETTINGS_TEMPLATE, variables, self.template_dir)
            if not self.matches_content(settings_path, rendered):
                settings_conflict = self.analyze_settings_conflicts(
                    settings_path, json.loads(rendered)
                )
                if settings_conflict["has_conflicts"]:
                    analysis.has_conflicts = True
                    analysis.conflicts.append(settings_conflict)
                    analysis.backup_required = True

        hooks_dir = claude_dir / "hooks"
        if hooks_dir.is_dir():
            existing_hooks = sorted(p.name for p in hooks_dir.iterdir() if p.is_file())
            conflicting = []
            for name, _required, _description in HOOK_FILES:
                hook_path = hooks_dir / f"{name}.sh"
                if not hook_path.exists():
                    continue
                rendered = render_template(f"hooks/{name}.sh", variables, self.template_dir)
                if not self.matches_content(hook_path, rendered):
                    conflicting.append(hook_path.name)
                    analysis.existing_files.append(
                        {"path": str(hook_path), "type": "hook", "name": hook_path.name}
                    )
            if conflicting:
                analysis.has_conflicts = True
                analysis.backup_required = True
                analysis.conflicts.append(
                    {
                        "type": "hooks",
                        "conflicting_files": conflicting,
                        "total_existing": len(existing_hooks),
                        "message": f"{len(conflicting)} hook files would be overwritten",
                    }
                )

        if analysis.has_conflicts:
            analysis.recommendations.append("Create backups before merging")
            analysis.recommendations.append("Use smart merge to preserve existing configurations")
        else:
            analysis.recommendations.append("Clean installation - no conflicts detected")

        return analysis

    def analyze_settings_conflicts(
        self,
        settings_path: Path,
        our_settings: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Find hook matchers and denied tools that overlap with ours."""
        conflict: dict[str, Any] = {
            "type": "settings",
            "file": str(settings_path),
            "has_conflicts": False,
            "conflicts": [],
            "message": "",
        }

        try:
            existing = json.loads(Path(settings_path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            conflict["has_conflicts"] = True
            conflict["message"] = f"Failed to parse existing settings.json: {e}"
            return conflict

        ours = our_settings if our_settings is not None else self.get_our_settings_template()

        existing_hooks = existing.get("hooks") if isinstance(existing, dict) else None
        if isinstance(existing_hooks, dict):
            for event_type, our_entries in ours.get("hooks", {}).items():
                entries = existing_hooks.get(event_type)
                if not isinstance(entries, list):
                    continue
                existing_matchers = {e.get("matcher") for e in entries if isinstance(e, dict)}
                our_matchers = [e.get("matcher") for e in our_entries]
                overlap = [m for m in our_matchers if m in existing_matchers]
                if overlap:
                    conflict["has_conflicts"] = True
                    conflict["conflicts"].append(
                        {
                            "event_type": event_type,
                            "overlapping_matchers": overlap,
                            "message": (
                                f"{event_type} event has overlapping matchers: "
                                f"{', '.join(str(m) for m in overlap)}"
                            ),
                        }
                    )

        denied = existing.get("deniedTools") if isinstance(existing, dict) else None
        if isinstance(denied, list) and ours.get("deniedTools"):
            overlap = [tool for tool in denied if tool in ours["deniedTools"]]
            if overlap:
                conflict["conflicts"].append(
                    {
                        "type": "deniedTools",
                        "overlap": overlap,
                        "message": f"{len(overlap)} denied tools already configured",
                    }
                )

        if conflict["conflicts"]:
            conflict["message"] = f"Found {len(conflict['conflicts'])} configuration conflicts"

        return conflict

    # =========================================================================
    # Merging
    # =========================================================================

    def smart_merge_settings(self, existing_path: Path, new_settings: dict[str, Any]) -> dict[str, Any]:
        """Merge our settings into the user's settings.json contents.

        Raises:
            MergeError: If the existing file is not a JSON object.
        """
        existing_path = Path(existing_path)
        if not existing_path.exists():
            return copy.deepcopy(new_settings)

        try:
            existing = json.loads(existing_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise MergeError(f"Cannot merge unreadable settings: {e}", path=str(existing_path))
        if not isinstance(existing, dict):
            raise MergeError("Existing settings.json is not a JSON object", path=str(existing_path))

        return deep_merge_settings(existing, new_settings)

    # =========================================================================
    # Backups
    # =========================================================================

    def backup_file(self, path: Path) -> Optional[Path]:
        """Copy one project file into the backup directory."""
        path = Path(path)
        if not path.exists():
            return None

        try:
            relative = path.resolve().relative_to(self.project_dir)
        except ValueError:
            relative = Path(path.name)
        backup_path = self.backup_dir / relative

        try:
            backup_path.parent.mkdir(parents=True, exist_ok=True)
            if path.is_dir():
                shutil.copytree(path, backup_path, dirs_exist_ok=True)
            else:
                shutil.copy2(path, backup_path)
        except OSError as e:
            raise MergeError(f"Failed to back up {relative}: {e}", path=str(path))

        logger.info("Backed up %s to %s", relative, backup_path)
        return backup_path

    def create_backups(self, paths: Iterable[Path], with_restore_script: bool = True) -> Path:
        """Back up existing files and write a restore script."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        for path in paths:
            self.backup_file(path)

        if with_restore_script:
            self.create_restore_script()

        logger.info("Backups created in %s", self.backup_dir)
        return self.backup_dir

    def create_restore_script(self) -> Path:
        script = (
            "#!/bin/bash\n"
            f"# Restore claude-code-collective backup from {datetime.now(timezone.utc).isoformat()}\n"
            "\n"
            'echo "Restoring claude-code-collective backup..."\n'
            "\n"
            f'BACKUP_DIR="{self.backup_dir}"\n'
            f'PROJECT_DIR="{self.project_dir}"\n'
            "\n"
            'for item in "$BACKUP_DIR"/* "$BACKUP_DIR"/.[!.]*; do\n'
            '    [ -e "$item" ] || continue\n'
            '    [ "$(basename "$item")" = "restore.sh" ] && continue\n'
            '    cp -r "$item" "$PROJECT_DIR/"\n'
            "done\n"
            "\n"
            'echo "Restored successfully!"\n'
            'echo "You may need to restart Claude Code to reload configurations."\n'
            'echo "Backup location: $BACKUP_DIR"\n'
        )
        script_path = self.backup_dir / "restore.sh"
        script_path.parent.mkdir(parents=True, exist_ok=True)
        script_path.write_text(script, encoding="utf-8")
        script_path.chmod(0o755)
        return script_path

    # =========================================================================
    # Preview
    # =========================================================================

    def generate_merge_preview(self, analysis: SetupAnalysis) -> str:
        """Describe what a smart merge would change."""
        if not analysis.has_conflicts:
            return (
                "Clean installation - no conflicts detected\n"
                "  - All collective files will be installed fresh\n"
            )

        lines = ["Configuration merge preview:", ""]
        for conflict in analysis.conflicts:
            if conflict["type"] == "settings":
                lines.append("settings.json changes:")
                if not conflict["conflicts"]:
                    lines.append(f"  ! {conflict['message']}")
                for sub in conflict["conflicts"]:
                    if "event_type" in sub:
                        lines.append(
                            f"  ~ {sub['event_type']}: collective hooks merged into "
                            f"{', '.join(str(m) for m in sub['overlapping_matchers'])}"
                        )
                    else:
                        lines.append(f"  = {sub['message']}")
                lines.append("  + new hook events are added, existing entries are kept")
                lines.append("")
            elif conflict["type"] == "hooks":
                lines.append("Hook files:")
                lines.append(
                    f"  - {len(conflict['conflicting_files'])} existing hooks will be backed up"
                )
                lines.append("  - Collective versions will be installed")
                lines.append("")

        return "\n".join(lines) + "\n"


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


__all__ = [
    "SetupAnalysis",
    "MergeStrategies",
    "deep_merge_settings",
    "merge_hooks",
    "union_lists",
    "SIZE_THRESHOLD",
]
