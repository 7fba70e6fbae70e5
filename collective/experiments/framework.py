"""A/B experiment framework for comparing agent variants.

Experiments move through created -> running -> stopped. Subjects are
assigned to variants with a deterministic hash so the same subject always
lands in the same variant, conversions are recorded per metric, and analysis
compares every treatment against the control (first variant) with a pooled
two-proportion z-test and Bonferroni correction.

All state is plain JSON under the storage directory, so separate CLI
invocations cooperate on the same experiment:

    <storage>/experiments/<id>.json   definition, assignments and results
    <storage>/results/<id>_<ts>.json  every analysis snapshot
    <storage>/reports/<id>.md         latest markdown report

Example:
    >>> framework = ExperimentFramework(Path(".claude-collective/experiments"))
    >>> exp = framework.create_experiment({
    ...     "name": "Routing prompt",
    ...     "hypothesis": "Shorter routing prompts complete more handoffs",
    ...     "variants": [{"id": "control", "name": "Current"}, {"id": "short", "name": "Short"}],
    ...     "metrics": ["handoff_success"],
    ...     "success_metric": "handoff_success",
    ... })
    >>> framework.start_experiment(exp.id)
    >>> framework.assign_variant(exp.id, "session-42").id in ("control", "short")
    True
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from collective.config.settings import CollectiveSettings, get_settings
from collective.core.exceptions import (
    ExperimentNotFoundError,
    ExperimentStateError,
    ExperimentValidationError,
    StorageError,
)
from collective.core.storage import read_json, write_json
from collective.experiments import stats

logger = logging.getLogger(__name__)

ALLOCATION_TOLERANCE = 0.001
_ID_ALPHABET = string.digits + string.ascii_lowercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_experiment_id() -> str:
    """Return an id of the form ``exp_<epoch-ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"exp_{_now_ms()}_{suffix}"


def hash_subject(subject_id: str, experiment_id: str) -> int:
    """Deterministic unsigned 32-bit string hash used for variant assignment."""
    h = 0
    for char in f"{subject_id}:{experiment_id}":
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    return h


# =============================================================================
# Data Model
# =============================================================================


class ExperimentStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class Variant:
    id: str
    name: str
    description: str = ""
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "description": self.description, "config": self.config}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Variant":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            config=data.get("config", {}),
        )


@dataclass
class ExperimentCriteria:
    """Success criteria and statistical thresholds for one experiment."""

    success_metric: str
    minimum_effect: float = 0.1
    significance_level: float = 0.05
    power_target: float = 0.8
    min_sample_size: int = 30

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_metric": self.success_metric,
            "minimum_effect": self.minimum_effect,
            "significance_level": self.significance_level,
            "power_target": self.power_target,
            "min_sample_size": self.min_sample_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExperimentCriteria":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class VariantResults:
    """Assignments, conversion events and metric values for one variant."""

    assignments: int = 0
    conversions: list[dict[str, Any]] = field(default_factory=list)
    metrics: dict[str, list[float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"assignments": self.assignments, "conversions": self.conversions, "metrics": self.metrics}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariantResults":
        return cls(
            assignments=data.get("assignments", 0),
            conversions=list(data.get("conversions", [])),
            metrics={k: list(v) for k, v in data.get("metrics", {}).items()},
        )


@dataclass
class Experiment:
    """A persisted experiment.

    Attributes:
        id: Experiment identifier.
        name: Display name.
        hypothesis: What the experiment is expected to show.
        variants: Ordered variants; the first is the control.
        metrics: Metric names tracked per variant.
        allocation: Variant id to share of traffic (sums to 1).
        criteria: Success metric and thresholds.
        status: Lifecycle status.
        assignments: Subject id to assignment record.
        results: Variant id to VariantResults.
    """

    id: str
    name: str
    hypothesis: str
    variants: list[Variant]
    metrics: list[str]
    allocation: dict[str, float]
    criteria: ExperimentCriteria
    description: str = ""
    status: ExperimentStatus = ExperimentStatus.CREATED
    created_at: int = field(default_factory=_now_ms)
    started_at: Optional[int] = None
    ended_at: Optional[int] = None
    stop_reason: Optional[str] = None
    assignments: dict[str, dict[str, Any]] = field(default_factory=dict)
    results: dict[str, VariantResults] = field(default_factory=dict)
    final_analysis: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def control(self) -> Variant:
        return self.variants[0]

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.id == variant_id), None)

    def duration_ms(self) -> int:
        if not self.started_at:
            return 0
        return (self.ended_at or _now_ms()) - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "hypothesis": self.hypothesis,
            "description": self.description,
            "variants": [v.to_dict() for v in self.variants],
            "metrics": self.metrics,
            "allocation": self.allocation,
            "criteria": self.criteria.to_dict(),
            "status": self.status.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "stop_reason": self.stop_reason,
            "assignments": self.assignments,
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "final_analysis": self.final_analysis,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Experiment":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            hypothesis=data.get("hypothesis", ""),
            description=data.get("description", ""),
            variants=[Variant.from_dict(v) for v in data.get("variants", [])],
            metrics=list(data.get("metrics", [])),
            allocation=dict(data.get("allocation", {})),
            criteria=ExperimentCriteria.from_dict(data.get("criteria", {"success_metric": ""})),
            status=ExperimentStatus(data.get("status", "created")),
            created_at=data.get("created_at", 0),
            started_at=data.get("started_at"),
            ended_at=data.get("ended_at"),
            stop_reason=data.get("stop_reason"),
            assignments=dict(data.get("assignments", {})),
            results={k: VariantResults.from_dict(v) for k, v in data.get("results", {}).items()},
            final_analysis=data.get("final_analysis"),
            metadata=data.get("metadata", {}),
        )


# =============================================================================
# Framework
# =============================================================================


class ExperimentFramework:
    """Creates, runs and analyses experiments stored as JSON files."""

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        settings: Optional[CollectiveSettings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        if storage_dir is None:
            storage_dir = (
                self.settings.paths.resolve_collective_dir(Path.cwd())
                / self.settings.experiments.storage_subdir
            )
        self.storage_dir = Path(storage_dir)
        self.experiments_dir = self.storage_dir / "experiments"
        self.results_dir = self.storage_dir / "results"
        self.reports_dir = self.storage_dir / "reports"
        self.experiments: dict[str, Experiment] = {}
        self._initialized = False

    def initialize(self) -> None:
        if self._initialized:
            return
        for directory in (self.experiments_dir, self.results_dir, self.reports_dir):
            directory.mkdir(parents=True, exist_ok=True)
        self._load_existing_experiments()
        self._initialized = True

    def _load_existing_experiments(self) -> None:
        for path in sorted(self.experiments_dir.glob("*.json")):
            try:
                experiment = Experiment.from_dict(read_json(path))
            except (StorageError, KeyError, ValueError, TypeError) as e:
                logger.warning("Failed to load experiment from %s: %s", path.name, e)
                continue
            self.experiments[experiment.id] = experiment
        logger.debug("Loaded %d experiments", len(self.experiments))

    def _save(self, experiment: Experiment) -> None:
        write_json(self.experiments_dir / f"{experiment.id}.json", experiment.to_dict())

    def _get(self, experiment_id: str) -> Experiment:
        self.initialize()
        experiment = self.experiments.get(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)
        return experiment

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_experiment(self, config: dict[str, Any]) -> Experiment:
        """Validate a configuration and persist a new experiment.

        Raises:
            ExperimentValidationError: If the configuration is invalid.
        """
        self.initialize()
        defaults = self.settings.experiments

        variants = self._validate_variants(config.get("variants"))
        allocation = config.get("allocation") or {v.id: 1 / len(variants) for v in variants}
        criteria = ExperimentCriteria(
            success_metric=config.get("success_metric", ""),
            minimum_effect=config.get("minimum_effect", defaults.minimum_effect),
            significance_level=config.get("significance_level", defaults.significance_level),
            power_target=config.get("power_target", defaults.power_target),
            min_sample_size=config.get("min_sample_size", defaults.min_sample_size),
        )
        experiment = Experiment(
            id=config.get("id") or generate_experiment_id(),
            name=config.get("name", ""),
            hypothesis=config.get("hypothesis", ""),
            description=config.get("description", ""),
            variants=variants,
            metrics=list(config.get("metrics") or []),
            allocation=allocation,
            criteria=criteria,
            metadata=config.get("metadata", {}),
        )
        self._validate_experiment(experiment)

        if experiment.id in self.experiments:
            raise ExperimentValidationError(
                f"Experiment {experiment.id} already exists", field="id", experiment_id=experiment.id
            )

        self.experiments[experiment.id] = experiment
        self._save(experiment)
        logger.info("Created experiment %s (%s)", experiment.id, experiment.name)
        return experiment

    def _validate_variants(self, variants: Any) -> list[Variant]:
        if not isinstance(variants, list) or len(variants) < 2:
            raise ExperimentValidationError("Experiment must have at least 2 variants", field="variants")

        seen: set[str] = set()
        parsed = []
        for raw in variants:
            if not isinstance(raw, dict) or not raw.get("id") or not raw.get("name"):
                raise ExperimentValidationError("Each variant must have id and name", field="variants")
            if raw["id"] in seen:
                raise ExperimentValidationError(f"Duplicate variant ID: {raw['id']}", field="variants")
            seen.add(raw["id"])
            parsed.append(Variant.from_dict(raw))
        return parsed

    def _validate_experiment(self, experiment: Experiment) -> None:
        variant_ids = {v.id for v in experiment.variants}
        if set(experiment.allocation) != variant_ids:
            raise ExperimentValidationError(
                "Allocation must list every variant exactly once", field="allocation"
            )
        if abs(sum(experiment.allocation.values()) - 1.0) > ALLOCATION_TOLERANCE:
            raise ExperimentValidationError("Variant allocations must sum to 1.0", field="allocation")
        if not experiment.metrics:
            raise ExperimentValidationError(
                "Experiment must specify at least one metric to track", field="metrics"
            )
        if not experiment.criteria.success_metric:
            raise ExperimentValidationError(
                "Experiment must specify a success metric", field="success_metric"
            )

    def start_experiment(self, experiment_id: str) -> Experiment:
        """Move an experiment from created to running.

        Raises:
            ExperimentNotFoundError: If the id is unknown.
            ExperimentStateError: If the experiment is not in created state.
        """
        experiment = self._get(experiment_id)
        if experiment.status is not ExperimentStatus.CREATED:
            raise ExperimentStateError(
                f"Experiment {experiment_id} is not in created state",
                experiment_id=experiment_id,
                status=experiment.status.value,
            )

        experiment.status = ExperimentStatus.RUNNING
        experiment.started_at = _now_ms()
        experiment.results = {v.id: VariantResults() for v in experiment.variants}
        self._save(experiment)
        logger.info("Started experiment %s", experiment_id)
        return experiment

    def stop_experiment(self, experiment_id: str, reason: str = "manual") -> dict[str, Any]:
        """Stop an experiment and return its final analysis."""
        experiment = self._get(experiment_id)
        experiment.status = ExperimentStatus.STOPPED
        experiment.ended_at = _now_ms()
        experiment.stop_reason = reason

        final_analysis = self.analyze_experiment(experiment_id)
        experiment.final_analysis = final_analysis
        self._save(experiment)
        logger.info("Stopped experiment %s (%s)", experiment_id, reason)
        return final_analysis

    def cleanup(self) -> list[str]:
        """Stop every running experiment; returns the stopped ids."""
        self.initialize()
        running = [e.id for e in self.experiments.values() if e.status is ExperimentStatus.RUNNING]
        for experiment_id in running:
            self.stop_experiment(experiment_id, reason="cleanup")
        return running

    # =========================================================================
    # Assignment and Conversions
    # =========================================================================

    def select_variant(self, experiment: Experiment, subject_id: str) -> Variant:
        threshold = hash_subject(subject_id, experiment.id) / 2**32
        cumulative = 0.0
        for variant in experiment.variants:
            cumulative += experiment.allocation[variant.id]
            if threshold < cumulative:
                return variant
        return experiment.variants[-1]

    def assign_variant(
        self,
        experiment_id: str,
        subject_id: str,
        context: Optional[dict[str, Any]] = None,
    ) -> Optional[Variant]:
        """Assign a subject to a variant; assignments are sticky.

        Returns:
            The variant, or None when the experiment is unknown or not running.
        """
        self.initialize()
        experiment = self.experiments.get(experiment_id)
        if experiment is None or experiment.status is not ExperimentStatus.RUNNING:
            return None

        existing = experiment.assignments.get(subject_id)
        if existing:
            return experiment.get_variant(existing["variant_id"])

        variant = self.select_variant(experiment, subject_id)
        experiment.assignments[subject_id] = {
            "variant_id": variant.id,
            "assigned_at": _now_ms(),
            "context": context or {},
        }
        experiment.results.setdefault(variant.id, VariantResults()).assignments += 1
        self._save(experiment)
        logger.debug("Assigned %s to %s in %s", subject_id, variant.id, experiment_id)
        return variant

    def record_conversion(
        self,
        experiment_id: str,
        subject_id: str,
        metric: str,
        value: float,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Record a metric value for an assigned subject.

        Returns:
            False when the experiment is unknown or the subject is unassigned.
        """
        self.initialize()
        experiment = self.experiments.get(experiment_id)
        if experiment is None:
            return False
        assignment = experiment.assignments.get(subject_id)
        if assignment is None:
            return False

        variant_id = assignment["variant_id"]
        conversion = {
            "subject_id": subject_id,
            "variant_id": variant_id,
            "metric": metric,
            "value": value,
            "timestamp": _now_ms(),
            "metadata": metadata or {},
        }
        results = experiment.results.setdefault(variant_id, VariantResults())
        results.conversions.append(conversion)
        results.metrics.setdefault(metric, []).append(value)
        self._save(experiment)
        return True

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_variant(self, experiment: Experiment, variant: Variant) -> dict[str, Any]:
        results = experiment.results.get(variant.id, VariantResults())
        success_metric = experiment.criteria.success_metric
        converted = {
            c["subject_id"] for c in results.conversions if c.get("metric") == success_metric
        }
        return {
            "id": variant.id,
            "name": variant.name,
            "assignments": results.assignments,
            "conversions": len(converted),
            "conversion_events": len(results.conversions),
            "conversion_rate": len(converted) / results.assignments if results.assignments else 0.0,
            "metrics": {m: stats.describe(results.metrics.get(m, [])) for m in experiment.metrics},
        }

    def compare_variants(
        self,
        experiment: Experiment,
        control: dict[str, Any],
        treatment: dict[str, Any],
    ) -> dict[str, Any]:
        absolute = treatment["conversion_rate"] - control["conversion_rate"]
        relative = absolute / control["conversion_rate"] if control["conversion_rate"] > 0 else 0.0
        significance = stats.two_proportion_z_test(
            control["conversions"],
            control["assignments"],
            treatment["conversions"],
            treatment["assignments"],
            alpha=experiment.criteria.significance_level,
        )
        return {
            "control": {"id": control["id"], "rate": control["conversion_rate"], "sample": control["assignments"]},
            "treatment": {
                "id": treatment["id"],
                "rate": treatment["conversion_rate"],
                "sample": treatment["assignments"],
            },
            "effect": {
                "absolute": absolute,
                "relative": relative,
                "size": stats.categorize_effect_size(abs(relative)),
            },
            "significance": significance,
            "recommendation": stats.variant_recommendation(significance["significant"], relative),
        }

    def perform_statistical_analysis(
        self, experiment: Experiment, variants: list[dict[str, Any]]
    ) -> dict[str, Any]:
        if len(variants) < 2:
            return {}

        control, treatments = variants[0], variants[1:]
        comparisons = [self.compare_variants(experiment, control, t) for t in treatments]
        corrected = stats.apply_correction(
            comparisons,
            alpha=experiment.criteria.significance_level,
            method=self.settings.experiments.multiple_testing_correction,
        )
        significant = [c for c in corrected if c["significant_after_correction"]]

        analysis = {
            "sample_sizes": [v["assignments"] for v in variants],
            "total_sample_size": sum(v["assignments"] for v in variants),
            "comparisons": comparisons,
            "corrected_comparisons": corrected,
            "overall_significance": {
                "any_significant": bool(significant),
                "significant_count": len(significant),
                "total_comparisons": len(corrected),
                "overall_p_value": min(c["corrected_p_value"] for c in corrected),
            },
        }
        analysis["recommended_winner"] = self.recommend_winner(variants, significant)
        return analysis

    def recommend_winner(
        self, variants: list[dict[str, Any]], significant: list[dict[str, Any]]
    ) -> dict[str, Any]:
        if not significant:
            return {
                "winner": None,
                "confidence": "low",
                "reason": "No statistically significant differences found",
            }

        improvements = [c for c in significant if c["effect"]["relative"] > 0]
        if not improvements:
            return {
                "winner": None,
                "confidence": "low",
                "reason": "No treatment significantly improves on the control",
            }

        best = max(improvements, key=lambda c: c["effect"]["relative"])
        winner = next(v for v in variants if v["id"] == best["treatment"]["id"])
        size = best["effect"]["size"]
        confidence = {"large": "high", "medium": "medium"}.get(size, "low")
        return {
            "winner": {"id": winner["id"], "name": winner["name"]},
            "confidence": confidence,
            "reason": (
                f"{winner['name']} shows {best['effect']['relative'] * 100:.1f}% "
                f"improvement with {size} effect size"
            ),
            "effect_size": size,
            "improvement": best["effect"]["relative"],
        }

    def generate_recommendations(
        self, experiment: Experiment, statistical: dict[str, Any]
    ) -> list[dict[str, Any]]:
        recommendations = []
        criteria = experiment.criteria

        total = statistical.get("total_sample_size", 0)
        if total < criteria.min_sample_size:
            recommendations.append(
                {
                    "type": "sample_size",
                    "priority": "high",
                    "message": f"Increase sample size to {criteria.min_sample_size} for reliable results",
                    "action": "continue_experiment",
                }
            )

        winner = statistical.get("recommended_winner") or {}
        if winner.get("winner"):
            recommendations.append(
                {
                    "type": "winner",
                    "priority": "high" if winner["confidence"] == "high" else "medium",
                    "message": f"Implement {winner['winner']['name']}: {winner['reason']}",
                    "action": "implement_winner",
                }
            )

        comparisons = statistical.get("comparisons") or []
        effect = comparisons[0]["effect"]["absolute"] if comparisons else 0.0
        power = stats.estimate_power(total, effect)
        if power < criteria.power_target:
            recommendations.append(
                {
                    "type": "statistical_power",
                    "priority": "medium",
                    "message": f"Current statistical power is {power * 100:.1f}%, consider extending experiment",
                    "action": "extend_experiment",
                }
            )
        return recommendations

    def analyze_experiment(self, experiment_id: str) -> dict[str, Any]:
        """Analyze an experiment and save the analysis under results/."""
        experiment = self._get(experiment_id)
        variants = [self.analyze_variant(experiment, v) for v in experiment.variants]
        statistical = self.perform_statistical_analysis(experiment, variants)

        analysis = {
            "experiment_id": experiment.id,
            "name": experiment.name,
            "hypothesis": experiment.hypothesis,
            "status": experiment.status.value,
            "duration": experiment.duration_ms(),
            "variants": variants,
            "statistical": statistical,
            "recommendations": self.generate_recommendations(experiment, statistical),
            "timestamp": _now_ms(),
        }
        write_json(self.results_dir / f"{experiment.id}_{analysis['timestamp']}.json", analysis)
        logger.info("Analyzed experiment %s", experiment_id)
        return analysis

    # =========================================================================
    # Queries and Reports
    # =========================================================================

    def get_experiment_status(self, experiment_id: str) -> Optional[dict[str, Any]]:
        self.initialize()
        experiment = self.experiments.get(experiment_id)
        if experiment is None:
            return None

        variants = []
        for variant in experiment.variants:
            results = experiment.results.get(variant.id, VariantResults())
            variants.append(
                {
                    "id": variant.id,
                    "name": variant.name,
                    "assignments": results.assignments,
                    "conversions": len(results.conversions),
                }
            )
        return {
            "id": experiment.id,
            "name": experiment.name,
            "status": experiment.status.value,
            "variants": variants,
            "total_assignments": sum(v["assignments"] for v in variants),
            "duration": experiment.duration_ms(),
        }

    def list_experiments(self) -> list[dict[str, Any]]:
        self.initialize()
        return [
            {
                "id": e.id,
                "name": e.name,
                "hypothesis": e.hypothesis,
                "status": e.status.value,
                "created_at": e.created_at,
                "started_at": e.started_at,
                "variant_count": len(e.variants),
            }
            for e in sorted(self.experiments.values(), key=lambda e: e.created_at)
        ]

    def generate_report(self, experiment_id: str) -> Path:
        """Write a markdown report of a fresh analysis to reports/<id>.md."""
        experiment = self._get(experiment_id)
        analysis = self.analyze_experiment(experiment_id)
        statistical = analysis["statistical"]

        lines = [
            f"# Experiment Report: {experiment.name}",
            "",
            f"**ID:** {experiment.id}",
            f"**Status:** {experiment.status.value}",
            f"**Hypothesis:** {experiment.hypothesis}",
            f"**Success metric:** {experiment.criteria.success_metric}",
            "",
            "## Variants",
            "",
            "| Variant | Assignments | Conversions | Rate |",
            "|---|---|---|---|",
        ]
        for v in analysis["variants"]:
            lines.append(
                f"| {v['name']} ({v['id']}) | {v['assignments']} | {v['conversions']} "
                f"| {v['conversion_rate'] * 100:.1f}% |"
            )

        lines.extend(["", "## Comparisons", ""])
        for c in statistical.get("corrected_comparisons", []):
            lines.append(
                f"- {c['treatment']['id']} vs {c['control']['id']}: "
                f"relative effect {c['effect']['relative'] * 100:.1f}% ({c['effect']['size']}), "
                f"corrected p={c['corrected_p_value']:.4f}, {c['recommendation']}"
            )

        winner = statistical.get("recommended_winner") or {}
        lines.extend(["", "## Recommendation", "", f"{winner.get('reason', 'Not enough data')}", ""])
        for rec in analysis["recommendations"]:
            lines.append(f"- [{rec['priority']}] {rec['message']}")

        report_path = self.reports_dir / f"{experiment.id}.md"
        report_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return report_path


__all__ = [
    "ExperimentFramework",
    "Experiment",
    "ExperimentCriteria",
    "ExperimentStatus",
    "Variant",
    "VariantResults",
    "generate_experiment_id",
    "hash_subject",
]
