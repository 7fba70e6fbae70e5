"""Tests for the A/B experiment framework.

Test Coverage:
- Configuration validation on create
- Lifecycle: created -> running -> stopped, and state errors
- Deterministic, sticky variant assignment honouring allocation
- Conversion recording
- Analysis, winner recommendation and follow-up recommendations
- Persistence across framework instances
- Status, listing and markdown reports
"""

from __future__ import annotations

import json
import re

import pytest

from collective.core.exceptions import (
    ExperimentNotFoundError,
    ExperimentStateError,
    ExperimentValidationError,
)
from collective.experiments import (
    ExperimentFramework,
    ExperimentStatus,
    generate_experiment_id,
    hash_subject,
)


def make_config(**overrides):
    config = {
        "id": "exp-routing",
        "name": "Routing prompt",
        "hypothesis": "Shorter routing prompts complete more handoffs",
        "variants": [
            {"id": "control", "name": "Current"},
            {"id": "short", "name": "Short prompt"},
        ],
        "metrics": ["handoff_success"],
        "success_metric": "handoff_success",
    }
    config.update(overrides)
    return config


@pytest.fixture
def framework(tmp_path, settings):
    return ExperimentFramework(storage_dir=tmp_path / "experiments", settings=settings)


@pytest.fixture
def running(framework):
    experiment = framework.create_experiment(make_config())
    framework.start_experiment(experiment.id)
    return experiment


def assign_many(framework, experiment_id, count):
    """Assign subject-0..subject-N and group subject ids by variant."""
    groups: dict[str, list[str]] = {}
    for i in range(count):
        subject = f"subject-{i}"
        variant = framework.assign_variant(experiment_id, subject)
        groups.setdefault(variant.id, []).append(subject)
    return groups


class TestHelpers:
    def test_experiment_id_format(self):
        assert re.fullmatch(r"exp_\d+_[0-9a-z]{9}", generate_experiment_id())

    def test_hash_is_deterministic_and_unsigned(self):
        first = hash_subject("session-1", "exp")

        assert first == hash_subject("session-1", "exp")
        assert 0 <= first < 2**32
        assert first != hash_subject("session-2", "exp")


class TestCreate:
    def test_defaults(self, framework):
        experiment = framework.create_experiment(make_config())

        assert experiment.status is ExperimentStatus.CREATED
        assert experiment.allocation == {"control": 0.5, "short": 0.5}
        assert experiment.criteria.significance_level == 0.05
        assert experiment.criteria.min_sample_size == 30
        assert experiment.control.id == "control"
        assert (framework.experiments_dir / "exp-routing.json").exists()

    def test_generated_id(self, framework):
        config = make_config()
        del config["id"]

        assert framework.create_experiment(config).id.startswith("exp_")

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"variants": [{"id": "a", "name": "A"}]}, "at least 2 variants"),
            ({"variants": [{"id": "a"}, {"id": "b", "name": "B"}]}, "id and name"),
            ({"variants": [{"id": "a", "name": "A"}, {"id": "a", "name": "B"}]}, "Duplicate variant ID: a"),
            ({"allocation": {"control": 0.7, "short": 0.7}}, "sum to 1.0"),
            ({"allocation": {"control": 1.0}}, "every variant"),
            ({"metrics": []}, "at least one metric"),
            ({"success_metric": ""}, "success metric"),
        ],
    )
    def test_validation(self, framework, overrides, message):
        with pytest.raises(ExperimentValidationError, match=message):
            framework.create_experiment(make_config(**overrides))

    def test_allocation_tolerance(self, framework):
        experiment = framework.create_experiment(
            make_config(allocation={"control": 0.3333, "short": 0.6670})
        )

        assert experiment.allocation["short"] == 0.6670

    def test_duplicate_id(self, framework):
        framework.create_experiment(make_config())

        with pytest.raises(ExperimentValidationError, match="already exists"):
            framework.create_experiment(make_config())


class TestLifecycle:
    def test_start(self, framework):
        experiment = framework.create_experiment(make_config())

        started = framework.start_experiment(experiment.id)

        assert started.status is ExperimentStatus.RUNNING
        assert started.started_at is not None
        assert set(started.results) == {"control", "short"}

    def test_start_twice(self, framework, running):
        with pytest.raises(ExperimentStateError) as exc_info:
            framework.start_experiment(running.id)

        assert exc_info.value.context["status"] == "running"

    def test_start_unknown(self, framework):
        with pytest.raises(ExperimentNotFoundError):
            framework.start_experiment("missing")

    def test_stop_returns_analysis(self, framework, running):
        analysis = framework.stop_experiment(running.id, reason="done")

        experiment = framework.experiments[running.id]
        assert experiment.status is ExperimentStatus.STOPPED
        assert experiment.stop_reason == "done"
        assert experiment.final_analysis == analysis
        assert analysis["status"] == "stopped"

    def test_cleanup_stops_running(self, framework, running):
        framework.create_experiment(make_config(id="exp-idle"))

        assert framework.cleanup() == [running.id]
        assert framework.experiments["exp-idle"].status is ExperimentStatus.CREATED


class TestAssignment:
    def test_not_running(self, framework):
        framework.create_experiment(make_config())

        assert framework.assign_variant("exp-routing", "s1") is None
        assert framework.assign_variant("missing", "s1") is None

    def test_sticky(self, framework, running):
        first = framework.assign_variant(running.id, "s1")
        second = framework.assign_variant(running.id, "s1")

        assert first.id == second.id
        assert framework.get_experiment_status(running.id)["total_assignments"] == 1

    def test_even_split_reaches_every_variant(self, framework, running):
        groups = assign_many(framework, running.id, 200)

        assert set(groups) == {"control", "short"}
        assert all(len(subjects) > 40 for subjects in groups.values())

    def test_allocation_respected(self, framework):
        framework.create_experiment(make_config(allocation={"control": 0.0, "short": 1.0}))
        framework.start_experiment("exp-routing")

        groups = assign_many(framework, "exp-routing", 25)

        assert list(groups) == ["short"]

    def test_deterministic_across_instances(self, framework, running, settings):
        variant = framework.assign_variant(running.id, "s1")

        other = ExperimentFramework(storage_dir=framework.storage_dir, settings=settings)
        assert other.experiments == {}
        assert other.assign_variant(running.id, "s1").id == variant.id

    def test_context_recorded(self, framework, running):
        framework.assign_variant(running.id, "s1", context={"agent": "routing-agent"})

        data = json.loads((framework.experiments_dir / f"{running.id}.json").read_text())
        assert data["assignments"]["s1"]["context"] == {"agent": "routing-agent"}


class TestConversions:
    def test_unassigned_subject(self, framework, running):
        assert framework.record_conversion(running.id, "nobody", "handoff_success", 1) is False
        assert framework.record_conversion("missing", "nobody", "handoff_success", 1) is False

    def test_recorded(self, framework, running):
        variant = framework.assign_variant(running.id, "s1")

        assert framework.record_conversion(running.id, "s1", "handoff_success", 1.0) is True

        results = framework.experiments[running.id].results[variant.id]
        assert results.metrics["handoff_success"] == [1.0]
        assert results.conversions[0]["variant_id"] == variant.id


class TestAnalysis:
    def test_empty_experiment(self, framework, running):
        analysis = framework.analyze_experiment(running.id)

        assert analysis["statistical"]["overall_significance"]["any_significant"] is False
        assert analysis["statistical"]["recommended_winner"]["winner"] is None
        types = [r["type"] for r in analysis["recommendations"]]
        assert "sample_size" in types
        assert "statistical_power" in types
        assert list(framework.results_dir.glob(f"{running.id}_*.json"))

    def test_clear_winner(self, framework, running):
        groups = assign_many(framework, running.id, 200)
        for i, subject in enumerate(groups["control"]):
            if i % 5 == 0:
                framework.record_conversion(running.id, subject, "handoff_success", 1)
        for subject in groups["short"]:
            framework.record_conversion(running.id, subject, "handoff_success", 1)

        analysis = framework.analyze_experiment(running.id)
        statistical = analysis["statistical"]

        short = next(v for v in analysis["variants"] if v["id"] == "short")
        assert short["conversion_rate"] == 1.0
        assert short["metrics"]["handoff_success"]["mean"] == 1
        assert statistical["total_sample_size"] == 200
        assert statistical["corrected_comparisons"][0]["significant_after_correction"] is True
        assert statistical["comparisons"][0]["recommendation"] == "treatment_wins"
        winner = statistical["recommended_winner"]
        assert winner["winner"] == {"id": "short", "name": "Short prompt"}
        assert winner["confidence"] == "high"
        assert "implement_winner" in [r["action"] for r in analysis["recommendations"]]

    def test_worse_treatment_is_not_recommended(self, framework, running):
        groups = assign_many(framework, running.id, 200)
        for subject in groups["control"]:
            framework.record_conversion(running.id, subject, "handoff_success", 1)

        analysis = framework.analyze_experiment(running.id)
        statistical = analysis["statistical"]

        assert statistical["corrected_comparisons"][0]["significant_after_correction"] is True
        assert statistical["comparisons"][0]["recommendation"] == "control_wins"
        winner = statistical["recommended_winner"]
        assert winner["winner"] is None
        assert winner["reason"] == "No treatment significantly improves on the control"
        assert "implement_winner" not in [r["action"] for r in analysis["recommendations"]]

    def test_repeat_conversions_count_subject_once(self, framework, running):
        variant = framework.assign_variant(running.id, "s1")
        framework.record_conversion(running.id, "s1", "handoff_success", 1)
        framework.record_conversion(running.id, "s1", "handoff_success", 1)
        framework.record_conversion(running.id, "s1", "other_metric", 3)

        analysis = framework.analyze_experiment(running.id)

        stats = next(v for v in analysis["variants"] if v["id"] == variant.id)
        assert stats["conversions"] == 1
        assert stats["conversion_events"] == 3
        assert stats["conversion_rate"] == 1.0

    def test_three_variants_are_corrected(self, framework):
        variants = [{"id": v, "name": v.upper()} for v in ("a", "b", "c")]
        framework.create_experiment(make_config(variants=variants))
        framework.start_experiment("exp-routing")

        analysis = framework.analyze_experiment("exp-routing")

        assert analysis["statistical"]["overall_significance"]["total_comparisons"] == 2
        assert len(analysis["statistical"]["sample_sizes"]) == 3


class TestQueries:
    def test_status(self, framework, running):
        framework.assign_variant(running.id, "s1")

        status = framework.get_experiment_status(running.id)

        assert status["status"] == "running"
        assert status["total_assignments"] == 1
        assert [v["id"] for v in status["variants"]] == ["control", "short"]

    def test_status_unknown(self, framework):
        assert framework.get_experiment_status("missing") is None

    def test_list(self, framework, running):
        listed = framework.list_experiments()

        assert listed[0]["id"] == running.id
        assert listed[0]["variant_count"] == 2

    def test_corrupt_file_is_skipped(self, framework, running, settings):
        (framework.experiments_dir / "broken.json").write_text("{")

        other = ExperimentFramework(storage_dir=framework.storage_dir, settings=settings)

        assert [e["id"] for e in other.list_experiments()] == [running.id]

    def test_report(self, framework, running):
        framework.assign_variant(running.id, "s1")

        path = framework.generate_report(running.id)

        content = path.read_text()
        assert path == framework.reports_dir / f"{running.id}.md"
        assert content.startswith("# Experiment Report: Routing prompt")
        assert "| Current (control) |" in content
        assert "No statistically significant differences found" in content
