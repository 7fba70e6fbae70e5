"""A/B experiment harness for comparing agent variants.

Usage:
    from collective.experiments import ExperimentFramework

    framework = ExperimentFramework()
    experiment = framework.create_experiment(config)
    framework.start_experiment(experiment.id)
"""

from collective.experiments.framework import (
    Experiment,
    ExperimentCriteria,
    ExperimentFramework,
    ExperimentStatus,
    Variant,
    VariantResults,
    generate_experiment_id,
    hash_subject,
)

__all__ = [
    "Experiment",
    "ExperimentCriteria",
    "ExperimentFramework",
    "ExperimentStatus",
    "Variant",
    "VariantResults",
    "generate_experiment_id",
    "hash_subject",
]
