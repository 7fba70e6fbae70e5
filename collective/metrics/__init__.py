"""Research metrics for the collective.

Usage:
    from collective.metrics import MetricsCollector

    collector = MetricsCollector()
    collector.store("routing", {"target": "research-agent"})
    print(collector.export("markdown"))
"""

from collective.metrics.collector import (
    EXPORT_FORMATS,
    MetricsCollector,
    create_baseline,
    default_config,
    empty_validation,
    stream_metric,
)
from collective.metrics.hypotheses import validate_hypotheses

__all__ = [
    "MetricsCollector",
    "default_config",
    "create_baseline",
    "empty_validation",
    "stream_metric",
    "validate_hypotheses",
    "EXPORT_FORMATS",
]
