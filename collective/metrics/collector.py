"""Research metrics collection for the collective hypotheses.

Collects metric events that back the three research hypotheses:
    - H1: JIT context loading is more efficient than preloading
    - H2: Hub-and-spoke routing outperforms peer-to-peer coordination
    - H3: Contract-based TDD handoffs improve quality

Metrics are buffered in memory and flushed to snapshot files once the
buffer fills or the collector shuts down. Retrieval also reads the
``*-metrics.jsonl`` streams the hooks append to, so hook activity shows
up in aggregation and export next to stored metrics.

Storage Layout (under the metrics directory):
    snapshots/snapshot-<ms>.json        buffered metrics
    aggregations/aggregation-<ms>.json  aggregation results
    sessions/<session>.json             per-session summary
    baseline.json                       pre-collective baseline
    config.json                         hypothesis and collection config
    <type>-metrics.jsonl                hook event streams (jit, routing, ...)

Example:
    >>> collector = MetricsCollector(Path(".claude-collective/metrics"))
    >>> collector.initialize()
    >>> collector.store("handoff", {"from": "routing-agent", "to": "research-agent"})
    True
    >>> collector.shutdown()
"""

from __future__ import annotations

import copy
import csv
import io
import json
import logging
import random
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from collective import __version__
from collective.config.settings import CollectiveSettings, get_settings
from collective.core.exceptions import StorageError, UnsupportedExportFormatError
from collective.core.storage import read_json, read_json_lines, unique_path, write_json
from collective.metrics.hypotheses import validate_hypotheses

logger = logging.getLogger(__name__)

METRIC_VERSION = "1.0.0"
SENSITIVE_KEYS = ("password", "token", "key", "secret", "auth")
REQUIRED_FIELDS = ("id", "session_id", "timestamp", "event_type", "data")
EXPORT_FORMATS = ("json", "csv", "markdown")
STREAM_SUFFIX = "-metrics.jsonl"

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def empty_validation() -> dict[str, Any]:
    return {
        name: {"validated": False, "confidence": 0, "evidence": []}
        for name in ("h1_jit_loading", "h2_hub_spoke", "h3_tdd_handoffs")
    }


def stream_metric(event_type: str, record: Any, source: str, index: int) -> Optional[dict[str, Any]]:
    """Convert one hook stream record to the stored metric shape.

    Returns None for records without a parseable ISO timestamp.
    """
    if not isinstance(record, dict):
        return None
    try:
        stamp = datetime.fromisoformat(str(record.get("timestamp", "")).replace("Z", "+00:00"))
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return {
        "id": f"{event_type}-{index}",
        "session_id": record.get("session_id") or "hook",
        "timestamp": round(stamp.timestamp() * 1000),
        "event_type": event_type,
        "data": {k: v for k, v in record.items() if k not in ("timestamp", "session_id")},
        "metadata": {"source": source, "version": METRIC_VERSION},
    }


def default_config(settings: Optional[CollectiveSettings] = None) -> dict[str, Any]:
    settings = settings or get_settings()
    metrics = settings.metrics
    return {
        "hypotheses": {
            "h1_jit_loading": {
                "name": "JIT Context Loading",
                "description": "On-demand context loading is more efficient than preloading",
                "target_reduction": 0.3,
                "confidence_threshold": 0.95,
            },
            "h2_hub_spoke": {
                "name": "Hub-and-Spoke Coordination",
                "description": "Centralized routing outperforms distributed communication",
                "target_compliance": 0.9,
                "confidence_threshold": 0.95,
            },
            "h3_tdd_handoffs": {
                "name": "Test-Driven Development Handoffs",
                "description": "Contract-based handoffs improve quality and reduce errors",
                "target_success_rate": 0.8,
                "confidence_threshold": 0.95,
            },
        },
        "collection": {
            "buffer_size": metrics.buffer_size,
            "flush_interval": 30000,
            "enable_validation": metrics.enable_validation,
            "enable_compression": True,
        },
        "analysis": {
            "min_sample_size": metrics.min_sample_size,
            "confidence_level": 0.95,
            "significance_level": settings.experiments.significance_level,
        },
    }


def create_baseline(session_id: str) -> dict[str, Any]:
    """Pre-collective baseline measurements used for comparison."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "session_id": session_id,
        "version": METRIC_VERSION,
        "measurements": {
            "context": {
                "average_size": 10000,
                "load_time": 500,
                "memory_usage": 150,
                "retention_rate": 0.6,
                "relevance_score": 0.7,
            },
            "coordination": {
                "direct_implementation": 1.0,
                "routing_compliance": 0.0,
                "peer_to_peer_communication": 1.0,
                "coordination_overhead": 0.0,
                "routing_errors": 0.0,
            },
            "handoffs": {
                "success_rate": 0.0,
                "validation_time": 0,
                "retry_rate": 0.0,
                "contract_coverage": 0.0,
                "error_detection_rate": 0.0,
            },
        },
    }


class MetricsCollector:
    """Buffered metrics collection with snapshot persistence.

    Attributes:
        storage_dir: Root metrics directory.
        session_id: Identifier stamped on every metric from this collector.
        config: Effective configuration (defaults merged with config.json).
        baseline: Loaded or created baseline measurements.
    """

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        settings: Optional[CollectiveSettings] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.settings = settings or get_settings()
        if storage_dir is None:
            storage_dir = (
                self.settings.paths.resolve_collective_dir(Path.cwd())
                / self.settings.metrics.storage_subdir
            )
        self.storage_dir = Path(storage_dir)
        self.session_id = session_id or str(_now_ms())
        self.session_start = _now_ms()
        self.retention_days = self.settings.metrics.retention_days

        self.snapshots_dir = self.storage_dir / "snapshots"
        self.aggregations_dir = self.storage_dir / "aggregations"
        self.reports_dir = self.storage_dir / "reports"
        self.sessions_dir = self.storage_dir / "sessions"
        self.baseline_path = self.storage_dir / "baseline.json"
        self.config_path = self.storage_dir / "config.json"

        self.buffer: list[dict[str, Any]] = []
        self.config: dict[str, Any] = default_config(self.settings)
        self.baseline: dict[str, Any] = {}
        self.initialized = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        if self.initialized:
            return
        for directory in (self.snapshots_dir, self.aggregations_dir, self.reports_dir, self.sessions_dir):
            directory.mkdir(parents=True, exist_ok=True)
        self._load_configuration()
        self._load_baseline()
        self.initialized = True
        logger.debug("Metrics collector initialized for session %s", self.session_id)

    def _load_configuration(self) -> None:
        if self.config_path.exists():
            stored = read_json(self.config_path, default={}, tolerant=True)
            if isinstance(stored, dict):
                merged = copy.deepcopy(self.config)
                for section, values in stored.items():
                    if isinstance(values, dict) and isinstance(merged.get(section), dict):
                        merged[section].update(values)
                    else:
                        merged[section] = values
                self.config = merged
        else:
            write_json(self.config_path, self.config)

    def _load_baseline(self) -> None:
        baseline = read_json(self.baseline_path, default=None, tolerant=True)
        if isinstance(baseline, dict):
            self.baseline = baseline
        else:
            self.baseline = create_baseline(self.session_id)
            write_json(self.baseline_path, self.baseline)

    def shutdown(self) -> dict[str, Any]:
        """Flush the buffer and write the session summary."""
        self.initialize()
        self.flush_buffer()
        end = _now_ms()
        summary = {
            "session_id": self.session_id,
            "start_time": self.session_start,
            "end_time": end,
            "duration": end - self.session_start,
            "metrics_collected": self.get_metrics_count(),
            "final_state": self.get_current_state(),
        }
        write_json(self.sessions_dir / f"{self.session_id}.json", summary)
        return summary

    # =========================================================================
    # Collection
    # =========================================================================

    @staticmethod
    def sanitize(data: Any) -> Any:
        """Redact top-level keys that look like credentials."""
        if not isinstance(data, dict):
            return data
        return {
            key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else value
            for key, value in data.items()
        }

    @staticmethod
    def validate_metric(metric: dict[str, Any]) -> bool:
        return all(field in metric for field in REQUIRED_FIELDS)

    def store(self, event_type: str, data: Any, metadata: Optional[dict[str, Any]] = None) -> bool:
        """Buffer one metric event; flushes when the buffer is full."""
        self.initialize()
        metric = {
            "id": f"{_now_ms()}-{''.join(random.choices(_ID_ALPHABET, k=9))}",
            "session_id": self.session_id,
            "timestamp": _now_ms(),
            "event_type": event_type,
            "data": self.sanitize(data),
            "metadata": {
                **(metadata or {}),
                "version": METRIC_VERSION,
                "collector": type(self).__name__,
                "package_version": __version__,
            },
        }

        collection = self.config["collection"]
        if collection.get("enable_validation") and (
            not event_type or not self.validate_metric(metric)
        ):
            logger.warning("Rejected invalid metric: %s", event_type)
            return False

        self.buffer.append(metric)
        if len(self.buffer) >= collection.get("buffer_size", 100):
            self.flush_buffer()
        return True

    def flush_buffer(self) -> Optional[Path]:
        """Write buffered metrics to a snapshot file."""
        if not self.buffer:
            return None
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        snapshot = {
            "timestamp": _now_ms(),
            "session_id": self.session_id,
            "metrics": list(self.buffer),
        }
        path = unique_path(self.snapshots_dir, "snapshot")
        indent = None if self.config["collection"].get("enable_compression") else 2
        write_json(path, snapshot, indent=indent)
        logger.debug("Flushed %d metrics to %s", len(self.buffer), path.name)
        self.buffer = []
        return path

    # =========================================================================
    # Retrieval and Analysis
    # =========================================================================

    @staticmethod
    def matches_filters(metric: dict[str, Any], filters: dict[str, Any]) -> bool:
        if filters.get("start_time") and metric["timestamp"] < filters["start_time"]:
            return False
        if filters.get("end_time") and metric["timestamp"] > filters["end_time"]:
            return False
        if filters.get("event_type") and metric.get("event_type") != filters["event_type"]:
            return False
        if filters.get("session_id") and metric.get("session_id") != filters["session_id"]:
            return False
        return True

    def _iter_snapshots(self):
        if not self.snapshots_dir.is_dir():
            return
        for path in sorted(self.snapshots_dir.glob("snapshot-*.json")):
            try:
                snapshot = read_json(path)
            except StorageError as e:
                logger.warning("Failed to read snapshot file %s: %s", path.name, e)
                continue
            if isinstance(snapshot, dict):
                yield snapshot

    def _iter_stream_metrics(self):
        if not self.storage_dir.is_dir():
            return
        for path in sorted(self.storage_dir.glob(f"*{STREAM_SUFFIX}")):
            event_type = path.name[: -len(STREAM_SUFFIX)]
            try:
                records = read_json_lines(path)
            except StorageError as e:
                logger.warning("Failed to read metrics stream %s: %s", path.name, e)
                continue
            for index, record in enumerate(records, start=1):
                metric = stream_metric(event_type, record, path.name, index)
                if metric is not None:
                    yield metric

    def retrieve(self, filters: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        """Return individual metrics from snapshots and hook streams, oldest first."""
        filters = filters or {}
        stored = (
            metric
            for snapshot in self._iter_snapshots()
            for metric in snapshot.get("metrics", [])
            if isinstance(metric, dict) and "timestamp" in metric
        )
        results = [
            metric
            for source in (stored, self._iter_stream_metrics())
            for metric in source
            if self.matches_filters(metric, filters)
        ]
        return sorted(results, key=lambda m: m["timestamp"])

    @staticmethod
    def count_event_types(metrics: list[dict[str, Any]]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for metric in metrics:
            event_type = metric.get("event_type", "unknown")
            counts[event_type] = counts.get(event_type, 0) + 1
        return counts

    def calculate_confidence(self, sample_size: int) -> float:
        if sample_size < self.config["analysis"].get("min_sample_size", 30):
            return 0.5
        if sample_size < 100:
            return 0.7
        if sample_size < 500:
            return 0.85
        if sample_size < 1000:
            return 0.9
        return 0.95

    def get_empty_aggregation(self) -> dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "sample_size": 0,
            "aggregated": {"total_metrics": 0, "time_span": 0, "event_types": {}},
            "analysis": {"sample_size": 0, "timespan": 0, "confidence": 0},
            "validation": empty_validation(),
        }

    def aggregate(self, filters: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Aggregate matching metrics and persist the result."""
        self.initialize()
        filters = filters or {}
        metrics = self.retrieve(filters)
        if not metrics:
            return self.get_empty_aggregation()

        span = metrics[-1]["timestamp"] - metrics[0]["timestamp"]
        aggregation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "time_range": filters,
            "sample_size": len(metrics),
            "aggregated": {
                "total_metrics": len(metrics),
                "time_span": span,
                "event_types": self.count_event_types(metrics),
            },
            "analysis": {
                "sample_size": len(metrics),
                "timespan": span,
                "confidence": self.calculate_confidence(len(metrics)),
            },
            "validation": validate_hypotheses(
                metrics, self.config.get("hypotheses", {}), self.baseline, self.calculate_confidence
            ),
        }
        write_json(unique_path(self.aggregations_dir, "aggregation"), aggregation)
        return aggregation

    # =========================================================================
    # Export
    # =========================================================================

    def export(self, fmt: str = "json", filters: Optional[dict[str, Any]] = None) -> str:
        """Export matching metrics as json, csv or markdown.

        Raises:
            UnsupportedExportFormatError: For any other format.
        """
        normalized = fmt.lower()
        if normalized not in EXPORT_FORMATS:
            raise UnsupportedExportFormatError(fmt)

        metrics = self.retrieve(filters)
        if normalized == "json":
            return json.dumps(metrics, indent=2)
        if normalized == "csv":
            return self._to_csv(metrics)
        return self._to_markdown(metrics)

    @staticmethod
    def _to_csv(metrics: list[dict[str, Any]]) -> str:
        if not metrics:
            return ""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["timestamp", "session_id", "event_type", "data"])
        for metric in metrics:
            writer.writerow(
                [
                    _iso(metric["timestamp"]),
                    metric.get("session_id", ""),
                    metric.get("event_type", ""),
                    json.dumps(metric.get("data")),
                ]
            )
        return buffer.getvalue().rstrip("\n")

    def _to_markdown(self, metrics: list[dict[str, Any]]) -> str:
        lines = [
            "# Metrics Export",
            "",
            f"**Generated:** {datetime.now(timezone.utc).isoformat()}",
            f"**Session:** {self.session_id}",
            f"**Total Metrics:** {len(metrics)}",
            "",
        ]
        if metrics:
            lines.extend(["## Metrics Summary", ""])
            for event_type, count in self.count_event_types(metrics).items():
                lines.append(f"- **{event_type}:** {count} events")
        return "\n".join(lines) + "\n"

    # =========================================================================
    # Maintenance and State
    # =========================================================================

    def cleanup_old_data(self) -> list[Path]:
        """Delete snapshots and aggregations older than the retention period."""
        cutoff = time.time() - self.retention_days * 86400
        removed = []
        for directory in (self.snapshots_dir, self.aggregations_dir):
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed.append(path)
        if removed:
            logger.info("Removed %d expired metrics files", len(removed))
        return removed

    def get_metrics_count(self) -> int:
        stored = sum(len(s.get("metrics", [])) for s in self._iter_snapshots())
        return stored + len(self.buffer)

    def get_current_state(self) -> dict[str, Any]:
        return {
            "buffer_size": len(self.buffer),
            "is_initialized": self.initialized,
            "session_id": self.session_id,
            "uptime": _now_ms() - self.session_start,
        }


__all__ = [
    "MetricsCollector",
    "default_config",
    "create_baseline",
    "empty_validation",
    "stream_metric",
    "EXPORT_FORMATS",
]
