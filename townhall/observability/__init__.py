"""
Observability & Audit Layer

RESPONSIBILITY: Audit logging and metrics for store, reference, cache,
graph and engine
ALLOWED INPUTS: Audit entries and metric points from any layer
OUTPUTS: AuditLogEntry lists, MetricPoint series, audit reports

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Block or fail other layer operations
- Record filesystem paths (only bucket/id-level identifiers)

BOUNDARY ENFORCEMENT:
=====================
- Receives immutable entries
- Provides read-only copies of logs and metrics
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import itertools
import hashlib

from ..contracts.base import Error, Timestamp
from ..contracts.records import AuditEventType, AuditLogEntry, MetricPoint


# =============================================================================
# LOG COLLECTORS (One per layer)
# =============================================================================

class LogCollector:
    """Append-only audit entries of one layer."""

    def __init__(self):
        self._entries: List[AuditLogEntry] = []

    def collect(self, entry: AuditLogEntry):
        self._entries.append(entry)

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None,
        entity_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Entries in arrival order, optionally filtered."""
        return [
            e for e in self._entries
            if (event_type is None or e.event_type == event_type)
            and (action is None or e.action == action)
            and (entity_id is None or e.entity_id == entity_id)
        ]

    @property
    def entry_count(self) -> int:
        return len(self._entries)


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

# Metric name -> label keys it is recorded with
KNOWN_METRICS: Dict[str, Tuple[str, ...]] = {
    "objects_stored_total": ("bucket",),
    "storage_write_latency_ms": (),
    "storage_rejections_total": ("code",),
    "reference_switches_total": (),
    "records_set_aside_total": ("bucket",),
    "edges_created_total": ("kind",),
    "edges_rejected_total": ("code",),
    "close_votes_total": ("vote",),
}


class MetricsCollector:
    """
    Append-only metric series.

    Known metrics start out as empty series; any other name is accepted
    and gets a series on first use.
    """

    def __init__(self):
        self._metrics: Dict[str, List[MetricPoint]] = {name: [] for name in KNOWN_METRICS}

    @property
    def names(self) -> List[str]:
        return sorted(self._metrics)

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        point = MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=Timestamp.now(),
            labels=tuple(sorted(labels.items())) if labels else ()
        )
        self._metrics.setdefault(metric_name, []).append(point)

    def get_metric(self, metric_name: str) -> List[MetricPoint]:
        return list(self._metrics.get(metric_name, []))

    def total(self, metric_name: str, **labels: str) -> float:
        """Sum of a metric, restricted to points carrying all given labels."""
        wanted = set(labels.items())
        return sum(
            p.value for p in self._metrics.get(metric_name, [])
            if wanted.issubset(set(p.labels))
        )


# =============================================================================
# OBSERVABILITY ENGINE (Orchestrates all observability)
# =============================================================================

@dataclass
class ObservabilityConfig:
    """Configuration for observability engine."""
    enable_metrics: bool = True
    layers: Tuple[str, ...] = ('storage', 'refs', 'cache', 'graph', 'engine')


class ObservabilityEngine:
    """
    Central Observability Engine.

    One instance is shared by every component wired into an engine so
    the unified log orders activity across layers.
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._collectors: Dict[str, LogCollector] = {
            name: LogCollector() for name in self._config.layers
        }
        self._unified: List[AuditLogEntry] = []
        self._metrics = MetricsCollector() if self._config.enable_metrics else None
        self._sequence = itertools.count(1)

    def log_audit(
        self,
        layer: str,
        action: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        event_type: AuditEventType = AuditEventType.SYSTEM,
        metadata: Tuple[Tuple[str, str], ...] = ()
    ) -> AuditLogEntry:
        sequence = next(self._sequence)
        timestamp = Timestamp.now()
        entry_id = hashlib.sha256(
            f"{layer}_{action}|{sequence}|{timestamp.value.timestamp()}".encode()
        ).hexdigest()[:16]

        entry = AuditLogEntry(
            entry_id=f"audit_{entry_id}",
            event_type=event_type,
            timestamp=timestamp,
            layer=layer,
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            metadata=metadata
        )
        self._collectors.setdefault(layer, LogCollector()).collect(entry)
        self._unified.append(entry)
        return entry

    def log_error(
        self,
        layer: str,
        action: str,
        error: Error,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None
    ) -> AuditLogEntry:
        """Record a failed operation. Only the error code and message are kept."""
        return self.log_audit(
            layer=layer,
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            event_type=AuditEventType.ERROR,
            metadata=(
                ("code", error.code.label),
                ("kind", error.kind.value),
                ("message", error.message),
            )
        )

    def collect_metric(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        if self._metrics:
            self._metrics.record(metric_name, value, labels)

    def get_unified_log(self, layers: Optional[List[str]] = None) -> List[AuditLogEntry]:
        """Entries from all or the given layers, in the order they were logged."""
        if layers is None:
            return list(self._unified)
        wanted = set(layers)
        return [e for e in self._unified if e.layer in wanted]

    def get_layer_log(
        self,
        layer_name: str,
        event_type: Optional[AuditEventType] = None,
        entity_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        collector = self._collectors.get(layer_name)
        if not collector:
            return []
        return collector.get_entries(event_type=event_type, entity_id=entity_id)

    def get_metrics(self) -> Optional[MetricsCollector]:
        """Metrics collector, or None when metrics are disabled."""
        return self._metrics

    def generate_audit_report(self) -> Dict:
        """Summarize entries by layer, event type and error code."""
        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        errors: Dict[str, int] = {}

        for entry in self._unified:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1
            if entry.event_type == AuditEventType.ERROR:
                code = dict(entry.metadata).get("code", "unknown")
                errors[code] = errors.get(code, 0) + 1

        return {
            'total_entries': len(self._unified),
            'by_layer': by_layer,
            'by_event_type': by_type,
            'errors_by_code': errors,
            'generated_at': Timestamp.now().to_iso()
        }


__all__ = [
    'KNOWN_METRICS',
    'LogCollector',
    'MetricsCollector',
    'ObservabilityConfig',
    'ObservabilityEngine',
]
