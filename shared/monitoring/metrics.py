"""
Prometheus Metrics Module

Prometheus metrics for the quality monitor. Every monitor instance owns its
own CollectorRegistry so several monitors (e.g. one per region) can run in
one process without metric name collisions.
"""

from typing import Any, Dict, Iterable, Optional
from dataclasses import dataclass

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST
)


SIGNAL_DIMENSIONS = ("performance", "compliance", "reliability")


@dataclass
class QualityMetrics:
    """
    Quality monitor Prometheus metrics

    Usage:
        metrics = QualityMetrics(monitor_id="eu-north")

        # Record a collection tick
        metrics.record_snapshot(snapshot)
        metrics.tick_duration.observe(0.12)

        # Record alert transitions
        metrics.record_alert_change("opened", alert)
    """

    monitor_id: str = "default"
    registry: Optional[CollectorRegistry] = None

    def __post_init__(self):
        """Initialize Prometheus metrics"""
        if self.registry is None:
            self.registry = CollectorRegistry()

        self.monitor_info = Info(
            'quality_monitor',
            'Quality monitor information',
            registry=self.registry
        )

        # Signal values
        self.signal_value = Gauge(
            'quality_signal_value',
            'Latest sampled value per monitored signal',
            ['dimension', 'signal'],
            registry=self.registry
        )

        self.overall_score = Gauge(
            'quality_overall_score',
            'Aggregate quality score (0-100)',
            registry=self.registry
        )

        self.stale_dimensions = Gauge(
            'quality_stale_dimensions',
            'Dimensions served from their last good value',
            registry=self.registry
        )

        # Ticks
        self.ticks_total = Counter(
            'quality_ticks_total',
            'Monitoring ticks',
            ['status'],
            registry=self.registry
        )

        self.tick_duration = Histogram(
            'quality_tick_duration_seconds',
            'Duration of one monitoring tick',
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry
        )

        self.collection_errors = Counter(
            'quality_collection_errors_total',
            'Metric source failures',
            ['dimension'],
            registry=self.registry
        )

        # Alerts
        self.alert_transitions = Counter(
            'quality_alert_transitions_total',
            'Alert lifecycle transitions',
            ['change', 'category', 'severity'],
            registry=self.registry
        )

        self.active_alerts = Gauge(
            'quality_active_alerts',
            'Unresolved alerts',
            ['severity'],
            registry=self.registry
        )

        self.failures_prevented = Gauge(
            'quality_failures_prevented',
            'Alerts cleared by auto-resolution this session',
            registry=self.registry
        )

        # Insights and events
        self.insights_total = Counter(
            'quality_insights_total',
            'Improvement insights discovered',
            registry=self.registry
        )

        self.events_dropped = Gauge(
            'quality_events_dropped',
            'Events dropped from full subscriber queues',
            registry=self.registry
        )

    def set_monitor_info(self, version: str, environment: str = "production"):
        """Set monitor information"""
        self.monitor_info.info({
            'monitor_id': self.monitor_id,
            'version': version,
            'environment': environment
        })

    def record_snapshot(self, snapshot: Any):
        """Record the signal values of a snapshot"""
        for dimension in SIGNAL_DIMENSIONS:
            values: Dict[str, Any] = getattr(snapshot, dimension).model_dump()
            for signal, value in values.items():
                self.signal_value.labels(dimension=dimension, signal=signal).set(value)

        self.overall_score.set(snapshot.quality.overall_score)
        self.stale_dimensions.set(len(snapshot.stale_dimensions))
        self.failures_prevented.set(snapshot.reliability.failures_prevented)

    def record_tick(self, duration: float, status: str = "success"):
        """Record a completed tick"""
        self.ticks_total.labels(status=status).inc()
        self.tick_duration.observe(duration)

    def record_collection_errors(self, dimensions: Iterable[str]):
        """Record failed metric sources"""
        for dimension in dimensions:
            self.collection_errors.labels(dimension=dimension).inc()

    def record_alert_change(self, change: str, alert: Any):
        """Record an alert lifecycle transition"""
        self.alert_transitions.labels(
            change=change,
            category=alert.category.value,
            severity=alert.severity.value
        ).inc()

    def update_active_alerts(self, alerts: Iterable[Any]):
        """Set the unresolved alert gauges by severity"""
        counts = {"info": 0, "warning": 0, "error": 0, "critical": 0}
        for alert in alerts:
            counts[alert.severity.value] += 1
        for severity, count in counts.items():
            self.active_alerts.labels(severity=severity).set(count)

    def record_insights(self, count: int):
        """Record newly discovered insights"""
        if count:
            self.insights_total.inc(count)

    def export_metrics(self) -> bytes:
        """Export metrics in Prometheus format"""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
