"""
Alert Engine - threshold evaluation, alert lifecycle and auto-resolution.

Lifecycle per (category, signal):

    no alert -> open -> auto-resolution attempted -> resolved
    no alert -> open -> resolved            (signal recovered first)

At most one alert is open per (category, signal). A remediable alert that is
still breached on the tick after it opened gets exactly one remediation
attempt; the tick after that decides the outcome. Alerts that do not recover
stay open and are flagged ``escalated`` for human action. Resolved alerts
stay queryable for the rest of the session.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from shared.configs.models import QualitySpec
from shared.monitoring.structured_logger import log_alert, log_error
from .models import Alert, AlertCategory, AlertSeverity, MetricsSnapshot
from .remediation import PlaybookRemediator, Remediator


logger = logging.getLogger(__name__)

ABOVE = "above"
BELOW = "below"

REGRESSION_WINDOW = 10
MONITORING_CYCLE_SIGNAL = "monitoring_cycle"
COLLECTION_DIMENSIONS = ("performance", "compliance", "reliability")

REMEDIABLE_CATEGORIES = frozenset({AlertCategory.PERFORMANCE, AlertCategory.RELIABILITY})

AlertKey = Tuple[AlertCategory, str]


SIGNAL_LABELS = {
    "hub_load_time": "Hub loading time",
    "world_transition_time": "World transition time",
    "memory_usage": "Memory usage",
    "response_time": "Response time",
    "throughput": "Throughput",
    "gdpr_compliance": "GDPR compliance",
    "cultural_adaptation": "Cultural adaptation",
    "municipal_standards": "Municipal standards compliance",
    "accessibility": "Accessibility conformance",
    "uptime": "System uptime",
    "error_rate": "Error rate",
    "recovery_time": "Recovery time",
    "overall_score": "Overall quality score",
}

RECOMMENDED_ACTIONS = {
    "hub_load_time": ["Optimize hub loading", "Check network conditions", "Review caching strategy"],
    "world_transition_time": ["Prefetch world assets", "Profile transition rendering", "Review lazy loading"],
    "memory_usage": ["Check for memory leaks", "Reduce cached asset footprint", "Review memory limit per session"],
    "response_time": ["Profile slow endpoints", "Review database query plans", "Check upstream dependencies"],
    "throughput": ["Check worker saturation", "Review connection pool limits", "Consider scaling out"],
    "hub_load_regression": ["Investigate recent changes", "Review performance optimization", "Consider rollback"],
    "gdpr_compliance": ["Review data processing", "Validate consent mechanisms", "Check privacy controls"],
    "cultural_adaptation": ["Review localized content", "Validate cultural adaptation rules", "Engage regional reviewers"],
    "municipal_standards": ["Audit against municipal requirements", "Review recent content changes", "Notify compliance officer"],
    "accessibility": ["Run accessibility audit", "Fix WCAG violations", "Review assistive technology support"],
    "uptime": ["Investigate downtime causes", "Review failure prevention", "Enhance monitoring"],
    "error_rate": ["Inspect error logs", "Identify failing endpoints", "Review recent deployments"],
    "recovery_time": ["Review failover configuration", "Check health check intervals", "Pre-warm standby capacity"],
    "overall_score": ["Review open alerts by dimension", "Prioritize lowest scoring dimension", "Schedule quality review"],
    "collection": ["Check metric source connectivity", "Verify data sources", "Review source credentials"],
    MONITORING_CYCLE_SIGNAL: ["Check monitoring system", "Verify data sources", "Review system health"],
}


@dataclass(frozen=True)
class ThresholdRule:
    """Compares one snapshot signal against its threshold."""
    category: AlertCategory
    dimension: str
    signal: str
    threshold: float
    direction: str
    unit: str = ""
    base_severity: AlertSeverity = AlertSeverity.WARNING
    error_bound: Optional[float] = None
    critical_bound: Optional[float] = None

    @property
    def key(self) -> AlertKey:
        return (self.category, self.signal)

    def read(self, snapshot: MetricsSnapshot) -> float:
        return float(getattr(getattr(snapshot, self.dimension), self.signal))

    def _beyond(self, value: float, bound: float) -> bool:
        return value > bound if self.direction == ABOVE else value < bound

    def is_breached(self, value: float) -> bool:
        return self._beyond(value, self.threshold)

    def severity_for(self, value: float) -> AlertSeverity:
        severity = self.base_severity
        if self.error_bound is not None and self._beyond(value, self.error_bound):
            severity = max(severity, AlertSeverity.ERROR, key=lambda s: s.rank)
        if self.critical_bound is not None and self._beyond(value, self.critical_bound):
            severity = AlertSeverity.CRITICAL
        return severity

    def describe(self, value: float) -> str:
        label = SIGNAL_LABELS.get(self.signal, self.signal)
        relation = "exceeds threshold" if self.direction == ABOVE else "below required"
        return f"{label} {value:.2f}{self.unit} {relation} {self.threshold:g}{self.unit}"


@dataclass
class Breach:
    """A signal outside its healthy range on this tick."""
    category: AlertCategory
    signal: str
    severity: AlertSeverity
    message: str
    recommended_actions: List[str]
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> AlertKey:
        return (self.category, self.signal)


@dataclass
class AlertChange:
    """An alert transition; ``alert`` is a copy taken at the transition."""
    change: str
    alert: Alert


def build_threshold_rules(spec: QualitySpec) -> List[ThresholdRule]:
    """Derive the threshold rules for every monitored signal from QualitySpec."""
    p, c, r, q = spec.performance, spec.compliance, spec.reliability, spec.quality
    rules = []

    for signal, threshold in (
        ("hub_load_time", p.hub_loading_threshold),
        ("world_transition_time", p.world_transition_threshold),
        ("response_time", p.response_time_threshold),
    ):
        rules.append(ThresholdRule(
            AlertCategory.PERFORMANCE, "performance", signal, threshold, ABOVE, "ms",
            error_bound=threshold * (1 + p.severe_breach_ratio),
            critical_bound=threshold * (1 + p.critical_breach_ratio),
        ))

    rules.append(ThresholdRule(
        AlertCategory.PERFORMANCE, "performance", "memory_usage", p.memory_constraint_threshold, ABOVE, "MB",
        error_bound=p.memory_constraint_threshold * (1 + p.severe_breach_ratio),
        critical_bound=p.memory_constraint_threshold * (1 + p.critical_breach_ratio),
    ))
    rules.append(ThresholdRule(
        AlertCategory.PERFORMANCE, "performance", "throughput", p.min_throughput, BELOW, " req/s",
        error_bound=p.min_throughput * (1 - p.severe_breach_ratio),
        critical_bound=p.min_throughput * max(0.0, 1 - p.critical_breach_ratio),
    ))

    for signal, floor in c.floors().items():
        rules.append(ThresholdRule(
            AlertCategory.COMPLIANCE, "compliance", signal, floor, BELOW, "%",
            base_severity=AlertSeverity.ERROR,
            critical_bound=floor - c.critical_margin,
        ))

    rules.append(ThresholdRule(
        AlertCategory.RELIABILITY, "reliability", "uptime", r.uptime_floor, BELOW, "%",
        error_bound=(r.uptime_floor + r.critical_uptime_floor) / 2,
        critical_bound=r.critical_uptime_floor,
    ))
    rules.append(ThresholdRule(
        AlertCategory.RELIABILITY, "reliability", "error_rate", r.error_rate_ceiling, ABOVE, "%",
        error_bound=(r.error_rate_ceiling + r.critical_error_rate) / 2,
        critical_bound=r.critical_error_rate,
    ))
    rules.append(ThresholdRule(
        AlertCategory.RELIABILITY, "reliability", "recovery_time", r.recovery_time_ceiling, ABOVE, "ms",
        error_bound=r.recovery_time_ceiling * (1 + p.severe_breach_ratio),
        critical_bound=r.recovery_time_ceiling * (1 + p.critical_breach_ratio),
    ))

    rules.append(ThresholdRule(
        AlertCategory.QUALITY, "quality", "overall_score", q.overall_score_floor, BELOW,
        error_bound=q.acceptable_score,
    ))
    return rules


class AlertEngine:
    """
    Evaluates snapshots and owns the alert set of a monitoring session.

    Usage:
        engine = AlertEngine(spec)
        changes = await engine.evaluate(snapshot, history)
        for change in changes:
            print(change.change, change.alert.message)
    """

    def __init__(self, spec: QualitySpec, remediator: Optional[Remediator] = None):
        self.spec = spec
        self.remediator = remediator or PlaybookRemediator()
        self.rules = build_threshold_rules(spec)
        self.reset()

    def reset(self) -> None:
        """Start a new session: forget all alerts and counters."""
        self._alerts: List[Alert] = []
        self._open: Dict[AlertKey, Alert] = {}
        self._opened_tick: Dict[str, int] = {}
        self._attempt_tick: Dict[str, int] = {}
        self._tick = 0
        self.failures_prevented = 0
        self.auto_resolution_stats = {"attempted": 0, "succeeded": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_alerts(self) -> List[Alert]:
        return [a.model_copy(deep=True) for a in self._alerts if not a.resolved]

    def get_all_alerts(self) -> List[Alert]:
        return [a.model_copy(deep=True) for a in self._alerts]

    def open_alert_for(self, category: AlertCategory, signal: str) -> Optional[Alert]:
        alert = self._open.get((category, signal))
        return alert.model_copy(deep=True) if alert else None

    def is_remediable(self, alert: Alert) -> bool:
        return (
            self.spec.monitoring.automatic_optimization
            and alert.category in REMEDIABLE_CATEGORIES
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(
        self,
        snapshot: Optional[MetricsSnapshot],
        history: Sequence[MetricsSnapshot] = (),
        consecutive_failures: Optional[Dict[str, int]] = None
    ) -> List[AlertChange]:
        """
        Evaluate one tick.

        Args:
            snapshot: Snapshot of this tick, or None if none could be built
            history: Rolling snapshot history, oldest first, including ``snapshot``
            consecutive_failures: Failed samples in a row per dimension

        Returns:
            Alert transitions of this tick in the order they happened
        """
        self._tick += 1
        breaches, evaluated = self._find_breaches(snapshot, history, consecutive_failures or {})
        changes: List[AlertChange] = []

        for key, alert in list(self._open.items()):
            if key not in evaluated:
                continue

            breach = breaches.get(key)
            if breach is None:
                self._resolve(alert, changes)
                continue

            if breach.severity.rank > alert.severity.rank:
                self._escalate_severity(alert, breach, changes)

            if not self.is_remediable(alert):
                continue

            if not alert.auto_resolution_attempted:
                if self._opened_tick[alert.id] < self._tick:
                    await self._attempt_auto_resolution(alert, changes)
            elif not alert.escalated and self._attempt_tick[alert.id] < self._tick:
                self._mark_auto_resolution_failed(alert, changes)

        for key, breach in breaches.items():
            if key not in self._open:
                self._open_alert(breach, changes, snapshot)

        return changes

    def record_cycle_failure(self, error: Exception) -> List[AlertChange]:
        """Open (or keep) the alert for a monitoring tick that crashed."""
        changes: List[AlertChange] = []
        key = (AlertCategory.QUALITY, MONITORING_CYCLE_SIGNAL)
        if key not in self._open:
            self._open_alert(Breach(
                category=AlertCategory.QUALITY,
                signal=MONITORING_CYCLE_SIGNAL,
                severity=AlertSeverity.ERROR,
                message=f"Quality check failed: {error}",
                recommended_actions=list(RECOMMENDED_ACTIONS[MONITORING_CYCLE_SIGNAL]),
                metrics={"error_type": type(error).__name__},
            ), changes)
        return changes

    def record_cycle_success(self) -> List[AlertChange]:
        """Resolve the crashed-tick alert once a tick completes again."""
        changes: List[AlertChange] = []
        alert = self._open.get((AlertCategory.QUALITY, MONITORING_CYCLE_SIGNAL))
        if alert is not None:
            self._resolve(alert, changes)
        return changes

    def _find_breaches(
        self,
        snapshot: Optional[MetricsSnapshot],
        history: Sequence[MetricsSnapshot],
        consecutive_failures: Dict[str, int]
    ) -> Tuple[Dict[AlertKey, Breach], Set[AlertKey]]:
        breaches: Dict[AlertKey, Breach] = {}
        evaluated: Set[AlertKey] = set()

        for dimension in COLLECTION_DIMENSIONS:
            key = (AlertCategory.QUALITY, f"collection.{dimension}")
            evaluated.add(key)
            failures = consecutive_failures.get(dimension, 0)
            if failures >= self.spec.monitoring.stale_after_ticks:
                breaches[key] = Breach(
                    category=AlertCategory.QUALITY,
                    signal=f"collection.{dimension}",
                    severity=AlertSeverity.WARNING,
                    message=(
                        f"{dimension.capitalize()} metrics stale: source failed "
                        f"{failures} consecutive collections"
                    ),
                    recommended_actions=list(RECOMMENDED_ACTIONS["collection"]),
                    metrics={"consecutive_failures": failures},
                )

        if snapshot is None:
            return breaches, evaluated

        stale = set(snapshot.stale_dimensions)
        for rule in self.rules:
            if rule.dimension in stale:
                continue
            evaluated.add(rule.key)
            value = rule.read(snapshot)
            if rule.is_breached(value):
                breaches[rule.key] = Breach(
                    category=rule.category,
                    signal=rule.signal,
                    severity=rule.severity_for(value),
                    message=rule.describe(value),
                    recommended_actions=list(RECOMMENDED_ACTIONS[rule.signal]),
                    metrics=getattr(snapshot, rule.dimension).model_dump(mode="json"),
                )

        if "performance" not in stale and len(history) >= 2 * REGRESSION_WINDOW:
            key = (AlertCategory.PERFORMANCE, "hub_load_regression")
            evaluated.add(key)
            breach = self._check_regression(history)
            if breach is not None:
                breaches[key] = breach

        return breaches, evaluated

    def _check_regression(self, history: Sequence[MetricsSnapshot]) -> Optional[Breach]:
        """Compare the recent hub load average with the window before it."""
        hub_times = np.array([s.performance.hub_load_time for s in history[-2 * REGRESSION_WINDOW:]])
        recent_times = hub_times[REGRESSION_WINDOW:]

        # Breaching samples belong to the hub_load_time alert
        if float(recent_times.max()) > self.spec.performance.hub_loading_threshold:
            return None

        baseline = float(hub_times[:REGRESSION_WINDOW].mean())
        recent = float(recent_times.mean())
        degradation = (recent - baseline) / baseline

        if degradation <= self.spec.performance.regression_detection_sensitivity:
            return None

        severity = (
            AlertSeverity.ERROR
            if degradation > self.spec.performance.severe_breach_ratio
            else AlertSeverity.WARNING
        )
        return Breach(
            category=AlertCategory.PERFORMANCE,
            signal="hub_load_regression",
            severity=severity,
            message=f"Performance regression detected: {degradation * 100:.1f}% degradation in hub loading",
            recommended_actions=list(RECOMMENDED_ACTIONS["hub_load_regression"]),
            metrics={
                "baseline_avg_ms": round(baseline, 2),
                "recent_avg_ms": round(recent, 2),
                "degradation": round(degradation, 4),
            },
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _open_alert(
        self,
        breach: Breach,
        changes: List[AlertChange],
        snapshot: Optional[MetricsSnapshot] = None
    ) -> Alert:
        alert = Alert(
            severity=breach.severity,
            category=breach.category,
            signal=breach.signal,
            message=breach.message,
            metrics=breach.metrics,
            recommended_actions=breach.recommended_actions,
        )
        self._alerts.append(alert)
        self._open[alert.key] = alert
        self._opened_tick[alert.id] = self._tick

        log_alert(
            logger,
            f"{alert.category.value}/{alert.signal}",
            alert.message,
            severity=alert.severity.value,
            alert_id=alert.id,
        )
        if snapshot is not None:
            latency_ms = (alert.timestamp - snapshot.timestamp).total_seconds() * 1000
            if latency_ms > self.spec.performance.alert_latency:
                logger.warning(
                    f"Alert latency {latency_ms:.0f}ms exceeds target "
                    f"{self.spec.performance.alert_latency:g}ms for {alert.id}"
                )

        changes.append(AlertChange("opened", alert.model_copy(deep=True)))
        return alert

    def _escalate_severity(self, alert: Alert, breach: Breach, changes: List[AlertChange]) -> None:
        logger.warning(
            f"Alert {alert.id} escalated {alert.severity.value} -> {breach.severity.value}: {breach.message}"
        )
        alert.severity = breach.severity
        alert.message = breach.message
        alert.metrics = breach.metrics
        changes.append(AlertChange("escalated", alert.model_copy(deep=True)))

    def _resolve(self, alert: Alert, changes: List[AlertChange]) -> None:
        alert.resolve()
        del self._open[alert.key]

        if alert.auto_resolution_attempted and not alert.escalated:
            self.failures_prevented += 1
            self.auto_resolution_stats["succeeded"] += 1
            logger.info(f"Auto-resolved alert: {alert.message} ({alert.resolution_time:.2f}s)")
        else:
            logger.info(f"Alert resolved: {alert.message} ({alert.resolution_time:.2f}s)")

        changes.append(AlertChange("resolved", alert.model_copy(deep=True)))

    async def _attempt_auto_resolution(self, alert: Alert, changes: List[AlertChange]) -> None:
        alert.auto_resolution_attempted = True
        self._attempt_tick[alert.id] = self._tick
        self.auto_resolution_stats["attempted"] += 1

        timeout = self.spec.monitoring.remediation_timeout
        try:
            dispatched = await asyncio.wait_for(
                self.remediator.remediate(alert.model_copy(deep=True)),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Auto-resolution for {alert.id} timed out after {timeout}s")
            dispatched = False
        except Exception as e:
            log_error(logger, e, {"alert_id": alert.id, "signal": alert.signal})
            dispatched = False

        if not dispatched:
            logger.warning(f"Auto-resolution action for {alert.id} was not dispatched")

        changes.append(AlertChange("auto_resolution_attempted", alert.model_copy(deep=True)))

    def _mark_auto_resolution_failed(self, alert: Alert, changes: List[AlertChange]) -> None:
        alert.escalated = True
        self.auto_resolution_stats["failed"] += 1
        log_alert(
            logger,
            f"{alert.category.value}/{alert.signal}",
            f"Auto-resolution failed, human action required: {alert.message}",
            severity=alert.severity.value,
            alert_id=alert.id,
        )
        changes.append(AlertChange("auto_resolution_failed", alert.model_copy(deep=True)))
