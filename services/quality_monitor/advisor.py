"""
Improvement Advisor - proactive insight mining over snapshot and alert history.

Insights are lower-urgency than alerts: they point at signals that are still
healthy but drifting, at alerts that keep coming back, and at remaining
headroom in quality and compliance. Each distinct finding is reported once
per monitoring session.
"""
import logging
from collections import Counter, deque
from typing import Deque, Dict, List, Sequence, Set, Tuple

import numpy as np

from shared.configs.models import QualitySpec
from shared.monitoring.structured_logger import log_quality_event
from .alert_engine import SIGNAL_LABELS
from .models import Alert, MetricsSnapshot


logger = logging.getLogger(__name__)

HEADROOM_WARNING_RATIO = 0.85
FLAPPING_ALERT_COUNT = 3
QUALITY_EXCELLENCE_TARGET = 98.0
STEADY_COMPLIANCE_STD = 1.0
MIN_TREND_POINTS = 5
ANALYSIS_WINDOW = 20


class ImprovementAdvisor:
    """
    Derives improvement insights from the rolling history.

    Usage:
        advisor = ImprovementAdvisor(spec)
        if advisor.should_run(tick):
            new_insights = advisor.analyze(history, alerts)
    """

    def __init__(self, spec: QualitySpec):
        self.spec = spec
        self.reset()

    def reset(self) -> None:
        self._insights: Deque[str] = deque(maxlen=self.spec.monitoring.max_insights)
        self._seen: Set[str] = set()

    @property
    def insights(self) -> List[str]:
        return list(self._insights)

    def should_run(self, tick: int) -> bool:
        monitoring = self.spec.monitoring
        return monitoring.insight_discovery and tick % monitoring.insight_interval_ticks == 0

    def analyze(self, history: Sequence[MetricsSnapshot], alerts: Sequence[Alert] = ()) -> List[str]:
        """
        Run every finding over the history.

        Args:
            history: Snapshots of the session, oldest first
            alerts: All alerts of the session, resolved ones included

        Returns:
            Insights not reported before in this session
        """
        if not history:
            return []

        window = list(history)[-ANALYSIS_WINDOW:]
        findings: List[Tuple[str, str]] = []
        findings.extend(self._approaching_thresholds(window))
        findings.extend(self._flapping_alerts(alerts))
        findings.extend(self._failed_auto_resolutions(alerts))
        findings.extend(self._quality_excellence(window[-1]))
        findings.extend(self._steady_compliance_gaps(window))

        new_insights = []
        for key, insight in findings:
            if key in self._seen:
                continue
            self._seen.add(key)
            self._insights.append(insight)
            new_insights.append(insight)
            log_quality_event(logger, "insight_discovered", insight_key=key, insight=insight)

        return new_insights

    def _ceilings(self) -> Dict[str, Tuple[str, float, str]]:
        p, r = self.spec.performance, self.spec.reliability
        return {
            "hub_load_time": ("performance", p.hub_loading_threshold, "ms"),
            "world_transition_time": ("performance", p.world_transition_threshold, "ms"),
            "memory_usage": ("performance", p.memory_constraint_threshold, "MB"),
            "response_time": ("performance", p.response_time_threshold, "ms"),
            "error_rate": ("reliability", r.error_rate_ceiling, "%"),
            "recovery_time": ("reliability", r.recovery_time_ceiling, "ms"),
        }

    def _approaching_thresholds(self, window: List[MetricsSnapshot]) -> List[Tuple[str, str]]:
        """Healthy signals that used most of their headroom and keep drifting."""
        if len(window) < MIN_TREND_POINTS:
            return []

        findings = []
        for signal, (dimension, threshold, unit) in self._ceilings().items():
            values = _series(window, dimension, signal)
            average = float(values.mean())
            used = average / threshold
            slope = _slope(values)
            if HEADROOM_WARNING_RATIO <= used <= 1.0 and slope > 0:
                label = SIGNAL_LABELS[signal]
                findings.append((
                    f"approaching:{signal}",
                    f"{label} averaging {average:.1f}{unit} has used {used * 100:.0f}% of its "
                    f"{threshold:g}{unit} threshold and is rising {slope:.2f}{unit} per tick - "
                    f"schedule optimization before it breaches"
                ))

        p = self.spec.performance
        values = _series(window, "performance", "throughput")
        average = float(values.mean())
        slope = _slope(values)
        if average >= p.min_throughput and p.min_throughput / average >= HEADROOM_WARNING_RATIO and slope < 0:
            findings.append((
                "approaching:throughput",
                f"Throughput averaging {average:.1f} req/s is within "
                f"{(average / p.min_throughput - 1) * 100:.0f}% of the {p.min_throughput:g} req/s minimum "
                f"and falling {abs(slope):.2f} req/s per tick - review capacity before it breaches"
            ))

        return findings

    def _flapping_alerts(self, alerts: Sequence[Alert]) -> List[Tuple[str, str]]:
        counts = Counter(alert.key for alert in alerts)
        findings = []
        for (category, signal), count in counts.items():
            if count >= FLAPPING_ALERT_COUNT:
                findings.append((
                    f"flapping:{category.value}:{signal}",
                    f"{SIGNAL_LABELS.get(signal, signal)} has alerted {count} times this session - "
                    f"the {category.value} issue keeps recurring, investigate the root cause "
                    f"instead of relying on recovery"
                ))
        return findings

    def _failed_auto_resolutions(self, alerts: Sequence[Alert]) -> List[Tuple[str, str]]:
        findings = []
        for alert in alerts:
            if alert.escalated:
                findings.append((
                    f"manual_playbook:{alert.signal}",
                    f"Auto-resolution did not clear {SIGNAL_LABELS.get(alert.signal, alert.signal)} "
                    f"({alert.message}) - add a manual runbook or a dedicated remediation handler"
                ))
        return findings

    def _quality_excellence(self, latest: MetricsSnapshot) -> List[Tuple[str, str]]:
        score = latest.quality.overall_score
        if score >= QUALITY_EXCELLENCE_TARGET:
            return []
        return [(
            "quality_excellence",
            f"Quality excellence opportunity - overall score {score:.1f} could reach "
            f"{QUALITY_EXCELLENCE_TARGET:g}%+ with systematic optimization "
            f"(trend {latest.quality.trend_direction.value})"
        )]

    def _steady_compliance_gaps(self, window: List[MetricsSnapshot]) -> List[Tuple[str, str]]:
        """Compliance that sits just below 100% without moving."""
        if len(window) < MIN_TREND_POINTS:
            return []

        findings = []
        for signal in self.spec.compliance.floors():
            values = _series(window, "compliance", signal)
            average = float(values.mean())
            if average < 100 and float(values.std()) < STEADY_COMPLIANCE_STD:
                findings.append((
                    f"compliance_gap:{signal}",
                    f"{SIGNAL_LABELS[signal]} holds steady at {average:.1f}% - "
                    f"a targeted enhancement pass could close the remaining "
                    f"{100 - average:.1f} point gap"
                ))
        return findings


def _series(window: Sequence[MetricsSnapshot], dimension: str, signal: str) -> np.ndarray:
    return np.array([getattr(getattr(s, dimension), signal) for s in window], dtype=float)


def _slope(values: np.ndarray) -> float:
    """Least-squares slope per tick."""
    if len(values) < 2:
        return 0.0
    return round(float(np.polyfit(np.arange(len(values)), values, 1)[0]), 6)
