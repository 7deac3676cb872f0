"""
Metric Collector - samples the monitored system once per tick.

Each dimension is sampled concurrently with its own timeout. A failing
dimension keeps its last good value, so a published snapshot is always
complete; a dimension that has never produced a good value blocks the
snapshot for that tick instead.

Quality score weights (defaults, configurable in QualitySpec.quality):

    overall = 0.4 * performance + 0.3 * compliance + 0.3 * reliability

    performance = mean(min(100, 100 * threshold / value)) over hub load,
                  world transition and memory
    compliance  = mean of the four compliance percentages
    reliability = mean(uptime, 100 - error_rate_penalty * error_rate)
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from shared.configs.models import QualitySpec
from shared.monitoring.structured_logger import log_error
from .models import (
    Alert,
    AlertSeverity,
    ComplianceMetrics,
    MetricsSnapshot,
    PerformanceMetrics,
    QualityAssessment,
    ReliabilityMetrics,
    RiskLevel,
    TrendDirection,
)
from .sources import (
    MetricSource,
    SimulatedComplianceSource,
    SimulatedPerformanceSource,
    SimulatedReliabilitySource,
    SourceError,
)


logger = logging.getLogger(__name__)

DIMENSIONS = ("performance", "compliance", "reliability")

_DIMENSION_MODELS: Dict[str, Type[BaseModel]] = {
    "performance": PerformanceMetrics,
    "compliance": ComplianceMetrics,
    "reliability": ReliabilityMetrics,
}

# Share of a threshold's headroom in use before a signal is listed as an
# improvement opportunity on the snapshot
OPPORTUNITY_HEADROOM_RATIO = 0.75

# Uptime below this is high risk even while above the alerting floor
HIGH_RISK_UPTIME = 99.5


@dataclass
class CollectionResult:
    """Outcome of one collection tick."""
    snapshot: Optional[MetricsSnapshot]
    failures: Dict[str, str] = field(default_factory=dict)
    consecutive_failures: Dict[str, int] = field(default_factory=dict)


class MetricCollector:
    """
    Produces one immutable MetricsSnapshot per tick.

    Usage:
        collector = MetricCollector(spec)
        result = await collector.collect(failures_prevented=0, active_alerts=[])
        if result.snapshot:
            print(result.snapshot.quality.overall_score)
    """

    def __init__(
        self,
        spec: QualitySpec,
        performance_source: Optional[MetricSource] = None,
        compliance_source: Optional[MetricSource] = None,
        reliability_source: Optional[MetricSource] = None
    ):
        self.spec = spec
        self.sources: Dict[str, MetricSource] = {
            "performance": performance_source or SimulatedPerformanceSource(),
            "compliance": compliance_source or SimulatedComplianceSource(),
            "reliability": reliability_source or SimulatedReliabilitySource(),
        }
        self._last_good: Dict[str, BaseModel] = {}
        self._consecutive_failures: Dict[str, int] = {d: 0 for d in DIMENSIONS}
        self._scores: Deque[float] = deque(maxlen=spec.quality.trend_window)

    def reset(self) -> None:
        """Forget last good values and score history (new session)."""
        self._last_good.clear()
        self._consecutive_failures = {d: 0 for d in DIMENSIONS}
        self._scores.clear()

    async def collect(
        self,
        failures_prevented: int = 0,
        active_alerts: Sequence[Alert] = ()
    ) -> CollectionResult:
        """
        Sample all dimensions and assemble a snapshot.

        Args:
            failures_prevented: Successful auto-resolutions so far
            active_alerts: Unresolved alerts, used for the risk level

        Returns:
            CollectionResult; ``snapshot`` is None when a dimension has no
            good value yet
        """
        samples = await asyncio.gather(*(self._sample(d) for d in DIMENSIONS))

        failures: Dict[str, str] = {}
        stale: List[str] = []
        for dimension, value, error in samples:
            if error is None:
                self._last_good[dimension] = value
                self._consecutive_failures[dimension] = 0
                continue

            self._consecutive_failures[dimension] += 1
            failures[dimension] = f"{type(error).__name__}: {error}"
            if dimension in self._last_good:
                stale.append(dimension)

        result = CollectionResult(
            snapshot=None,
            failures=failures,
            consecutive_failures=dict(self._consecutive_failures),
        )

        missing = [d for d in DIMENSIONS if d not in self._last_good]
        if missing:
            logger.warning(f"No snapshot this tick - no good sample yet for: {', '.join(missing)}")
            return result

        performance = self._last_good["performance"]
        compliance = self._last_good["compliance"]
        reliability = self._last_good["reliability"].model_copy(
            update={"failures_prevented": failures_prevented}
        )

        result.snapshot = MetricsSnapshot(
            timestamp=datetime.now(),
            performance=performance,
            compliance=compliance,
            reliability=reliability,
            quality=self.assess_quality(performance, compliance, reliability, active_alerts),
            stale_dimensions=tuple(stale),
        )
        return result

    async def _sample(self, dimension: str) -> Tuple[str, Optional[BaseModel], Optional[Exception]]:
        """Sample one dimension; never raises."""
        source = self.sources[dimension]
        timeout = self.spec.monitoring.source_timeout

        try:
            raw = await asyncio.wait_for(source.sample(), timeout=timeout)
            return dimension, self._validate(dimension, raw), None
        except asyncio.TimeoutError:
            error = SourceError(f"{dimension} source timed out after {timeout}s")
            logger.error(f"Metric collection failed for {dimension}: {error}")
            return dimension, None, error
        except Exception as e:
            log_error(logger, e, {
                "dimension": dimension,
                "consecutive_failures": self._consecutive_failures[dimension] + 1,
            })
            return dimension, None, e

    def _validate(self, dimension: str, raw: Dict) -> BaseModel:
        model = _DIMENSION_MODELS[dimension]
        names = [name for name in model.model_fields if name != "failures_prevented"]
        missing = [name for name in names if name not in raw]
        if missing:
            raise SourceError(f"{dimension} sample is missing {', '.join(missing)}")
        return model(**{name: raw[name] for name in names})

    # ------------------------------------------------------------------
    # Quality assessment
    # ------------------------------------------------------------------

    def performance_score(self, performance: PerformanceMetrics) -> float:
        thresholds = self.spec.performance
        ratios = [
            thresholds.hub_loading_threshold / performance.hub_load_time,
            thresholds.world_transition_threshold / performance.world_transition_time,
            thresholds.memory_constraint_threshold / performance.memory_usage,
        ]
        return sum(_clamp(100 * r) for r in ratios) / len(ratios)

    def compliance_score(self, compliance: ComplianceMetrics) -> float:
        return (
            compliance.gdpr_compliance
            + compliance.cultural_adaptation
            + compliance.municipal_standards
            + compliance.accessibility
        ) / 4

    def reliability_score(self, reliability: ReliabilityMetrics) -> float:
        error_score = _clamp(100 - self.spec.quality.error_rate_penalty * reliability.error_rate)
        return _clamp((reliability.uptime + error_score) / 2)

    def assess_quality(
        self,
        performance: PerformanceMetrics,
        compliance: ComplianceMetrics,
        reliability: ReliabilityMetrics,
        active_alerts: Sequence[Alert] = ()
    ) -> QualityAssessment:
        """Derive the aggregate quality dimension and record the score."""
        q = self.spec.quality
        overall = (
            q.performance_weight * self.performance_score(performance)
            + q.compliance_weight * self.compliance_score(compliance)
            + q.reliability_weight * self.reliability_score(reliability)
        )
        overall = round(_clamp(overall), 2)

        trend = self.classify_trend(overall)
        self._scores.append(overall)

        return QualityAssessment(
            overall_score=overall,
            trend_direction=trend,
            risk_level=self.assess_risk(overall, active_alerts, compliance, reliability),
            improvement_opportunities=tuple(
                self.identify_opportunities(performance, compliance, reliability)
            ),
        )

    def classify_trend(self, score: float) -> TrendDirection:
        """Compare ``score`` with the mean of the prior scores in the window."""
        if not self._scores:
            return TrendDirection.STABLE

        baseline = sum(self._scores) / len(self._scores)
        delta = score - baseline
        if delta > self.spec.quality.trend_tolerance:
            return TrendDirection.IMPROVING
        if delta < -self.spec.quality.trend_tolerance:
            return TrendDirection.DECLINING
        return TrendDirection.STABLE

    def assess_risk(
        self,
        score: float,
        active_alerts: Sequence[Alert] = (),
        compliance: Optional[ComplianceMetrics] = None,
        reliability: Optional[ReliabilityMetrics] = None
    ) -> RiskLevel:
        q = self.spec.quality
        if (
            any(a.severity == AlertSeverity.CRITICAL for a in active_alerts)
            or score < q.good_score
            or (reliability is not None and reliability.uptime < HIGH_RISK_UPTIME)
            or (compliance is not None and compliance.gdpr_compliance < self.spec.compliance.gdpr_floor)
        ):
            return RiskLevel.HIGH
        if active_alerts or score <= q.high_quality_cutoff:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def identify_opportunities(
        self,
        performance: PerformanceMetrics,
        compliance: ComplianceMetrics,
        reliability: ReliabilityMetrics
    ) -> List[str]:
        p = self.spec.performance
        opportunities = []

        if performance.hub_load_time > p.hub_loading_threshold * OPPORTUNITY_HEADROOM_RATIO:
            opportunities.append("Hub loading optimization")
        if performance.world_transition_time > p.world_transition_threshold * OPPORTUNITY_HEADROOM_RATIO:
            opportunities.append("World transition optimization")
        if performance.memory_usage > p.memory_constraint_threshold * OPPORTUNITY_HEADROOM_RATIO:
            opportunities.append("Memory footprint optimization")
        if performance.response_time > p.response_time_threshold * OPPORTUNITY_HEADROOM_RATIO:
            opportunities.append("Response time optimization")
        if compliance.cultural_adaptation < 98:
            opportunities.append("Cultural adaptation enhancement")
        if reliability.failures_prevented == 0:
            opportunities.append("Proactive failure prevention")

        return opportunities


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))
