"""
Data model for the production quality monitor.

Snapshots are frozen value objects; alerts are mutated only by the alert
engine and handed to readers as copies.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class AlertSeverity(str, Enum):
    """Alert severity levels"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.ERROR: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertCategory(str, Enum):
    """Monitored dimensions"""
    PERFORMANCE = "performance"
    COMPLIANCE = "compliance"
    RELIABILITY = "reliability"
    QUALITY = "quality"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OverallStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    DEGRADED = "degraded"


class PerformanceMetrics(BaseModel):
    """Latency in milliseconds, memory in MB, throughput in req/s"""
    model_config = ConfigDict(frozen=True)

    hub_load_time: float = Field(gt=0)
    world_transition_time: float = Field(gt=0)
    memory_usage: float = Field(gt=0)
    response_time: float = Field(gt=0)
    throughput: float = Field(gt=0)


class ComplianceMetrics(BaseModel):
    """Conformance scores in percent"""
    model_config = ConfigDict(frozen=True)

    gdpr_compliance: float = Field(gt=0, le=100)
    cultural_adaptation: float = Field(gt=0, le=100)
    municipal_standards: float = Field(gt=0, le=100)
    accessibility: float = Field(gt=0, le=100)


class ReliabilityMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    uptime: float = Field(ge=0, le=100)
    error_rate: float = Field(ge=0, le=100)
    recovery_time: float = Field(ge=0)
    failures_prevented: int = Field(default=0, ge=0)


class QualityAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_score: float = Field(ge=0, le=100)
    trend_direction: TrendDirection = TrendDirection.STABLE
    risk_level: RiskLevel = RiskLevel.LOW
    improvement_opportunities: Tuple[str, ...] = ()


class MetricsSnapshot(BaseModel):
    """One fully populated measurement of all four dimensions"""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    performance: PerformanceMetrics
    compliance: ComplianceMetrics
    reliability: ReliabilityMetrics
    quality: QualityAssessment
    stale_dimensions: Tuple[str, ...] = ()


def _new_alert_id() -> str:
    return f"alert_{uuid.uuid4().hex[:12]}"


class Alert(BaseModel):
    """Quality alert; ``(category, signal)`` identifies the logical condition"""
    id: str = Field(default_factory=_new_alert_id)
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: AlertSeverity
    category: AlertCategory
    signal: str
    message: str
    metrics: Dict[str, Any] = {}
    recommended_actions: List[str] = Field(min_length=1)
    auto_resolution_attempted: bool = False
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolution_time: Optional[float] = None
    escalated: bool = False

    @property
    def key(self) -> Tuple[AlertCategory, str]:
        return (self.category, self.signal)

    def resolve(self, when: Optional[datetime] = None) -> None:
        """Mark alert as resolved."""
        self.resolved = True
        self.resolved_at = when or datetime.now()
        self.resolution_time = (self.resolved_at - self.timestamp).total_seconds()


class QualitySummary(BaseModel):
    """Read-only projection for dashboards"""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=datetime.now)
    monitoring_active: bool
    latest_metrics: Optional[MetricsSnapshot] = None
    active_alerts: int = 0
    critical_alerts: int = 0
    improvement_insights: int = 0
    overall_status: OverallStatus
