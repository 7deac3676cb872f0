"""
Configuration models using Pydantic for validation.

QualitySpec is the immutable threshold set the production quality monitor
evaluates every snapshot against. All groups carry production defaults, so
``QualitySpec()`` is the documented default spec.
"""
from typing import Dict
from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# Performance Thresholds
# =============================================================================

class PerformanceThresholds(BaseModel):
    """Performance thresholds (milliseconds for time, MB for memory)."""
    model_config = ConfigDict(frozen=True)

    hub_loading_threshold: float = Field(default=800.0, gt=0, description="Max hub load time (ms)")
    world_transition_threshold: float = Field(default=1500.0, gt=0, description="Max world transition time (ms)")
    memory_constraint_threshold: float = Field(default=256.0, gt=0, description="Max memory footprint (MB)")
    response_time_threshold: float = Field(default=200.0, gt=0, description="Max request latency (ms)")
    min_throughput: float = Field(default=50.0, ge=0, description="Min throughput (req/s)")
    alert_latency: float = Field(default=100.0, gt=0, description="Target breach-to-alert latency (ms)")
    regression_detection_sensitivity: float = Field(
        default=0.05, gt=0, le=1.0, description="Hub load degradation ratio that counts as a regression"
    )
    severe_breach_ratio: float = Field(default=0.2, gt=0, description="Relative overshoot escalating to error")
    critical_breach_ratio: float = Field(default=0.5, gt=0, description="Relative overshoot escalating to critical")

    @model_validator(mode="after")
    def validate_breach_ratios(self):
        """Critical overshoot must lie beyond the severe overshoot."""
        if self.critical_breach_ratio <= self.severe_breach_ratio:
            raise ValueError(
                f"critical_breach_ratio ({self.critical_breach_ratio}) must exceed "
                f"severe_breach_ratio ({self.severe_breach_ratio})"
            )
        return self


# =============================================================================
# Compliance Thresholds
# =============================================================================

class ComplianceThresholds(BaseModel):
    """Compliance floors in percent."""
    model_config = ConfigDict(frozen=True)

    gdpr_floor: float = Field(default=95.0, ge=0.0, le=100.0, description="Min GDPR compliance (%)")
    cultural_adaptation_floor: float = Field(default=90.0, ge=0.0, le=100.0, description="Min cultural adaptation (%)")
    municipal_standards_floor: float = Field(default=90.0, ge=0.0, le=100.0, description="Min municipal standards (%)")
    accessibility_floor: float = Field(default=90.0, ge=0.0, le=100.0, description="Min accessibility conformance (%)")
    critical_margin: float = Field(default=10.0, gt=0, description="Points below a floor that count as critical")
    accessibility_standard: str = Field(default="WCAG-2.1-AA", description="Accessibility standard audited")

    def floors(self) -> Dict[str, float]:
        """Floor per compliance signal."""
        return {
            "gdpr_compliance": self.gdpr_floor,
            "cultural_adaptation": self.cultural_adaptation_floor,
            "municipal_standards": self.municipal_standards_floor,
            "accessibility": self.accessibility_floor,
        }


# =============================================================================
# Reliability Thresholds
# =============================================================================

class ReliabilityThresholds(BaseModel):
    """Reliability thresholds."""
    model_config = ConfigDict(frozen=True)

    uptime_floor: float = Field(default=99.0, ge=0.0, le=100.0, description="Min uptime (%)")
    critical_uptime_floor: float = Field(default=95.0, ge=0.0, le=100.0, description="Uptime below this is critical (%)")
    error_rate_ceiling: float = Field(default=1.0, ge=0.0, le=100.0, description="Max error rate (%)")
    critical_error_rate: float = Field(default=5.0, ge=0.0, le=100.0, description="Error rate above this is critical (%)")
    recovery_time_ceiling: float = Field(default=300.0, gt=0, description="Max recovery time (ms)")


# =============================================================================
# Aggregate Quality Thresholds
# =============================================================================

class QualityThresholds(BaseModel):
    """Aggregate quality score configuration."""
    model_config = ConfigDict(frozen=True)

    overall_score_floor: float = Field(default=85.0, ge=0.0, le=100.0, description="Score below this opens an alert")
    excellent_score: float = Field(default=95.0, ge=0.0, le=100.0, description="Score for excellent status")
    good_score: float = Field(default=85.0, ge=0.0, le=100.0, description="Score for good status")
    acceptable_score: float = Field(default=70.0, ge=0.0, le=100.0, description="Score below this is degraded")
    high_quality_cutoff: float = Field(default=95.0, ge=0.0, le=100.0, description="Score above this allows low risk")
    trend_window: int = Field(default=5, ge=1, le=100, description="Prior scores compared for the trend")
    trend_tolerance: float = Field(default=1.0, ge=0.0, description="Score delta treated as stable")
    performance_weight: float = Field(default=0.4, ge=0.0, le=1.0, description="Performance score weight")
    compliance_weight: float = Field(default=0.3, ge=0.0, le=1.0, description="Compliance score weight")
    reliability_weight: float = Field(default=0.3, ge=0.0, le=1.0, description="Reliability score weight")
    error_rate_penalty: float = Field(default=20.0, ge=0.0, description="Score points lost per 1% error rate")

    @model_validator(mode="after")
    def validate_weights_sum(self):
        """Validate that score weights sum to approximately 1.0."""
        total = self.performance_weight + self.compliance_weight + self.reliability_weight
        if not (0.99 <= total <= 1.01):
            raise ValueError(f"Quality score weights must sum to 1.0, got {total}")
        if not (self.acceptable_score <= self.good_score <= self.excellent_score):
            raise ValueError("Status cutoffs must satisfy acceptable <= good <= excellent")
        return self


# =============================================================================
# Monitoring Loop Configuration
# =============================================================================

class MonitoringConfig(BaseModel):
    """Monitoring loop configuration."""
    model_config = ConfigDict(frozen=True)

    sampling_interval: float = Field(default=1.0, gt=0, description="Seconds between collection ticks")
    history_size: int = Field(default=1000, ge=10, description="Snapshots kept in the rolling history")
    insight_interval_ticks: int = Field(default=5, ge=1, description="Ticks between insight discovery runs")
    max_insights: int = Field(default=200, ge=1, description="Insights kept per session")
    automatic_optimization: bool = Field(default=True, description="Attempt auto-resolution for remediable alerts")
    insight_discovery: bool = Field(default=True, description="Run the improvement advisor")
    stale_after_ticks: int = Field(default=3, ge=1, description="Failed samples before a staleness alert")
    source_timeout: float = Field(default=5.0, gt=0, description="Per-source sampling timeout (s)")
    remediation_timeout: float = Field(default=5.0, gt=0, description="Auto-resolution attempt timeout (s)")
    subscriber_queue_size: int = Field(default=100, ge=1, description="Bounded queue size per subscriber")


class QualitySpec(BaseModel):
    """Production quality thresholds and monitoring settings."""
    model_config = ConfigDict(frozen=True)

    performance: PerformanceThresholds = Field(default_factory=PerformanceThresholds)
    compliance: ComplianceThresholds = Field(default_factory=ComplianceThresholds)
    reliability: ReliabilityThresholds = Field(default_factory=ReliabilityThresholds)
    quality: QualityThresholds = Field(default_factory=QualityThresholds)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


PRODUCTION_QUALITY_SPEC = QualitySpec()
