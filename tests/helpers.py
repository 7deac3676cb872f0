"""
Shared test data builders.
"""
from datetime import datetime

from services.quality_monitor.models import (
    ComplianceMetrics,
    MetricsSnapshot,
    PerformanceMetrics,
    QualityAssessment,
    ReliabilityMetrics,
)


HEALTHY_PERFORMANCE = {
    "hub_load_time": 700.0,
    "world_transition_time": 1300.0,
    "memory_usage": 245.0,
    "response_time": 100.0,
    "throughput": 100.0,
}

HEALTHY_COMPLIANCE = {
    "gdpr_compliance": 99.0,
    "cultural_adaptation": 98.0,
    "municipal_standards": 99.5,
    "accessibility": 98.5,
}

HEALTHY_RELIABILITY = {
    "uptime": 99.99,
    "error_rate": 0.05,
    "recovery_time": 100.0,
}


def make_snapshot(overall_score: float = 97.0, stale_dimensions=(), **overrides) -> MetricsSnapshot:
    """Build a snapshot from healthy values with selected signals overridden."""
    performance = {k: overrides.pop(k, v) for k, v in HEALTHY_PERFORMANCE.items()}
    compliance = {k: overrides.pop(k, v) for k, v in HEALTHY_COMPLIANCE.items()}
    reliability = {k: overrides.pop(k, v) for k, v in HEALTHY_RELIABILITY.items()}
    failures_prevented = overrides.pop("failures_prevented", 0)
    if overrides:
        raise KeyError(f"Unknown signals: {sorted(overrides)}")

    return MetricsSnapshot(
        timestamp=datetime.now(),
        performance=PerformanceMetrics(**performance),
        compliance=ComplianceMetrics(**compliance),
        reliability=ReliabilityMetrics(failures_prevented=failures_prevented, **reliability),
        quality=QualityAssessment(overall_score=overall_score),
        stale_dimensions=tuple(stale_dimensions),
    )
