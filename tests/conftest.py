"""
Pytest configuration and fixtures.
"""
import pytest

from shared.configs.models import MonitoringConfig, QualitySpec
from services.quality_monitor.monitor import ProductionQualityMonitor
from services.quality_monitor.remediation import PlaybookRemediator
from services.quality_monitor.sources import (
    SimulatedComplianceSource,
    SimulatedPerformanceSource,
    SimulatedReliabilitySource,
)
from tests.helpers import HEALTHY_COMPLIANCE, HEALTHY_PERFORMANCE, HEALTHY_RELIABILITY


@pytest.fixture
def spec():
    """Production defaults."""
    return QualitySpec()


@pytest.fixture
def fast_spec():
    """Spec with short intervals and timeouts for scheduler-driven tests."""
    return QualitySpec(monitoring=MonitoringConfig(
        sampling_interval=0.05,
        source_timeout=0.5,
        remediation_timeout=0.5,
    ))


@pytest.fixture
def sources():
    """Seeded simulated sources, one per dimension."""
    return {
        "performance": SimulatedPerformanceSource(seed=1),
        "compliance": SimulatedComplianceSource(seed=2),
        "reliability": SimulatedReliabilitySource(seed=3),
    }


@pytest.fixture
def steady_sources(sources):
    """Simulated sources pinned to constant healthy values."""
    sources["performance"].inject(**HEALTHY_PERFORMANCE)
    sources["compliance"].inject(**HEALTHY_COMPLIANCE)
    sources["reliability"].inject(**HEALTHY_RELIABILITY)
    return sources


@pytest.fixture
def remediator():
    return PlaybookRemediator()


@pytest.fixture
def monitor(fast_spec, sources, remediator):
    """Monitor wired to seeded simulated sources."""
    return ProductionQualityMonitor(
        spec=fast_spec,
        sources=sources,
        remediator=remediator,
        monitor_id="test-region",
    )
