"""
Tests for the alert engine: thresholds, severity, lifecycle and auto-resolution.
"""
import asyncio
import pytest

from shared.configs.models import MonitoringConfig, QualitySpec
from services.quality_monitor.alert_engine import AlertEngine, build_threshold_rules
from services.quality_monitor.models import AlertCategory, AlertSeverity
from services.quality_monitor.remediation import PlaybookRemediator, Remediator
from tests.helpers import make_snapshot


def run(engine, snapshot, history=None, failures=None):
    history = history if history is not None else ([snapshot] if snapshot else [])
    return asyncio.run(engine.evaluate(snapshot, history, failures))


def changes_of(changes):
    return [(c.change, c.alert.signal) for c in changes]


class SlowRemediator(Remediator):
    """Remediator that never finishes in time."""

    async def remediate(self, alert):
        await asyncio.sleep(5)
        return True


class TestThresholdRules:
    """Test rule derivation from QualitySpec thresholds."""

    def test_every_signal_has_a_rule(self, spec):
        """Test one rule per monitored threshold signal."""
        rules = build_threshold_rules(spec)
        signals = {rule.signal for rule in rules}

        assert len(rules) == 13
        assert {"hub_load_time", "throughput", "gdpr_compliance", "uptime", "overall_score"} <= signals

    def test_performance_severity_by_overshoot(self, spec):
        """Test warning/error/critical bands for a ceiling signal."""
        rule = next(r for r in build_threshold_rules(spec) if r.signal == "hub_load_time")

        assert rule.is_breached(800.0) is False
        assert rule.severity_for(850.0) == AlertSeverity.WARNING
        assert rule.severity_for(1000.0) == AlertSeverity.ERROR
        assert rule.severity_for(1300.0) == AlertSeverity.CRITICAL

    def test_floor_severity(self, spec):
        """Test floor signals escalate as the value drops."""
        rules = {r.signal: r for r in build_threshold_rules(spec)}

        assert rules["throughput"].severity_for(45.0) == AlertSeverity.WARNING
        assert rules["throughput"].severity_for(30.0) == AlertSeverity.ERROR
        assert rules["uptime"].severity_for(98.5) == AlertSeverity.WARNING
        assert rules["uptime"].severity_for(96.0) == AlertSeverity.ERROR
        assert rules["uptime"].severity_for(94.0) == AlertSeverity.CRITICAL
        assert rules["gdpr_compliance"].severity_for(90.0) == AlertSeverity.ERROR
        assert rules["gdpr_compliance"].severity_for(80.0) == AlertSeverity.CRITICAL


class TestAlertLifecycle:
    """Test opening, deduplication and resolution."""

    def test_healthy_snapshot_raises_nothing(self, spec):
        """Test no alerts for values inside every threshold."""
        engine = AlertEngine(spec)
        assert run(engine, make_snapshot()) == []
        assert engine.get_all_alerts() == []

    def test_breach_opens_single_alert(self, spec):
        """Test a sustained breach keeps exactly one open alert."""
        engine = AlertEngine(spec, PlaybookRemediator())

        first = run(engine, make_snapshot(hub_load_time=1000.0))
        run(engine, make_snapshot(hub_load_time=1000.0))
        run(engine, make_snapshot(hub_load_time=1000.0))

        assert changes_of(first) == [("opened", "hub_load_time")]
        active = engine.get_active_alerts()
        assert len(active) == 1
        assert active[0].category == AlertCategory.PERFORMANCE
        assert active[0].severity == AlertSeverity.ERROR
        assert active[0].recommended_actions
        assert active[0].metrics["hub_load_time"] == 1000.0

    def test_recovery_before_attempt_resolves(self, spec):
        """Test a signal recovering on the next tick resolves without remediation."""
        remediator = PlaybookRemediator()
        engine = AlertEngine(spec, remediator)

        run(engine, make_snapshot(response_time=250.0))
        changes = run(engine, make_snapshot())

        assert changes_of(changes) == [("resolved", "response_time")]
        alert = engine.get_all_alerts()[0]
        assert alert.resolved is True
        assert alert.auto_resolution_attempted is False
        assert alert.resolution_time >= 0
        assert remediator.attempts == []
        assert engine.failures_prevented == 0

    def test_returned_alerts_are_copies(self, spec):
        """Test callers cannot mutate engine state."""
        engine = AlertEngine(spec)
        run(engine, make_snapshot(memory_usage=300.0))

        engine.get_active_alerts()[0].resolved = True

        assert engine.get_active_alerts()[0].resolved is False

    def test_escalates_but_never_deescalates(self, spec):
        """Test severity rises with the breach and stays raised."""
        engine = AlertEngine(spec)

        run(engine, make_snapshot(hub_load_time=850.0))
        changes = run(engine, make_snapshot(hub_load_time=1300.0))
        run(engine, make_snapshot(hub_load_time=850.0))

        assert ("escalated", "hub_load_time") in changes_of(changes)
        alert = engine.get_active_alerts()[0]
        assert alert.severity == AlertSeverity.CRITICAL

    def test_separate_signals_get_separate_alerts(self, spec):
        """Test dedup is per (category, signal)."""
        engine = AlertEngine(spec)
        run(engine, make_snapshot(hub_load_time=900.0, uptime=98.0, gdpr_compliance=90.0))

        keys = {(a.category, a.signal) for a in engine.get_active_alerts()}
        assert keys == {
            (AlertCategory.PERFORMANCE, "hub_load_time"),
            (AlertCategory.RELIABILITY, "uptime"),
            (AlertCategory.COMPLIANCE, "gdpr_compliance"),
        }

    def test_low_overall_score_raises_quality_alert(self, spec):
        """Test the aggregate score floor."""
        engine = AlertEngine(spec)
        run(engine, make_snapshot(overall_score=80.0))

        alert = engine.get_active_alerts()[0]
        assert alert.category == AlertCategory.QUALITY
        assert alert.signal == "overall_score"
        assert alert.severity == AlertSeverity.WARNING

    def test_reset_clears_session(self, spec):
        """Test reset forgets alerts and counters."""
        engine = AlertEngine(spec)
        run(engine, make_snapshot(hub_load_time=900.0))

        engine.reset()

        assert engine.get_all_alerts() == []
        assert engine.failures_prevented == 0


class TestAutoResolution:
    """Test the single remediation attempt and its outcome."""

    def test_attempt_then_resolve(self, spec):
        """Test a sustained breach gets one attempt and counts a prevented failure."""
        remediator = PlaybookRemediator()
        engine = AlertEngine(spec, remediator)

        run(engine, make_snapshot(hub_load_time=1000.0))
        attempted = run(engine, make_snapshot(hub_load_time=1000.0))
        resolved = run(engine, make_snapshot())

        assert changes_of(attempted) == [("auto_resolution_attempted", "hub_load_time")]
        assert attempted[0].alert.auto_resolution_attempted is True
        assert changes_of(resolved) == [("resolved", "hub_load_time")]
        assert engine.failures_prevented == 1
        assert len(remediator.attempts) == 1
        assert engine.auto_resolution_stats == {"attempted": 1, "succeeded": 1, "failed": 0}

    def test_failed_attempt_escalates_once(self, spec):
        """Test an alert that does not recover is escalated and never retried."""
        remediator = PlaybookRemediator()
        engine = AlertEngine(spec, remediator)

        all_changes = []
        for _ in range(6):
            all_changes.extend(changes_of(run(engine, make_snapshot(error_rate=2.0))))

        assert all_changes == [
            ("opened", "error_rate"),
            ("auto_resolution_attempted", "error_rate"),
            ("auto_resolution_failed", "error_rate"),
        ]
        alert = engine.get_active_alerts()[0]
        assert alert.escalated is True
        assert alert.resolved is False
        assert len(remediator.attempts) == 1
        assert engine.failures_prevented == 0

    def test_compliance_never_remediated(self, spec):
        """Test compliance alerts stay open without remediation."""
        remediator = PlaybookRemediator()
        engine = AlertEngine(spec, remediator)

        for _ in range(4):
            run(engine, make_snapshot(accessibility=85.0))

        alert = engine.get_active_alerts()[0]
        assert alert.auto_resolution_attempted is False
        assert alert.escalated is False
        assert remediator.attempts == []

    def test_disabled_automatic_optimization(self):
        """Test no attempt when automatic optimization is off."""
        spec = QualitySpec(monitoring=MonitoringConfig(automatic_optimization=False))
        remediator = PlaybookRemediator()
        engine = AlertEngine(spec, remediator)

        for _ in range(3):
            run(engine, make_snapshot(memory_usage=300.0))

        assert engine.get_active_alerts()[0].auto_resolution_attempted is False
        assert remediator.attempts == []

    def test_remediation_timeout_counts_as_attempt(self):
        """Test a hanging remediator is bounded by the timeout."""
        spec = QualitySpec(monitoring=MonitoringConfig(remediation_timeout=0.05))
        engine = AlertEngine(spec, SlowRemediator())

        run(engine, make_snapshot(uptime=98.0))
        changes = run(engine, make_snapshot(uptime=98.0))

        assert changes_of(changes) == [("auto_resolution_attempted", "uptime")]
        assert engine.auto_resolution_stats["attempted"] == 1

    def test_failing_handler_counts_as_attempt(self, spec):
        """Test an exception from the registered handler does not escape."""
        def broken_handler(alert):
            raise RuntimeError("cache cluster unreachable")

        remediator = PlaybookRemediator()
        remediator.register("memory_usage", broken_handler)
        engine = AlertEngine(spec, remediator)

        run(engine, make_snapshot(memory_usage=300.0))
        run(engine, make_snapshot(memory_usage=300.0))

        assert engine.get_active_alerts()[0].auto_resolution_attempted is True


class TestDerivedSignals:
    """Test regression, staleness and monitoring-cycle alerts."""

    def test_hub_load_regression(self, spec):
        """Test recent hub load average rising beyond the sensitivity."""
        engine = AlertEngine(spec)
        history = [make_snapshot(hub_load_time=600.0)] * 10 + [make_snapshot(hub_load_time=700.0)] * 10

        changes = run(engine, history[-1], history)

        assert changes_of(changes) == [("opened", "hub_load_regression")]
        alert = changes[0].alert
        assert alert.severity == AlertSeverity.WARNING
        assert alert.metrics["baseline_avg_ms"] == 600.0
        assert alert.metrics["recent_avg_ms"] == 700.0

    def test_no_regression_on_short_history(self, spec):
        """Test regression needs two full windows."""
        engine = AlertEngine(spec)
        history = [make_snapshot(hub_load_time=600.0)] * 5 + [make_snapshot(hub_load_time=790.0)] * 5

        assert run(engine, history[-1], history) == []

    def test_sustained_breach_opens_one_performance_alert(self, spec):
        """Test a hub load breach never adds a regression alert beside it."""
        engine = AlertEngine(spec)
        history = []

        def tick(hub_load_time):
            snapshot = make_snapshot(hub_load_time=hub_load_time)
            history.append(snapshot)
            return run(engine, snapshot, list(history))

        for _ in range(10):
            tick(600.0)
        for _ in range(12):
            tick(1000.0)
            performance = [a.signal for a in engine.get_active_alerts() if a.category == AlertCategory.PERFORMANCE]
            assert performance == ["hub_load_time"]

        opened = []
        for _ in range(12):
            opened.extend(signal for change, signal in changes_of(tick(600.0)) if change == "opened")

        assert opened == []
        assert engine.get_active_alerts() == []

    def test_stale_source_alert(self, spec):
        """Test a source failing for stale_after_ticks ticks raises a quality alert."""
        engine = AlertEngine(spec)

        quiet = run(engine, None, [], {"performance": 2, "compliance": 0, "reliability": 0})
        opened = run(engine, None, [], {"performance": 3, "compliance": 0, "reliability": 0})
        resolved = run(engine, make_snapshot(), None, {"performance": 0, "compliance": 0, "reliability": 0})

        assert quiet == []
        assert changes_of(opened) == [("opened", "collection.performance")]
        assert opened[0].alert.category == AlertCategory.QUALITY
        assert changes_of(resolved) == [("resolved", "collection.performance")]

    def test_stale_dimension_is_not_judged(self, spec):
        """Test alerts of a stale dimension neither resolve nor get remediated."""
        remediator = PlaybookRemediator()
        engine = AlertEngine(spec, remediator)

        run(engine, make_snapshot(hub_load_time=1000.0))
        run(engine, make_snapshot(hub_load_time=1000.0, stale_dimensions=["performance"]))

        alert = engine.get_active_alerts()[0]
        assert alert.resolved is False
        assert alert.auto_resolution_attempted is False

    def test_monitoring_cycle_alert(self, spec):
        """Test a crashed tick opens one error alert until a tick succeeds."""
        engine = AlertEngine(spec)

        opened = engine.record_cycle_failure(RuntimeError("boom"))
        repeated = engine.record_cycle_failure(RuntimeError("boom"))

        assert changes_of(opened) == [("opened", "monitoring_cycle")]
        assert opened[0].alert.severity == AlertSeverity.ERROR
        assert repeated == []

        resolved = engine.record_cycle_success()
        assert changes_of(resolved) == [("resolved", "monitoring_cycle")]
        assert engine.get_active_alerts() == []


class TestAlertHistory:
    """Test alert retention within a session."""

    def test_resolved_alerts_kept_for_session(self, spec):
        """Test every resolved alert stays queryable until reset."""
        engine = AlertEngine(spec)

        for _ in range(12):
            run(engine, make_snapshot(hub_load_time=900.0))
            run(engine, make_snapshot())
        run(engine, make_snapshot(hub_load_time=900.0))

        alerts = engine.get_all_alerts()
        assert len(alerts) == 13
        assert len([a for a in alerts if a.resolved]) == 12
        assert len(engine.get_active_alerts()) == 1

        engine.reset()

        assert engine.get_all_alerts() == []
