"""
Production Quality Monitor - lifecycle, scheduling and read APIs.

One monitoring tick:

    collect snapshot -> evaluate alerts (may auto-resolve) -> mine insights
    -> publish events

Ticks run on an APScheduler interval job on the caller's event loop and are
serialized; an overrunning tick makes the scheduler skip the next run
instead of queueing it.
"""
import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shared.configs.models import PRODUCTION_QUALITY_SPEC, QualitySpec
from shared.monitoring.metrics import QualityMetrics
from shared.monitoring.structured_logger import (
    StructuredLogger,
    log_error,
    log_performance,
    log_quality_event,
)
from .advisor import ImprovementAdvisor
from .alert_engine import AlertChange, AlertEngine
from .collector import MetricCollector
from .events import (
    BASELINE_ESTABLISHED,
    IMPROVEMENT_OPPORTUNITIES,
    MONITORING_STARTED,
    MONITORING_STOPPED,
    QUALITY_ALERT,
    QUALITY_CHECK_COMPLETE,
    EventChannel,
    Subscription,
)
from .models import (
    Alert,
    AlertSeverity,
    MetricsSnapshot,
    OverallStatus,
    QualitySummary,
)
from .remediation import Remediator
from .sources import MetricSource


logger = logging.getLogger(__name__)


class ProductionQualityMonitor:
    """
    Continuously monitors performance, compliance, reliability and quality.

    Usage:
        monitor = ProductionQualityMonitor(monitor_id="eu-north")
        alerts = monitor.subscribe("quality_alert")

        await monitor.start_monitoring()
        await monitor.wait_for_baseline(timeout=5)
        print(monitor.get_quality_summary().overall_status)
        await monitor.stop_monitoring()
    """

    def __init__(
        self,
        spec: Optional[QualitySpec] = None,
        sources: Optional[Dict[str, MetricSource]] = None,
        remediator: Optional[Remediator] = None,
        monitor_id: str = "default",
        metrics: Optional[QualityMetrics] = None
    ):
        """
        Initialize the monitor.

        Args:
            spec: Quality thresholds and monitoring settings
            sources: Metric source per dimension ("performance",
                "compliance", "reliability"); simulated where omitted
            remediator: Auto-resolution action performer
            monitor_id: Instance name, e.g. the deployment region
            metrics: Prometheus metrics (a private registry by default)
        """
        self.spec = spec or PRODUCTION_QUALITY_SPEC
        self.monitor_id = monitor_id

        sources = sources or {}
        unknown = set(sources) - {"performance", "compliance", "reliability"}
        if unknown:
            raise ValueError(f"Unknown source dimensions: {sorted(unknown)}")

        self.collector = MetricCollector(
            self.spec,
            performance_source=sources.get("performance"),
            compliance_source=sources.get("compliance"),
            reliability_source=sources.get("reliability"),
        )
        self.engine = AlertEngine(self.spec, remediator)
        self.advisor = ImprovementAdvisor(self.spec)
        self.channel = EventChannel(self.spec.monitoring.subscriber_queue_size)
        self.metrics = metrics or QualityMetrics(monitor_id=monitor_id)

        self._history: Deque[MetricsSnapshot] = deque(maxlen=self.spec.monitoring.history_size)
        self._latest: Optional[MetricsSnapshot] = None
        self._active = False
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._tick_lock = asyncio.Lock()
        self._baseline = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tick = 0

    async def __aenter__(self) -> "ProductionQualityMonitor":
        await self.start_monitoring()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop_monitoring()

    @property
    def monitoring_active(self) -> bool:
        return self._active

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_monitoring(self) -> None:
        """Start a new monitoring session. No-op if already running."""
        if self._active:
            logger.warning(f"Monitor '{self.monitor_id}' is already running")
            return

        self._reset_session()
        self._active = True

        interval = self.spec.monitoring.sampling_interval
        self._scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone=timezone.utc
        )
        self._scheduler.add_job(
            self._scheduled_check,
            IntervalTrigger(seconds=interval, timezone=timezone.utc),
            id=f"quality_check:{self.monitor_id}",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.start()

        log_quality_event(
            logger,
            "monitoring_started",
            monitor_id=self.monitor_id,
            sampling_interval=interval,
        )
        self.channel.publish(MONITORING_STARTED, {
            "monitor_id": self.monitor_id,
            "timestamp": datetime.now(),
            "spec": self.spec,
        })

    async def stop_monitoring(self) -> None:
        """Stop the session; all state stays queryable. No-op if stopped."""
        if not self._active:
            logger.warning(f"Monitor '{self.monitor_id}' is not running")
            return

        self._active = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            # Shutdown is deferred to the loop
            await asyncio.sleep(0)

        # Let an in-flight tick finish
        async with self._tick_lock:
            pass

        log_quality_event(
            logger,
            "monitoring_stopped",
            monitor_id=self.monitor_id,
            ticks=self._tick,
            alerts=len(self.engine.get_all_alerts()),
        )
        self.channel.publish(MONITORING_STOPPED, {
            "monitor_id": self.monitor_id,
            "timestamp": datetime.now(),
            "final_metrics": self._latest,
            "summary": self.get_quality_summary(),
        })

    async def close(self) -> None:
        """Stop monitoring and tear down subscriber dispatchers."""
        if self._active:
            await self.stop_monitoring()
        await self.channel.close()

    async def wait_for_baseline(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the first snapshot of the session is published.

        Returns:
            True once a baseline exists, False on timeout
        """
        self._bind_loop()
        try:
            await asyncio.wait_for(self._baseline.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _bind_loop(self) -> None:
        # Lock and event bind to a loop; a new asyncio.run gets fresh ones
        loop = asyncio.get_running_loop()
        if self._loop is not None and loop is not self._loop:
            self._tick_lock = asyncio.Lock()
            self._baseline = asyncio.Event()
            if self._latest is not None:
                self._baseline.set()
        self._loop = loop

    def _reset_session(self) -> None:
        self._bind_loop()
        self._baseline.clear()
        self._history.clear()
        self._latest = None
        self._tick = 0
        self.collector.reset()
        self.engine.reset()
        self.advisor.reset()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def _scheduled_check(self) -> None:
        async with self._tick_lock:
            # The scheduler shuts down asynchronously; drop late runs
            if not self._active:
                return
            await self._run_tick()

    async def run_quality_check(self) -> Optional[MetricsSnapshot]:
        """
        Run one full monitoring tick now.

        Never raises; a failed tick opens a monitoring_cycle alert.

        Returns:
            The snapshot of this tick, or None if none was produced
        """
        self._bind_loop()
        async with self._tick_lock:
            return await self._run_tick()

    async def _run_tick(self) -> Optional[MetricsSnapshot]:
        self._tick += 1
        StructuredLogger.set_context(monitor_id=self.monitor_id, tick_id=self._tick)
        started = time.perf_counter()

        try:
            snapshot = await self._check()
        except Exception as e:
            log_error(logger, e, {"monitor_id": self.monitor_id, "tick": self._tick})
            self._publish_alert_changes(self.engine.record_cycle_failure(e))
            self.metrics.record_tick(time.perf_counter() - started, status="failed")
            return None

        duration = time.perf_counter() - started
        self.metrics.record_tick(duration)
        if duration > self.spec.monitoring.sampling_interval:
            log_performance(logger, "quality_check", duration * 1000, overrun=True)
        return snapshot

    async def _check(self) -> Optional[MetricsSnapshot]:
        result = await self.collector.collect(
            failures_prevented=self.engine.failures_prevented,
            active_alerts=self.engine.get_active_alerts(),
        )
        if result.failures:
            self.metrics.record_collection_errors(result.failures)

        snapshot = result.snapshot
        if snapshot is not None:
            self._history.append(snapshot)
            self._latest = snapshot
            self.metrics.record_snapshot(snapshot)

        changes = await self.engine.evaluate(snapshot, list(self._history), result.consecutive_failures)
        changes.extend(self.engine.record_cycle_success())
        self._publish_alert_changes(changes)
        self.metrics.update_active_alerts(self.engine.get_active_alerts())

        if snapshot is not None:
            self._discover_insights(snapshot)
            self.channel.publish(QUALITY_CHECK_COMPLETE, {
                "monitor_id": self.monitor_id,
                "timestamp": snapshot.timestamp,
                "tick": self._tick,
                "metrics": snapshot,
                "alert_changes": len(changes),
                "summary": self.get_quality_summary(),
            })
            if not self._baseline.is_set():
                self._baseline.set()
                logger.info(
                    f"Baseline established: overall score {snapshot.quality.overall_score:.2f}"
                )
                self.channel.publish(BASELINE_ESTABLISHED, {
                    "monitor_id": self.monitor_id,
                    "timestamp": snapshot.timestamp,
                    "metrics": snapshot,
                })

        self.metrics.events_dropped.set(self.channel.dropped_count())
        return snapshot

    def _discover_insights(self, snapshot: MetricsSnapshot) -> None:
        if not self.advisor.should_run(self._tick):
            return

        new_insights = self.advisor.analyze(list(self._history), self.engine.get_all_alerts())
        if not new_insights:
            return

        self.metrics.record_insights(len(new_insights))
        self.channel.publish(IMPROVEMENT_OPPORTUNITIES, {
            "monitor_id": self.monitor_id,
            "timestamp": datetime.now(),
            "opportunities": new_insights,
            "metrics": snapshot,
        })

    def _publish_alert_changes(self, changes: List[AlertChange]) -> None:
        for change in changes:
            self.metrics.record_alert_change(change.change, change.alert)
            self.channel.publish(QUALITY_ALERT, change.alert)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_latest_metrics(self) -> Optional[MetricsSnapshot]:
        return self._latest

    def get_active_alerts(self) -> List[Alert]:
        return self.engine.get_active_alerts()

    def get_all_alerts(self) -> List[Alert]:
        """Every alert of the current session, resolved ones included."""
        return self.engine.get_all_alerts()

    def get_improvement_insights(self) -> List[str]:
        return self.advisor.insights

    def get_history(self) -> List[MetricsSnapshot]:
        return list(self._history)

    def get_quality_summary(self) -> QualitySummary:
        active = self.engine.get_active_alerts()
        critical = [a for a in active if a.severity == AlertSeverity.CRITICAL]
        return QualitySummary(
            monitoring_active=self._active,
            latest_metrics=self._latest,
            active_alerts=len(active),
            critical_alerts=len(critical),
            improvement_insights=len(self.advisor.insights),
            overall_status=self._overall_status(active),
        )

    def _overall_status(self, active: List[Alert]) -> OverallStatus:
        q = self.spec.quality
        if any(a.severity in (AlertSeverity.CRITICAL, AlertSeverity.ERROR) for a in active):
            return OverallStatus.DEGRADED
        if self._latest is None:
            return OverallStatus.ACCEPTABLE

        score = self._latest.quality.overall_score
        if score < q.acceptable_score:
            return OverallStatus.DEGRADED
        if score >= q.excellent_score:
            return OverallStatus.EXCELLENT
        if score >= q.good_score:
            return OverallStatus.GOOD
        return OverallStatus.ACCEPTABLE

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(
        self,
        topic: str,
        callback: Optional[Callable[[Any], Any]] = None,
        maxsize: Optional[int] = None
    ) -> Subscription:
        """
        Subscribe to monitor events.

        Args:
            topic: quality_alert, improvement_opportunities,
                monitoring_started, monitoring_stopped,
                quality_check_complete or baseline_established
            callback: Optional handler called with each payload
            maxsize: Queue bound; the oldest event is dropped when full

        Returns:
            Subscription handle
        """
        return self.channel.subscribe(topic, callback, maxsize)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.channel.unsubscribe(subscription)
