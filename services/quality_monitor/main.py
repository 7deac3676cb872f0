"""
Main entry point for Quality Monitor Service.

Runs one ProductionQualityMonitor, forwards its alerts to on-call channels,
optionally bridges events to Redis and serves Prometheus metrics.
"""
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from prometheus_client import start_http_server

from shared.configs.loader import load_quality_spec
from shared.monitoring.alerts import AlertNotifier
from shared.monitoring.metrics import QualityMetrics
from shared.monitoring.structured_logger import setup_service_logger
from . import __version__
from .config import QualityMonitorSettings, get_settings
from .event_bridge import RedisEventBridge
from .events import QUALITY_ALERT
from .monitor import ProductionQualityMonitor
from .sources import HttpProbePerformanceSource


logger = logging.getLogger(__name__)


class QualityMonitorService:
    """Quality monitoring service orchestrator."""

    def __init__(self, settings: Optional[QualityMonitorSettings] = None):
        """Initialize the quality monitor service."""
        self.settings = settings or get_settings()
        self.running = False
        self.monitor: Optional[ProductionQualityMonitor] = None
        self.notifier: Optional[AlertNotifier] = None
        self.event_bridge: Optional[RedisEventBridge] = None

        setup_service_logger(
            self.settings.service_name,
            level=self.settings.log_level,
            log_dir=Path(self.settings.log_dir) if self.settings.log_dir else None,
            json_format=self.settings.json_logs,
            logger_name="services"
        )

        logger.info("Quality Monitor Service initialized")

    def setup(self):
        """Set up service components."""
        try:
            spec = load_quality_spec(
                filename=self.settings.spec_file,
                config_dir=self.settings.spec_config_dir
            )

            sources = {}
            if self.settings.hub_url and self.settings.transition_url and self.settings.health_url:
                sources["performance"] = HttpProbePerformanceSource(
                    hub_url=self.settings.hub_url,
                    transition_url=self.settings.transition_url,
                    health_url=self.settings.health_url,
                    pid=self.settings.probe_pid
                )
                logger.info(f"Probing performance at {self.settings.hub_url}")
            else:
                logger.info("No probe URLs configured - using simulated performance source")

            metrics = QualityMetrics(monitor_id=self.settings.monitor_id)
            metrics.set_monitor_info(__version__, self.settings.environment)

            self.monitor = ProductionQualityMonitor(
                spec=spec,
                sources=sources,
                monitor_id=self.settings.monitor_id,
                metrics=metrics
            )

            self.notifier = AlertNotifier(
                slack_webhook_url=self.settings.slack_webhook_url,
                slack_channel=self.settings.slack_channel,
                webhook_urls=list(self.settings.webhook_urls),
                source=f"{self.settings.service_name}:{self.settings.monitor_id}",
                min_severity=self.settings.notify_min_severity,
                cooldown_minutes=self.settings.notify_cooldown_minutes
            )
            self.monitor.subscribe(QUALITY_ALERT, self.notifier.send_alert)

            if self.settings.enable_redis_bridge:
                self.event_bridge = RedisEventBridge(
                    monitor_id=self.settings.monitor_id,
                    redis_host=self.settings.redis_host,
                    redis_port=self.settings.redis_port,
                    redis_db=self.settings.redis_db,
                    redis_password=self.settings.redis_password,
                    summary_ttl=self.settings.summary_ttl_seconds
                )
                self.event_bridge.attach(self.monitor)

            if self.settings.enable_metrics:
                start_http_server(self.settings.metrics_port, registry=metrics.registry)
                logger.info(f"Serving Prometheus metrics on port {self.settings.metrics_port}")

            logger.info("Service components initialized successfully")

        except Exception as e:
            logger.error(f"Failed to setup service: {e}", exc_info=True)
            raise

    async def run(self):
        """Run monitoring until a shutdown signal arrives."""
        await self.monitor.start_monitoring()
        try:
            while self.running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            logger.info("Monitoring cancelled")
        finally:
            await self.monitor.close()
            summary = self.monitor.get_quality_summary()
            logger.info(
                f"Final status: {summary.overall_status.value} - "
                f"{summary.active_alerts} active alerts, "
                f"{summary.improvement_insights} insights"
            )

    def start(self):
        """Start the quality monitor service."""
        self.running = True
        logger.info("Quality Monitor Service starting...")

        self.setup()

        try:
            asyncio.run(self.run())
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.stop()

    def stop(self):
        """Stop the quality monitor service."""
        logger.info("Stopping Quality Monitor Service...")
        self.running = False

        if self.event_bridge:
            self.event_bridge.close()

        if self.notifier:
            logger.info(f"Notifier statistics: {self.notifier.get_statistics()}")

        logger.info("Quality Monitor Service stopped")

    def handle_signal(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self.running = False


def main():
    """Main entry point."""
    service = QualityMonitorService()

    # Register signal handlers
    signal.signal(signal.SIGINT, service.handle_signal)
    signal.signal(signal.SIGTERM, service.handle_signal)

    service.start()


if __name__ == "__main__":
    main()
