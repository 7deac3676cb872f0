"""
Alerting Module

Forwards quality alerts to on-call channels: Slack, webhooks and the log.
Repeated notifications for the same alert state are suppressed for a
cooldown period.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum

import aiohttp

from .structured_logger import log_alert


logger = logging.getLogger(__name__)


class AlertChannel(str, Enum):
    """Alert delivery channels"""
    SLACK = "slack"
    WEBHOOK = "webhook"
    LOG = "log"


SEVERITY_ORDER = ["info", "warning", "error", "critical"]

COLOR_MAP = {
    "info": "#36a64f",
    "warning": "#ff9900",
    "error": "#ff0000",
    "critical": "#990000"
}


def alert_state(alert: Any) -> str:
    """Lifecycle state of an alert as shown to on-call"""
    if alert.resolved:
        return "resolved"
    if alert.escalated:
        return "escalated"
    if alert.auto_resolution_attempted:
        return "auto_resolution_attempted"
    return "open"


@dataclass
class AlertNotifier:
    """
    Notifier for quality alerts

    Usage:
        notifier = AlertNotifier(
            slack_webhook_url="https://hooks.slack.com/services/...",
            webhook_urls=["https://ops.example.com/hooks/quality"],
            min_severity="warning"
        )

        # Forward every alert the monitor emits
        monitor.subscribe("quality_alert", notifier.send_alert)
    """

    # Slack configuration
    slack_webhook_url: Optional[str] = None
    slack_channel: Optional[str] = None

    # Webhook configuration
    webhook_urls: List[str] = field(default_factory=list)

    source: str = "quality_monitor"
    min_severity: str = "warning"
    cooldown_minutes: float = 15
    request_timeout: float = 10.0

    # Alert history for cooldown
    alert_history: Dict[str, datetime] = field(default_factory=dict)

    # Alert statistics
    alerts_sent: Dict[str, int] = field(default_factory=lambda: {
        "info": 0,
        "warning": 0,
        "error": 0,
        "critical": 0
    })
    alerts_suppressed: int = 0
    delivery_failures: Dict[str, int] = field(default_factory=lambda: {
        AlertChannel.SLACK.value: 0,
        AlertChannel.WEBHOOK.value: 0
    })

    def _should_send_alert(self, alert: Any) -> bool:
        """
        Check if alert should be sent based on severity and cooldown

        Args:
            alert: Alert to check

        Returns:
            True if alert should be sent
        """
        severity = alert.severity.value
        if SEVERITY_ORDER.index(severity) < SEVERITY_ORDER.index(self.min_severity):
            return False

        alert_key = f"{alert.category.value}:{alert.signal}:{severity}:{alert_state(alert)}"

        if alert_key in self.alert_history:
            last_sent = self.alert_history[alert_key]
            if datetime.now() - last_sent < timedelta(minutes=self.cooldown_minutes):
                self.alerts_suppressed += 1
                return False

        self.alert_history[alert_key] = datetime.now()
        return True

    async def send_alert(
        self,
        alert: Any,
        channels: Optional[List[AlertChannel]] = None
    ) -> bool:
        """
        Send alert to specified channels

        Args:
            alert: Quality alert to send
            channels: Channels to send to (defaults to all configured)

        Returns:
            True if the alert passed the cooldown and was dispatched
        """
        if not self._should_send_alert(alert):
            return False

        # Default to all configured channels
        if channels is None:
            channels = [AlertChannel.LOG]
            if self.slack_webhook_url:
                channels.append(AlertChannel.SLACK)
            if self.webhook_urls:
                channels.append(AlertChannel.WEBHOOK)

        if AlertChannel.LOG in channels:
            log_alert(
                logger,
                f"{alert.category.value}/{alert.signal}",
                f"[{alert_state(alert)}] {alert.message}",
                severity=alert.severity.value,
                alert_id=alert.id
            )

        tasks = []
        if AlertChannel.SLACK in channels and self.slack_webhook_url:
            tasks.append(self._send_slack(alert))

        if AlertChannel.WEBHOOK in channels and self.webhook_urls:
            for url in self.webhook_urls:
                tasks.append(self._send_webhook(alert, url))

        if tasks:
            await asyncio.gather(*tasks)

        self.alerts_sent[alert.severity.value] += 1
        return True

    def build_slack_payload(self, alert: Any) -> Dict[str, Any]:
        """Create the Slack attachment message for an alert"""
        state = alert_state(alert)
        payload = {
            "channel": self.slack_channel,
            "username": "Quality Monitor",
            "icon_emoji": ":rotating_light:",
            "attachments": [
                {
                    "color": COLOR_MAP["info"] if alert.resolved else COLOR_MAP[alert.severity.value],
                    "title": f"[{state.upper()}] {alert.category.value}/{alert.signal}",
                    "text": alert.message,
                    "fields": [
                        {
                            "title": "Severity",
                            "value": alert.severity.value.upper(),
                            "short": True
                        },
                        {
                            "title": "Alert",
                            "value": alert.id,
                            "short": True
                        },
                        {
                            "title": "Recommended actions",
                            "value": "\n".join(f"- {a}" for a in alert.recommended_actions),
                            "short": False
                        },
                        {
                            "title": "Time",
                            "value": alert.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
                            "short": False
                        }
                    ],
                    "footer": self.source,
                    "ts": int(alert.timestamp.timestamp())
                }
            ]
        }

        for key, value in alert.metrics.items():
            payload["attachments"][0]["fields"].append({
                "title": key,
                "value": str(value),
                "short": True
            })

        return payload

    def build_webhook_payload(self, alert: Any) -> Dict[str, Any]:
        """Create the generic webhook body for an alert"""
        return {
            "source": self.source,
            "state": alert_state(alert),
            "alert": alert.model_dump(mode="json")
        }

    async def _send_slack(self, alert: Any) -> bool:
        """Send alert to Slack"""
        try:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.slack_webhook_url,
                    json=self.build_slack_payload(alert),
                    headers={"Content-Type": "application/json"}
                ) as response:
                    if response.status != 200:
                        logger.error(f"Error sending Slack alert: HTTP {response.status}")
                        self.delivery_failures[AlertChannel.SLACK.value] += 1
                        return False
            return True

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending Slack alert: {e}")
            self.delivery_failures[AlertChannel.SLACK.value] += 1
            return False

    async def _send_webhook(self, alert: Any, webhook_url: str) -> bool:
        """Send alert to webhook"""
        try:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    webhook_url,
                    json=self.build_webhook_payload(alert),
                    headers={"Content-Type": "application/json"}
                ) as response:
                    if response.status not in [200, 201, 202, 204]:
                        logger.error(f"Error sending webhook alert to {webhook_url}: HTTP {response.status}")
                        self.delivery_failures[AlertChannel.WEBHOOK.value] += 1
                        return False
            return True

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending webhook alert to {webhook_url}: {e}")
            self.delivery_failures[AlertChannel.WEBHOOK.value] += 1
            return False

    def get_statistics(self) -> Dict[str, Any]:
        """Get alert statistics"""
        return {
            "alerts_sent": dict(self.alerts_sent),
            "total_alerts": sum(self.alerts_sent.values()),
            "alerts_suppressed": self.alerts_suppressed,
            "delivery_failures": dict(self.delivery_failures)
        }

    def clear_history(self):
        """Clear alert history (useful for testing)"""
        self.alert_history.clear()
