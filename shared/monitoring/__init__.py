"""
Monitoring and Alerting Module

Observability for the production quality monitor.

Components:
- Prometheus metrics per monitor instance
- Structured logging with JSON format
- Alert notification (Slack/webhooks)
"""

from .metrics import QualityMetrics
from .structured_logger import StructuredLogger, get_logger
from .alerts import AlertNotifier, AlertChannel

__all__ = [
    "QualityMetrics",
    "StructuredLogger",
    "get_logger",
    "AlertNotifier",
    "AlertChannel",
]
