"""
Redis bridge for monitor events.

Republishes monitor events to Redis channels for consumption by other
services (dashboards, ops tooling) and caches the latest quality summary.
"""
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import redis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .events import (
    IMPROVEMENT_OPPORTUNITIES,
    MONITORING_STARTED,
    MONITORING_STOPPED,
    QUALITY_ALERT,
    QUALITY_CHECK_COMPLETE,
    Subscription,
)


logger = logging.getLogger(__name__)


class RedisEventBridge:
    """Publisher for quality monitor events to Redis."""

    # Event channels
    CHANNEL_ALERT = "quality:alert"
    CHANNEL_INSIGHTS = "quality:insights"
    CHANNEL_LIFECYCLE = "quality:lifecycle"

    def __init__(
        self,
        monitor_id: str = "default",
        redis_host: str = "localhost",
        redis_port: int = 6379,
        redis_db: int = 0,
        redis_password: Optional[str] = None,
        summary_ttl: int = 300
    ):
        """
        Initialize the event bridge.

        Args:
            monitor_id: Monitor instance the events belong to
            redis_host: Redis server host
            redis_port: Redis server port
            redis_db: Redis database number
            redis_password: Redis password (optional)
            summary_ttl: Lifetime of the cached summary in seconds
        """
        self.monitor_id = monitor_id
        self.summary_ttl = summary_ttl
        self.subscriptions: List[Subscription] = []
        self.redis_client = redis.Redis(
            host=redis_host,
            port=redis_port,
            db=redis_db,
            password=redis_password,
            decode_responses=True
        )
        self._test_connection()

    @property
    def summary_key(self) -> str:
        return f"quality:summary:{self.monitor_id}"

    def _test_connection(self):
        """Test Redis connection."""
        try:
            self.redis_client.ping()
            logger.info("Successfully connected to Redis")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def _serialize_event(self, data: Dict[str, Any]) -> str:
        """
        Serialize event data to JSON.

        Args:
            data: Event data dictionary

        Returns:
            JSON string
        """
        def converter(o):
            if isinstance(o, BaseModel):
                return o.model_dump(mode="json")
            if isinstance(o, datetime):
                return o.isoformat()
            if isinstance(o, Enum):
                return o.value
            raise TypeError(f"Object of type {type(o)} is not JSON serializable")

        return json.dumps(data, default=converter)

    def _publish(self, channel: str, event: Dict[str, Any]) -> bool:
        try:
            message = self._serialize_event(event)
            subscribers = self.redis_client.publish(channel, message)
            logger.debug(
                f"Published {event['event_type']} to {channel} ({subscribers} subscribers)"
            )
            return True
        except RedisError as e:
            logger.error(f"Failed to publish {event['event_type']} to {channel}: {e}")
            return False

    def publish_alert(self, alert: Any) -> bool:
        """
        Publish a quality alert transition.

        Args:
            alert: Alert copy from the quality_alert topic

        Returns:
            True if published successfully
        """
        return self._publish(self.CHANNEL_ALERT, {
            "event_type": "quality_alert",
            "monitor_id": self.monitor_id,
            "timestamp": datetime.utcnow().isoformat(),
            "alert": alert,
        })

    def publish_insights(self, payload: Dict[str, Any]) -> bool:
        """Publish a batch of newly discovered improvement insights."""
        return self._publish(self.CHANNEL_INSIGHTS, {
            "event_type": "improvement_opportunities",
            "monitor_id": self.monitor_id,
            "timestamp": datetime.utcnow().isoformat(),
            "opportunities": payload["opportunities"],
            "overall_score": payload["metrics"].quality.overall_score,
        })

    def publish_lifecycle(self, event_type: str, payload: Dict[str, Any]) -> bool:
        """Publish monitoring_started / monitoring_stopped."""
        event = {
            "event_type": event_type,
            "monitor_id": self.monitor_id,
            "timestamp": datetime.utcnow().isoformat(),
        }
        if payload.get("summary") is not None:
            event["summary"] = payload["summary"]
        return self._publish(self.CHANNEL_LIFECYCLE, event)

    def set_latest_summary(self, summary: Any, ttl: Optional[int] = None):
        """
        Store the latest quality summary in Redis cache.

        Args:
            summary: QualitySummary to cache
            ttl: Time to live in seconds (defaults to summary_ttl)
        """
        try:
            value = self._serialize_event({"summary": summary})
            self.redis_client.setex(self.summary_key, ttl or self.summary_ttl, value)
            logger.debug(f"Cached quality summary for {self.monitor_id}")
        except RedisError as e:
            logger.error(f"Failed to cache quality summary for {self.monitor_id}: {e}")

    def get_latest_summary(self) -> Optional[Dict[str, Any]]:
        """
        Retrieve the latest cached summary.

        Returns:
            Summary dictionary or None if not found
        """
        try:
            value = self.redis_client.get(self.summary_key)
            if value:
                return json.loads(value)["summary"]
            return None
        except RedisError as e:
            logger.error(f"Failed to retrieve cached summary for {self.monitor_id}: {e}")
            return None

    def attach(self, monitor: Any) -> List[Subscription]:
        """
        Subscribe the bridge to a monitor's events.

        Args:
            monitor: ProductionQualityMonitor to bridge

        Returns:
            The subscriptions created
        """
        self.subscriptions = [
            monitor.subscribe(QUALITY_ALERT, self.publish_alert),
            monitor.subscribe(IMPROVEMENT_OPPORTUNITIES, self.publish_insights),
            monitor.subscribe(
                MONITORING_STARTED,
                lambda payload: self.publish_lifecycle(MONITORING_STARTED, payload)
            ),
            monitor.subscribe(
                MONITORING_STOPPED,
                lambda payload: self.publish_lifecycle(MONITORING_STOPPED, payload)
            ),
            monitor.subscribe(
                QUALITY_CHECK_COMPLETE,
                lambda payload: self.set_latest_summary(payload["summary"])
            ),
        ]
        return self.subscriptions

    def close(self):
        """Close Redis connection."""
        try:
            self.redis_client.close()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
