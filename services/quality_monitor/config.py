"""
Configuration for Quality Monitor Service.

Runtime settings only; quality thresholds live in the QualitySpec YAML
(see shared.configs.loader.load_quality_spec).
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class QualityMonitorSettings(BaseSettings):
    """Quality Monitor service settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="QUALITY_MONITOR_",
        extra="ignore",
    )

    # Service
    service_name: str = "quality_monitor"
    monitor_id: str = "default"
    environment: str = "development"

    # Quality spec
    spec_config_dir: Optional[str] = None
    spec_file: str = "quality_monitor.yaml"

    # Redis bridge
    enable_redis_bridge: bool = False
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    summary_ttl_seconds: int = 300

    # Notifications
    slack_webhook_url: Optional[str] = None
    slack_channel: Optional[str] = None
    webhook_urls: List[str] = []
    notify_min_severity: str = "warning"
    notify_cooldown_minutes: float = 15

    # Prometheus
    enable_metrics: bool = True
    metrics_port: int = 9108

    # HTTP probing (simulated sources when unset)
    hub_url: Optional[str] = None
    transition_url: Optional[str] = None
    health_url: Optional[str] = None
    probe_pid: Optional[int] = None

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    json_logs: bool = True


@lru_cache()
def get_settings() -> QualityMonitorSettings:
    """
    Get cached settings instance.

    Returns:
        QualityMonitorSettings instance
    """
    return QualityMonitorSettings()
