"""
Structured Logging Module

Provides JSON-based structured logging for centralized log aggregation.
Every record carries the monitor instance and collection tick it was
emitted from, so logs of several monitors (e.g. one per region) running in
one process can be told apart.
"""

import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar
from pathlib import Path
import os

from pythonjsonlogger import jsonlogger


# Context variables for tick tracing
monitor_id_var: ContextVar[Optional[str]] = ContextVar('monitor_id', default=None)
tick_id_var: ContextVar[Optional[int]] = ContextVar('tick_id', default=None)


class ContextFilter(logging.Filter):
    """Filter that adds contextual information to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context variables to the log record"""
        record.monitor_id = monitor_id_var.get()
        record.tick_id = tick_id_var.get()
        record.service_name = os.getenv('SERVICE_NAME', 'quality_monitor')
        record.environment = os.getenv('ENVIRONMENT', 'development')
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        """Add custom fields to the log record"""
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['file'] = f"{record.filename}:{record.lineno}"
        log_record['function'] = record.funcName

        if getattr(record, 'monitor_id', None):
            log_record['monitor_id'] = record.monitor_id

        if getattr(record, 'tick_id', None) is not None:
            log_record['tick_id'] = record.tick_id

        if hasattr(record, 'service_name'):
            log_record['service_name'] = record.service_name

        if hasattr(record, 'environment'):
            log_record['environment'] = record.environment

        if record.exc_info and record.exc_info[0] is not None:
            log_record['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        for key, value in message_dict.items():
            if key not in log_record:
                log_record[key] = value


class StructuredLogger:
    """
    Structured logger with JSON output and contextual information

    Usage:
        logger = StructuredLogger.get_logger("quality_monitor")
        logger.info("Alert opened", extra={
            "category": "performance",
            "signal": "hub_load_time",
            "value": 912.4
        })
    """

    _loggers: Dict[str, logging.Logger] = {}

    @classmethod
    def get_logger(
        cls,
        name: str,
        level: int = logging.INFO,
        log_file: Optional[Path] = None,
        json_format: bool = True
    ) -> logging.Logger:
        """
        Get or create a structured logger

        Args:
            name: Logger name (typically service name)
            level: Logging level (default: INFO)
            log_file: Optional file path for file logging
            json_format: Use JSON format (default: True)

        Returns:
            Configured logger instance
        """
        if name in cls._loggers:
            return cls._loggers[name]

        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers = []

        if json_format:
            formatter = CustomJsonFormatter(
                '%(timestamp)s %(level)s %(service_name)s %(logger)s %(message)s'
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        # Filters sit on the handlers so records from child loggers
        # (services.quality_monitor.*) are stamped as well
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.addFilter(ContextFilter())
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.addFilter(ContextFilter())
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        cls._loggers[name] = logger
        return logger

    @classmethod
    def set_context(
        cls,
        monitor_id: Optional[str] = None,
        tick_id: Optional[int] = None
    ):
        """Set context variables for tick tracing"""
        if monitor_id:
            monitor_id_var.set(monitor_id)
        if tick_id is not None:
            tick_id_var.set(tick_id)

    @classmethod
    def clear_context(cls):
        """Clear context variables"""
        monitor_id_var.set(None)
        tick_id_var.set(None)


def get_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    json_format: bool = True
) -> logging.Logger:
    """
    Convenience function to get a structured logger

    Example:
        logger = get_logger("quality_monitor")
        logger.info("Snapshot collected", extra={"overall_score": 98.7})
    """
    return StructuredLogger.get_logger(name, level, log_file, json_format)


def setup_service_logger(
    service_name: str,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Set up logger for a service with standard configuration

    Args:
        service_name: Name of the service
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files
        json_format: Use JSON format
        logger_name: Logger to configure (defaults to ``service_name``);
            pass a package name such as "services" to capture its modules

    Returns:
        Configured logger

    Example:
        logger = setup_service_logger("quality_monitor", level="INFO", json_format=True)
    """
    os.environ['SERVICE_NAME'] = service_name

    log_level = getattr(logging, level.upper(), logging.INFO)

    log_file = None
    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"{service_name}.log"

    return get_logger(logger_name or service_name, log_level, log_file, json_format)


# Convenience functions for common log patterns

def log_performance(logger: logging.Logger, operation: str, duration_ms: float, **kwargs):
    """Log performance metrics"""
    logger.info(
        f"Performance: {operation}",
        extra={
            "operation": operation,
            "duration_ms": duration_ms,
            "metric_type": "performance",
            **kwargs
        }
    )


def log_quality_event(logger: logging.Logger, event_type: str, **kwargs):
    """Log monitor lifecycle and insight events"""
    logger.info(
        f"Quality Event: {event_type}",
        extra={
            "event_type": event_type,
            "metric_type": "quality_event",
            **kwargs
        }
    )


def log_error(logger: logging.Logger, error: Exception, context: Dict[str, Any] = None):
    """Log errors with full context"""
    extra = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "metric_type": "error"
    }

    if context:
        extra.update(context)

    logger.error(
        f"Error occurred: {str(error)}",
        exc_info=error,
        extra=extra
    )


def log_alert(logger: logging.Logger, alert_type: str, message: str, severity: str = "warning", **kwargs):
    """Log alerts that should trigger notifications"""
    if severity == "info":
        log_level = logging.INFO
    elif severity == "warning":
        log_level = logging.WARNING
    elif severity == "critical":
        log_level = logging.CRITICAL
    else:
        log_level = logging.ERROR

    logger.log(
        log_level,
        f"ALERT [{alert_type}]: {message}",
        extra={
            "alert_type": alert_type,
            "severity": severity,
            "metric_type": "alert",
            **kwargs
        }
    )
