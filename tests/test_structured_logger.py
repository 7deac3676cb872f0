"""
Tests for structured logging.
"""
import json
import logging

from shared.monitoring.structured_logger import (
    ContextFilter,
    CustomJsonFormatter,
    StructuredLogger,
    log_alert,
    log_error,
    setup_service_logger,
)


def format_record(message: str = "Snapshot collected", exc_info=None, **extra) -> dict:
    record = logging.LogRecord(
        name="services.quality_monitor.monitor",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    ContextFilter().filter(record)
    formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(service_name)s %(logger)s %(message)s')
    return json.loads(formatter.format(record))


class TestStructuredLogger:
    """Test JSON formatting and tick context."""

    def teardown_method(self):
        StructuredLogger.clear_context()

    def test_json_fields(self):
        """Test the standard fields of a record."""
        output = format_record()

        assert output["message"] == "Snapshot collected"
        assert output["level"] == "INFO"
        assert output["logger"] == "services.quality_monitor.monitor"
        assert "timestamp" in output
        assert output.get("monitor_id") is None

    def test_tick_context(self):
        """Test monitor and tick ids are stamped on records."""
        StructuredLogger.set_context(monitor_id="eu-north", tick_id=7)

        output = format_record()

        assert output["monitor_id"] == "eu-north"
        assert output["tick_id"] == 7

    def test_clear_context(self):
        """Test clearing the tick context."""
        StructuredLogger.set_context(monitor_id="eu-north", tick_id=7)
        StructuredLogger.clear_context()

        output = format_record()

        assert output.get("monitor_id") is None
        assert output.get("tick_id") is None

    def test_exception_details(self):
        """Test exceptions are serialized with their traceback."""
        try:
            raise RuntimeError("collector crashed")
        except RuntimeError as e:
            output = format_record("Tick failed", exc_info=(type(e), e, e.__traceback__))

        assert output["exception"]["type"] == "RuntimeError"
        assert output["exception"]["message"] == "collector crashed"

    def test_extra_fields(self):
        """Test extra fields appear in the output."""
        output = format_record(signal="hub_load_time", value=912.4)

        assert output["signal"] == "hub_load_time"
        assert output["value"] == 912.4

    def test_setup_service_logger(self, tmp_path):
        """Test file logging under the service name."""
        logger = setup_service_logger("quality_monitor_test", level="DEBUG", log_dir=tmp_path)

        assert logger.level == logging.DEBUG
        assert (tmp_path / "quality_monitor_test.log").exists()
        assert StructuredLogger.get_logger("quality_monitor_test") is logger

        for handler in logger.handlers:
            handler.close()

    def test_log_alert_levels(self, caplog):
        """Test alert severities map to log levels."""
        logger = logging.getLogger("tests.alerts")

        with caplog.at_level(logging.INFO, logger="tests.alerts"):
            log_alert(logger, "performance/hub_load_time", "opened", severity="critical")
            log_alert(logger, "quality/overall_score", "opened", severity="warning")

        assert [r.levelno for r in caplog.records] == [logging.CRITICAL, logging.WARNING]
        assert caplog.records[0].alert_type == "performance/hub_load_time"

    def test_log_error_context(self, caplog):
        """Test errors carry their type and context."""
        logger = logging.getLogger("tests.errors")

        with caplog.at_level(logging.ERROR, logger="tests.errors"):
            log_error(logger, ValueError("bad sample"), {"tick": 3})

        record = caplog.records[0]
        assert record.error_type == "ValueError"
        assert record.tick == 3
