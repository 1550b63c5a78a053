"""Tests for the structured logging configuration."""

import json
import logging
import sys
from unittest.mock import Mock

import pytest

from finishops.config.logging import (
  StructuredFormatter,
  TieredLogFilter,
  get_logging_config,
  log_financial_alert,
  log_webhook_event,
)


def make_record(level=logging.INFO, msg="hello", **extra):
  record = logging.LogRecord("finishops.billing", level, __file__, 1, msg, None, None)
  for key, value in extra.items():
    setattr(record, key, value)
  return record


@pytest.mark.unit
class TestStructuredFormatter:
  def test_formats_webhook_context_as_json(self):
    record = make_record(
      event_id="evt_1", event_type="invoice.paid", action="processed", metadata={"a": 1}
    )

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["level"] == "INFO"
    assert entry["component"] == "finishops.billing"
    assert entry["event_id"] == "evt_1"
    assert entry["event_type"] == "invoice.paid"
    assert entry["action"] == "processed"
    assert entry["metadata"] == {"a": 1}

  def test_errors_include_exception(self):
    try:
      raise RuntimeError("db gone")
    except RuntimeError:
      record = make_record(logging.ERROR, "failed", exc_info=sys.exc_info())

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["error"]["type"] == "RuntimeError"
    assert entry["error"]["message"] == "db gone"

  def test_warning_keeps_category(self):
    record = make_record(logging.WARNING, error_category="side_effect")

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["error_category"] == "side_effect"


@pytest.mark.unit
class TestTieredLogFilter:
  @pytest.mark.parametrize(
    "tier,level,expected",
    [
      ("critical", logging.CRITICAL, True),
      ("critical", logging.WARNING, False),
      ("operational", logging.WARNING, True),
      ("operational", logging.ERROR, False),
      ("debug", logging.DEBUG, True),
      ("debug", logging.INFO, False),
    ],
  )
  def test_tiers(self, tier, level, expected):
    assert TieredLogFilter(tier).filter(make_record(level)) is expected


@pytest.mark.unit
class TestLoggingConfig:
  def test_prod_uses_tiered_handlers(self):
    config = get_logging_config("prod")

    assert config["loggers"]["finishops"]["handlers"] == ["critical", "operational"]
    assert config["loggers"]["finishops"]["level"] == "INFO"
    assert "debug" not in config["handlers"]

  def test_staging_adds_debug_stream(self):
    config = get_logging_config("staging")

    assert "debug" in config["loggers"]["finishops.billing"]["handlers"]

  def test_test_environment_is_quiet(self):
    assert get_logging_config("test")["loggers"]["finishops"]["level"] == "WARNING"

  def test_dev_logs_to_console(self):
    config = get_logging_config("dev")

    assert config["loggers"]["finishops"]["handlers"] == ["console"]
    assert config["handlers"]["console"]["formatter"] == "simple"


@pytest.mark.unit
class TestLogHelpers:
  def test_webhook_event(self):
    logger = Mock()

    log_webhook_event(logger, "evt_1", "invoice.paid", "processed", duration_ms=12.5)

    extra = logger.info.call_args.kwargs["extra"]
    assert extra["component"] == "webhook"
    assert extra["action"] == "processed"
    assert extra["duration_ms"] == 12.5

  def test_financial_alert_is_critical(self):
    logger = Mock()

    log_financial_alert(logger, "invoice not recorded", action="record_invoice")

    extra = logger.critical.call_args.kwargs["extra"]
    assert extra["error_category"] == "financial_write"
    assert extra["component"] == "billing"
