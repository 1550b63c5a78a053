"""
Structured Logging Configuration for FinishOps

Structured JSON logs split into cost tiers, so that webhook reconciliation and
pricing failures can be searched by component, action and error category.

Key Features:
- Tiered logging (Critical/Operational/Debug)
- Structured JSON output for log search
- Automatic log level management by environment
- Error categorization (side_effect vs financial_write vs pricing_config)
"""

import json
import logging
import logging.config
import traceback
from datetime import UTC, datetime
from typing import Any

from finishops.config.env import EnvConfig


class StructuredFormatter(logging.Formatter):
  """
  JSON formatter that creates searchable structured logs.

  - Timestamp in ISO format
  - Consistent field names for filtering
  - Hierarchical component/action structure
  - Metadata preserved as searchable fields
  """

  def format(self, record: logging.LogRecord) -> str:
    log_entry = {
      "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
      "level": record.levelname,
      "component": getattr(record, "component", record.name),
      "message": record.getMessage(),
    }

    if hasattr(record, "action"):
      log_entry["action"] = record.action

    # Webhook context
    if hasattr(record, "event_id"):
      log_entry["event_id"] = record.event_id
    if hasattr(record, "event_type"):
      log_entry["event_type"] = record.event_type
    if hasattr(record, "company_id"):
      log_entry["company_id"] = record.company_id

    if hasattr(record, "duration_ms"):
      log_entry["duration_ms"] = record.duration_ms
    if hasattr(record, "status_code"):
      log_entry["status_code"] = record.status_code

    if record.levelno >= logging.ERROR:
      if record.exc_info:
        log_entry["error"] = {
          "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
          "message": str(record.exc_info[1]) if record.exc_info[1] else "",
          "traceback": traceback.format_exception(*record.exc_info),
        }

    # Warnings carry a category too (ratchet anomalies are warnings)
    if hasattr(record, "error_category"):
      log_entry["error_category"] = record.error_category

    if hasattr(record, "metadata"):
      log_entry["metadata"] = record.metadata

    if hasattr(record, "request_id"):
      log_entry["request_id"] = record.request_id

    return json.dumps(log_entry, default=str, separators=(",", ":"))


class TieredLogFilter:
  """
  Filter logs by tier.

  Tier 1 (Critical): ERROR, CRITICAL
  Tier 2 (Operational): INFO, WARNING
  Tier 3 (Debug): DEBUG
  """

  def __init__(self, tier: str):
    self.tier = tier

  def filter(self, record: logging.LogRecord) -> bool:
    if self.tier == "critical":
      return record.levelno >= logging.ERROR
    elif self.tier == "operational":
      return logging.INFO <= record.levelno < logging.ERROR
    elif self.tier == "debug":
      return record.levelno == logging.DEBUG
    return True


APPLICATION_LOGGERS = [
  "finishops",
  "finishops.api",
  "finishops.billing",
  "finishops.pricing",
]


def get_logging_config(environment: str | None = None) -> dict[str, Any]:
  """
  Generate logging configuration based on environment.

  - prod: INFO level, structured output, no debug logs
  - staging: INFO level, with debug logs enabled
  - test: WARNING level, minimal output for clean test runs
  - dev: DEBUG level, all logs enabled (unless LOG_LEVEL overrides)
  """
  env = environment or EnvConfig.ENVIRONMENT

  log_level_override = getattr(EnvConfig, "LOG_LEVEL", None)

  if env == "prod":
    default_level = "INFO"
    enable_debug = False
  elif env == "staging":
    default_level = "INFO"
    enable_debug = True
  elif env == "test":
    default_level = "WARNING"
    enable_debug = False
  else:  # dev
    default_level = log_level_override or "DEBUG"
    enable_debug = default_level == "DEBUG"

  app_handlers = ["critical", "operational"] if env != "dev" else ["console"]

  config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
      "structured": {
        "()": StructuredFormatter,
      },
      "simple": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
    },
    "filters": {
      "critical_filter": {"()": TieredLogFilter, "tier": "critical"},
      "operational_filter": {"()": TieredLogFilter, "tier": "operational"},
      "debug_filter": {"()": TieredLogFilter, "tier": "debug"},
    },
    "handlers": {
      "critical": {
        "class": "logging.StreamHandler",
        "level": "ERROR",
        "formatter": "structured",
        "filters": ["critical_filter"],
        "stream": "ext://sys.stderr",
      },
      "operational": {
        "class": "logging.StreamHandler",
        "level": "INFO",
        "formatter": "structured",
        "filters": ["operational_filter"],
        "stream": "ext://sys.stdout",
      },
      "console": {
        "class": "logging.StreamHandler",
        "level": default_level,
        "formatter": "simple" if env == "dev" else "structured",
        "stream": "ext://sys.stdout",
      },
    },
    "loggers": {
      name: {
        "level": default_level,
        "handlers": list(app_handlers),
        "propagate": False,
      }
      for name in APPLICATION_LOGGERS
    },
    "root": {
      "level": "WARNING",
      "handlers": ["critical"] if env != "dev" else ["console"],
    },
  }

  # Third-party loggers (reduced verbosity)
  for name, handlers in (
    ("uvicorn", ["operational"]),
    ("sqlalchemy", ["operational"]),
    ("stripe", ["operational"]),
    ("boto3", ["critical"]),
    ("botocore", ["critical"]),
  ):
    config["loggers"][name] = {
      "level": "WARNING",
      "handlers": handlers if env != "dev" else ["console"],
      "propagate": False,
    }

  if enable_debug:
    config["handlers"]["debug"] = {
      "class": "logging.StreamHandler",
      "level": "DEBUG",
      "formatter": "structured",
      "filters": ["debug_filter"],
      "stream": "ext://sys.stdout",
    }

    if env != "dev":
      for logger_name in APPLICATION_LOGGERS:
        config["loggers"][logger_name]["handlers"].append("debug")

  return config


def setup_logging(environment: str | None = None) -> None:
  """Initialize structured logging configuration."""
  config = get_logging_config(environment)
  logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
  """Get a logger with structured logging capabilities."""
  return logging.getLogger(name)


def log_error(
  logger: logging.Logger,
  error: Exception,
  component: str,
  action: str,
  error_category: str = "application",
  company_id: str | None = None,
  metadata: dict[str, Any] | None = None,
) -> None:
  """Log error with structured data for easy searching."""
  logger.error(
    f"Error in {component}.{action}: {error!s}",
    exc_info=True,
    extra={
      "component": component,
      "action": action,
      "error_category": error_category,
      "company_id": company_id,
      "metadata": metadata or {},
    },
  )


def log_webhook_event(
  logger: logging.Logger,
  event_id: str,
  event_type: str,
  outcome: str,
  company_id: str | None = None,
  duration_ms: float | None = None,
  metadata: dict[str, Any] | None = None,
) -> None:
  """Log the outcome of one webhook delivery."""
  extra = {
    "component": "webhook",
    "action": outcome,
    "event_id": event_id,
    "event_type": event_type,
    "company_id": company_id,
    "metadata": metadata or {},
  }
  if duration_ms is not None:
    extra["duration_ms"] = duration_ms

  logger.info(f"Webhook {event_type} ({event_id}): {outcome}", extra=extra)


def log_financial_alert(
  logger: logging.Logger,
  message: str,
  action: str,
  error_category: str = "financial_write",
  company_id: str | None = None,
  metadata: dict[str, Any] | None = None,
  exc_info: bool = False,
) -> None:
  """Log a financial-state problem that needs an operator."""
  logger.critical(
    message,
    exc_info=exc_info,
    extra={
      "component": "billing",
      "action": action,
      "error_category": error_category,
      "company_id": company_id,
      "metadata": metadata or {},
    },
  )


setup_logging()
