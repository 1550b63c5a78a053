"""
FinishOps Unified Logging

Thin entry point over `finishops.config.logging`: importing this module sets up
structured logging once and exposes the component loggers used across the
service.
"""

import logging

from .config import env
from .config.logging import (
  get_logger,
  log_error,
  log_financial_alert,
  log_webhook_event,
  setup_logging,
)

setup_logging()

logger = get_logger("finishops")

if env.is_development():
  logging.getLogger("httpx").setLevel(logging.WARNING)
  logging.getLogger("httpcore").setLevel(logging.WARNING)
  logging.getLogger("boto3").setLevel(logging.WARNING)
  logging.getLogger("botocore").setLevel(logging.WARNING)
  logging.getLogger("urllib3").setLevel(logging.WARNING)

api_logger = get_logger("finishops.api")
billing_logger = get_logger("finishops.billing")
pricing_logger = get_logger("finishops.pricing")

__all__ = [
  "api_logger",
  "billing_logger",
  "get_logger",
  "log_error",
  "log_financial_alert",
  "log_webhook_event",
  "logger",
  "pricing_logger",
]
