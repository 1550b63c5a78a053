"""
Custom Exception Types for FinishOps.

A single hierarchy rooted at FinishOpsError. Each exception carries an error
code and a details dict so API handlers can render it without knowing the
concrete type.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class FinishOpsError(Exception):
  """
  Base exception for all FinishOps application errors.

  Attributes:
      message: Human-readable error message
      error_code: Application-specific error code for categorization
      details: Additional error context and metadata
      timestamp: When the error occurred
  """

  def __init__(
    self,
    message: str,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
  ):
    super().__init__(message)
    self.message = message
    self.error_code = error_code or self.__class__.__name__
    self.details = details or {}
    self.timestamp = datetime.now(timezone.utc).isoformat()

  def to_dict(self) -> Dict[str, Any]:
    """Convert exception to dictionary for API responses."""
    return {
      "error": self.error_code,
      "message": self.message,
      "details": self.details,
      "timestamp": self.timestamp,
    }


# ============================================================================
# Pricing Exceptions
# ============================================================================


class PricingError(FinishOpsError):
  """Base exception for pricing failures."""

  pass


class PricingConfigurationError(PricingError):
  """Raised when tier ladders cannot be loaded or are malformed.

  Always fatal to the pricing call: quoting with a guessed ladder is worse
  than refusing to quote.
  """

  def __init__(self, source: str, reason: str):
    super().__init__(
      f"Pricing configuration unavailable from {source}: {reason}",
      error_code="PRICING_CONFIGURATION_ERROR",
      details={"source": source, "reason": reason},
    )


class CartValidationError(PricingError):
  """Raised when a cart cannot be priced at all (malformed input)."""

  def __init__(self, errors: List[str]):
    super().__init__(
      f"Cart validation failed: {'; '.join(errors[:3])}",
      error_code="CART_VALIDATION_ERROR",
      details={"errors": errors[:10], "total_errors": len(errors)},
    )


# ============================================================================
# Billing Exceptions
# ============================================================================


class BillingError(FinishOpsError):
  """Base exception for billing and reconciliation failures."""

  pass


class WebhookPayloadError(BillingError):
  """Raised when a verified webhook event cannot be parsed."""

  def __init__(self, reason: str, event_id: Optional[str] = None):
    details = {"reason": reason}
    if event_id:
      details["event_id"] = event_id
    super().__init__(
      f"Malformed webhook event: {reason}",
      error_code="WEBHOOK_PAYLOAD_ERROR",
      details=details,
    )


class PaymentProviderError(BillingError):
  """Raised when a payment provider API call fails."""

  def __init__(self, operation: str, reason: str, provider: str = "stripe", **kwargs):
    details = {"provider": provider, "operation": operation, "reason": reason}
    details.update(kwargs)
    super().__init__(
      f"{provider} {operation} failed: {reason}",
      error_code="PAYMENT_PROVIDER_ERROR",
      details=details,
    )


class FinancialWriteError(BillingError):
  """Raised when a primary financial record cannot be written."""

  def __init__(self, record_type: str, reason: str, **kwargs):
    details = {"record_type": record_type, "reason": reason}
    details.update(kwargs)
    super().__init__(
      f"Failed to write {record_type}: {reason}",
      error_code="FINANCIAL_WRITE_ERROR",
      details=details,
    )


class InvoiceStateError(BillingError):
  """Raised when an invoice action is illegal in its current state."""

  def __init__(self, invoice_id: str, status: str, action: str):
    super().__init__(
      f"Cannot {action} invoice {invoice_id} in status '{status}'",
      error_code="INVOICE_STATE_ERROR",
      details={"invoice_id": invoice_id, "status": status, "action": action},
    )


class SubscriptionPriceError(BillingError):
  """Raised when a subscription change would lower its price."""

  def __init__(self, subscription_id: str, current_cents: int, requested_cents: int):
    super().__init__(
      f"Subscription {subscription_id} cannot move from "
      f"£{current_cents / 100:.2f} to £{requested_cents / 100:.2f}",
      error_code="SUBSCRIPTION_PRICE_ERROR",
      details={
        "subscription_id": subscription_id,
        "current_cents": current_cents,
        "requested_cents": requested_cents,
      },
    )


class RecordNotFoundError(FinishOpsError):
  """Raised when a referenced record does not exist."""

  def __init__(self, record_type: str, identifier: str):
    super().__init__(
      f"{record_type} '{identifier}' not found",
      error_code="RECORD_NOT_FOUND",
      details={"record_type": record_type, "identifier": identifier},
    )


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(FinishOpsError):
  """Raised when there are configuration issues."""

  def __init__(self, config_key: str, reason: str):
    super().__init__(
      f"Configuration error for '{config_key}': {reason}",
      error_code="CONFIGURATION_ERROR",
      details={"config_key": config_key, "reason": reason},
    )
