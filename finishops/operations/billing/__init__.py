"""Billing operations: webhook reconciliation, invoicing and commissions."""

from .commission import CommissionBreakdown, calculate_commission, default_partner_rates
from .events import ProviderEvent, parse_provider_event
from .invoice_creator import (
  InvoiceCreator,
  InvoiceRequest,
  RpcShippingCalculator,
  ShippingCalculator,
)
from .notifications import (
  LoggingNotificationSink,
  NotificationSink,
  PortalCache,
  RpcPortalCache,
  SESNotificationSink,
  get_notification_sink,
)
from .payment_provider import PaymentProvider, StripePaymentProvider, get_payment_provider
from .reconciliation import HandleResult, HandleStatus, WebhookReconciler
from .repository import BillingRepository, SqlAlchemyBillingRepository
from .subscriptions import build_trial_metadata, validate_upgrade
from .vat import VatResult, calculate_vat
from .writers import InvoiceWriter, LegacyOrderWriter

__all__ = [
  "BillingRepository",
  "CommissionBreakdown",
  "HandleResult",
  "HandleStatus",
  "InvoiceCreator",
  "InvoiceRequest",
  "InvoiceWriter",
  "LegacyOrderWriter",
  "LoggingNotificationSink",
  "NotificationSink",
  "PaymentProvider",
  "PortalCache",
  "ProviderEvent",
  "RpcPortalCache",
  "RpcShippingCalculator",
  "SESNotificationSink",
  "ShippingCalculator",
  "SqlAlchemyBillingRepository",
  "StripePaymentProvider",
  "VatResult",
  "WebhookReconciler",
  "build_trial_metadata",
  "calculate_commission",
  "calculate_vat",
  "default_partner_rates",
  "get_notification_sink",
  "get_payment_provider",
  "validate_upgrade",
]
