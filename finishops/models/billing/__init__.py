"""Billing models."""

from .audit_log import BillingAuditLog, BillingEventType
from .commission import CommissionPaymentStatus, CommissionRecord
from .engagement import EngagementEvent, EngagementEventName, OutboxJob
from .invoice import Invoice, InvoiceLineItem
from .order import Order, OrderItem
from .states import (
  InvoiceStatus,
  OrderPaymentStatus,
  OrderStatus,
  PaymentStatus,
  RatchetEvent,
  RatchetOutcome,
  SubscriptionStatus,
)
from .subscription import Subscription, SubscriptionEvent

__all__ = [
  "BillingAuditLog",
  "BillingEventType",
  "CommissionPaymentStatus",
  "CommissionRecord",
  "EngagementEvent",
  "EngagementEventName",
  "Invoice",
  "InvoiceLineItem",
  "InvoiceStatus",
  "Order",
  "OrderItem",
  "OrderPaymentStatus",
  "OrderStatus",
  "OutboxJob",
  "PaymentStatus",
  "RatchetEvent",
  "RatchetOutcome",
  "Subscription",
  "SubscriptionEvent",
  "SubscriptionStatus",
]
