"""Status enums and transition tables for billing records.

Webhooks arrive at least once and in any order, so every status change goes
through these tables: a transition that is not listed is ignored rather than
applied, which keeps a late "finalized" from dragging a paid invoice back to
"sent".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class InvoiceStatus(str, Enum):
  DRAFT = "draft"
  SENT = "sent"
  PAID = "paid"
  VOID = "void"
  UNCOLLECTIBLE = "uncollectible"


class PaymentStatus(str, Enum):
  UNPAID = "unpaid"
  PAID = "paid"
  PARTIAL = "partial"
  REFUNDED = "refunded"
  VOID = "void"


class SubscriptionStatus(str, Enum):
  TRIAL = "trial"
  ACTIVE = "active"
  PAST_DUE = "past_due"
  PAUSED = "paused"
  CANCELLED = "cancelled"


class OrderStatus(str, Enum):
  PENDING = "pending"
  PAID = "paid"
  CANCELLED = "cancelled"


class OrderPaymentStatus(str, Enum):
  UNPAID = "unpaid"
  PAID = "paid"
  PARTIALLY_REFUNDED = "partially_refunded"
  REFUNDED = "refunded"


INVOICE_TRANSITIONS: dict[str, set[str]] = {
  InvoiceStatus.DRAFT.value: {
    InvoiceStatus.SENT.value,
    InvoiceStatus.PAID.value,
    InvoiceStatus.VOID.value,
    InvoiceStatus.UNCOLLECTIBLE.value,
  },
  InvoiceStatus.SENT.value: {
    InvoiceStatus.PAID.value,
    InvoiceStatus.VOID.value,
    InvoiceStatus.UNCOLLECTIBLE.value,
  },
  # Stripe lets an uncollectible invoice still be paid or voided
  InvoiceStatus.UNCOLLECTIBLE.value: {
    InvoiceStatus.PAID.value,
    InvoiceStatus.VOID.value,
  },
  InvoiceStatus.PAID.value: set(),
  InvoiceStatus.VOID.value: set(),
}

PAYMENT_STATUS_TRANSITIONS: dict[str, set[str]] = {
  PaymentStatus.UNPAID.value: {PaymentStatus.PAID.value, PaymentStatus.VOID.value},
  PaymentStatus.PAID.value: {PaymentStatus.PARTIAL.value, PaymentStatus.REFUNDED.value},
  PaymentStatus.PARTIAL.value: {PaymentStatus.REFUNDED.value},
  PaymentStatus.REFUNDED.value: set(),
  PaymentStatus.VOID.value: set(),
}

SUBSCRIPTION_TRANSITIONS: dict[str, set[str]] = {
  SubscriptionStatus.TRIAL.value: {
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.PAUSED.value,
    SubscriptionStatus.CANCELLED.value,
  },
  SubscriptionStatus.ACTIVE.value: {
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.PAUSED.value,
    SubscriptionStatus.CANCELLED.value,
  },
  SubscriptionStatus.PAST_DUE.value: {
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAUSED.value,
    SubscriptionStatus.CANCELLED.value,
  },
  SubscriptionStatus.PAUSED.value: {
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.CANCELLED.value,
  },
  SubscriptionStatus.CANCELLED.value: set(),
}

PROVIDER_SUBSCRIPTION_STATUS: dict[str, str] = {
  "trialing": SubscriptionStatus.TRIAL.value,
  "active": SubscriptionStatus.ACTIVE.value,
  "past_due": SubscriptionStatus.PAST_DUE.value,
  "unpaid": SubscriptionStatus.PAST_DUE.value,
  "paused": SubscriptionStatus.PAUSED.value,
  "canceled": SubscriptionStatus.CANCELLED.value,
  "incomplete_expired": SubscriptionStatus.CANCELLED.value,
}


def can_transition(table: dict[str, set[str]], current: str, new: str) -> bool:
  """True when `current -> new` is a listed transition."""
  return new in table.get(current, set())


def map_provider_subscription_status(
  provider_status: Optional[str], pause_collection: Optional[dict] = None
) -> Optional[str]:
  """Translate a Stripe subscription status to ours.

  Returns None for statuses we do not track (e.g. "incomplete"), which
  callers treat as "leave unchanged".
  """
  if pause_collection and provider_status in ("active", "trialing"):
    return SubscriptionStatus.PAUSED.value
  return PROVIDER_SUBSCRIPTION_STATUS.get(provider_status or "")


class RatchetEvent(str, Enum):
  PRICE_INCREASED = "price_increased"
  DOWNGRADE_BELOW_RATCHET = "downgrade_below_ratchet"


@dataclass(frozen=True)
class RatchetOutcome:
  ratchet_max_cents: int
  event: Optional[RatchetEvent]

  @property
  def is_anomaly(self) -> bool:
    return self.event is RatchetEvent.DOWNGRADE_BELOW_RATCHET


def apply_ratchet(ratchet_max_cents: Optional[int], new_price_cents: int) -> RatchetOutcome:
  """Apply the ratchet rule to a newly reported monthly price.

  The high-water mark only ever rises. A price below it is reported as an
  anomaly and the mark is left where it was.
  """
  if ratchet_max_cents is None:
    return RatchetOutcome(new_price_cents, None)
  if new_price_cents > ratchet_max_cents:
    return RatchetOutcome(new_price_cents, RatchetEvent.PRICE_INCREASED)
  if new_price_cents < ratchet_max_cents:
    return RatchetOutcome(ratchet_max_cents, RatchetEvent.DOWNGRADE_BELOW_RATCHET)
  return RatchetOutcome(ratchet_max_cents, None)
