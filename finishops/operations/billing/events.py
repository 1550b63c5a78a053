"""
Typed payment provider events.

A verified Stripe event is parsed once into a frozen dataclass whose class
says what happened. The reconciler matches on the class, so adding an event
type means adding a variant here and a case there.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ...exceptions import WebhookPayloadError


@dataclass(frozen=True)
class _ProviderEventBase:
  event_id: str
  event_type: str
  data: Dict[str, Any]
  metadata: Dict[str, str] = field(default_factory=dict)

  @property
  def object_id(self) -> Optional[str]:
    return self.data.get("id")

  @property
  def company_id(self) -> Optional[str]:
    return _clean(self.metadata.get("company_id"))

  @property
  def contact_id(self) -> Optional[str]:
    return _clean(self.metadata.get("contact_id"))

  @property
  def currency(self) -> str:
    return (self.data.get("currency") or "gbp").lower()

  def reference(self, key: str) -> Optional[str]:
    """An id-or-expanded-object reference on the data object, as an id."""
    value = self.data.get(key)
    if isinstance(value, dict):
      return value.get("id")
    return value


@dataclass(frozen=True)
class CheckoutCompleted(_ProviderEventBase):
  @property
  def is_subscription(self) -> bool:
    return self.data.get("mode") == "subscription"

  @property
  def product_codes(self) -> List[str]:
    return _json_list(self.metadata.get("product_codes"))

  @property
  def cart(self) -> List[Dict[str, Any]]:
    return [entry for entry in _json_list(self.metadata.get("cart")) if isinstance(entry, dict)]


@dataclass(frozen=True)
class SubscriptionCreated(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class SubscriptionUpdated(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class SubscriptionDeleted(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class PaymentIntentSucceeded(_ProviderEventBase):
  @property
  def cart(self) -> List[Dict[str, Any]]:
    return [entry for entry in _json_list(self.metadata.get("cart")) if isinstance(entry, dict)]


@dataclass(frozen=True)
class PaymentIntentFailed(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoiceCreated(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoiceFinalized(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoiceSent(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoicePaid(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoicePaymentFailed(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoiceVoided(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class InvoiceMarkedUncollectible(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class ChargeRefunded(_ProviderEventBase):
  pass


@dataclass(frozen=True)
class UnhandledEvent(_ProviderEventBase):
  """Any event type we subscribe to but do not act on."""

  pass


ProviderEvent = Union[
  CheckoutCompleted,
  SubscriptionCreated,
  SubscriptionUpdated,
  SubscriptionDeleted,
  PaymentIntentSucceeded,
  PaymentIntentFailed,
  InvoiceCreated,
  InvoiceFinalized,
  InvoiceSent,
  InvoicePaid,
  InvoicePaymentFailed,
  InvoiceVoided,
  InvoiceMarkedUncollectible,
  ChargeRefunded,
  UnhandledEvent,
]

STRIPE_EVENT_TYPES: Dict[str, type] = {
  "checkout.session.completed": CheckoutCompleted,
  "customer.subscription.created": SubscriptionCreated,
  "customer.subscription.updated": SubscriptionUpdated,
  "customer.subscription.deleted": SubscriptionDeleted,
  "payment_intent.succeeded": PaymentIntentSucceeded,
  "payment_intent.payment_failed": PaymentIntentFailed,
  "invoice.created": InvoiceCreated,
  "invoice.finalized": InvoiceFinalized,
  "invoice.sent": InvoiceSent,
  "invoice.paid": InvoicePaid,
  "invoice.payment_succeeded": InvoicePaid,
  "invoice.payment_failed": InvoicePaymentFailed,
  "invoice.voided": InvoiceVoided,
  "invoice.marked_uncollectible": InvoiceMarkedUncollectible,
  "charge.refunded": ChargeRefunded,
}


def parse_provider_event(raw: Dict[str, Any]) -> ProviderEvent:
  """Parse a verified Stripe event payload.

  Raises:
      WebhookPayloadError: if the envelope is missing its id, type or object
  """
  if not isinstance(raw, dict):
    raise WebhookPayloadError("event is not an object")

  event_id = raw.get("id")
  event_type = raw.get("type")
  if not event_id or not event_type:
    raise WebhookPayloadError("event id or type missing", event_id=event_id)

  data_object = (raw.get("data") or {}).get("object")
  if not isinstance(data_object, dict):
    raise WebhookPayloadError("event data.object missing", event_id=event_id)

  variant = STRIPE_EVENT_TYPES.get(event_type, UnhandledEvent)
  return variant(
    event_id=event_id,
    event_type=event_type,
    data=data_object,
    metadata=_metadata(data_object),
  )


def _metadata(data_object: Dict[str, Any]) -> Dict[str, str]:
  metadata = data_object.get("metadata")
  if not isinstance(metadata, dict):
    return {}
  return {str(key): value for key, value in metadata.items() if value is not None}


def _clean(value: Any) -> Optional[str]:
  if value is None:
    return None
  value = str(value).strip()
  return value or None


def _json_list(value: Any) -> List[Any]:
  # Stripe metadata values are strings; lists arrive JSON encoded
  if isinstance(value, list):
    return value
  if not value:
    return []
  try:
    parsed = json.loads(value)
  except (TypeError, ValueError):
    return []
  return parsed if isinstance(parsed, list) else []
