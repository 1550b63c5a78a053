"""
Financial record writers used by the reconciler.

A paid sale is written twice: once to `invoices` (the record of truth) by
InvoiceWriter, and once to the legacy `orders` table by LegacyOrderWriter.
Each writer is idempotent on its own keys and knows nothing about the
other; the reconciler calls both from one place.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Tuple

from ...config.constants import ACCOUNTING_SYNC_JOB
from ...logger import get_logger
from ...models.billing import (
  Invoice,
  InvoiceLineItem,
  InvoiceStatus,
  Order,
  OrderItem,
  OutboxJob,
  PaymentStatus,
)
from ...utils.money import from_minor_units
from .repository import BillingRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class SaleLine:
  product_code: str
  description: Optional[str]
  quantity: int
  unit_price_cents: int
  total_cents: int
  discount_applied: Optional[str] = None


@dataclass
class SaleSnapshot:
  """A completed payment, independent of which event reported it."""

  company_id: str
  contact_id: Optional[str]
  payment_intent_id: Optional[str]
  checkout_session_id: Optional[str] = None
  customer_id: Optional[str] = None
  offer_key: Optional[str] = None
  campaign_key: Optional[str] = None
  currency: str = "gbp"
  subtotal_cents: int = 0
  tax_cents: int = 0
  total_cents: int = 0
  lines: List[SaleLine] = field(default_factory=list)

  @property
  def reference(self) -> str:
    return self.checkout_session_id or self.payment_intent_id or ""

  def items_snapshot(self) -> List[Dict[str, Any]]:
    return [
      {
        "product_code": line.product_code,
        "description": line.description,
        "quantity": line.quantity,
        "unit_price_cents": line.unit_price_cents,
        "total_cents": line.total_cents,
      }
      for line in self.lines
    ]


def provider_timestamp(value: Any) -> Optional[datetime]:
  """Stripe unix seconds to an aware datetime."""
  if not value:
    return None
  return datetime.fromtimestamp(int(value), UTC)


def provider_reference(data: Dict[str, Any], key: str) -> Optional[str]:
  """An id-or-expanded-object field of a Stripe object, as an id."""
  value = data.get(key)
  return value.get("id") if isinstance(value, dict) else value


def provider_subscription_id(data: Dict[str, Any]) -> Optional[str]:
  """Subscription id of a Stripe invoice object."""
  subscription = provider_reference(data, "subscription")
  if subscription is None:
    # Newer API versions nest it under parent.subscription_details
    details = (data.get("parent") or {}).get("subscription_details") or {}
    subscription = provider_reference(details, "subscription")
  return subscription


def provider_invoice_lines(data: Dict[str, Any]) -> List[SaleLine]:
  """Line items from a Stripe invoice object's `lines`."""
  lines = []
  for line in (data.get("lines") or {}).get("data") or []:
    quantity = line.get("quantity") or 1
    amount = line.get("amount") or 0
    price = line.get("price") or {}
    metadata = line.get("metadata") or {}
    lines.append(
      SaleLine(
        product_code=metadata.get("product_code") or price.get("lookup_key") or "UNKNOWN",
        description=line.get("description"),
        quantity=quantity,
        unit_price_cents=price.get("unit_amount") or round(amount / quantity),
        total_cents=amount,
      )
    )
  return lines


class InvoiceWriter:
  """Creates and updates Invoice rows. Idempotent on provider ids."""

  def __init__(self, repository: BillingRepository):
    self.repository = repository

  def record_paid_sale(self, sale: SaleSnapshot) -> Tuple[Invoice, bool]:
    """Ensure a paid invoice exists for a sale.

    Returns the invoice and whether this call moved it to paid.
    """
    invoice = None
    if sale.checkout_session_id:
      invoice = self.repository.get_invoice_by_checkout_session(sale.checkout_session_id)
    if invoice is None and sale.payment_intent_id:
      invoice = self.repository.get_invoice_by_payment_intent(sale.payment_intent_id)

    if invoice is not None:
      if invoice.stripe_checkout_session_id is None and sale.checkout_session_id:
        invoice.stripe_checkout_session_id = sale.checkout_session_id
      return invoice, invoice.transition_to(InvoiceStatus.PAID)

    invoice = Invoice(
      company_id=sale.company_id,
      contact_id=sale.contact_id,
      invoice_type="sale",
      currency=sale.currency,
      subtotal_cents=sale.subtotal_cents,
      tax_cents=sale.tax_cents,
      total_cents=sale.total_cents,
      status=InvoiceStatus.PAID.value,
      payment_status=PaymentStatus.PAID.value,
      stripe_payment_intent_id=sale.payment_intent_id,
      stripe_checkout_session_id=sale.checkout_session_id,
      stripe_customer_id=sale.customer_id,
      paid_at=datetime.now(UTC),
    )
    self._add_lines(invoice, sale.lines)
    self.repository.add(invoice)
    self.repository.flush()
    logger.info(
      f"Created paid invoice {invoice.id} for {sale.reference}",
      extra={"company_id": sale.company_id, "invoice_id": invoice.id},
    )
    return invoice, True

  def find_for_provider_invoice(self, data: Dict[str, Any]) -> Optional[Invoice]:
    """Existing record by Stripe invoice id, else by its payment intent."""
    invoice = self.repository.get_invoice_by_provider_id(data["id"])
    if invoice is not None:
      return invoice

    payment_intent = provider_reference(data, "payment_intent")
    if payment_intent:
      invoice = self.repository.get_invoice_by_payment_intent(payment_intent)
      if invoice is not None and invoice.stripe_invoice_id is None:
        invoice.stripe_invoice_id = data["id"]
    return invoice

  def create_from_provider_invoice(
    self, data: Dict[str, Any], company_id: str, contact_id: Optional[str]
  ) -> Invoice:
    """Create a draft record mirroring a Stripe invoice object."""
    metadata = data.get("metadata") or {}
    invoice = Invoice(
      company_id=company_id,
      contact_id=contact_id,
      quote_id=metadata.get("quote_id") or None,
      invoice_type="subscription" if provider_subscription_id(data) else "sale",
      currency=(data.get("currency") or "gbp").lower(),
      subtotal_cents=data.get("subtotal") or 0,
      tax_cents=data.get("tax") or 0,
      total_cents=data.get("total") or 0,
      shipping_country=metadata.get("shipping_country") or None,
      vat_exempt_reason=metadata.get("vat_exempt_reason") or None,
      status=InvoiceStatus.DRAFT.value,
      payment_status=PaymentStatus.UNPAID.value,
      stripe_invoice_id=data["id"],
      stripe_customer_id=provider_reference(data, "customer"),
      stripe_subscription_id=provider_subscription_id(data),
    )
    self.apply_provider_details(invoice, data)
    self._add_lines(invoice, provider_invoice_lines(data))
    self.repository.add(invoice)
    self.repository.flush()
    logger.info(
      f"Recorded provider invoice {data['id']} as {invoice.id}",
      extra={"company_id": company_id, "invoice_id": invoice.id},
    )
    return invoice

  def apply_provider_details(self, invoice: Invoice, data: Dict[str, Any]) -> None:
    """Copy number, links and the payment intent from a Stripe invoice object."""
    invoice.invoice_number = data.get("number") or invoice.invoice_number
    invoice.invoice_url = data.get("hosted_invoice_url") or invoice.invoice_url
    invoice.invoice_pdf_url = data.get("invoice_pdf") or invoice.invoice_pdf_url
    if invoice.stripe_subscription_id is None:
      invoice.stripe_subscription_id = provider_subscription_id(data)

    payment_intent = provider_reference(data, "payment_intent")
    if payment_intent and invoice.stripe_payment_intent_id is None:
      owner = self.repository.get_invoice_by_payment_intent(payment_intent)
      if owner is None:
        invoice.stripe_payment_intent_id = payment_intent

  @staticmethod
  def _add_lines(invoice: Invoice, lines: List[SaleLine]) -> None:
    for number, line in enumerate(lines, start=1):
      invoice.line_items.append(
        InvoiceLineItem(
          line_number=number,
          product_code=line.product_code,
          description=line.description,
          quantity=line.quantity,
          unit_price_cents=line.unit_price_cents,
          line_total_cents=line.total_cents,
          discount_applied=line.discount_applied,
        )
      )


class LegacyOrderWriter:
  """Keeps the deprecated `orders` table in step with invoices.

  Deprecated: remove this class, Order/OrderItem and their tables once the
  reports and the accounting sync read invoices. Nothing else writes orders.
  """

  def __init__(self, repository: BillingRepository):
    self.repository = repository

  def record_checkout(
    self, sale: SaleSnapshot, invoice: Optional[Invoice] = None
  ) -> Tuple[Order, bool]:
    """Ensure a paid order exists for a sale. Returns (order, created)."""
    order = None
    if sale.checkout_session_id:
      order = self.repository.get_order_by_checkout_session(sale.checkout_session_id)
    if order is None and sale.payment_intent_id:
      order = self.repository.get_order_by_payment_intent(sale.payment_intent_id)

    if order is not None:
      logger.info(f"Order already exists: {order.id}")
      order.mark_paid()
      if invoice is not None and order.invoice_id is None:
        order.invoice_id = invoice.id
      return order, False

    order = Order(
      company_id=sale.company_id,
      contact_id=sale.contact_id,
      invoice_id=invoice.id if invoice is not None else None,
      stripe_checkout_session_id=sale.checkout_session_id,
      stripe_payment_intent_id=sale.payment_intent_id,
      stripe_customer_id=sale.customer_id,
      offer_key=sale.offer_key,
      campaign_key=sale.campaign_key,
      items=sale.items_snapshot(),
      currency=sale.currency.upper(),
      subtotal_cents=sale.subtotal_cents,
      tax_cents=sale.tax_cents,
      total_cents=sale.total_cents,
    )
    order.mark_paid()
    for line in sale.lines:
      order.order_items.append(
        OrderItem(
          product_code=line.product_code,
          description=line.description,
          quantity=line.quantity,
          unit_price_cents=line.unit_price_cents,
          total_price_cents=line.total_cents,
        )
      )
    self.repository.add(order)
    self.repository.flush()
    logger.info(f"Order created: {order.id}", extra={"company_id": sale.company_id})
    return order, True

  def enqueue_accounting_sync(self, order: Order, sale: SaleSnapshot) -> OutboxJob:
    job = OutboxJob(
      job_type=ACCOUNTING_SYNC_JOB,
      payload={
        "order_id": order.id,
        "company_id": order.company_id,
        "items": sale.items_snapshot(),
        "total": str(from_minor_units(order.total_cents)),
        "currency": order.currency,
        "payment_reference": sale.payment_intent_id,
      },
      company_id=order.company_id,
      order_id=order.id,
    )
    self.repository.add(job)
    logger.info(f"Accounting sync job enqueued for order: {order.id}")
    return job

  def mark_paid(self, payment_intent_id: Optional[str]) -> bool:
    order = self._by_payment_intent(payment_intent_id)
    return order.mark_paid() if order is not None else False

  def mark_payment_failed(self, payment_intent_id: Optional[str]) -> bool:
    order = self._by_payment_intent(payment_intent_id)
    if order is None:
      return False
    changed = order.mark_payment_failed()
    if changed:
      logger.info(f"Order status updated to cancelled: {order.id}")
    return changed

  def apply_refund(
    self, payment_intent_id: Optional[str], amount_refunded_cents: int
  ) -> Optional[Order]:
    order = self._by_payment_intent(payment_intent_id)
    if order is not None:
      order.apply_refund(amount_refunded_cents)
    return order

  def sync_invoice_paid(self, invoice: Invoice) -> bool:
    order = self.repository.get_order_by_invoice(invoice.id)
    if order is None:
      order = self._by_payment_intent(invoice.stripe_payment_intent_id)
    return order.mark_paid() if order is not None else False

  def _by_payment_intent(self, payment_intent_id: Optional[str]) -> Optional[Order]:
    if not payment_intent_id:
      return None
    return self.repository.get_order_by_payment_intent(payment_intent_id)
