"""
Issue priced invoices through the payment provider.

The provider draft is created first, then the local draft row is committed
under its Stripe id, then the draft is filled and finalized and the local
row moves to sent. Webhooks for the draft therefore find the row instead of
inserting one. Provider calls are not compensated: a failure after the
draft exists leaves both drafts in place, is logged and surfaces as
PaymentProviderError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import env
from ...exceptions import (
  CartValidationError,
  FinancialWriteError,
  InvoiceStateError,
  PaymentProviderError,
  RecordNotFoundError,
)
from ...logger import get_logger, log_financial_alert
from ...models.billing import (
  BillingAuditLog,
  BillingEventType,
  Invoice,
  InvoiceLineItem,
  InvoiceStatus,
  PaymentStatus,
)
from ...models.crm import Company, Contact
from ...utils.money import quantize_money, to_minor_units
from ..pricing import CartItem, PricedLineItem, PricingEngine
from .notifications import NotificationSink
from .payment_provider import PaymentProvider
from .vat import calculate_vat

logger = get_logger("finishops.billing.invoices")

SHIPPING_PRODUCT_CODE = "SHIPPING"
VAT_PRODUCT_CODE = "VAT"


class ShippingCalculator(ABC):
  @abstractmethod
  def cost(self, country: str, subtotal: Decimal) -> Decimal:
    """Shipping charge in pounds for an order subtotal to a country."""
    pass


class RpcShippingCalculator(ShippingCalculator):
  """Shipping from the database's calculate_shipping_cost() rate table."""

  def __init__(self, session: Session):
    self.session = session

  def cost(self, country: str, subtotal: Decimal) -> Decimal:
    value = self.session.execute(
      text("SELECT calculate_shipping_cost(:country_code, :order_subtotal)"),
      {"country_code": country, "order_subtotal": subtotal},
    ).scalar()
    return quantize_money(Decimal(str(value or 0)))


@dataclass
class InvoiceRequest:
  company_id: str
  items: List[CartItem]
  contact_id: Optional[str] = None
  quote_id: Optional[str] = None
  po_number: Optional[str] = None
  shipping_country: Optional[str] = None
  currency: str = field(default_factory=lambda: env.DEFAULT_CURRENCY)
  free_shipping: bool = False
  allow_over_max: bool = False


class InvoiceCreator:
  """Prices a cart and issues it as a provider invoice plus a local record."""

  def __init__(
    self,
    session: Session,
    provider: PaymentProvider,
    notifier: NotificationSink,
    pricing_engine: PricingEngine,
    shipping_calculator: Optional[ShippingCalculator] = None,
  ):
    self.session = session
    self.provider = provider
    self.notifier = notifier
    self.pricing_engine = pricing_engine
    self.shipping_calculator = shipping_calculator or RpcShippingCalculator(session)

  def create_invoice(self, request: InvoiceRequest) -> Invoice:
    """Create, finalize and record an invoice for a cart.

    Raises:
        RecordNotFoundError: unknown company
        CartValidationError: malformed cart, or over-max quantities
            without `allow_over_max`
        PricingConfigurationError: ladders unavailable
        PaymentProviderError: a provider call failed
        FinancialWriteError: the provider invoice exists but the record
            could not be saved
    """
    company = Company.get_by_id(request.company_id, self.session)
    if company is None:
      raise RecordNotFoundError("company", request.company_id)
    contact = self._contact(request)

    priced = self.pricing_engine.price(request.items)
    if priced.validation_errors and not request.allow_over_max:
      raise CartValidationError(priced.validation_errors)
    lines = [line for line in priced.items if line.quantity > 0]
    if not lines:
      raise CartValidationError(["Invoice needs at least one item with quantity"])

    country = (
      request.shipping_country or company.billing_country or company.country or "GB"
    ).upper()
    shipping = (
      Decimal("0.00")
      if request.free_shipping
      else self.shipping_calculator.cost(country, priced.subtotal)
    )
    vat = calculate_vat(priced.subtotal + shipping, country, company.vat_number)
    total = priced.subtotal + shipping + vat.amount

    customer_id = self._ensure_customer(company, contact)
    draft = self.provider.create_draft_invoice(
      customer_id, request.currency, self._provider_metadata(request, vat, country)
    )

    values = {
      "company_id": company.id,
      "contact_id": contact.id if contact is not None else None,
      "quote_id": request.quote_id,
      "invoice_type": "sale",
      "currency": request.currency.lower(),
      "subtotal_cents": to_minor_units(priced.subtotal),
      "shipping_cents": to_minor_units(shipping),
      "tax_cents": to_minor_units(vat.amount),
      "total_cents": to_minor_units(total),
      "shipping_country": country,
      "vat_exempt_reason": vat.exempt_reason,
      "stripe_customer_id": customer_id,
      "notes": f"PO: {request.po_number}" if request.po_number else None,
    }
    try:
      invoice = self._record_draft(draft["id"], values, lines)
    except SQLAlchemyError as e:
      raise self._record_failed(company.id, draft["id"], e) from e

    finalized = self._fill_provider_invoice(
      request, customer_id, draft["id"], lines, shipping, vat
    )

    try:
      self.session.refresh(invoice)
      invoice.invoice_number = finalized.get("number") or invoice.invoice_number
      invoice.invoice_url = finalized.get("hosted_invoice_url") or invoice.invoice_url
      invoice.invoice_pdf_url = finalized.get("invoice_pdf") or invoice.invoice_pdf_url
      invoice.transition_to(InvoiceStatus.SENT)
      BillingAuditLog.log_event(
        session=self.session,
        event_type=BillingEventType.INVOICE_CREATED,
        description=f"Invoice {invoice.invoice_number or invoice.id} issued",
        company_id=company.id,
        invoice_id=invoice.id,
        provider="stripe",
        event_data={
          "stripe_invoice_id": invoice.stripe_invoice_id,
          "total_cents": invoice.total_cents,
          "validation_errors": priced.validation_errors,
        },
      )
    except SQLAlchemyError as e:
      raise self._record_failed(company.id, draft["id"], e) from e

    logger.info(
      f"Created invoice {invoice.id} ({invoice.invoice_number}) for "
      f"£{total:.2f}",
      extra={"company_id": company.id, "invoice_id": invoice.id},
    )

    if contact is not None and contact.email:
      sent = self.notifier.send_invoice_email(
        to_email=contact.email,
        recipient_name=contact.full_name,
        invoice_number=invoice.invoice_number,
        total_cents=invoice.total_cents,
        currency=invoice.currency,
        invoice_url=invoice.invoice_url,
      )
      if not sent:
        logger.warning(f"Invoice email for {invoice.id} was not sent")

    return invoice

  def void_invoice(self, invoice_id: str, actor: str = "system") -> Invoice:
    """Void an unpaid invoice with the provider and locally.

    Raises:
        RecordNotFoundError: unknown invoice
        InvoiceStateError: invoice is paid or already void
        PaymentProviderError: the provider refused
    """
    invoice = Invoice.get_by_id(invoice_id, self.session)
    if invoice is None:
      raise RecordNotFoundError("invoice", invoice_id)
    if invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value):
      raise InvoiceStateError(invoice.id, invoice.status, "void")

    if invoice.stripe_invoice_id:
      self.provider.void_invoice(invoice.stripe_invoice_id)

    invoice.transition_to(InvoiceStatus.VOID)
    BillingAuditLog.log_event(
      session=self.session,
      event_type=BillingEventType.INVOICE_VOIDED,
      description=f"Invoice {invoice.invoice_number or invoice.id} voided",
      actor_type=actor,
      company_id=invoice.company_id,
      invoice_id=invoice.id,
      provider="stripe",
      event_data={"stripe_invoice_id": invoice.stripe_invoice_id},
    )
    logger.info(f"Voided invoice {invoice.id}", extra={"invoice_id": invoice.id})
    return invoice

  def _contact(self, request: InvoiceRequest) -> Optional[Contact]:
    if request.contact_id:
      contact = Contact.get_by_id(request.contact_id, self.session)
      if contact is not None:
        return contact
    return Contact.get_primary_for_company(request.company_id, self.session)

  def _ensure_customer(self, company: Company, contact: Optional[Contact]) -> str:
    if company.stripe_customer_id:
      return company.stripe_customer_id

    customer_id = self.provider.create_customer(
      company.id,
      contact.email if contact is not None else None,
      company.company_name,
    )
    company.stripe_customer_id = customer_id
    self.session.commit()
    return customer_id

  @staticmethod
  def _provider_metadata(request: InvoiceRequest, vat, country: str) -> Dict[str, str]:
    metadata = {
      "company_id": request.company_id,
      "contact_id": request.contact_id or "",
      "quote_id": request.quote_id or "",
      "shipping_country": country,
      "vat_exempt_reason": vat.exempt_reason or "",
    }
    if request.po_number:
      metadata["po_number"] = request.po_number
    return metadata

  def _record_draft(
    self, stripe_invoice_id: str, values: Dict[str, Any], lines: List[PricedLineItem]
  ) -> Invoice:
    """Commit the local draft for a provider draft before it is filled.

    The invoice.created webhook can land first and insert a bare row for the
    same Stripe id; that row is adopted rather than duplicated.
    """
    try:
      invoice = self._apply_draft(stripe_invoice_id, values, lines)
      self.session.commit()
    except IntegrityError:
      self.session.rollback()
      logger.info(f"Adopting webhook record for Stripe invoice {stripe_invoice_id}")
      invoice = self._apply_draft(stripe_invoice_id, values, lines)
      self.session.commit()
    return invoice

  def _apply_draft(
    self, stripe_invoice_id: str, values: Dict[str, Any], lines: List[PricedLineItem]
  ) -> Invoice:
    invoice = Invoice.get_by_stripe_invoice_id(stripe_invoice_id, self.session)
    if invoice is None:
      invoice = Invoice(
        stripe_invoice_id=stripe_invoice_id,
        status=InvoiceStatus.DRAFT.value,
        payment_status=PaymentStatus.UNPAID.value,
      )
      self.session.add(invoice)

    for key, value in values.items():
      setattr(invoice, key, value)
    invoice.line_items.clear()
    for number, line in enumerate(lines, start=1):
      invoice.line_items.append(
        InvoiceLineItem(
          line_number=number,
          product_code=line.product_code,
          description=line.description,
          quantity=line.quantity,
          unit_price_cents=to_minor_units(line.unit_price),
          line_total_cents=to_minor_units(line.line_total),
          discount_applied=line.discount_applied,
        )
      )
    self.session.flush()
    return invoice

  def _fill_provider_invoice(
    self,
    request: InvoiceRequest,
    customer_id: str,
    stripe_invoice_id: str,
    lines: List[PricedLineItem],
    shipping: Decimal,
    vat,
  ) -> Dict[str, Any]:
    try:
      for line in lines:
        self.provider.add_invoice_item(
          customer_id,
          stripe_invoice_id,
          to_minor_units(line.unit_price * line.quantity),
          request.currency,
          f"{line.product_code} - {line.description or line.product_code}",
          metadata={"product_code": line.product_code},
        )
      if shipping > 0:
        self.provider.add_invoice_item(
          customer_id,
          stripe_invoice_id,
          to_minor_units(shipping),
          request.currency,
          "Shipping & Handling",
          metadata={"product_code": SHIPPING_PRODUCT_CODE},
        )
      if vat.amount > 0:
        self.provider.add_invoice_item(
          customer_id,
          stripe_invoice_id,
          to_minor_units(vat.amount),
          request.currency,
          vat.label,
          metadata={"product_code": VAT_PRODUCT_CODE},
        )
      return self.provider.finalize_invoice(stripe_invoice_id)
    except PaymentProviderError:
      logger.error(
        f"Provider invoice {stripe_invoice_id} left as draft after a failed call",
        extra={"company_id": request.company_id, "stripe_invoice_id": stripe_invoice_id},
      )
      raise

  def _record_failed(
    self, company_id: str, stripe_invoice_id: str, error: SQLAlchemyError
  ) -> FinancialWriteError:
    self.session.rollback()
    log_financial_alert(
      logger,
      f"Stripe invoice {stripe_invoice_id} issued but not recorded: {error}",
      action="record_invoice",
      company_id=company_id,
      metadata={"stripe_invoice_id": stripe_invoice_id},
      exc_info=True,
    )
    return FinancialWriteError("invoice", str(error), stripe_invoice_id=stripe_invoice_id)
