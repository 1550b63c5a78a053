"""Invoice models - the financial record of every sale."""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Session, relationship

from ...database import Base
from ...logger import get_logger
from ...utils.ulid import generate_prefixed_ulid
from .states import (
  INVOICE_TRANSITIONS,
  PAYMENT_STATUS_TRANSITIONS,
  InvoiceStatus,
  PaymentStatus,
  can_transition,
)

logger = get_logger(__name__)


class Invoice(Base):
  """Invoice for one company.

  Created once per checkout or invoice-generation event and afterwards
  mutated only by webhook reconciliation. Invoices are never deleted; they
  are voided.
  """

  __tablename__ = "invoices"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("inv"))

  company_id = Column(String, ForeignKey("companies.id"), nullable=False)
  contact_id = Column(String, ForeignKey("contacts.id"), nullable=True)
  quote_id = Column(String, nullable=True)

  invoice_number = Column(String, nullable=True)
  invoice_type = Column(String, default="sale", nullable=False)
  currency = Column(String, default="gbp", nullable=False)

  subtotal_cents = Column(Integer, default=0, nullable=False)
  shipping_cents = Column(Integer, default=0, nullable=False)
  tax_cents = Column(Integer, default=0, nullable=False)
  total_cents = Column(Integer, default=0, nullable=False)
  amount_refunded_cents = Column(Integer, default=0, nullable=False)

  shipping_country = Column(String, nullable=True)
  vat_exempt_reason = Column(String, nullable=True)

  status = Column(String, default=InvoiceStatus.DRAFT.value, nullable=False)
  payment_status = Column(String, default=PaymentStatus.UNPAID.value, nullable=False)

  # Idempotency keys from the payment provider
  stripe_invoice_id = Column(String, unique=True, nullable=True)
  stripe_payment_intent_id = Column(String, unique=True, nullable=True)
  stripe_checkout_session_id = Column(String, unique=True, nullable=True)
  stripe_customer_id = Column(String, nullable=True)
  stripe_subscription_id = Column(String, nullable=True)

  invoice_url = Column(String, nullable=True)
  invoice_pdf_url = Column(String, nullable=True)

  sent_at = Column(DateTime, nullable=True)
  paid_at = Column(DateTime, nullable=True)
  voided_at = Column(DateTime, nullable=True)

  notes = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  line_items = relationship(
    "InvoiceLineItem",
    back_populates="invoice",
    cascade="all, delete-orphan",
    order_by="InvoiceLineItem.line_number",
  )

  __table_args__ = (
    Index("idx_invoice_company", "company_id"),
    Index("idx_invoice_status", "status"),
    Index("idx_invoice_payment_status", "payment_status"),
  )

  def __repr__(self) -> str:
    return f"<Invoice {self.invoice_number or self.id} total=£{self.total_cents / 100:.2f} {self.status}>"

  @classmethod
  def get_by_id(cls, invoice_id: str, session: Session) -> Optional["Invoice"]:
    return session.query(cls).filter(cls.id == invoice_id).first()

  @classmethod
  def get_by_stripe_invoice_id(
    cls, stripe_invoice_id: str, session: Session
  ) -> Optional["Invoice"]:
    return session.query(cls).filter(cls.stripe_invoice_id == stripe_invoice_id).first()

  @classmethod
  def get_by_checkout_session_id(
    cls, checkout_session_id: str, session: Session
  ) -> Optional["Invoice"]:
    return (
      session.query(cls)
      .filter(cls.stripe_checkout_session_id == checkout_session_id)
      .first()
    )

  @classmethod
  def get_by_payment_intent_id(
    cls, payment_intent_id: str, session: Session
  ) -> Optional["Invoice"]:
    return (
      session.query(cls).filter(cls.stripe_payment_intent_id == payment_intent_id).first()
    )

  def transition_to(self, new_status: InvoiceStatus | str) -> bool:
    """Move to a new status if the transition table allows it.

    Returns True when the status changed. Timestamps for sent/paid/void are
    stamped on the first transition into those states.
    """
    new_value = new_status.value if isinstance(new_status, InvoiceStatus) else new_status
    if not can_transition(INVOICE_TRANSITIONS, self.status, new_value):
      logger.info(
        f"Ignoring invoice transition {self.status} -> {new_value} for {self.id}"
      )
      return False

    now = datetime.now(UTC)
    self.status = new_value
    if new_value == InvoiceStatus.SENT.value and self.sent_at is None:
      self.sent_at = now
    elif new_value == InvoiceStatus.PAID.value:
      self.paid_at = self.paid_at or now
      self.set_payment_status(PaymentStatus.PAID)
    elif new_value == InvoiceStatus.VOID.value:
      self.voided_at = now
      self.set_payment_status(PaymentStatus.VOID)
    self.updated_at = now
    return True

  def set_payment_status(self, new_status: PaymentStatus | str) -> bool:
    new_value = new_status.value if isinstance(new_status, PaymentStatus) else new_status
    if not can_transition(PAYMENT_STATUS_TRANSITIONS, self.payment_status, new_value):
      return False
    self.payment_status = new_value
    return True

  def apply_refund(self, amount_refunded_cents: int) -> bool:
    """Record a cumulative refund amount; full or partial by comparison to the total."""
    self.amount_refunded_cents = max(self.amount_refunded_cents or 0, amount_refunded_cents)
    if self.amount_refunded_cents >= self.total_cents:
      return self.set_payment_status(PaymentStatus.REFUNDED)
    return self.set_payment_status(PaymentStatus.PARTIAL)


class InvoiceLineItem(Base):
  """One priced line on an invoice."""

  __tablename__ = "invoice_items"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("invli"))

  invoice_id = Column(String, ForeignKey("invoices.id"), nullable=False)
  line_number = Column(Integer, nullable=False)

  product_code = Column(String, nullable=False)
  description = Column(String, nullable=True)
  quantity = Column(Integer, nullable=False)
  unit_price_cents = Column(Integer, nullable=False)
  line_total_cents = Column(Integer, nullable=False)
  discount_applied = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  invoice = relationship("Invoice", back_populates="line_items")

  __table_args__ = (Index("idx_invoice_item_invoice", "invoice_id"),)

  def __repr__(self) -> str:
    return f"<InvoiceLineItem {self.product_code} x{self.quantity} £{self.line_total_cents / 100:.2f}>"
