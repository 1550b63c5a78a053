"""Legacy order models.

Deprecated: `orders`/`order_items` predate the invoices table and are kept
in step with it only for reports and the accounting sync that still read
them. New code should read Invoice. Writes happen in exactly one place,
LegacyOrderWriter, so the table can be dropped by deleting that writer.
"""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Session, relationship

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid
from .states import OrderPaymentStatus, OrderStatus


class Order(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("ord"))

  company_id = Column(String, ForeignKey("companies.id"), nullable=False)
  contact_id = Column(String, ForeignKey("contacts.id"), nullable=True)
  invoice_id = Column(String, ForeignKey("invoices.id"), nullable=True)

  stripe_checkout_session_id = Column(String, unique=True, nullable=True)
  stripe_payment_intent_id = Column(String, nullable=True)
  stripe_customer_id = Column(String, nullable=True)

  offer_key = Column(String, nullable=True)
  campaign_key = Column(String, nullable=True)

  # Snapshot of the cart as sold
  items = Column(JSON, nullable=True)

  currency = Column(String, default="GBP", nullable=False)
  subtotal_cents = Column(Integer, default=0, nullable=False)
  tax_cents = Column(Integer, default=0, nullable=False)
  total_cents = Column(Integer, default=0, nullable=False)

  status = Column(String, default=OrderStatus.PENDING.value, nullable=False)
  payment_status = Column(String, default=OrderPaymentStatus.UNPAID.value, nullable=False)
  paid_at = Column(DateTime, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  order_items = relationship(
    "OrderItem", back_populates="order", cascade="all, delete-orphan"
  )

  __table_args__ = (
    Index("idx_order_company", "company_id"),
    Index("idx_order_payment_intent", "stripe_payment_intent_id"),
  )

  def __repr__(self) -> str:
    return f"<Order {self.id} {self.status}/{self.payment_status}>"

  @classmethod
  def get_by_checkout_session_id(
    cls, session_id: str, session: Session
  ) -> Optional["Order"]:
    return session.query(cls).filter(cls.stripe_checkout_session_id == session_id).first()

  @classmethod
  def get_by_payment_intent_id(
    cls, payment_intent_id: str, session: Session
  ) -> Optional["Order"]:
    return (
      session.query(cls).filter(cls.stripe_payment_intent_id == payment_intent_id).first()
    )

  def mark_paid(self) -> bool:
    if self.status == OrderStatus.PAID.value:
      return False
    self.status = OrderStatus.PAID.value
    self.payment_status = OrderPaymentStatus.PAID.value
    self.paid_at = datetime.now(UTC)
    return True

  def mark_payment_failed(self) -> bool:
    # A failed retry must not cancel an order that was paid by a later attempt
    if self.status != OrderStatus.PENDING.value:
      return False
    self.status = OrderStatus.CANCELLED.value
    self.payment_status = OrderPaymentStatus.UNPAID.value
    return True

  def apply_refund(self, amount_refunded_cents: int) -> bool:
    if amount_refunded_cents >= self.total_cents:
      new_status = OrderPaymentStatus.REFUNDED.value
    else:
      new_status = OrderPaymentStatus.PARTIALLY_REFUNDED.value
    if self.payment_status in (new_status, OrderPaymentStatus.REFUNDED.value):
      return False
    self.payment_status = new_status
    return True


class OrderItem(Base):
  __tablename__ = "order_items"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("ordli"))
  order_id = Column(String, ForeignKey("orders.id"), nullable=False)

  product_code = Column(String, nullable=False)
  description = Column(String, nullable=True)
  quantity = Column(Integer, nullable=False)
  unit_price_cents = Column(Integer, nullable=False)
  total_price_cents = Column(Integer, nullable=False)

  order = relationship("Order", back_populates="order_items")

  __table_args__ = (Index("idx_order_item_order", "order_id"),)
