"""Commission records derived from paid invoices."""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class CommissionPaymentStatus(str, Enum):
  PENDING = "pending"
  APPROVED = "approved"
  PAID = "paid"


class CommissionRecord(Base):
  """Partner and sales rep commission owed on one paid invoice.

  At most one per invoice (unique invoice_id). The two payouts are settled
  independently, hence the separate statuses.
  """

  __tablename__ = "commission_records"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("com"))

  invoice_id = Column(String, ForeignKey("invoices.id"), unique=True, nullable=False)
  distributor_id = Column(String, ForeignKey("companies.id"), nullable=False)
  customer_id = Column(String, ForeignKey("companies.id"), nullable=False)
  sales_rep_id = Column(String, ForeignKey("sales_reps.id"), nullable=True)

  invoice_total_cents = Column(Integer, nullable=False)
  partner_commission_cents = Column(Integer, nullable=False)
  sales_rep_commission_cents = Column(Integer, nullable=False)

  partner_payment_status = Column(
    String, default=CommissionPaymentStatus.PENDING.value, nullable=False
  )
  sales_rep_payment_status = Column(
    String, default=CommissionPaymentStatus.PENDING.value, nullable=False
  )

  # Rates and per-line breakdown used, for audit
  calculation = Column(JSON, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  __table_args__ = (
    Index("idx_commission_distributor", "distributor_id"),
    Index("idx_commission_sales_rep", "sales_rep_id"),
  )

  def __repr__(self) -> str:
    return (
      f"<CommissionRecord {self.invoice_id} partner=£{self.partner_commission_cents / 100:.2f} "
      f"rep=£{self.sales_rep_commission_cents / 100:.2f}>"
    )

  @classmethod
  def get_by_invoice_id(
    cls, invoice_id: str, session: Session
  ) -> Optional["CommissionRecord"]:
    return session.query(cls).filter(cls.invoice_id == invoice_id).first()
