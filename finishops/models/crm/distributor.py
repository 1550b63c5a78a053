"""Distributor-customer associations used for partner commissions."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class AssociationStatus(str, Enum):
  ACTIVE = "active"
  INACTIVE = "inactive"


class DistributorCustomer(Base):
  """Link between a distributor (partner) company and a customer company.

  Commission rates are stored as percentages (20.00 means 20%). A missing
  rate falls back to the configured default for that product type.
  """

  __tablename__ = "distributor_customers"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("dc"))
  distributor_id = Column(String, ForeignKey("companies.id"), nullable=False)
  customer_id = Column(String, ForeignKey("companies.id"), nullable=False)

  tool_commission_rate = Column(Numeric(5, 2), nullable=True)
  consumable_commission_rate = Column(Numeric(5, 2), nullable=True)

  status = Column(String, default=AssociationStatus.ACTIVE.value, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  __table_args__ = (
    Index("idx_distributor_customer_customer", "customer_id"),
    Index("idx_distributor_customer_distributor", "distributor_id"),
  )

  def __repr__(self) -> str:
    return f"<DistributorCustomer {self.distributor_id} -> {self.customer_id}>"

  @classmethod
  def get_active_for_customer(
    cls, customer_id: str, session: Session
  ) -> Optional["DistributorCustomer"]:
    return (
      session.query(cls)
      .filter(
        cls.customer_id == customer_id,
        cls.status == AssociationStatus.ACTIVE.value,
      )
      .order_by(cls.created_at.desc())
      .first()
    )

  def rate_for(self, product_type: str, defaults: dict[str, Decimal]) -> Decimal:
    """Partner commission percentage for a product type."""
    if product_type == "tool":
      rate = self.tool_commission_rate
    else:
      rate = self.consumable_commission_rate
      product_type = "consumable"
    return Decimal(str(rate)) if rate is not None else defaults[product_type]
