"""Product catalogue."""

from datetime import UTC, datetime
from typing import Iterable

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class Product(Base):
  __tablename__ = "products"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("prd"))
  product_code = Column(String, unique=True, nullable=False)
  description = Column(String, nullable=False)

  # tool | consumable | other
  type = Column(String, default="consumable", nullable=False)
  category = Column(String, nullable=True)
  # standard | premium | NULL
  pricing_tier = Column(String, nullable=True)

  base_price_cents = Column(Integer, nullable=False, default=0)
  active = Column(Boolean, default=True, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  def __repr__(self) -> str:
    return f"<Product {self.product_code} ({self.type})>"

  @classmethod
  def get_types_by_code(
    cls, product_codes: Iterable[str], session: Session
  ) -> dict[str, str]:
    """Map product_code -> product type for the given codes."""
    codes = list(set(product_codes))
    if not codes:
      return {}
    rows = (
      session.query(cls.product_code, cls.type).filter(cls.product_code.in_(codes)).all()
    )
    return {code: product_type for code, product_type in rows}
