"""Database-backed pricing ladders and rules.

Read by DatabaseLadderSource when PRICING_SOURCE=database. Admins edit these
rows; the ladder cache picks changes up within its TTL.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class StandardPricingTier(Base):
  """One rung of the standard (group total) ladder."""

  __tablename__ = "standard_pricing_tiers"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("spt"))
  min_quantity = Column(Integer, nullable=False)
  max_quantity = Column(Integer, nullable=True)
  unit_price_cents = Column(Integer, nullable=False)
  active = Column(Boolean, default=True, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  def __repr__(self) -> str:
    return f"<StandardPricingTier {self.min_quantity}-{self.max_quantity} @ {self.unit_price_cents}>"

  @classmethod
  def get_active(cls, session: Session) -> list["StandardPricingTier"]:
    return (
      session.query(cls)
      .filter(cls.active.is_(True))
      .order_by(cls.min_quantity.asc())
      .all()
    )


class PremiumPricingTier(Base):
  """One rung of the premium (per-SKU percentage) ladder."""

  __tablename__ = "premium_pricing_tiers"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("ppt"))
  min_quantity = Column(Integer, nullable=False)
  max_quantity = Column(Integer, nullable=True)
  discount_percent = Column(Numeric(5, 2), nullable=False)
  active = Column(Boolean, default=True, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  def __repr__(self) -> str:
    return f"<PremiumPricingTier {self.min_quantity}-{self.max_quantity} -{self.discount_percent}%>"

  @classmethod
  def get_active(cls, session: Session) -> list["PremiumPricingTier"]:
    return (
      session.query(cls)
      .filter(cls.active.is_(True))
      .order_by(cls.min_quantity.asc())
      .all()
    )


class PricingRule(Base):
  """Per-tier pricing rule, currently only max_qty_per_sku."""

  __tablename__ = "pricing_rules"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("prl"))
  pricing_tier = Column(String, nullable=False)
  rule_type = Column(String, default="max_qty_per_sku", nullable=False)
  value = Column(Integer, nullable=False)
  active = Column(Boolean, default=True, nullable=False)

  @classmethod
  def get_max_quantities(cls, session: Session) -> dict[str, int]:
    """Map pricing tier -> max units per SKU for active rules."""
    rows = (
      session.query(cls.pricing_tier, cls.value)
      .filter(cls.rule_type == "max_qty_per_sku", cls.active.is_(True))
      .all()
    )
    return {tier: int(value) for tier, value in rows}
