"""Ladder configuration sources for the pricing cache."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import env
from ...config.pricing import (
  DEFAULT_MAX_QTY_PREMIUM,
  DEFAULT_MAX_QTY_STANDARD,
  PREMIUM_LADDER,
  STANDARD_LADDER,
  PricingTierName,
)
from ...exceptions import PricingConfigurationError
from ...logger import get_logger
from ...models.catalog import PremiumPricingTier, PricingRule, StandardPricingTier
from ...utils.money import from_minor_units
from .ladder import LadderConfiguration, build_ladder

logger = get_logger("finishops.pricing.sources")


class LadderSource(ABC):
  """Somewhere a LadderConfiguration can be loaded from."""

  name: str = "unknown"

  @abstractmethod
  def load(self) -> LadderConfiguration:
    """Load a fresh configuration or raise PricingConfigurationError."""
    pass


class StaticLadderSource(LadderSource):
  """Ladders from the in-process constants in finishops.config.pricing."""

  name = "static"

  def __init__(
    self,
    max_qty_standard: Optional[int] = None,
    max_qty_premium: Optional[int] = None,
  ):
    self.max_qty_standard = (
      max_qty_standard if max_qty_standard is not None else env.PRICING_MAX_QTY_STANDARD
    )
    self.max_qty_premium = (
      max_qty_premium if max_qty_premium is not None else env.PRICING_MAX_QTY_PREMIUM
    )

  def load(self) -> LadderConfiguration:
    return LadderConfiguration(
      standard=build_ladder(PricingTierName.STANDARD, STANDARD_LADDER, self.name),
      premium=build_ladder(PricingTierName.PREMIUM, PREMIUM_LADDER, self.name),
      max_qty_standard=self.max_qty_standard,
      max_qty_premium=self.max_qty_premium,
      source=self.name,
    )


class DatabaseLadderSource(LadderSource):
  """Ladders from the pricing tables.

  There is no fallback: if the database cannot be read or a ladder has no
  active rows, loading fails and so does pricing.
  """

  name = "database"

  def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
    if session_factory is None:
      from ...database import SessionFactory

      session_factory = SessionFactory
    self.session_factory = session_factory

  def load(self) -> LadderConfiguration:
    try:
      with self.session_factory() as db:
        standard_rows = [
          (row.min_quantity, row.max_quantity, from_minor_units(row.unit_price_cents))
          for row in StandardPricingTier.get_active(db)
        ]
        premium_rows = [
          (row.min_quantity, row.max_quantity, Decimal(str(row.discount_percent)))
          for row in PremiumPricingTier.get_active(db)
        ]
        max_quantities = PricingRule.get_max_quantities(db)
    except SQLAlchemyError as e:
      logger.error(f"Failed to load pricing ladders from database: {e}")
      raise PricingConfigurationError(self.name, f"database error: {e}") from e

    config = LadderConfiguration(
      standard=build_ladder(PricingTierName.STANDARD, standard_rows, self.name),
      premium=build_ladder(PricingTierName.PREMIUM, premium_rows, self.name),
      max_qty_standard=max_quantities.get(
        PricingTierName.STANDARD, DEFAULT_MAX_QTY_STANDARD
      ),
      max_qty_premium=max_quantities.get(PricingTierName.PREMIUM, DEFAULT_MAX_QTY_PREMIUM),
      source=self.name,
    )
    logger.info(
      f"Loaded pricing ladders from database: {len(standard_rows)} standard, "
      f"{len(premium_rows)} premium tiers"
    )
    return config


def get_ladder_source(source_name: Optional[str] = None) -> LadderSource:
  """Factory for the configured ladder source."""
  source_name = (source_name or env.PRICING_SOURCE).lower()
  if source_name == "static":
    return StaticLadderSource()
  if source_name == "database":
    return DatabaseLadderSource()
  raise ValueError(f"Unsupported pricing source: {source_name}")
