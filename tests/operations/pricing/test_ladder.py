"""Tests for tier ladders and their validation."""

from decimal import Decimal

import pytest

from finishops.config.pricing import PREMIUM_LADDER, STANDARD_LADDER
from finishops.exceptions import PricingConfigurationError
from finishops.operations.pricing import build_ladder


@pytest.fixture
def standard_ladder():
  return build_ladder("standard", STANDARD_LADDER)


@pytest.fixture
def premium_ladder():
  return build_ladder("premium", PREMIUM_LADDER)


@pytest.mark.unit
class TestLookup:
  @pytest.mark.parametrize(
    "quantity,expected",
    [
      (1, "33.00"),
      (3, "33.00"),
      (4, "29.00"),
      (9, "27.00"),
      (10, "25.00"),
      (24, "23.00"),
      (25, "22.00"),
      (34, "21.00"),
      (35, "20.00"),
      (500, "20.00"),
    ],
  )
  def test_standard_bands(self, standard_ladder, quantity, expected):
    assert standard_ladder.lookup(quantity).value == Decimal(expected)

  @pytest.mark.parametrize(
    "quantity,expected", [(1, "0"), (2, "0"), (3, "7"), (5, "15"), (9, "15"), (10, "25")]
  )
  def test_premium_bands(self, premium_ladder, quantity, expected):
    assert premium_ladder.lookup(quantity).value == Decimal(expected)

  def test_below_first_band_uses_first_band(self, standard_ladder):
    assert standard_ladder.lookup(0).value == Decimal("33.00")

  def test_labels(self, standard_ladder):
    assert standard_ladder.tiers[0].label() == "1-3 units"
    assert standard_ladder.tiers[-1].label() == "35+ units"


@pytest.mark.unit
class TestValidation:
  def test_empty_ladder(self):
    with pytest.raises(PricingConfigurationError) as exc_info:
      build_ladder("standard", [], source="database")

    assert exc_info.value.details["source"] == "database"

  def test_minimums_must_ascend(self):
    with pytest.raises(PricingConfigurationError):
      build_ladder("standard", [(1, 4, "33"), (1, None, "29")])

  def test_standard_price_may_not_rise(self):
    with pytest.raises(PricingConfigurationError):
      build_ladder("standard", [(1, 3, "29"), (4, None, "33")])

  def test_premium_discount_may_not_fall(self):
    with pytest.raises(PricingConfigurationError):
      build_ladder("premium", [(1, 4, "10"), (5, None, "5")])

  def test_premium_discount_capped(self):
    with pytest.raises(PricingConfigurationError):
      build_ladder("premium", [(1, None, "101")])

  def test_negative_values_rejected(self):
    with pytest.raises(PricingConfigurationError):
      build_ladder("standard", [(1, None, "-1")])
