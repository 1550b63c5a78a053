"""Tests for money and ULID helpers."""

from decimal import Decimal

import pytest

from finishops.utils import generate_prefixed_ulid, generate_ulid, parse_ulid
from finishops.utils.money import from_minor_units, quantize_money, to_minor_units


@pytest.mark.unit
class TestMoney:
  @pytest.mark.parametrize(
    "amount,expected",
    [(Decimal("44.25"), 4425), ("0.005", 1), (Decimal("21.785"), 2179), (7, 700)],
  )
  def test_to_minor_units_rounds_half_up(self, amount, expected):
    assert to_minor_units(amount) == expected

  def test_from_minor_units(self):
    assert from_minor_units(62214) == Decimal("622.14")
    assert from_minor_units(None) == Decimal("0.00")

  def test_quantize_money(self):
    assert quantize_money(Decimal("67.1499")) == Decimal("67.15")


@pytest.mark.unit
class TestUlid:
  def test_generate_ulid(self):
    assert len(generate_ulid()) == 26

  def test_prefixed_ulid_parses(self):
    value = generate_prefixed_ulid("inv")

    assert value.startswith("inv_")
    assert parse_ulid(value) is not None

  def test_parse_invalid(self):
    assert parse_ulid("inv_not-a-ulid") is None
