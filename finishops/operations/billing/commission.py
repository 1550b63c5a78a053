"""
Partner and sales rep commission on paid invoices.

For each invoice line the partner earns a percentage that depends on the
product type (tool or consumable; anything else pays the consumable rate).
The sales rep earns a fixed percentage of what is left after the partner's
share, not of the full line.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ...config import env
from ...config.pricing import ProductType
from ...logger import get_logger
from ...utils.money import from_minor_units, quantize_money, to_minor_units

logger = get_logger(__name__)

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class CommissionLine:
  product_code: str
  product_type: str
  line_total: Decimal
  partner_rate: Decimal
  partner_amount: Decimal
  sales_rep_amount: Decimal


@dataclass
class CommissionBreakdown:
  lines: List[CommissionLine] = field(default_factory=list)
  partner_total: Decimal = Decimal("0.00")
  sales_rep_total: Decimal = Decimal("0.00")

  @property
  def partner_total_cents(self) -> int:
    return to_minor_units(self.partner_total)

  @property
  def sales_rep_total_cents(self) -> int:
    return to_minor_units(self.sales_rep_total)

  def to_snapshot(self, sales_rep_rate: Decimal) -> Dict[str, Any]:
    return {
      "sales_rep_rate": str(sales_rep_rate),
      "lines": [
        {
          "product_code": line.product_code,
          "product_type": line.product_type,
          "line_total": str(line.line_total),
          "partner_rate": str(line.partner_rate),
        }
        for line in self.lines
      ],
    }


def default_partner_rates() -> Dict[str, Decimal]:
  return {
    ProductType.TOOL: env.COMMISSION_TOOL_RATE,
    ProductType.CONSUMABLE: env.COMMISSION_CONSUMABLE_RATE,
  }


def normalize_product_type(product_type: Optional[str]) -> str:
  if product_type == ProductType.TOOL:
    return ProductType.TOOL
  return ProductType.CONSUMABLE


def calculate_commission(
  lines: Iterable[Mapping[str, Any]],
  product_types: Mapping[str, str],
  partner_rate_for: Any,
  sales_rep_rate: Optional[Decimal] = None,
) -> CommissionBreakdown:
  """Compute commission for invoice lines.

  Args:
      lines: dicts with product_code and line_total_cents
      product_types: product_code -> catalogue product type
      partner_rate_for: callable(product_type) -> partner percentage
      sales_rep_rate: sales rep percentage of the remainder (default from env)

  Per-line amounts are kept exact; only the invoice totals are rounded to
  pennies, half up.
  """
  if sales_rep_rate is None:
    sales_rep_rate = env.COMMISSION_SALES_REP_RATE

  breakdown = CommissionBreakdown()
  partner_sum = Decimal(0)
  rep_sum = Decimal(0)

  for line in lines:
    code = line["product_code"]
    product_type = normalize_product_type(product_types.get(code))
    line_total = from_minor_units(line["line_total_cents"])
    rate = Decimal(str(partner_rate_for(product_type)))

    partner_amount = line_total * rate / HUNDRED
    rep_amount = (line_total - partner_amount) * sales_rep_rate / HUNDRED
    partner_sum += partner_amount
    rep_sum += rep_amount

    breakdown.lines.append(
      CommissionLine(
        product_code=code,
        product_type=product_type,
        line_total=line_total,
        partner_rate=rate,
        partner_amount=partner_amount,
        sales_rep_amount=rep_amount,
      )
    )

  breakdown.partner_total = quantize_money(partner_sum)
  breakdown.sales_rep_total = quantize_money(rep_sum)
  return breakdown
