"""UK VAT rules for invoices."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ...utils.money import quantize_money

UK_VAT_RATE = Decimal("20")

UK_COUNTRY_CODES = {"GB", "UK"}

EU_COUNTRY_CODES = {
  "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
  "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
}

EU_REVERSE_CHARGE = "EU Reverse Charge"
EU_EXPORT = "EU Export - VAT to be collected"
EXPORT = "Export"


@dataclass(frozen=True)
class VatResult:
  rate: Decimal
  amount: Decimal
  exempt_reason: Optional[str] = None

  @property
  def label(self) -> str:
    return f"VAT ({self.rate:.0f}%)"


def calculate_vat(
  taxable_amount: Decimal, country: Optional[str], vat_number: Optional[str] = None
) -> VatResult:
  """VAT due on a taxable amount (goods plus shipping).

  Domestic sales pay 20%. EU business customers with a VAT number are
  reverse charged; EU customers without one and everyone else outside the
  UK are zero-rated exports.
  """
  code = (country or "GB").strip().upper()

  if code in UK_COUNTRY_CODES:
    return VatResult(UK_VAT_RATE, quantize_money(taxable_amount * UK_VAT_RATE / 100))
  if code in EU_COUNTRY_CODES:
    reason = EU_REVERSE_CHARGE if vat_number and vat_number.strip() else EU_EXPORT
    return VatResult(Decimal(0), Decimal("0.00"), reason)
  return VatResult(Decimal(0), Decimal("0.00"), EXPORT)
