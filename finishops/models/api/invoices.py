"""Invoice API models."""

from pydantic import BaseModel, Field

from ...models.billing import Invoice
from .pricing import CartItemRequest


class CreateInvoiceRequest(BaseModel):
  """Cart to price and issue as a provider invoice."""

  company_id: str = Field(..., description="Customer company ID")
  contact_id: str | None = Field(None, description="Recipient contact; defaults to primary")
  items: list[CartItemRequest] = Field(..., min_length=1, description="Cart lines")
  quote_id: str | None = Field(None, description="Quote the invoice fulfils")
  po_number: str | None = Field(None, description="Customer purchase order number")
  shipping_country: str | None = Field(
    None, description="Destination country code; defaults to the company's"
  )
  free_shipping: bool = Field(default=False, description="Waive the shipping charge")
  allow_over_max: bool = Field(
    default=False, description="Issue even when quantities exceed the per-SKU maximum"
  )


class InvoiceLineResponse(BaseModel):
  line_number: int
  product_code: str
  description: str | None = None
  quantity: int
  unit_price_cents: int
  line_total_cents: int
  discount_applied: str | None = None


class InvoiceResponse(BaseModel):
  """Invoice record summary."""

  id: str = Field(..., description="Invoice ID")
  invoice_number: str | None = Field(None, description="Provider invoice number")
  company_id: str
  status: str = Field(..., description="Invoice status (draft, sent, paid, void, uncollectible)")
  payment_status: str = Field(..., description="Payment status")
  currency: str
  subtotal_cents: int
  shipping_cents: int
  tax_cents: int
  total_cents: int
  vat_exempt_reason: str | None = None
  stripe_invoice_id: str | None = None
  invoice_url: str | None = Field(None, description="Hosted invoice URL")
  invoice_pdf_url: str | None = Field(None, description="PDF download URL")
  line_items: list[InvoiceLineResponse] = Field(default_factory=list)

  @classmethod
  def from_invoice(cls, invoice: Invoice) -> "InvoiceResponse":
    return cls(
      id=invoice.id,
      invoice_number=invoice.invoice_number,
      company_id=invoice.company_id,
      status=invoice.status,
      payment_status=invoice.payment_status,
      currency=invoice.currency,
      subtotal_cents=invoice.subtotal_cents,
      shipping_cents=invoice.shipping_cents or 0,
      tax_cents=invoice.tax_cents,
      total_cents=invoice.total_cents,
      vat_exempt_reason=invoice.vat_exempt_reason,
      stripe_invoice_id=invoice.stripe_invoice_id,
      invoice_url=invoice.invoice_url,
      invoice_pdf_url=invoice.invoice_pdf_url,
      line_items=[
        InvoiceLineResponse(
          line_number=line.line_number,
          product_code=line.product_code,
          description=line.description,
          quantity=line.quantity,
          unit_price_cents=line.unit_price_cents,
          line_total_cents=line.line_total_cents,
          discount_applied=line.discount_applied,
        )
        for line in invoice.line_items
      ],
    )
