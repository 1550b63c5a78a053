"""Invoice issuing endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db_session
from ..logger import get_logger
from ..models.api.invoices import CreateInvoiceRequest, InvoiceResponse
from ..operations.billing import (
  InvoiceCreator,
  InvoiceRequest,
  NotificationSink,
  get_payment_provider,
)
from ..operations.pricing import PricingEngine
from .dependencies import get_notifier, get_pricing_engine

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/invoices", tags=["Invoices"])


@router.post(
  "",
  response_model=InvoiceResponse,
  status_code=status.HTTP_201_CREATED,
  summary="Create Invoice",
  description="""Price a cart and issue it as a Stripe invoice.

Shipping and UK VAT are added, the Stripe invoice is finalized, and the
invoice is recorded with status `sent`. The customer is emailed the hosted
invoice link.

Quantities above the per-SKU maximum are refused unless
`allow_over_max` is set.""",
  operation_id="createInvoice",
)
async def create_invoice(
  request: CreateInvoiceRequest,
  db: Session = Depends(get_db_session),
  engine: PricingEngine = Depends(get_pricing_engine),
  notifier: NotificationSink = Depends(get_notifier),
):
  creator = InvoiceCreator(db, get_payment_provider("stripe"), notifier, engine)
  invoice = creator.create_invoice(
    InvoiceRequest(
      company_id=request.company_id,
      contact_id=request.contact_id,
      items=[item.to_cart_item() for item in request.items],
      quote_id=request.quote_id,
      po_number=request.po_number,
      shipping_country=request.shipping_country,
      free_shipping=request.free_shipping,
      allow_over_max=request.allow_over_max,
    )
  )
  return InvoiceResponse.from_invoice(invoice)


@router.post(
  "/{invoice_id}/void",
  response_model=InvoiceResponse,
  summary="Void Invoice",
  description="Void an unpaid invoice in Stripe and locally. Paid invoices must be refunded instead.",
  operation_id="voidInvoice",
)
async def void_invoice(
  invoice_id: str,
  db: Session = Depends(get_db_session),
  engine: PricingEngine = Depends(get_pricing_engine),
  notifier: NotificationSink = Depends(get_notifier),
):
  creator = InvoiceCreator(db, get_payment_provider("stripe"), notifier, engine)
  invoice = creator.void_invoice(invoice_id, actor="api")
  return InvoiceResponse.from_invoice(invoice)
