"""Payment provider abstraction layer.

Business logic talks to the PaymentProvider interface; Stripe is the only
implementation. Provider API failures surface as PaymentProviderError.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ...config import env
from ...exceptions import PaymentProviderError
from ...logger import get_logger

logger = get_logger(__name__)


class PaymentProvider(ABC):
  """Abstract payment provider interface."""

  @abstractmethod
  def verify_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
    """Verify and parse webhook event.

    Args:
        payload: Raw webhook payload
        signature: Webhook signature header

    Returns:
        Parsed webhook event

    Raises:
        ValueError: Invalid payload or signature
    """
    pass

  @abstractmethod
  def create_customer(
    self, company_id: str, email: Optional[str], name: Optional[str]
  ) -> str:
    """Create customer in payment system.

    Returns:
        provider_customer_id: Customer ID in payment provider system
    """
    pass

  @abstractmethod
  def create_draft_invoice(
    self, customer_id: str, currency: str, metadata: Dict[str, str]
  ) -> Dict[str, Any]:
    """Create a draft invoice collected by emailed payment link.

    Returns:
        Dict with key: id
    """
    pass

  @abstractmethod
  def add_invoice_item(
    self,
    customer_id: str,
    invoice_id: str,
    amount_cents: int,
    currency: str,
    description: str,
    metadata: Optional[Dict[str, str]] = None,
  ) -> str:
    """Attach a line to a draft invoice and return the line's ID."""
    pass

  @abstractmethod
  def finalize_invoice(self, invoice_id: str) -> Dict[str, Any]:
    """Finalize a draft invoice.

    Returns:
        Dict with keys: id, number, status, hosted_invoice_url, invoice_pdf
    """
    pass

  @abstractmethod
  def void_invoice(self, invoice_id: str) -> Dict[str, Any]:
    """Void an open invoice."""
    pass

  @abstractmethod
  def list_checkout_line_items(self, session_id: str) -> List[Dict[str, Any]]:
    """List a checkout session's line items with their prices and products."""
    pass


class StripePaymentProvider(PaymentProvider):
  """Stripe implementation of payment provider."""

  def __init__(self):
    """Initialize Stripe with API key from environment."""
    import stripe

    stripe.api_key = env.STRIPE_SECRET_KEY
    stripe.api_version = env.STRIPE_API_VERSION
    self.stripe = stripe
    logger.info("Initialized Stripe payment provider")

  def verify_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
    """Verify Stripe webhook signature and parse event."""
    try:
      event = self.stripe.Webhook.construct_event(
        payload, signature, env.STRIPE_WEBHOOK_SECRET
      )
      logger.debug(
        f"Verified Stripe webhook: {event['type']}",
        extra={"event_type": event["type"], "event_id": event["id"]},
      )
    except ValueError as e:
      logger.error(f"Invalid webhook payload: {e}")
      raise
    except self.stripe.SignatureVerificationError as e:
      logger.error(f"Invalid webhook signature: {e}")
      raise ValueError("Invalid webhook signature") from e

    # Plain dicts from here on; the reconciler never sees SDK objects
    return json.loads(payload)

  def create_customer(
    self, company_id: str, email: Optional[str], name: Optional[str]
  ) -> str:
    """Create Stripe customer."""
    try:
      customer = self.stripe.Customer.create(
        email=email, name=name, metadata={"company_id": company_id}
      )
    except self.stripe.StripeError as e:
      logger.error(f"Failed to create Stripe customer: {e}", exc_info=True)
      raise PaymentProviderError("create_customer", str(e), company_id=company_id) from e

    logger.info(
      f"Created Stripe customer {customer.id} for company {company_id}",
      extra={"company_id": company_id, "stripe_customer_id": customer.id},
    )
    return customer.id

  def create_draft_invoice(
    self, customer_id: str, currency: str, metadata: Dict[str, str]
  ) -> Dict[str, Any]:
    """Create a Stripe draft invoice, due on receipt."""
    try:
      invoice = self.stripe.Invoice.create(
        customer=customer_id,
        currency=currency.lower(),
        collection_method="send_invoice",
        days_until_due=0,
        auto_advance=False,
        pending_invoice_items_behavior="exclude",
        metadata=metadata,
      )
    except self.stripe.StripeError as e:
      logger.error(f"Failed to create Stripe invoice: {e}", exc_info=True)
      raise PaymentProviderError(
        "create_draft_invoice", str(e), customer_id=customer_id
      ) from e

    logger.info(
      f"Created Stripe draft invoice {invoice.id}",
      extra={"stripe_invoice_id": invoice.id, "customer_id": customer_id},
    )
    return {"id": invoice.id}

  def add_invoice_item(
    self,
    customer_id: str,
    invoice_id: str,
    amount_cents: int,
    currency: str,
    description: str,
    metadata: Optional[Dict[str, str]] = None,
  ) -> str:
    """Add a line item to a Stripe draft invoice."""
    try:
      item = self.stripe.InvoiceItem.create(
        customer=customer_id,
        invoice=invoice_id,
        amount=amount_cents,
        currency=currency.lower(),
        description=description,
        metadata=metadata or {},
      )
    except self.stripe.StripeError as e:
      logger.error(f"Failed to add Stripe invoice item: {e}", exc_info=True)
      raise PaymentProviderError(
        "add_invoice_item", str(e), stripe_invoice_id=invoice_id
      ) from e
    return item.id

  def finalize_invoice(self, invoice_id: str) -> Dict[str, Any]:
    """Finalize a Stripe invoice so it can be paid."""
    try:
      invoice = self.stripe.Invoice.finalize_invoice(invoice_id)
    except self.stripe.StripeError as e:
      logger.error(f"Failed to finalize Stripe invoice: {e}", exc_info=True)
      raise PaymentProviderError(
        "finalize_invoice", str(e), stripe_invoice_id=invoice_id
      ) from e

    logger.info(
      f"Finalized Stripe invoice {invoice.id} ({invoice.number})",
      extra={"stripe_invoice_id": invoice.id},
    )
    return {
      "id": invoice.id,
      "number": invoice.number,
      "status": invoice.status,
      "hosted_invoice_url": invoice.hosted_invoice_url,
      "invoice_pdf": invoice.invoice_pdf,
    }

  def void_invoice(self, invoice_id: str) -> Dict[str, Any]:
    """Void a Stripe invoice."""
    try:
      invoice = self.stripe.Invoice.void_invoice(invoice_id)
    except self.stripe.StripeError as e:
      logger.error(f"Failed to void Stripe invoice: {e}", exc_info=True)
      raise PaymentProviderError(
        "void_invoice", str(e), stripe_invoice_id=invoice_id
      ) from e

    logger.info(f"Voided Stripe invoice {invoice.id}", extra={"stripe_invoice_id": invoice.id})
    return {"id": invoice.id, "status": invoice.status}

  def list_checkout_line_items(self, session_id: str) -> List[Dict[str, Any]]:
    """List line items of a Stripe Checkout session."""
    try:
      line_items = self.stripe.checkout.Session.list_line_items(
        session_id, limit=100, expand=["data.price.product"]
      )
    except self.stripe.StripeError as e:
      logger.error(f"Failed to list checkout line items: {e}", exc_info=True)
      raise PaymentProviderError(
        "list_checkout_line_items", str(e), session_id=session_id
      ) from e

    result = []
    for item in line_items.data:
      price = item.price
      product = price.product if price else None
      product_metadata = getattr(product, "metadata", None) or {}
      result.append(
        {
          "description": item.description,
          "quantity": item.quantity,
          "amount_total": item.amount_total,
          "price": {
            "unit_amount": price.unit_amount if price else None,
            "product": {
              "name": getattr(product, "name", None),
              "metadata": {"product_code": product_metadata.get("product_code")},
            },
          },
        }
      )

    logger.debug(f"Listed {len(result)} line items for checkout session {session_id}")
    return result


def get_payment_provider(provider_name: str = "stripe") -> PaymentProvider:
  """Factory function to get payment provider instance.

  Args:
      provider_name: Name of payment provider (default: "stripe")

  Returns:
      PaymentProvider implementation

  Raises:
      ValueError: Unknown provider name
  """
  if provider_name == "stripe":
    return StripePaymentProvider()
  raise ValueError(f"Unknown payment provider: {provider_name}")
