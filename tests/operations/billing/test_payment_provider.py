"""Tests for the Stripe payment provider."""

import json
from unittest.mock import Mock, patch

import pytest
import stripe

from finishops.exceptions import PaymentProviderError
from finishops.operations.billing.payment_provider import (
  PaymentProvider,
  StripePaymentProvider,
  get_payment_provider,
)


@pytest.fixture
def stripe_provider():
  """Stripe provider with the SDK module replaced by a mock."""
  with patch.object(StripePaymentProvider, "__init__", lambda self: None):
    provider = StripePaymentProvider()
  provider.stripe = Mock()
  provider.stripe.StripeError = stripe.StripeError
  provider.stripe.SignatureVerificationError = stripe.SignatureVerificationError
  return provider


class TestPaymentProviderInterface:
  def test_cannot_be_instantiated(self):
    with pytest.raises(TypeError):
      PaymentProvider()  # type: ignore[abstract]

  def test_unknown_provider(self):
    with pytest.raises(ValueError):
      get_payment_provider("paypal")


class TestVerifyWebhook:
  def test_returns_plain_dict(self, stripe_provider):
    payload = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}})
    stripe_provider.stripe.Webhook.construct_event.return_value = {
      "id": "evt_1",
      "type": "invoice.paid",
    }

    event = stripe_provider.verify_webhook(payload.encode(), "t=1,v1=abc")

    assert event == {"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}

  def test_bad_signature_becomes_value_error(self, stripe_provider):
    stripe_provider.stripe.Webhook.construct_event.side_effect = (
      stripe.SignatureVerificationError("No signatures found", "t=1,v1=abc")
    )

    with pytest.raises(ValueError, match="Invalid webhook signature"):
      stripe_provider.verify_webhook(b"{}", "t=1,v1=abc")


class TestStripeCustomers:
  def test_create_customer(self, stripe_provider):
    customer = Mock()
    customer.id = "cus_test123"
    stripe_provider.stripe.Customer.create.return_value = customer

    result = stripe_provider.create_customer("co_1", "alex@acme.example", "Acme Cartons")

    assert result == "cus_test123"
    stripe_provider.stripe.Customer.create.assert_called_once_with(
      email="alex@acme.example", name="Acme Cartons", metadata={"company_id": "co_1"}
    )

  def test_create_customer_failure(self, stripe_provider):
    stripe_provider.stripe.Customer.create.side_effect = stripe.StripeError("API down")

    with pytest.raises(PaymentProviderError) as exc_info:
      stripe_provider.create_customer("co_1", None, None)

    assert exc_info.value.details["operation"] == "create_customer"
    assert exc_info.value.details["company_id"] == "co_1"


class TestStripeInvoices:
  def test_draft_invoice_is_due_on_receipt(self, stripe_provider):
    invoice = Mock()
    invoice.id = "in_1"
    stripe_provider.stripe.Invoice.create.return_value = invoice

    assert stripe_provider.create_draft_invoice("cus_1", "GBP", {"po_number": "PO-1"}) == {
      "id": "in_1"
    }

    kwargs = stripe_provider.stripe.Invoice.create.call_args.kwargs
    assert kwargs["currency"] == "gbp"
    assert kwargs["collection_method"] == "send_invoice"
    assert kwargs["days_until_due"] == 0

  def test_finalize_returns_urls(self, stripe_provider):
    invoice = Mock(
      id="in_1",
      number="FO-0001",
      status="open",
      hosted_invoice_url="https://invoice.stripe.com/i/in_1",
      invoice_pdf="https://pay.stripe.com/invoice/in_1/pdf",
    )
    stripe_provider.stripe.Invoice.finalize_invoice.return_value = invoice

    result = stripe_provider.finalize_invoice("in_1")

    assert result["number"] == "FO-0001"
    assert result["hosted_invoice_url"] == "https://invoice.stripe.com/i/in_1"

  def test_void_failure(self, stripe_provider):
    stripe_provider.stripe.Invoice.void_invoice.side_effect = stripe.StripeError("no")

    with pytest.raises(PaymentProviderError) as exc_info:
      stripe_provider.void_invoice("in_1")

    assert exc_info.value.details["stripe_invoice_id"] == "in_1"


class TestCheckoutLineItems:
  def test_flattens_expanded_products(self, stripe_provider):
    product = Mock()
    product.name = "Spacer"
    product.metadata = {"product_code": "SPACER-01"}
    item = Mock(description="Spacer", quantity=3, amount_total=9900)
    item.price = Mock(unit_amount=3300, product=product)
    stripe_provider.stripe.checkout.Session.list_line_items.return_value = Mock(data=[item])

    lines = stripe_provider.list_checkout_line_items("cs_1")

    assert lines == [
      {
        "description": "Spacer",
        "quantity": 3,
        "amount_total": 9900,
        "price": {
          "unit_amount": 3300,
          "product": {"name": "Spacer", "metadata": {"product_code": "SPACER-01"}},
        },
      }
    ]
