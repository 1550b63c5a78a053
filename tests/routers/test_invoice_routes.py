"""Tests for the invoice endpoints."""

from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from finishops.exceptions import PaymentProviderError
from finishops.models.billing import Invoice
from finishops.operations.billing import PaymentProvider


@pytest.fixture
def mock_provider():
  provider = Mock(spec=PaymentProvider)
  provider.create_customer.return_value = "cus_new"
  provider.create_draft_invoice.return_value = {"id": "in_api"}
  provider.finalize_invoice.return_value = {
    "id": "in_api",
    "number": "FO-0200",
    "hosted_invoice_url": "https://invoice.stripe.com/i/in_api",
  }
  provider.void_invoice.return_value = {"id": "in_api", "status": "void"}
  with patch("finishops.routers.invoices.get_payment_provider", return_value=provider):
    yield provider


def invoice_body(crm, **overrides):
  body = {
    "company_id": crm["customer"].id,
    "items": [
      {"product_code": "CK-001", "quantity": 10, "base_price": "59.00", "pricing_tier": "premium", "description": "Cutting Knife"}
    ],
    "po_number": "PO-1",
  }
  body.update(overrides)
  return body


class TestCreateInvoice:
  """POST /v1/invoices"""

  def test_creates_invoice(self, client, crm, mock_provider, notifier):
    with patch(
      "finishops.operations.billing.invoice_creator.RpcShippingCalculator.cost",
      return_value=Decimal("12.50"),
    ):
      response = client.post("/v1/invoices", json=invoice_body(crm))

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "sent"
    assert data["invoice_number"] == "FO-0200"
    assert data["subtotal_cents"] == 44250
    assert data["shipping_cents"] == 1250
    # 20% of £455.00
    assert data["tax_cents"] == 9100
    assert data["total_cents"] == 54600
    assert data["line_items"][0]["unit_price_cents"] == 4425
    notifier.send_invoice_email.assert_called_once()

  def test_over_max_is_422(self, client, crm, mock_provider):
    body = invoice_body(
      crm,
      items=[{"product_code": "CK-001", "quantity": 11, "base_price": "59.00", "pricing_tier": "premium"}],
      free_shipping=True,
    )

    response = client.post("/v1/invoices", json=body)

    assert response.status_code == 422
    assert response.json()["details"]["errors"] == [
      "CK-001: Maximum 10 units per SKU (you have 11)"
    ]
    mock_provider.create_draft_invoice.assert_not_called()

  def test_empty_items_rejected_by_schema(self, client, crm, mock_provider):
    response = client.post("/v1/invoices", json=invoice_body(crm, items=[]))

    assert response.status_code == 422

  def test_unknown_company_is_404(self, client, mock_provider):
    response = client.post(
      "/v1/invoices",
      json={
        "company_id": "co_missing",
        "items": [{"product_code": "CK-001", "quantity": 1, "base_price": "59"}],
      },
    )

    assert response.status_code == 404
    assert response.json()["error"] == "RECORD_NOT_FOUND"

  def test_provider_failure_is_502(self, client, crm, mock_provider):
    mock_provider.create_draft_invoice.side_effect = PaymentProviderError(
      "create_draft_invoice", "api_connection_error"
    )

    response = client.post("/v1/invoices", json=invoice_body(crm, free_shipping=True))

    assert response.status_code == 502


class TestVoidInvoice:
  """POST /v1/invoices/{invoice_id}/void"""

  def test_voids_invoice(self, client, crm, mock_provider):
    created = client.post("/v1/invoices", json=invoice_body(crm, free_shipping=True)).json()

    response = client.post(f"/v1/invoices/{created['id']}/void")

    assert response.status_code == 200
    assert response.json()["status"] == "void"
    mock_provider.void_invoice.assert_called_once_with("in_api")

  def test_paid_invoice_is_409(self, client, db_session, crm, mock_provider):
    invoice = Invoice(
      company_id=crm["customer"].id, status="paid", payment_status="paid", total_cents=100
    )
    db_session.add(invoice)
    db_session.commit()

    response = client.post(f"/v1/invoices/{invoice.id}/void")

    assert response.status_code == 409
    assert response.json()["error"] == "INVOICE_STATE_ERROR"
