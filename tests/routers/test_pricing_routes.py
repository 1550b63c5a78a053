"""Tests for the pricing endpoints."""

from unittest.mock import Mock

import pytest

from finishops.exceptions import PricingConfigurationError


@pytest.mark.unit
class TestPriceCart:
  def test_prices_standard_cart(self, client):
    response = client.post(
      "/v1/pricing/quote",
      json={
        "items": [
          {"product_code": "SPACER-01", "quantity": 2, "base_price": "33.00", "category": "Spacer"},
          {"product_code": "BLADE-SEAL-01", "quantity": 1, "base_price": "33.00", "category": "Blade Seal"},
        ]
      },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["subtotal"] == "99.00"
    assert data["is_valid"] is True
    assert [item["unit_price"] for item in data["items"]] == ["33.00", "33.00"]

  def test_over_max_is_priced_with_errors(self, client):
    response = client.post(
      "/v1/pricing/quote",
      json={
        "items": [
          {"product_code": "RUBBER-01", "quantity": 20, "base_price": "33", "pricing_tier": "standard"},
          {"product_code": "PLASTIC-01", "quantity": 20, "base_price": "33", "pricing_tier": "standard"},
        ]
      },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["subtotal"] == "800.00"
    assert data["is_valid"] is False
    assert len(data["validation_errors"]) == 2

  def test_premium_discount(self, client):
    response = client.post(
      "/v1/pricing/quote",
      json={
        "items": [
          {"product_code": "CK-001", "quantity": 10, "base_price": "59.00", "pricing_tier": "premium"}
        ]
      },
    )

    item = response.json()["items"][0]
    assert item["unit_price"] == "44.25"
    assert item["line_total"] == "442.50"

  def test_duplicate_codes_are_422(self, client):
    line = {"product_code": "SPACER-01", "quantity": 1, "base_price": "33", "pricing_tier": "standard"}

    response = client.post("/v1/pricing/quote", json={"items": [line, line]})

    assert response.status_code == 422
    assert response.json()["error"] == "CART_VALIDATION_ERROR"

  def test_ladder_outage_is_503(self, app, client):
    source = Mock()
    source.name = "database"
    source.load.side_effect = PricingConfigurationError("database", "connection refused")
    app.state.ladder_cache.source = source
    app.state.ladder_cache.invalidate()

    response = client.post(
      "/v1/pricing/quote",
      json={"items": [{"product_code": "SPACER-01", "quantity": 1, "base_price": "33", "pricing_tier": "standard"}]},
    )

    assert response.status_code == 503
    assert response.json()["error"] == "PRICING_CONFIGURATION_ERROR"


@pytest.mark.unit
class TestCategoryPricing:
  def test_premium_category(self, client):
    response = client.get("/v1/pricing/categories/Cutting Knife")

    assert response.status_code == 200
    data = response.json()
    assert data["pricing_tier"] == "premium"
    assert data["max_quantity"] == 10

  def test_unknown_category(self, client):
    data = client.get("/v1/pricing/categories/Gift Card").json()

    assert data["pricing_tier"] is None
    assert data["tiers"] == []


@pytest.mark.unit
class TestRefreshPricing:
  def test_refresh_reloads(self, app, client):
    response = client.post("/v1/pricing/refresh")

    assert response.status_code == 200
    data = response.json()
    assert data["source"] == "static"
    assert data["standard_tiers"] == 8
    assert data["premium_tiers"] == 4
    assert app.state.ladder_cache.is_loaded


@pytest.mark.unit
class TestHealth:
  def test_health(self, client):
    data = client.get("/health").json()

    assert data["status"] == "healthy"
    assert data["pricing_source"] == "static"
