"""Tests for subscription helpers outside webhook handling."""

from decimal import Decimal

import pytest

from finishops.exceptions import SubscriptionPriceError
from finishops.models.billing import Subscription
from finishops.operations.billing import build_trial_metadata, validate_upgrade


@pytest.mark.unit
class TestBuildTrialMetadata:
  def test_subscription_metadata_carries_price(self):
    metadata = build_trial_metadata(
      "co_1", None, "bobst-novacut", "Bobst Novacut", Decimal("75")
    )

    sub = metadata["subscription_metadata"]
    assert sub["type"] == "trial_subscription"
    assert sub["monthly_price_gbp"] == "75.00"
    assert sub["contact_id"] == ""
    assert metadata["session_metadata"]["offer_price"] == "75.00"
    assert metadata["trial_period_days"] > 0


@pytest.mark.unit
class TestValidateUpgrade:
  def test_upgrade_allowed(self):
    subscription = Subscription(id="sub_1", monthly_price_cents=5000, ratchet_max_cents=5000)

    assert validate_upgrade(subscription, Decimal("75.00")) == 7500

  def test_same_price_allowed(self):
    subscription = Subscription(id="sub_1", monthly_price_cents=5000, ratchet_max_cents=5000)

    assert validate_upgrade(subscription, Decimal("50")) == 5000

  def test_below_ratchet_rejected(self):
    subscription = Subscription(id="sub_1", monthly_price_cents=6000, ratchet_max_cents=7500)

    with pytest.raises(SubscriptionPriceError) as exc_info:
      validate_upgrade(subscription, Decimal("70.00"))

    assert exc_info.value.details["current_cents"] == 7500
    assert exc_info.value.details["requested_cents"] == 7000
