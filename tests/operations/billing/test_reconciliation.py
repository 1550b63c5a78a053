"""Tests for the webhook reconciliation state machine.

These run the reconciler against a real (SQLite) session so idempotency is
checked against persisted state and unique constraints, not mocks.
"""

import json
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError

from finishops.models.billing import (
  CommissionRecord,
  EngagementEvent,
  Invoice,
  Order,
  OutboxJob,
  Subscription,
  SubscriptionEvent,
)
from finishops.models.crm import Quote
from finishops.operations.billing import (
  HandleStatus,
  PaymentProvider,
  PortalCache,
  SqlAlchemyBillingRepository,
  WebhookReconciler,
  parse_provider_event,
)

TRIAL_END = 1767225600  # 2026-01-01T00:00:00Z


def make_event(event_type, data, event_id):
  return parse_provider_event({"id": event_id, "type": event_type, "data": {"object": data}})


@pytest.fixture
def repository(db_session):
  return SqlAlchemyBillingRepository(db_session)


@pytest.fixture
def portal_cache():
  return Mock(spec=PortalCache)


@pytest.fixture
def provider():
  return Mock(spec=PaymentProvider)


@pytest.fixture
def reconciler(repository, notifier, portal_cache, provider):
  return WebhookReconciler(
    repository,
    notifier,
    portal_cache=portal_cache,
    provider=provider,
    partner_rates={"tool": Decimal("20"), "consumable": Decimal("10")},
    sales_rep_rate=Decimal("5"),
  )


def checkout_event(crm, event_id="evt_checkout_1", **overrides):
  data = {
    "id": "cs_1",
    "mode": "payment",
    "currency": "gbp",
    "customer": "cus_1",
    "payment_intent": "pi_1",
    "amount_subtotal": 9900,
    "amount_total": 11880,
    "total_details": {"amount_tax": 1980},
    "metadata": {
      "company_id": crm["customer"].id,
      "contact_id": crm["contact"].id,
      "offer_key": "spring-consumables",
      "cart": json.dumps(
        [{"product_code": "SPACER-01", "description": "Spacer", "quantity": 3, "unit_price": "33.00"}]
      ),
    },
  }
  data.update(overrides)
  return make_event("checkout.session.completed", data, event_id)


def invoice_data(crm, **overrides):
  data = {
    "id": "in_1",
    "number": "FO-0001",
    "currency": "gbp",
    "customer": "cus_1",
    "payment_intent": "pi_9",
    "subtotal": 44250,
    "tax": 0,
    "total": 44250,
    "hosted_invoice_url": "https://invoice.stripe.com/i/in_1",
    "metadata": {"company_id": crm["customer"].id, "contact_id": crm["contact"].id},
    "lines": {
      "data": [
        {
          "amount": 44250,
          "quantity": 10,
          "description": "CK-001 - Cutting Knife",
          "price": {"unit_amount": 4425},
          "metadata": {"product_code": "CK-001"},
        }
      ]
    },
  }
  data.update(overrides)
  return data


def subscription_data(crm, unit_amount, status="trialing", **overrides):
  data = {
    "id": "sub_stripe_1",
    "customer": "cus_1",
    "currency": "gbp",
    "status": status,
    "trial_end": TRIAL_END,
    "current_period_start": TRIAL_END - 30 * 86400,
    "current_period_end": TRIAL_END,
    "items": {"data": [{"price": {"unit_amount": unit_amount}, "quantity": 1}]},
    "metadata": {
      "company_id": crm["customer"].id,
      "contact_id": crm["contact"].id,
      "type": "trial_subscription",
      "machine_slug": "bobst-novacut",
      "machine_name": "Bobst Novacut",
      "monthly_price_gbp": f"{unit_amount / 100:.2f}",
    },
  }
  data.update(overrides)
  return data


class TestCheckoutCompleted:
  """checkout.session.completed writes a paid invoice and a legacy order."""

  def test_creates_invoice_order_and_side_effects(
    self, reconciler, db_session, crm, notifier, portal_cache
  ):
    result = reconciler.handle(checkout_event(crm))

    assert result.status is HandleStatus.PROCESSED
    assert result.company_id == crm["customer"].id

    invoice = db_session.query(Invoice).one()
    assert invoice.status == "paid"
    assert invoice.payment_status == "paid"
    assert invoice.stripe_payment_intent_id == "pi_1"
    assert invoice.total_cents == 11880
    assert [(line.product_code, line.quantity) for line in invoice.line_items] == [
      ("SPACER-01", 3)
    ]

    order = db_session.query(Order).one()
    assert order.invoice_id == invoice.id
    assert order.stripe_checkout_session_id == "cs_1"
    assert order.status == "paid"
    assert order.currency == "GBP"
    assert len(order.order_items) == 1

    job = db_session.query(OutboxJob).one()
    assert job.job_type == "accounting_sync_order"
    assert job.payload["order_id"] == order.id
    assert job.payload["total"] == "118.80"

    commission = db_session.query(CommissionRecord).one()
    assert commission.invoice_id == invoice.id
    assert commission.distributor_id == crm["distributor"].id
    assert commission.sales_rep_id == crm["rep"].id
    # 10% of £99.00, then 5% of the remaining £89.10
    assert commission.partner_commission_cents == 990
    assert commission.sales_rep_commission_cents == 446

    names = sorted(row.event_name for row in db_session.query(EngagementEvent))
    assert names == ["checkout_completed", "invoice_paid"]
    checkout_row = (
      db_session.query(EngagementEvent).filter_by(event_name="checkout_completed").one()
    )
    assert checkout_row.value == Decimal("118.80")
    assert checkout_row.currency == "GBP"
    assert checkout_row.offer_key == "spring-consumables"

    notifier.send_order_confirmation.assert_called_once()
    assert notifier.send_order_confirmation.call_args.kwargs["to_email"] == "alex@acme.example"
    notifier.notify_sales_rep_invoice_paid.assert_called_once()
    portal_cache.refresh.assert_called_once_with(crm["customer"].id)

  def test_redelivery_writes_nothing_new(self, reconciler, db_session, crm, notifier):
    reconciler.handle(checkout_event(crm, event_id="evt_checkout_1"))
    result = reconciler.handle(checkout_event(crm, event_id="evt_checkout_2"))

    assert result.status is HandleStatus.PROCESSED
    assert result.actions == []
    assert db_session.query(Invoice).count() == 1
    assert db_session.query(Order).count() == 1
    assert db_session.query(OutboxJob).count() == 1
    assert db_session.query(CommissionRecord).count() == 1
    assert db_session.query(EngagementEvent).count() == 2
    notifier.send_order_confirmation.assert_called_once()

  def test_checkout_without_payment_intent_is_keyed_on_session(
    self, reconciler, db_session, crm
  ):
    reconciler.handle(checkout_event(crm, event_id="evt_checkout_1", payment_intent=None))
    result = reconciler.handle(checkout_event(crm, event_id="evt_checkout_2", payment_intent=None))

    assert result.status is HandleStatus.PROCESSED
    assert result.actions == []
    invoice = db_session.query(Invoice).one()
    assert invoice.stripe_checkout_session_id == "cs_1"
    assert invoice.stripe_payment_intent_id is None
    assert db_session.query(CommissionRecord).count() == 1
    assert db_session.query(Order).count() == 1

  def test_zero_quantity_cart_entry_stays_zero(self, reconciler, db_session, crm):
    cart = [
      {"product_code": "SPACER-01", "quantity": 3, "unit_price": "33.00"},
      {"product_code": "SHIM-02", "quantity": 0, "unit_price": "12.00"},
    ]
    event = checkout_event(crm)
    event.metadata["cart"] = json.dumps(cart)

    reconciler.handle(event)

    lines = db_session.query(Invoice).one().line_items
    assert [(line.product_code, line.quantity, line.line_total_cents) for line in lines] == [
      ("SPACER-01", 3, 9900),
      ("SHIM-02", 0, 0),
    ]

  def test_missing_company_is_skipped(self, reconciler, db_session, crm):
    event = checkout_event(crm, metadata={"cart": "[]"})

    result = reconciler.handle(event)

    assert result.status is HandleStatus.SKIPPED
    assert result.should_record
    assert db_session.query(Invoice).count() == 0

  def test_subscription_checkout_is_skipped(self, reconciler, db_session, crm):
    result = reconciler.handle(checkout_event(crm, mode="subscription"))

    assert result.status is HandleStatus.SKIPPED
    assert db_session.query(Invoice).count() == 0

  def test_line_items_fetched_from_provider_when_not_embedded(
    self, reconciler, db_session, crm, provider
  ):
    provider.list_checkout_line_items.return_value = [
      {
        "description": "Spacer",
        "quantity": 2,
        "amount_total": 6600,
        "price": {"unit_amount": 3300},
      }
    ]
    event = checkout_event(
      crm,
      amount_subtotal=6600,
      amount_total=6600,
      total_details={},
      metadata={"company_id": crm["customer"].id, "product_codes": '["SPACER-01"]'},
    )

    result = reconciler.handle(event)

    assert result.status is HandleStatus.PROCESSED
    provider.list_checkout_line_items.assert_called_once_with("cs_1")
    line = db_session.query(Invoice).one().line_items[0]
    assert line.product_code == "SPACER-01"
    assert line.line_total_cents == 6600

  def test_quote_marked_won(self, reconciler, db_session, crm):
    quote = Quote(company_id=crm["customer"].id, status="sent")
    db_session.add(quote)
    db_session.commit()
    event = checkout_event(crm)
    event.metadata["quote_id"] = quote.id

    reconciler.handle(event)

    db_session.refresh(quote)
    assert quote.status == "won"
    assert quote.invoice_id == db_session.query(Invoice).one().id


class TestInvoicePaid:
  def test_duplicate_delivery_pays_once(self, reconciler, db_session, crm, notifier):
    event = make_event("invoice.paid", invoice_data(crm), "evt_paid_1")

    first = reconciler.handle(event)
    second = reconciler.handle(event)

    assert first.status is HandleStatus.PROCESSED
    assert second.status is HandleStatus.SKIPPED
    assert second.reason == "invoice already paid"

    invoice = db_session.query(Invoice).one()
    assert invoice.status == "paid"
    assert invoice.invoice_number == "FO-0001"

    commission = db_session.query(CommissionRecord).one()
    # Cutting knives are tools: 20% of £442.50, then 5% of £354.00
    assert commission.partner_commission_cents == 8850
    assert commission.sales_rep_commission_cents == 1770
    notifier.notify_sales_rep_invoice_paid.assert_called_once()

  def test_paid_after_created_and_finalized(self, reconciler, db_session, crm):
    data = invoice_data(crm)
    created = reconciler.handle(make_event("invoice.created", data, "evt_1"))
    finalized = reconciler.handle(make_event("invoice.finalized", data, "evt_2"))
    paid = reconciler.handle(make_event("invoice.paid", data, "evt_3"))
    late_sent = reconciler.handle(make_event("invoice.sent", data, "evt_4"))

    assert created.status is HandleStatus.PROCESSED
    assert finalized.status is HandleStatus.PROCESSED
    assert paid.status is HandleStatus.PROCESSED
    assert late_sent.status is HandleStatus.SKIPPED
    assert db_session.query(Invoice).one().status == "paid"

  def test_created_twice_is_skipped(self, reconciler, db_session, crm):
    data = invoice_data(crm)
    reconciler.handle(make_event("invoice.created", data, "evt_1"))

    result = reconciler.handle(make_event("invoice.created", data, "evt_1b"))

    assert result.status is HandleStatus.SKIPPED
    assert db_session.query(Invoice).count() == 1

  def test_no_distributor_means_no_commission(self, reconciler, db_session, crm):
    crm["association"].status = "inactive"
    db_session.commit()

    reconciler.handle(make_event("invoice.paid", invoice_data(crm), "evt_paid_1"))

    assert db_session.query(CommissionRecord).count() == 0

  def test_side_effect_failure_does_not_fail_event(
    self, reconciler, db_session, crm, notifier, portal_cache
  ):
    notifier.notify_sales_rep_invoice_paid.side_effect = RuntimeError("SES unavailable")
    portal_cache.refresh.side_effect = OperationalError("SELECT", {}, Exception("no rpc"))

    result = reconciler.handle(make_event("invoice.paid", invoice_data(crm), "evt_paid_1"))

    assert result.status is HandleStatus.PROCESSED
    assert db_session.query(Invoice).one().status == "paid"
    assert db_session.query(CommissionRecord).count() == 1
    assert (
      db_session.query(EngagementEvent).filter_by(event_name="invoice_paid").count() == 1
    )

  def test_primary_write_failure_fails_event(self, reconciler, repository, db_session, crm, notifier):
    repository.commit = Mock(side_effect=OperationalError("COMMIT", {}, Exception("db down")))

    result = reconciler.handle(make_event("invoice.paid", invoice_data(crm), "evt_paid_1"))

    assert result.status is HandleStatus.FAILED
    assert not result.should_record
    assert db_session.query(Invoice).count() == 0
    notifier.alert_operators.assert_called_once()
    assert notifier.notify_sales_rep_invoice_paid.call_count == 0

  def test_missing_company_is_skipped(self, reconciler, db_session, crm):
    data = invoice_data(crm, metadata={})

    result = reconciler.handle(make_event("invoice.paid", data, "evt_paid_1"))

    assert result.status is HandleStatus.SKIPPED
    assert db_session.query(Invoice).count() == 0


class TestInvoiceClosed:
  def test_void_open_invoice(self, reconciler, db_session, crm):
    data = invoice_data(crm)
    reconciler.handle(make_event("invoice.finalized", data, "evt_1"))

    result = reconciler.handle(make_event("invoice.voided", data, "evt_2"))

    assert result.status is HandleStatus.PROCESSED
    invoice = db_session.query(Invoice).one()
    assert invoice.status == "void"
    assert invoice.payment_status == "void"

  def test_void_after_paid_is_ignored(self, reconciler, db_session, crm):
    data = invoice_data(crm)
    reconciler.handle(make_event("invoice.paid", data, "evt_1"))

    result = reconciler.handle(make_event("invoice.voided", data, "evt_2"))

    assert result.status is HandleStatus.SKIPPED
    assert db_session.query(Invoice).one().status == "paid"
    assert db_session.query(CommissionRecord).count() == 1

  def test_marked_uncollectible(self, reconciler, db_session, crm):
    data = invoice_data(crm)

    reconciler.handle(make_event("invoice.marked_uncollectible", data, "evt_1"))

    assert db_session.query(Invoice).one().status == "uncollectible"


class TestPaymentIntents:
  def test_succeeded_marks_existing_records_paid(self, reconciler, db_session, crm):
    invoice = Invoice(
      company_id=crm["customer"].id,
      currency="gbp",
      subtotal_cents=5000,
      total_cents=5000,
      status="sent",
      payment_status="unpaid",
      stripe_payment_intent_id="pi_5",
    )
    order = Order(
      company_id=crm["customer"].id,
      stripe_payment_intent_id="pi_5",
      total_cents=5000,
      status="pending",
      payment_status="unpaid",
    )
    db_session.add_all([invoice, order])
    db_session.commit()

    result = reconciler.handle(
      make_event("payment_intent.succeeded", {"id": "pi_5", "amount": 5000}, "evt_1")
    )

    assert result.status is HandleStatus.PROCESSED
    db_session.refresh(invoice)
    db_session.refresh(order)
    assert invoice.status == "paid"
    assert order.status == "paid"

  def test_succeeded_pays_order_when_invoice_already_paid(self, reconciler, db_session, crm):
    invoice = Invoice(
      company_id=crm["customer"].id,
      currency="gbp",
      subtotal_cents=5000,
      total_cents=5000,
      status="paid",
      payment_status="paid",
      stripe_payment_intent_id="pi_6",
    )
    order = Order(
      company_id=crm["customer"].id,
      stripe_payment_intent_id="pi_6",
      total_cents=5000,
      status="pending",
      payment_status="unpaid",
    )
    db_session.add_all([invoice, order])
    db_session.commit()
    event = make_event("payment_intent.succeeded", {"id": "pi_6", "amount": 5000}, "evt_1")

    first = reconciler.handle(event)
    second = reconciler.handle(event)

    assert first.status is HandleStatus.PROCESSED
    assert first.actions == ["order_paid"]
    db_session.refresh(order)
    assert order.status == "paid"
    assert second.status is HandleStatus.SKIPPED
    assert second.reason == "already paid"

  def test_succeeded_without_records_or_cart_is_skipped(self, reconciler):
    result = reconciler.handle(
      make_event("payment_intent.succeeded", {"id": "pi_unknown"}, "evt_1")
    )

    assert result.status is HandleStatus.SKIPPED

  def test_succeeded_with_cart_creates_sale(self, reconciler, db_session, crm):
    data = {
      "id": "pi_7",
      "amount_received": 3960,
      "currency": "gbp",
      "metadata": {
        "company_id": crm["customer"].id,
        "cart": json.dumps([{"product_code": "SPACER-01", "quantity": 1, "unit_price_cents": 3300}]),
      },
    }

    result = reconciler.handle(make_event("payment_intent.succeeded", data, "evt_1"))

    assert result.status is HandleStatus.PROCESSED
    invoice = db_session.query(Invoice).one()
    assert invoice.subtotal_cents == 3300
    assert invoice.tax_cents == 660
    assert db_session.query(Order).one().invoice_id == invoice.id

  def test_failed_cancels_pending_order(self, reconciler, db_session, crm):
    order = Order(
      company_id=crm["customer"].id,
      stripe_payment_intent_id="pi_8",
      total_cents=5000,
      status="pending",
      payment_status="unpaid",
    )
    db_session.add(order)
    db_session.commit()
    data = {
      "id": "pi_8",
      "amount": 5000,
      "last_payment_error": {"code": "card_declined", "message": "Declined"},
      "metadata": {"company_id": crm["customer"].id},
    }

    result = reconciler.handle(make_event("payment_intent.payment_failed", data, "evt_1"))

    assert result.actions == ["order_cancelled"]
    db_session.refresh(order)
    assert order.status == "cancelled"
    engagement = db_session.query(EngagementEvent).one()
    assert engagement.event_name == "payment_failed"
    assert engagement.meta["failure_code"] == "card_declined"


class TestChargeRefunded:
  def test_partial_refund(self, reconciler, db_session, crm):
    reconciler.handle(checkout_event(crm))

    result = reconciler.handle(
      make_event(
        "charge.refunded",
        {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 5000, "currency": "gbp"},
        "evt_refund_1",
      )
    )

    assert result.status is HandleStatus.PROCESSED
    invoice = db_session.query(Invoice).one()
    assert invoice.payment_status == "partial"
    assert invoice.amount_refunded_cents == 5000
    assert db_session.query(Order).one().payment_status == "partially_refunded"
    refund = db_session.query(EngagementEvent).filter_by(event_name="charge_refunded").one()
    assert refund.value == Decimal("50.00")

  def test_unknown_charge_is_skipped(self, reconciler):
    result = reconciler.handle(
      make_event("charge.refunded", {"id": "ch_x", "payment_intent": "pi_x"}, "evt_1")
    )

    assert result.status is HandleStatus.SKIPPED


class TestSubscriptions:
  def test_trial_created_with_confirmation(self, reconciler, db_session, crm, notifier):
    result = reconciler.handle(
      make_event("customer.subscription.created", subscription_data(crm, 5000), "evt_sub_1")
    )

    assert result.status is HandleStatus.PROCESSED
    subscription = db_session.query(Subscription).one()
    assert subscription.status == "trial"
    assert subscription.monthly_price_cents == 5000
    assert subscription.ratchet_max_cents == 5000
    assert subscription.machine_slug == "bobst-novacut"
    notifier.send_trial_confirmation.assert_called_once()
    assert notifier.send_trial_confirmation.call_args.kwargs["trial_end"] == "01 January 2026"

  def test_created_redelivery_keeps_one_row(self, reconciler, db_session, crm):
    event = make_event(
      "customer.subscription.created", subscription_data(crm, 5000), "evt_sub_1"
    )
    reconciler.handle(event)

    result = reconciler.handle(event)

    assert result.status is HandleStatus.SKIPPED
    assert db_session.query(Subscription).count() == 1
    assert db_session.query(SubscriptionEvent).count() == 1

  def test_non_trial_subscription_is_ignored(self, reconciler, db_session, crm):
    data = subscription_data(crm, 5000, metadata={"company_id": crm["customer"].id})

    result = reconciler.handle(make_event("customer.subscription.created", data, "evt_1"))

    assert result.status is HandleStatus.IGNORED
    assert db_session.query(Subscription).count() == 0

  def test_ratchet_only_rises(self, reconciler, db_session, crm, notifier):
    reconciler.handle(
      make_event("customer.subscription.created", subscription_data(crm, 5000), "evt_1")
    )
    assert db_session.query(Subscription).one().ratchet_max_cents == 5000

    reconciler.handle(
      make_event(
        "customer.subscription.updated",
        subscription_data(crm, 7500, status="active"),
        "evt_2",
      )
    )
    subscription = db_session.query(Subscription).one()
    assert subscription.status == "active"
    assert subscription.ratchet_max_cents == 7500

    with patch("finishops.operations.billing.reconciliation.logger") as mock_logger:
      result = reconciler.handle(
        make_event(
          "customer.subscription.updated",
          subscription_data(crm, 6000, status="active"),
          "evt_3",
        )
      )

    assert result.actions == ["downgrade_below_ratchet"]
    db_session.refresh(subscription)
    assert subscription.monthly_price_cents == 6000
    assert subscription.ratchet_max_cents == 7500

    warning = mock_logger.warning.call_args
    assert warning.kwargs["extra"]["action"] == "downgrade_below_ratchet"
    notifier.alert_operators.assert_called_once()
    assert notifier.alert_operators.call_args.args[0] == "Subscription price below ratchet"

    event_types = sorted(row.event_type for row in db_session.query(SubscriptionEvent))
    assert event_types == [
      "created",
      "downgrade_below_ratchet",
      "price_increased",
      "status_changed",
    ]

  def test_update_before_create_builds_record(self, reconciler, db_session, crm):
    result = reconciler.handle(
      make_event(
        "customer.subscription.updated",
        subscription_data(crm, 5000, status="active"),
        "evt_1",
      )
    )

    assert result.status is HandleStatus.PROCESSED
    subscription = db_session.query(Subscription).one()
    assert subscription.status == "active"
    assert subscription.ratchet_max_cents == 5000

    late_create = reconciler.handle(
      make_event("customer.subscription.created", subscription_data(crm, 5000), "evt_0")
    )
    assert late_create.status is HandleStatus.SKIPPED
    assert db_session.query(Subscription).one().status == "active"

  def test_payment_failed_then_paid_reactivates(self, reconciler, db_session, crm):
    reconciler.handle(
      make_event(
        "customer.subscription.created",
        subscription_data(crm, 5000, status="active"),
        "evt_1",
      )
    )
    invoice = invoice_data(
      crm,
      id="in_sub_1",
      payment_intent="pi_sub_1",
      subscription="sub_stripe_1",
      metadata={},
      lines={"data": []},
      subtotal=5000,
      total=6000,
      tax=1000,
      amount_due=6000,
    )

    failed = reconciler.handle(make_event("invoice.payment_failed", invoice, "evt_2"))
    assert failed.actions == ["subscription_past_due"]
    assert db_session.query(Subscription).one().status == "past_due"

    paid = reconciler.handle(make_event("invoice.paid", invoice, "evt_3"))
    assert "subscription_reactivated" in paid.actions
    assert db_session.query(Subscription).one().status == "active"
    recorded = db_session.query(Invoice).one()
    assert recorded.invoice_type == "subscription"
    assert recorded.company_id == crm["customer"].id

  def test_deleted_cancels(self, reconciler, db_session, crm):
    data = subscription_data(crm, 5000, status="active")
    reconciler.handle(make_event("customer.subscription.created", data, "evt_1"))

    result = reconciler.handle(
      make_event("customer.subscription.deleted", {**data, "status": "canceled"}, "evt_2")
    )
    again = reconciler.handle(
      make_event("customer.subscription.deleted", {**data, "status": "canceled"}, "evt_3")
    )

    assert result.status is HandleStatus.PROCESSED
    assert again.status is HandleStatus.SKIPPED
    subscription = db_session.query(Subscription).one()
    assert subscription.status == "cancelled"
    assert subscription.cancelled_at is not None


class TestUnhandled:
  def test_unknown_event_is_ignored_and_recordable(self, reconciler):
    result = reconciler.handle(make_event("customer.created", {"id": "cus_1"}, "evt_1"))

    assert result.status is HandleStatus.IGNORED
    assert result.should_record
    assert result.to_dict()["status"] == "ignored"
