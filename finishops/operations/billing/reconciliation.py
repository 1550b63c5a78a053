"""
Webhook reconciliation state machine.

Consumes verified payment provider events and brings invoices, legacy
orders, subscriptions, commissions and engagement events in line with them.

Deliveries are at least once and may arrive out of order, so every handler
works from the current persisted state: it looks records up by provider id,
creates what is missing, and moves status only along the transition tables
in `models.billing.states`. Unique constraints are the final backstop.

Each handler commits its primary financial write before doing anything
else. Side effects (commission, notifications, portal cache, analytics,
the legacy order table) then run one by one inside savepoints, and a
failing side effect is logged and skipped. If the primary write fails the
transaction is rolled back, operators are alerted and the result is
`failed`, which tells the webhook endpoint not to record the event as
processed so the provider's redelivery gets another go.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, assert_never

from sqlalchemy.exc import SQLAlchemyError

from ...config import env
from ...config.constants import WEBHOOK_SOURCE_STRIPE
from ...exceptions import BillingError, PaymentProviderError
from ...logger import get_logger, log_financial_alert, log_webhook_event
from ...models.billing import (
  CommissionRecord,
  EngagementEvent,
  EngagementEventName,
  Invoice,
  InvoiceStatus,
  Subscription,
  SubscriptionEvent,
  SubscriptionStatus,
)
from ...models.billing.states import map_provider_subscription_status
from ...utils.money import to_minor_units
from .commission import calculate_commission, default_partner_rates
from .events import (
  ChargeRefunded,
  CheckoutCompleted,
  InvoiceCreated,
  InvoiceFinalized,
  InvoiceMarkedUncollectible,
  InvoicePaid,
  InvoicePaymentFailed,
  InvoiceSent,
  InvoiceVoided,
  PaymentIntentFailed,
  PaymentIntentSucceeded,
  ProviderEvent,
  SubscriptionCreated,
  SubscriptionDeleted,
  SubscriptionUpdated,
  UnhandledEvent,
)
from .notifications import NotificationSink, PortalCache
from .payment_provider import PaymentProvider
from .repository import BillingRepository
from .subscriptions import TRIAL_SUBSCRIPTION_TYPE
from .writers import (
  InvoiceWriter,
  LegacyOrderWriter,
  SaleLine,
  SaleSnapshot,
  provider_subscription_id,
  provider_timestamp,
)

logger = get_logger("finishops.billing.reconciliation")


class HandleStatus(str, Enum):
  PROCESSED = "processed"
  SKIPPED = "skipped"
  IGNORED = "ignored"
  FAILED = "failed"


@dataclass
class HandleResult:
  event_id: str
  event_type: str
  status: HandleStatus
  reason: Optional[str] = None
  company_id: Optional[str] = None
  actions: List[str] = field(default_factory=list)

  @property
  def should_record(self) -> bool:
    """Whether the event may be marked processed in the audit log."""
    return self.status is not HandleStatus.FAILED

  def to_dict(self) -> Dict[str, Any]:
    return {
      "status": self.status.value,
      "reason": self.reason,
      "company_id": self.company_id,
      "actions": list(self.actions),
    }


@dataclass
class SaleOutcome:
  invoice: Invoice
  invoice_newly_paid: bool
  order_created: bool


class WebhookReconciler:
  """Applies provider events to billing records."""

  def __init__(
    self,
    repository: BillingRepository,
    notifier: NotificationSink,
    portal_cache: Optional[PortalCache] = None,
    provider: Optional[PaymentProvider] = None,
    partner_rates: Optional[Dict[str, Decimal]] = None,
    sales_rep_rate: Optional[Decimal] = None,
  ):
    self.repository = repository
    self.notifier = notifier
    self.portal_cache = portal_cache
    self.provider = provider
    self.partner_rates = partner_rates or default_partner_rates()
    self.sales_rep_rate = (
      sales_rep_rate if sales_rep_rate is not None else env.COMMISSION_SALES_REP_RATE
    )
    self.invoices = InvoiceWriter(repository)
    self.orders = LegacyOrderWriter(repository)

  def handle(self, event: ProviderEvent) -> HandleResult:
    started = time.monotonic()
    logger.info(
      f"Processing {event.event_type}: {event.object_id}",
      extra={"event_id": event.event_id, "event_type": event.event_type},
    )

    try:
      match event:
        case CheckoutCompleted():
          result = self._on_checkout_completed(event)
        case PaymentIntentSucceeded():
          result = self._on_payment_intent_succeeded(event)
        case PaymentIntentFailed():
          result = self._on_payment_intent_failed(event)
        case InvoiceCreated():
          result = self._on_invoice_created(event)
        case InvoiceFinalized() | InvoiceSent():
          result = self._on_invoice_sent(event)
        case InvoicePaid():
          result = self._on_invoice_paid(event)
        case InvoicePaymentFailed():
          result = self._on_invoice_payment_failed(event)
        case InvoiceVoided():
          result = self._on_invoice_closed(event, InvoiceStatus.VOID)
        case InvoiceMarkedUncollectible():
          result = self._on_invoice_closed(event, InvoiceStatus.UNCOLLECTIBLE)
        case ChargeRefunded():
          result = self._on_charge_refunded(event)
        case SubscriptionCreated():
          result = self._on_subscription_created(event)
        case SubscriptionUpdated():
          result = self._on_subscription_updated(event)
        case SubscriptionDeleted():
          result = self._on_subscription_deleted(event)
        case UnhandledEvent():
          result = self._result(event, HandleStatus.IGNORED, "event type not handled")
        case _:
          assert_never(event)
    except (SQLAlchemyError, BillingError) as e:
      result = self._primary_write_failed(event, e)

    log_webhook_event(
      logger,
      event.event_id,
      event.event_type,
      result.status.value,
      company_id=result.company_id,
      duration_ms=round((time.monotonic() - started) * 1000, 2),
      metadata={"reason": result.reason, "actions": result.actions},
    )
    return result

  # ---------------------------------------------------------------------------
  # Checkout and payment intents
  # ---------------------------------------------------------------------------

  def _on_checkout_completed(self, event: CheckoutCompleted) -> HandleResult:
    if not event.company_id:
      logger.warning(
        f"Missing company_id in checkout session {event.object_id} metadata",
        extra={"event_id": event.event_id},
      )
      return self._result(event, HandleStatus.SKIPPED, "missing company_id")

    if event.is_subscription:
      # The subscription record is built from customer.subscription.created
      logger.info(f"Subscription checkout {event.object_id} completed")
      return self._result(event, HandleStatus.SKIPPED, "subscription checkout")

    sale = self._sale_from_checkout(event)
    outcome = self._record_sale(event, sale)

    if outcome.order_created or outcome.invoice_newly_paid:
      with self.repository.side_effect("order_confirmation", event.event_id):
        self._send_order_confirmation(sale)

    with self.repository.side_effect("engagement", event.event_id):
      self._record_engagement(
        EngagementEventName.CHECKOUT_COMPLETED,
        company_id=sale.company_id,
        contact_id=sale.contact_id,
        source_event_id=event.object_id,
        value_cents=sale.total_cents,
        currency=sale.currency,
        offer_key=sale.offer_key,
        campaign_key=sale.campaign_key,
        meta={
          "stripe_session_id": event.object_id,
          "invoice_id": outcome.invoice.id,
          "items": [
            {"product_code": line.product_code, "quantity": line.quantity}
            for line in sale.lines
          ],
        },
      )

    if outcome.invoice_newly_paid:
      self._after_invoice_paid(outcome.invoice, event)

    self.repository.commit_side_effects(event.event_id)
    return self._result(
      event,
      HandleStatus.PROCESSED,
      company_id=sale.company_id,
      actions=self._sale_actions(outcome),
    )

  def _on_payment_intent_succeeded(self, event: PaymentIntentSucceeded) -> HandleResult:
    payment_intent_id = event.object_id
    invoice = self.repository.get_invoice_by_payment_intent(payment_intent_id)
    order = self.repository.get_order_by_payment_intent(payment_intent_id)

    if invoice is None and order is None:
      if not (event.company_id and event.cart):
        logger.info(f"No invoice or order found for payment_intent: {payment_intent_id}")
        return self._result(event, HandleStatus.SKIPPED, "no matching records")

      sale = self._sale_from_payment_intent(event)
      outcome = self._record_sale(event, sale)
      with self.repository.side_effect("order_confirmation", event.event_id):
        self._send_order_confirmation(sale)
      if outcome.invoice_newly_paid:
        self._after_invoice_paid(outcome.invoice, event)
      self.repository.commit_side_effects(event.event_id)
      return self._result(
        event,
        HandleStatus.PROCESSED,
        company_id=sale.company_id,
        actions=self._sale_actions(outcome),
      )

    newly_paid = invoice.transition_to(InvoiceStatus.PAID) if invoice is not None else False
    order_paid = False
    with self.repository.side_effect("legacy_order", event.event_id):
      order_paid = self.orders.mark_paid(payment_intent_id)
    self.repository.commit()

    company_id = invoice.company_id if invoice is not None else order.company_id
    if not newly_paid:
      if order_paid:
        return self._result(
          event, HandleStatus.PROCESSED, company_id=company_id, actions=["order_paid"]
        )
      logger.info(f"Payment intent {payment_intent_id} already reconciled")
      return self._result(event, HandleStatus.SKIPPED, "already paid", company_id=company_id)

    self._after_invoice_paid(invoice, event)
    self.repository.commit_side_effects(event.event_id)
    return self._result(
      event, HandleStatus.PROCESSED, company_id=company_id, actions=["invoice_paid"]
    )

  def _on_payment_intent_failed(self, event: PaymentIntentFailed) -> HandleResult:
    payment_intent_id = event.object_id
    cancelled = False
    with self.repository.side_effect("legacy_order", event.event_id):
      cancelled = self.orders.mark_payment_failed(payment_intent_id)
    self.repository.commit()

    if event.company_id:
      failure = event.data.get("last_payment_error") or {}
      with self.repository.side_effect("engagement", event.event_id):
        self._record_engagement(
          EngagementEventName.PAYMENT_FAILED,
          company_id=event.company_id,
          contact_id=event.contact_id,
          source_event_id=payment_intent_id,
          value_cents=event.data.get("amount") or 0,
          currency=event.currency,
          meta={
            "failure_code": failure.get("code"),
            "failure_message": failure.get("message"),
          },
        )
      self.repository.commit_side_effects(event.event_id)

    return self._result(
      event,
      HandleStatus.PROCESSED,
      company_id=event.company_id,
      actions=["order_cancelled"] if cancelled else [],
    )

  # ---------------------------------------------------------------------------
  # Invoices
  # ---------------------------------------------------------------------------

  def _on_invoice_created(self, event: InvoiceCreated) -> HandleResult:
    if self.invoices.find_for_provider_invoice(event.data) is not None:
      self.repository.commit()
      logger.info(f"Invoice {event.object_id} already recorded")
      return self._result(event, HandleStatus.SKIPPED, "invoice already recorded")

    company_id, contact_id = self._invoice_owner(event)
    if not company_id:
      logger.warning(f"Missing company_id for invoice {event.object_id}")
      return self._result(event, HandleStatus.SKIPPED, "missing company_id")

    invoice = self.invoices.create_from_provider_invoice(event.data, company_id, contact_id)
    self.repository.commit()
    return self._result(
      event, HandleStatus.PROCESSED, company_id=company_id, actions=[f"created {invoice.id}"]
    )

  def _on_invoice_sent(self, event: InvoiceFinalized | InvoiceSent) -> HandleResult:
    invoice = self._ensure_invoice(event)
    if invoice is None:
      return self._result(event, HandleStatus.SKIPPED, "missing company_id")

    changed = invoice.transition_to(InvoiceStatus.SENT)
    self.repository.commit()
    if not changed:
      return self._result(
        event,
        HandleStatus.SKIPPED,
        f"invoice already {invoice.status}",
        company_id=invoice.company_id,
      )
    return self._result(
      event, HandleStatus.PROCESSED, company_id=invoice.company_id, actions=["invoice_sent"]
    )

  def _on_invoice_paid(self, event: InvoicePaid) -> HandleResult:
    invoice = self._ensure_invoice(event)
    if invoice is None:
      return self._result(event, HandleStatus.SKIPPED, "missing company_id")

    newly_paid = invoice.transition_to(InvoiceStatus.PAID)
    reactivated = self._reactivate_subscription(invoice, event)
    self.repository.commit()

    actions = ["subscription_reactivated"] if reactivated else []
    if not newly_paid:
      logger.info(f"Invoice {invoice.id} already {invoice.status}, skipping paid side effects")
      return self._result(
        event,
        HandleStatus.SKIPPED,
        f"invoice already {invoice.status}",
        company_id=invoice.company_id,
        actions=actions,
      )

    self._after_invoice_paid(invoice, event)
    self.repository.commit_side_effects(event.event_id)
    return self._result(
      event,
      HandleStatus.PROCESSED,
      company_id=invoice.company_id,
      actions=["invoice_paid"] + actions,
    )

  def _on_invoice_payment_failed(self, event: InvoicePaymentFailed) -> HandleResult:
    company_id, contact_id = self._invoice_owner(event)
    actions = []

    subscription_id = provider_subscription_id(event.data)
    subscription = (
      self.repository.get_subscription_by_provider_id(subscription_id)
      if subscription_id
      else None
    )
    if subscription is not None:
      old_status = subscription.status
      if subscription.transition_to(SubscriptionStatus.PAST_DUE):
        self._append_subscription_event(
          subscription,
          "payment_failed",
          event,
          old_status=old_status,
          new_status=subscription.status,
        )
        actions.append("subscription_past_due")
    self.repository.commit()

    if company_id:
      with self.repository.side_effect("engagement", event.event_id):
        self._record_engagement(
          EngagementEventName.INVOICE_PAYMENT_FAILED,
          company_id=company_id,
          contact_id=contact_id,
          source_event_id=event.object_id,
          value_cents=event.data.get("amount_due") or 0,
          currency=event.currency,
          meta={"invoice_number": event.data.get("number")},
        )
      self.repository.commit_side_effects(event.event_id)

    return self._result(event, HandleStatus.PROCESSED, company_id=company_id, actions=actions)

  def _on_invoice_closed(
    self, event: InvoiceVoided | InvoiceMarkedUncollectible, status: InvoiceStatus
  ) -> HandleResult:
    invoice = self._ensure_invoice(event)
    if invoice is None:
      return self._result(event, HandleStatus.SKIPPED, "missing company_id")

    changed = invoice.transition_to(status)
    self.repository.commit()
    if not changed:
      return self._result(
        event,
        HandleStatus.SKIPPED,
        f"invoice already {invoice.status}",
        company_id=invoice.company_id,
      )
    # Commissions on a voided invoice are left alone; clawback is manual
    return self._result(
      event, HandleStatus.PROCESSED, company_id=invoice.company_id, actions=[f"invoice_{status.value}"]
    )

  def _on_charge_refunded(self, event: ChargeRefunded) -> HandleResult:
    payment_intent_id = event.reference("payment_intent")
    amount_refunded = event.data.get("amount_refunded") or 0

    invoice = (
      self.repository.get_invoice_by_payment_intent(payment_intent_id)
      if payment_intent_id
      else None
    )
    if invoice is not None:
      invoice.apply_refund(amount_refunded)

    order = None
    with self.repository.side_effect("legacy_order", event.event_id):
      order = self.orders.apply_refund(payment_intent_id, amount_refunded)

    if invoice is None and order is None:
      logger.info(f"No invoice or order found for refunded charge: {event.object_id}")
      return self._result(event, HandleStatus.SKIPPED, "no matching records")
    self.repository.commit()

    owner = invoice if invoice is not None else order
    with self.repository.side_effect("engagement", event.event_id):
      self._record_engagement(
        EngagementEventName.CHARGE_REFUNDED,
        company_id=owner.company_id,
        contact_id=owner.contact_id,
        source_event_id=event.object_id,
        value_cents=amount_refunded,
        currency=event.currency,
        meta={
          "invoice_id": invoice.id if invoice is not None else None,
          "order_id": order.id if order is not None else None,
          "total_refunded_cents": amount_refunded,
        },
      )
    self.repository.commit_side_effects(event.event_id)

    return self._result(
      event,
      HandleStatus.PROCESSED,
      company_id=owner.company_id,
      actions=[f"refund {amount_refunded}"],
    )

  # ---------------------------------------------------------------------------
  # Subscriptions
  # ---------------------------------------------------------------------------

  def _on_subscription_created(self, event: SubscriptionCreated) -> HandleResult:
    metadata = event.metadata
    if metadata.get("type") != TRIAL_SUBSCRIPTION_TYPE and not metadata.get("machine_slug"):
      return self._result(event, HandleStatus.IGNORED, "not a trial subscription")
    if not event.company_id:
      logger.warning(f"Missing company_id in subscription {event.object_id} metadata")
      return self._result(event, HandleStatus.SKIPPED, "missing company_id")

    subscription = self.repository.get_subscription_by_provider_id(event.object_id)
    created = subscription is None
    if created:
      subscription = self._create_subscription(event)
      self.repository.commit()
    else:
      logger.info(f"Subscription {event.object_id} already exists: {subscription.id}")

    # Attempted on redelivery too: a lost email must not depend on a lost row
    with self.repository.side_effect("trial_confirmation", event.event_id):
      self._send_trial_confirmation(subscription)
    self.repository.commit_side_effects(event.event_id)

    return self._result(
      event,
      HandleStatus.PROCESSED if created else HandleStatus.SKIPPED,
      None if created else "subscription already exists",
      company_id=subscription.company_id,
      actions=[f"created {subscription.id}"] if created else [],
    )

  def _on_subscription_updated(self, event: SubscriptionUpdated) -> HandleResult:
    subscription = self.repository.get_subscription_by_provider_id(event.object_id)
    if subscription is None:
      if not event.company_id:
        logger.warning(f"Unknown subscription {event.object_id} and no company_id")
        return self._result(event, HandleStatus.SKIPPED, "unknown subscription")
      # Update delivered before create: build the record from this event
      subscription = self._create_subscription(event)
      self.repository.commit()
      return self._result(
        event,
        HandleStatus.PROCESSED,
        company_id=subscription.company_id,
        actions=[f"created {subscription.id}"],
      )

    actions = []
    old_status = subscription.status
    new_status = map_provider_subscription_status(
      event.data.get("status"), event.data.get("pause_collection")
    )
    if new_status and subscription.transition_to(new_status):
      self._append_subscription_event(
        subscription,
        "status_changed",
        event,
        old_status=old_status,
        new_status=subscription.status,
      )
      actions.append(f"status {old_status} -> {subscription.status}")

    anomaly = None
    new_price = self._subscription_price_cents(event.data)
    if new_price is not None:
      old_price = subscription.monthly_price_cents
      outcome = subscription.apply_price(new_price)
      if outcome.event is not None:
        self._append_subscription_event(
          subscription,
          outcome.event.value,
          event,
          old_price_cents=old_price,
          new_price_cents=new_price,
          ratchet_max_cents=outcome.ratchet_max_cents,
        )
        actions.append(outcome.event.value)
      if outcome.is_anomaly:
        anomaly = {
          "subscription_id": subscription.id,
          "stripe_subscription_id": subscription.stripe_subscription_id,
          "new_price_cents": new_price,
          "ratchet_max_cents": outcome.ratchet_max_cents,
        }

    self._apply_subscription_periods(subscription, event.data)
    self.repository.commit()

    if anomaly is not None:
      logger.warning(
        f"Subscription {subscription.id} price £{new_price / 100:.2f} is below its "
        f"ratchet maximum £{anomaly['ratchet_max_cents'] / 100:.2f}",
        extra={
          "action": "downgrade_below_ratchet",
          "company_id": subscription.company_id,
          "event_id": event.event_id,
          "metadata": anomaly,
        },
      )
      with self.repository.side_effect("ratchet_alert", event.event_id):
        self.notifier.alert_operators(
          "Subscription price below ratchet",
          f"Stripe reported a price below the ratchet maximum for "
          f"subscription {subscription.stripe_subscription_id}. "
          "The ratchet was not lowered.",
          anomaly,
        )
      self.repository.commit_side_effects(event.event_id)

    return self._result(
      event,
      HandleStatus.PROCESSED,
      company_id=subscription.company_id,
      actions=actions,
    )

  def _on_subscription_deleted(self, event: SubscriptionDeleted) -> HandleResult:
    subscription = self.repository.get_subscription_by_provider_id(event.object_id)
    if subscription is None:
      logger.info(f"Unknown subscription deleted: {event.object_id}")
      return self._result(event, HandleStatus.SKIPPED, "unknown subscription")

    old_status = subscription.status
    if not subscription.transition_to(SubscriptionStatus.CANCELLED):
      return self._result(
        event,
        HandleStatus.SKIPPED,
        "subscription already cancelled",
        company_id=subscription.company_id,
      )
    self._append_subscription_event(
      subscription,
      "cancelled",
      event,
      old_status=old_status,
      new_status=subscription.status,
    )
    self.repository.commit()
    return self._result(
      event, HandleStatus.PROCESSED, company_id=subscription.company_id, actions=["cancelled"]
    )

  # ---------------------------------------------------------------------------
  # Writes shared by handlers
  # ---------------------------------------------------------------------------

  def _record_sale(self, event: ProviderEvent, sale: SaleSnapshot) -> SaleOutcome:
    """Write a paid sale to invoices and, for the legacy path, to orders.

    The invoice write is primary and its failure fails the event. The order
    write is secondary: it runs in its own savepoint so a legacy-table
    problem cannot lose the invoice.
    """
    invoice, newly_paid = self.invoices.record_paid_sale(sale)

    order_created = False
    with self.repository.side_effect("legacy_order", event.event_id):
      order, order_created = self.orders.record_checkout(sale, invoice)
      if order_created:
        self.orders.enqueue_accounting_sync(order, sale)

    self.repository.commit()
    return SaleOutcome(invoice, newly_paid, order_created)

  def _ensure_invoice(self, event: ProviderEvent) -> Optional[Invoice]:
    """Existing invoice record for a Stripe invoice event, created if missing."""
    invoice = self.invoices.find_for_provider_invoice(event.data)
    if invoice is not None:
      self.invoices.apply_provider_details(invoice, event.data)
      return invoice

    company_id, contact_id = self._invoice_owner(event)
    if not company_id:
      logger.warning(f"Missing company_id for invoice {event.object_id}")
      return None
    return self.invoices.create_from_provider_invoice(event.data, company_id, contact_id)

  def _invoice_owner(self, event: ProviderEvent) -> Tuple[Optional[str], Optional[str]]:
    if event.company_id:
      return event.company_id, event.contact_id
    subscription_id = provider_subscription_id(event.data)
    if subscription_id:
      subscription = self.repository.get_subscription_by_provider_id(subscription_id)
      if subscription is not None:
        return subscription.company_id, subscription.contact_id
    return None, None

  def _reactivate_subscription(self, invoice: Invoice, event: ProviderEvent) -> bool:
    if not invoice.stripe_subscription_id:
      return False
    subscription = self.repository.get_subscription_by_provider_id(
      invoice.stripe_subscription_id
    )
    if subscription is None or subscription.status != SubscriptionStatus.PAST_DUE.value:
      return False
    subscription.transition_to(SubscriptionStatus.ACTIVE)
    self._append_subscription_event(
      subscription,
      "status_changed",
      event,
      old_status=SubscriptionStatus.PAST_DUE.value,
      new_status=subscription.status,
    )
    return True

  def _create_subscription(self, event: ProviderEvent) -> Subscription:
    data = event.data
    metadata = event.metadata
    price = self._trial_price_cents(event)
    status = (
      map_provider_subscription_status(data.get("status"), data.get("pause_collection"))
      or SubscriptionStatus.TRIAL.value
    )
    subscription = Subscription(
      company_id=event.company_id,
      contact_id=event.contact_id,
      stripe_subscription_id=event.object_id,
      stripe_customer_id=event.reference("customer"),
      machine_slug=metadata.get("machine_slug") or None,
      machine_name=metadata.get("machine_name") or None,
      monthly_price_cents=price,
      ratchet_max_cents=price,
      currency=event.currency,
      status=status,
      trial_end_date=provider_timestamp(data.get("trial_end")),
    )
    self._apply_subscription_periods(subscription, data)
    self.repository.add(subscription)
    self.repository.flush()
    self._append_subscription_event(
      subscription,
      "created",
      event,
      new_status=status,
      new_price_cents=price,
      ratchet_max_cents=price,
    )
    logger.info(
      f"Created subscription {subscription.id} for {event.object_id} at £{price / 100:.2f}",
      extra={"company_id": subscription.company_id},
    )
    return subscription

  def _append_subscription_event(
    self, subscription: Subscription, event_type: str, event: ProviderEvent, **fields
  ) -> bool:
    if self.repository.subscription_event_exists(subscription.id, event_type, event.event_id):
      return False
    self.repository.add(
      SubscriptionEvent(
        subscription_id=subscription.id,
        event_type=event_type,
        source_event_id=event.event_id,
        **fields,
      )
    )
    return True

  @staticmethod
  def _apply_subscription_periods(subscription: Subscription, data: Dict[str, Any]) -> None:
    first_item = _first_subscription_item(data) or {}
    start = data.get("current_period_start") or first_item.get("current_period_start")
    end = data.get("current_period_end") or first_item.get("current_period_end")
    if start:
      subscription.current_period_start = provider_timestamp(start)
    if end:
      subscription.current_period_end = provider_timestamp(end)
    if data.get("trial_end"):
      subscription.trial_end_date = provider_timestamp(data["trial_end"])

  @staticmethod
  def _subscription_price_cents(data: Dict[str, Any]) -> Optional[int]:
    """Monthly price of the first subscription item, unit amount times quantity."""
    first_item = _first_subscription_item(data)
    if first_item is None:
      return None
    unit_amount = (first_item.get("price") or {}).get("unit_amount")
    if unit_amount is None:
      return None
    return int(unit_amount) * int(first_item.get("quantity") or 1)

  def _trial_price_cents(self, event: ProviderEvent) -> int:
    offered = event.metadata.get("monthly_price_gbp")
    if offered:
      try:
        return to_minor_units(Decimal(str(offered)))
      except InvalidOperation:
        logger.warning(f"Ignoring malformed monthly_price_gbp {offered!r} on {event.object_id}")
    return self._subscription_price_cents(event.data) or 0

  # ---------------------------------------------------------------------------
  # Side effects
  # ---------------------------------------------------------------------------

  def _after_invoice_paid(self, invoice: Invoice, event: ProviderEvent) -> None:
    """Everything that follows an invoice's first transition to paid."""
    with self.repository.side_effect("commission", event.event_id, critical=True):
      self._record_commission(invoice)

    with self.repository.side_effect("quote_won", event.event_id):
      self._mark_quote_won(invoice, event)

    with self.repository.side_effect("sales_rep_notification", event.event_id):
      self._notify_sales_rep(invoice)

    if self.portal_cache is not None:
      with self.repository.side_effect("portal_cache", event.event_id):
        self.portal_cache.refresh(invoice.company_id)

    with self.repository.side_effect("engagement", event.event_id):
      self._record_engagement(
        EngagementEventName.INVOICE_PAID,
        company_id=invoice.company_id,
        contact_id=invoice.contact_id,
        source_event_id=invoice.stripe_invoice_id
        or invoice.stripe_payment_intent_id
        or invoice.id,
        value_cents=invoice.total_cents,
        currency=invoice.currency,
        meta={
          "invoice_id": invoice.id,
          "invoice_number": invoice.invoice_number,
          "stripe_invoice_id": invoice.stripe_invoice_id,
        },
      )

    with self.repository.side_effect("legacy_order_sync", event.event_id):
      self.orders.sync_invoice_paid(invoice)

  def _record_commission(self, invoice: Invoice) -> Optional[CommissionRecord]:
    if self.repository.commission_exists(invoice.id):
      logger.info(f"Commission already recorded for invoice {invoice.id}")
      return None

    association = self.repository.get_active_distributor(invoice.company_id)
    if association is None:
      logger.debug(f"No active distributor for company {invoice.company_id}, no commission")
      return None

    lines = [
      {"product_code": line.product_code, "line_total_cents": line.line_total_cents}
      for line in invoice.line_items
    ]
    product_types = self.repository.get_product_types(line["product_code"] for line in lines)
    breakdown = calculate_commission(
      lines,
      product_types,
      lambda product_type: association.rate_for(product_type, self.partner_rates),
      self.sales_rep_rate,
    )

    company = self.repository.get_company(invoice.company_id)
    record = CommissionRecord(
      invoice_id=invoice.id,
      distributor_id=association.distributor_id,
      customer_id=invoice.company_id,
      sales_rep_id=company.account_owner if company is not None else None,
      invoice_total_cents=invoice.total_cents,
      partner_commission_cents=breakdown.partner_total_cents,
      sales_rep_commission_cents=breakdown.sales_rep_total_cents,
      calculation=breakdown.to_snapshot(self.sales_rep_rate),
    )
    if not self.repository.insert_if_absent(record):
      return None

    logger.info(
      f"Recorded commission for invoice {invoice.id}: partner £{breakdown.partner_total:.2f}, "
      f"sales rep £{breakdown.sales_rep_total:.2f}",
      extra={"company_id": invoice.company_id, "invoice_id": invoice.id},
    )
    return record

  def _mark_quote_won(self, invoice: Invoice, event: ProviderEvent) -> None:
    quote_id = invoice.quote_id or event.metadata.get("quote_id")
    if not quote_id:
      return
    quote = self.repository.get_quote(quote_id)
    if quote is None:
      logger.warning(f"Invoice {invoice.id} references unknown quote {quote_id}")
      return
    if quote.mark_won(invoice.id):
      logger.info(f"Quote {quote.id} marked won by invoice {invoice.id}")

  def _notify_sales_rep(self, invoice: Invoice) -> None:
    company = self.repository.get_company(invoice.company_id)
    if company is None or not company.account_owner:
      logger.debug(f"No account owner for company {invoice.company_id}")
      return
    rep = self.repository.get_sales_rep(company.account_owner)
    if rep is None or not rep.email or not rep.active:
      logger.debug(f"Account owner {company.account_owner} cannot be notified")
      return

    sent = self.notifier.notify_sales_rep_invoice_paid(
      to_email=rep.email,
      rep_name=rep.full_name,
      company_name=company.company_name,
      invoice_id=invoice.id,
      invoice_number=invoice.invoice_number,
      total_cents=invoice.total_cents,
      currency=invoice.currency,
    )
    if not sent:
      logger.warning(f"Sales rep notification for invoice {invoice.id} was not sent")

  def _send_order_confirmation(self, sale: SaleSnapshot) -> None:
    contact = self._recipient(sale.company_id, sale.contact_id)
    if contact is None:
      logger.info(f"No contact email for company {sale.company_id}, skipping confirmation")
      return
    sent = self.notifier.send_order_confirmation(
      to_email=contact.email,
      recipient_name=contact.full_name,
      reference=sale.reference,
      total_cents=sale.total_cents,
      currency=sale.currency,
      items=sale.items_snapshot(),
    )
    if not sent:
      logger.warning(f"Order confirmation for {sale.reference} was not sent")

  def _send_trial_confirmation(self, subscription: Subscription) -> None:
    contact = self._recipient(subscription.company_id, subscription.contact_id)
    if contact is None:
      logger.info(f"No contact email for subscription {subscription.id}")
      return
    trial_end = (
      subscription.trial_end_date.strftime("%d %B %Y") if subscription.trial_end_date else None
    )
    sent = self.notifier.send_trial_confirmation(
      to_email=contact.email,
      recipient_name=contact.full_name,
      machine_name=subscription.machine_name,
      monthly_price_cents=subscription.monthly_price_cents,
      trial_end=trial_end,
    )
    if not sent:
      logger.warning(f"Trial confirmation for subscription {subscription.id} was not sent")

  def _recipient(self, company_id: str, contact_id: Optional[str]):
    contact = self.repository.get_contact(contact_id) if contact_id else None
    if contact is None or not contact.email:
      contact = self.repository.get_primary_contact(company_id)
    return contact if contact is not None and contact.email else None

  def _record_engagement(
    self,
    event_name: EngagementEventName,
    company_id: Optional[str],
    contact_id: Optional[str],
    source_event_id: str,
    value_cents: int,
    currency: str,
    meta: Dict[str, Any],
    offer_key: Optional[str] = None,
    campaign_key: Optional[str] = None,
  ) -> bool:
    if not company_id:
      return False
    if self.repository.engagement_event_exists(
      WEBHOOK_SOURCE_STRIPE, source_event_id, event_name.value
    ):
      logger.info(f"Engagement event {event_name.value} for {source_event_id} already recorded")
      return False
    return self.repository.insert_if_absent(
      EngagementEvent(
        company_id=company_id,
        contact_id=contact_id,
        source=WEBHOOK_SOURCE_STRIPE,
        source_event_id=source_event_id,
        event_name=event_name.value,
        offer_key=offer_key,
        campaign_key=campaign_key,
        value=Decimal(value_cents or 0) / 100,
        currency=currency.upper(),
        meta=meta,
      )
    )

  # ---------------------------------------------------------------------------
  # Event payload helpers
  # ---------------------------------------------------------------------------

  def _sale_from_checkout(self, event: CheckoutCompleted) -> SaleSnapshot:
    data = event.data
    lines = self._checkout_lines(event)
    subtotal = data.get("amount_subtotal")
    if subtotal is None:
      subtotal = sum(line.total_cents for line in lines)
    tax = (data.get("total_details") or {}).get("amount_tax") or 0
    total = data.get("amount_total")
    if total is None:
      total = subtotal + tax

    return SaleSnapshot(
      company_id=event.company_id,
      contact_id=event.contact_id,
      payment_intent_id=event.reference("payment_intent"),
      checkout_session_id=event.object_id,
      customer_id=event.reference("customer"),
      offer_key=event.metadata.get("offer_key") or None,
      campaign_key=event.metadata.get("campaign_key") or None,
      currency=event.currency,
      subtotal_cents=subtotal,
      tax_cents=tax,
      total_cents=total,
      lines=lines,
    )

  def _sale_from_payment_intent(self, event: PaymentIntentSucceeded) -> SaleSnapshot:
    lines = [_line_from_cart(entry) for entry in event.cart]
    subtotal = sum(line.total_cents for line in lines)
    total = event.data.get("amount_received") or event.data.get("amount") or subtotal
    return SaleSnapshot(
      company_id=event.company_id,
      contact_id=event.contact_id,
      payment_intent_id=event.object_id,
      customer_id=event.reference("customer"),
      offer_key=event.metadata.get("offer_key") or None,
      campaign_key=event.metadata.get("campaign_key") or None,
      currency=event.currency,
      subtotal_cents=subtotal,
      tax_cents=max(total - subtotal, 0),
      total_cents=total,
      lines=lines,
    )

  def _checkout_lines(self, event: CheckoutCompleted) -> List[SaleLine]:
    """Line items from the event, else the cart metadata, else the provider API."""
    embedded = (event.data.get("line_items") or {}).get("data")
    if embedded:
      return _lines_from_provider_items(embedded, event.product_codes)
    if event.cart:
      return [_line_from_cart(entry) for entry in event.cart]
    if self.provider is None:
      raise PaymentProviderError(
        "list_checkout_line_items", "no payment provider configured", session_id=event.object_id
      )
    items = self.provider.list_checkout_line_items(event.object_id)
    return _lines_from_provider_items(items, event.product_codes)

  @staticmethod
  def _sale_actions(outcome: SaleOutcome) -> List[str]:
    actions = []
    if outcome.invoice_newly_paid:
      actions.append(f"invoice_paid {outcome.invoice.id}")
    if outcome.order_created:
      actions.append("legacy_order_created")
    return actions

  def _primary_write_failed(self, event: ProviderEvent, error: Exception) -> HandleResult:
    self.repository.rollback()
    log_financial_alert(
      logger,
      f"Failed to reconcile {event.event_type} {event.object_id}: {error}",
      action="reconcile",
      company_id=event.company_id,
      metadata={"event_id": event.event_id, "event_type": event.event_type},
      exc_info=True,
    )
    with self.repository.side_effect("operator_alert", event.event_id):
      self.notifier.alert_operators(
        f"Webhook {event.event_type} failed",
        f"Financial write for event {event.event_id} failed and was rolled back. "
        "The provider will redeliver the event.",
        {"event_id": event.event_id, "object_id": event.object_id, "error": str(error)},
      )
    return self._result(event, HandleStatus.FAILED, str(error), company_id=event.company_id)

  @staticmethod
  def _result(
    event: ProviderEvent,
    status: HandleStatus,
    reason: Optional[str] = None,
    company_id: Optional[str] = None,
    actions: Optional[List[str]] = None,
  ) -> HandleResult:
    return HandleResult(
      event_id=event.event_id,
      event_type=event.event_type,
      status=status,
      reason=reason,
      company_id=company_id,
      actions=actions or [],
    )


def _first_subscription_item(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
  items = (data.get("items") or {}).get("data") or []
  return items[0] if items else None


def _lines_from_provider_items(
  items: List[Dict[str, Any]], product_codes: List[str]
) -> List[SaleLine]:
  lines = []
  for index, item in enumerate(items):
    price = item.get("price") or {}
    product = price.get("product") if isinstance(price.get("product"), dict) else {}
    code = product_codes[index] if index < len(product_codes) else None
    quantity = item.get("quantity")
    if quantity is None:
      quantity = 1
    unit_amount = price.get("unit_amount") or 0
    total = item.get("amount_total")
    lines.append(
      SaleLine(
        product_code=code or (product.get("metadata") or {}).get("product_code") or "UNKNOWN",
        description=item.get("description") or product.get("name") or "Unknown product",
        quantity=quantity,
        unit_price_cents=unit_amount,
        total_cents=total if total is not None else unit_amount * quantity,
      )
    )
  return lines


def _line_from_cart(entry: Dict[str, Any]) -> SaleLine:
  """A SaleLine from one entry of the `cart` metadata JSON (prices in pounds)."""
  raw_quantity = entry.get("quantity")
  quantity = int(raw_quantity) if raw_quantity is not None else 1
  if entry.get("unit_price_cents") is not None:
    unit_cents = int(entry["unit_price_cents"])
  else:
    unit_cents = to_minor_units(entry.get("unit_price") or 0)
  total = entry.get("total_cents")
  return SaleLine(
    product_code=entry.get("product_code") or entry.get("code") or "UNKNOWN",
    description=entry.get("description"),
    quantity=quantity,
    unit_price_cents=unit_cents,
    total_cents=int(total) if total is not None else unit_cents * quantity,
    discount_applied=entry.get("discount_applied"),
  )
