"""Payment provider webhook handlers."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config.constants import WEBHOOK_SOURCE_STRIPE
from ..database import get_db_session
from ..exceptions import WebhookPayloadError
from ..logger import get_logger, log_error
from ..models.api.webhooks import WebhookResponse
from ..models.billing import BillingAuditLog
from ..operations.billing import (
  NotificationSink,
  PortalCache,
  SqlAlchemyBillingRepository,
  WebhookReconciler,
  get_payment_provider,
  parse_provider_event,
)
from .dependencies import get_notifier, get_portal_cache

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["Webhooks"])


@router.post(
  "/stripe",
  response_model=WebhookResponse,
  status_code=status.HTTP_200_OK,
  summary="Stripe Webhook Handler",
  description="""Handle Stripe webhook events.

Events are verified with the Stripe signature, checked against the billing
audit log so each event id is reconciled once, and then reconciled
synchronously:
- checkout.session.completed - Record the sale as a paid invoice (and legacy order)
- payment_intent.succeeded / payment_intent.payment_failed - Settle or cancel sales
- invoice.created / finalized / sent / paid / payment_failed / voided / marked_uncollectible
- charge.refunded - Full or partial refund
- customer.subscription.created / updated / deleted - Trials, status and ratchet pricing

**SECURITY**: Authentication is Stripe's webhook signature; requests without
a valid signature get 400.

Any verified event gets 200, including ones whose reconciliation failed:
those are not marked processed, so Stripe's redelivery is reconciled again.""",
  operation_id="handleStripeWebhook",
)
async def handle_stripe_webhook(
  request: Request,
  db: Session = Depends(get_db_session),
  notifier: NotificationSink = Depends(get_notifier),
  portal_cache: PortalCache = Depends(get_portal_cache),
):
  """Verify, dedupe and reconcile a Stripe webhook event."""
  payload = await request.body()
  signature = request.headers.get("stripe-signature")

  if not signature:
    logger.warning(
      "Stripe webhook without signature",
      extra={"payload_size_bytes": len(payload)},
    )
    raise HTTPException(status_code=400, detail="Missing stripe-signature header")

  provider = get_payment_provider("stripe")

  try:
    raw_event = provider.verify_webhook(payload, signature)
  except ValueError as e:
    logger.error(f"Invalid webhook signature: {e}")
    raise HTTPException(status_code=400, detail="Invalid webhook signature")

  event_id = raw_event.get("id")
  event_type = raw_event.get("type")

  try:
    if BillingAuditLog.is_webhook_processed(event_id, WEBHOOK_SOURCE_STRIPE, db):
      logger.info(
        f"Webhook event already processed: {event_id}",
        extra={"event_id": event_id, "event_type": event_type},
      )
      return WebhookResponse(
        status="success", message="Event already processed", event_id=event_id
      )

    try:
      event = parse_provider_event(raw_event)
    except WebhookPayloadError as e:
      logger.error(f"Unparseable webhook event {event_id}: {e.message}")
      return WebhookResponse(
        status="success", message="Event payload not understood", event_id=event_id
      )

    reconciler = WebhookReconciler(
      SqlAlchemyBillingRepository(db),
      notifier,
      portal_cache=portal_cache,
      provider=provider,
    )
    result = reconciler.handle(event)

    if result.should_record:
      try:
        BillingAuditLog.mark_webhook_processed(
          event_id, WEBHOOK_SOURCE_STRIPE, event_type, result.to_dict(), db
        )
      except IntegrityError:
        # A concurrent delivery of the same event recorded it first
        db.rollback()
        logger.info(f"Webhook event {event_id} recorded by a concurrent delivery")

    return WebhookResponse(
      status="success",
      message=f"Event {result.status.value}",
      event_id=event_id,
      result=result.status.value,
    )

  except Exception as e:
    db.rollback()
    log_error(
      logger,
      e,
      component="webhooks",
      action="handle_stripe_webhook",
      metadata={"event_id": event_id, "event_type": event_type},
    )
    return WebhookResponse(
      status="error",
      message="Webhook processing failed",
      event_id=event_id,
      result="failed",
    )
