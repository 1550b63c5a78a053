"""Billing audit log - audit trail for billing actions and processed webhooks."""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Session

from ...database import Base
from ...logger import get_logger
from ...utils.ulid import generate_prefixed_ulid

logger = get_logger(__name__)


class BillingEventType(str, Enum):
  """Types of billing audit events."""

  INVOICE_CREATED = "invoice_created"
  INVOICE_VOIDED = "invoice_voided"
  WEBHOOK_RECEIVED = "webhook_received"


class BillingAuditLog(Base):
  """Audit log for billing events.

  Webhook rows double as the processed-event ledger: one row per
  (provider, provider_event_id) means the event was fully handled.
  """

  __tablename__ = "billing_audit_logs"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("baud"))

  event_type = Column(String, nullable=False)
  event_timestamp = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  company_id = Column(String, nullable=True)
  subscription_id = Column(String, nullable=True)
  invoice_id = Column(String, nullable=True)

  provider = Column(String, nullable=True)
  provider_event_id = Column(String, nullable=True)

  event_data = Column(JSON, nullable=True)
  description = Column(String, nullable=False)
  actor_type = Column(String, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  __table_args__ = (
    UniqueConstraint("provider", "provider_event_id", name="uq_billing_audit_provider_event"),
    Index("idx_billing_audit_company", "company_id"),
    Index("idx_billing_audit_invoice", "invoice_id"),
    Index("idx_billing_audit_event_type", "event_type"),
  )

  def __repr__(self) -> str:
    return f"<BillingAuditLog {self.event_type} at {self.event_timestamp}>"

  @classmethod
  def log_event(
    cls,
    session: Session,
    event_type: BillingEventType | str,
    description: str,
    actor_type: str = "system",
    company_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    provider: Optional[str] = None,
    provider_event_id: Optional[str] = None,
    event_data: Optional[dict] = None,
    auto_commit: bool = True,
  ) -> "BillingAuditLog":
    """Create an audit log entry."""
    event_type_str = (
      event_type.value if isinstance(event_type, BillingEventType) else event_type
    )
    audit_log = cls(
      event_type=event_type_str,
      description=description,
      actor_type=actor_type,
      company_id=company_id,
      subscription_id=subscription_id,
      invoice_id=invoice_id,
      provider=provider,
      provider_event_id=provider_event_id,
      event_data=event_data,
    )

    session.add(audit_log)
    if auto_commit:
      session.commit()
    else:
      session.flush()

    logger.info(
      f"Billing audit log: {event_type_str}",
      extra={
        "event_type": event_type_str,
        "company_id": company_id,
        "invoice_id": invoice_id,
        "actor_type": actor_type,
      },
    )

    return audit_log

  @classmethod
  def get_invoice_history(cls, session: Session, invoice_id: str) -> list["BillingAuditLog"]:
    return (
      session.query(cls)
      .filter(cls.invoice_id == invoice_id)
      .order_by(cls.event_timestamp.desc())
      .all()
    )

  @classmethod
  def is_webhook_processed(cls, event_id: str, provider: str, session: Session) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        event_id: The webhook event ID from the payment provider
        provider: Payment provider name (e.g., 'stripe')
        session: Database session

    Returns:
        True if event already processed, False otherwise
    """
    return (
      session.query(cls.id)
      .filter(
        cls.event_type == BillingEventType.WEBHOOK_RECEIVED.value,
        cls.provider == provider,
        cls.provider_event_id == event_id,
      )
      .first()
      is not None
    )

  @classmethod
  def mark_webhook_processed(
    cls,
    event_id: str,
    provider: str,
    event_type: str,
    event_data: dict,
    session: Session,
  ) -> "BillingAuditLog":
    """Mark a webhook event as processed in the audit log.

    Args:
        event_id: The webhook event ID from the payment provider
        provider: Payment provider name (e.g., 'stripe')
        event_type: The webhook event type (e.g., 'invoice.paid')
        event_data: Summary of what the reconciler did with the event
        session: Database session
    """
    return cls.log_event(
      session=session,
      event_type=BillingEventType.WEBHOOK_RECEIVED,
      description=f"{provider} webhook: {event_type}",
      actor_type=f"{provider}_webhook",
      provider=provider,
      provider_event_id=event_id,
      event_data={"webhook_type": event_type, **event_data},
    )
