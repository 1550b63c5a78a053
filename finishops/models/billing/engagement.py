"""Engagement analytics events and the outbox for downstream sync jobs."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
  JSON,
  Column,
  DateTime,
  ForeignKey,
  Index,
  Integer,
  Numeric,
  String,
  UniqueConstraint,
)
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class EngagementEventName(str, Enum):
  CHECKOUT_COMPLETED = "checkout_completed"
  PAYMENT_FAILED = "payment_failed"
  INVOICE_PAID = "invoice_paid"
  INVOICE_PAYMENT_FAILED = "invoice_payment_failed"
  CHARGE_REFUNDED = "charge_refunded"


class EngagementEvent(Base):
  """Analytics event, idempotent on (source, source_event_id, event_name)."""

  __tablename__ = "engagement_events"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("eng"))

  company_id = Column(String, ForeignKey("companies.id"), nullable=False)
  contact_id = Column(String, nullable=True)

  source = Column(String, nullable=False)
  source_event_id = Column(String, nullable=False)
  event_name = Column(String, nullable=False)

  offer_key = Column(String, nullable=True)
  campaign_key = Column(String, nullable=True)
  value = Column(Numeric(12, 2), nullable=True)
  currency = Column(String, nullable=True)
  meta = Column(JSON, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  __table_args__ = (
    UniqueConstraint(
      "source", "source_event_id", "event_name", name="uq_engagement_event_source"
    ),
    Index("idx_engagement_company", "company_id"),
  )

  @classmethod
  def exists(
    cls, source: str, source_event_id: str, event_name: str, session: Session
  ) -> bool:
    return (
      session.query(cls.id)
      .filter(
        cls.source == source,
        cls.source_event_id == source_event_id,
        cls.event_name == event_name,
      )
      .first()
      is not None
    )


class OutboxJob(Base):
  """Job for an external worker, written in the same transaction as its cause."""

  __tablename__ = "outbox_jobs"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("obx"))

  job_type = Column(String, nullable=False)
  payload = Column(JSON, nullable=False)
  company_id = Column(String, nullable=True)
  order_id = Column(String, nullable=True)

  status = Column(String, default="pending", nullable=False)
  attempts = Column(Integer, default=0, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  __table_args__ = (Index("idx_outbox_status", "status"),)

  def __repr__(self) -> str:
    return f"<OutboxJob {self.job_type} {self.status}>"
