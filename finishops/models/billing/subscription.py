"""Machine subscription models with ratchet pricing."""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import (
  Column,
  DateTime,
  ForeignKey,
  Index,
  Integer,
  String,
  UniqueConstraint,
)
from sqlalchemy.orm import Session, relationship

from ...database import Base
from ...logger import get_logger
from ...utils.ulid import generate_prefixed_ulid
from .states import (
  SUBSCRIPTION_TRANSITIONS,
  RatchetOutcome,
  SubscriptionStatus,
  apply_ratchet,
  can_transition,
)

logger = get_logger(__name__)


class Subscription(Base):
  """Recurring machine rental/lease billed monthly by the payment provider.

  ratchet_max_cents is the highest monthly price ever reported for the
  subscription. It never decreases.
  """

  __tablename__ = "subscriptions"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("sub"))

  company_id = Column(String, ForeignKey("companies.id"), nullable=False)
  contact_id = Column(String, ForeignKey("contacts.id"), nullable=True)

  stripe_subscription_id = Column(String, unique=True, nullable=False)
  stripe_customer_id = Column(String, nullable=True)

  machine_slug = Column(String, nullable=True)
  machine_name = Column(String, nullable=True)

  monthly_price_cents = Column(Integer, nullable=False)
  ratchet_max_cents = Column(Integer, nullable=False)
  currency = Column(String, default="gbp", nullable=False)

  status = Column(String, default=SubscriptionStatus.TRIAL.value, nullable=False)

  current_period_start = Column(DateTime, nullable=True)
  current_period_end = Column(DateTime, nullable=True)
  trial_end_date = Column(DateTime, nullable=True)
  cancelled_at = Column(DateTime, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  events = relationship(
    "SubscriptionEvent",
    back_populates="subscription",
    order_by="SubscriptionEvent.created_at",
  )

  __table_args__ = (
    Index("idx_subscription_company", "company_id"),
    Index("idx_subscription_status", "status"),
  )

  def __repr__(self) -> str:
    return (
      f"<Subscription {self.stripe_subscription_id} {self.status} "
      f"£{self.monthly_price_cents / 100:.2f} (max £{self.ratchet_max_cents / 100:.2f})>"
    )

  @classmethod
  def get_by_stripe_subscription_id(
    cls, stripe_subscription_id: str, session: Session
  ) -> Optional["Subscription"]:
    return (
      session.query(cls)
      .filter(cls.stripe_subscription_id == stripe_subscription_id)
      .first()
    )

  def transition_to(self, new_status: SubscriptionStatus | str) -> bool:
    new_value = (
      new_status.value if isinstance(new_status, SubscriptionStatus) else new_status
    )
    if new_value == self.status:
      return False
    if not can_transition(SUBSCRIPTION_TRANSITIONS, self.status, new_value):
      logger.warning(
        f"Rejected subscription transition {self.status} -> {new_value} for {self.id}"
      )
      return False

    self.status = new_value
    if new_value == SubscriptionStatus.CANCELLED.value:
      self.cancelled_at = datetime.now(UTC)
    self.updated_at = datetime.now(UTC)
    return True

  def apply_price(self, new_price_cents: int) -> RatchetOutcome:
    """Record the provider's current price and apply the ratchet rule."""
    outcome = apply_ratchet(self.ratchet_max_cents, new_price_cents)
    self.monthly_price_cents = new_price_cents
    self.ratchet_max_cents = outcome.ratchet_max_cents
    self.updated_at = datetime.now(UTC)
    return outcome


class SubscriptionEvent(Base):
  """Append-only audit trail of subscription status and price changes."""

  __tablename__ = "subscription_events"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("sevt"))
  subscription_id = Column(String, ForeignKey("subscriptions.id"), nullable=False)

  event_type = Column(String, nullable=False)
  old_status = Column(String, nullable=True)
  new_status = Column(String, nullable=True)
  old_price_cents = Column(Integer, nullable=True)
  new_price_cents = Column(Integer, nullable=True)
  ratchet_max_cents = Column(Integer, nullable=True)

  # Provider event that caused the row; redeliveries hit the unique constraint
  source_event_id = Column(String, nullable=True)
  notes = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  subscription = relationship("Subscription", back_populates="events")

  __table_args__ = (
    UniqueConstraint(
      "subscription_id",
      "event_type",
      "source_event_id",
      name="uq_subscription_event_source",
    ),
    Index("idx_subscription_event_subscription", "subscription_id"),
  )

  def __repr__(self) -> str:
    return f"<SubscriptionEvent {self.event_type} {self.subscription_id}>"

  @classmethod
  def exists(
    cls,
    subscription_id: str,
    event_type: str,
    source_event_id: Optional[str],
    session: Session,
  ) -> bool:
    if source_event_id is None:
      return False
    return (
      session.query(cls.id)
      .filter(
        cls.subscription_id == subscription_id,
        cls.event_type == event_type,
        cls.source_event_id == source_event_id,
      )
      .first()
      is not None
    )
