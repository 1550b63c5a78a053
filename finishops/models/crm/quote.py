"""Sales quotes; only the won/lost lifecycle matters to billing."""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class QuoteStatus(str, Enum):
  DRAFT = "draft"
  SENT = "sent"
  WON = "won"
  LOST = "lost"


class Quote(Base):
  __tablename__ = "quotes"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("qt"))
  company_id = Column(String, ForeignKey("companies.id"), nullable=False)
  status = Column(String, default=QuoteStatus.DRAFT.value, nullable=False)
  invoice_id = Column(String, ForeignKey("invoices.id"), nullable=True)
  won_at = Column(DateTime, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  def __repr__(self) -> str:
    return f"<Quote {self.id} status={self.status}>"

  @classmethod
  def get_by_id(cls, quote_id: str, session: Session) -> Optional["Quote"]:
    return session.query(cls).filter(cls.id == quote_id).first()

  def mark_won(self, invoice_id: str) -> bool:
    """Mark the quote won. Returns False when it already was."""
    if self.status == QuoteStatus.WON.value:
      return False
    self.status = QuoteStatus.WON.value
    self.invoice_id = invoice_id
    self.won_at = datetime.now(UTC)
    return True
