"""CRM records the billing core reads: companies, contacts, sales reps."""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class SalesRep(Base):
  """Internal sales representative who owns customer accounts."""

  __tablename__ = "sales_reps"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("rep"))
  full_name = Column(String, nullable=False)
  email = Column(String, nullable=False, unique=True)
  active = Column(Boolean, default=True, nullable=False)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  def __repr__(self) -> str:
    return f"<SalesRep {self.full_name}>"

  @classmethod
  def get_by_id(cls, rep_id: str, session: Session) -> Optional["SalesRep"]:
    return session.query(cls).filter(cls.id == rep_id).first()


class Company(Base):
  """Customer, distributor or prospect organisation."""

  __tablename__ = "companies"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("co"))
  company_name = Column(String, nullable=False)
  company_type = Column(String, default="customer", nullable=False)

  # Sales rep who owns the account and is notified of paid invoices
  account_owner = Column(String, ForeignKey("sales_reps.id"), nullable=True)

  country = Column(String, default="GB", nullable=True)
  billing_country = Column(String, nullable=True)
  vat_number = Column(String, nullable=True)
  stripe_customer_id = Column(String, unique=True, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  __table_args__ = (Index("idx_company_account_owner", "account_owner"),)

  def __repr__(self) -> str:
    return f"<Company {self.company_name}>"

  @classmethod
  def get_by_id(cls, company_id: str, session: Session) -> Optional["Company"]:
    return session.query(cls).filter(cls.id == company_id).first()


class Contact(Base):
  """Person at a company who receives order and trial emails."""

  __tablename__ = "contacts"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("ct"))
  company_id = Column(String, ForeignKey("companies.id"), nullable=False)
  full_name = Column(String, nullable=True)
  email = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  __table_args__ = (Index("idx_contact_company", "company_id"),)

  def __repr__(self) -> str:
    return f"<Contact {self.email}>"

  @classmethod
  def get_by_id(cls, contact_id: str, session: Session) -> Optional["Contact"]:
    return session.query(cls).filter(cls.id == contact_id).first()

  @classmethod
  def get_primary_for_company(
    cls, company_id: str, session: Session
  ) -> Optional["Contact"]:
    """Oldest contact with an email address."""
    return (
      session.query(cls)
      .filter(cls.company_id == company_id, cls.email.isnot(None))
      .order_by(cls.created_at.asc())
      .first()
    )
