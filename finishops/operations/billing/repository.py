"""
Persistence interface for billing reconciliation.

The reconciler reads and writes through a BillingRepository so the state
machine does not care where records live. SqlAlchemyBillingRepository is
the implementation used by the service and the tests.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...logger import get_logger, log_error, log_financial_alert
from ...models.billing import (
  CommissionRecord,
  EngagementEvent,
  Invoice,
  Order,
  Subscription,
  SubscriptionEvent,
)
from ...models.catalog import Product
from ...models.crm import Company, Contact, DistributorCustomer, Quote, SalesRep

logger = get_logger(__name__)


class BillingRepository(ABC):
  """Reads and writes the records webhook reconciliation touches."""

  # Transaction control

  @abstractmethod
  def add(self, record: Any) -> None:
    pass

  @abstractmethod
  def flush(self) -> None:
    pass

  @abstractmethod
  def commit(self) -> None:
    """Commit the primary financial write. Errors propagate."""
    pass

  @abstractmethod
  def rollback(self) -> None:
    pass

  @abstractmethod
  def insert_if_absent(self, record: Any) -> bool:
    """Insert a record, returning False if a unique constraint says it exists."""
    pass

  @abstractmethod
  def side_effect(self, name: str, event_id: Optional[str] = None, critical: bool = False):
    """Context manager isolating a secondary write or call.

    Failures inside are rolled back to a savepoint, logged and swallowed.
    """
    pass

  @abstractmethod
  def commit_side_effects(self, event_id: Optional[str] = None) -> bool:
    """Commit whatever side effects succeeded; never raises."""
    pass

  # Lookups

  @abstractmethod
  def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
    pass

  @abstractmethod
  def get_invoice_by_provider_id(self, provider_invoice_id: str) -> Optional[Invoice]:
    pass

  @abstractmethod
  def get_invoice_by_payment_intent(self, payment_intent_id: str) -> Optional[Invoice]:
    pass

  @abstractmethod
  def get_invoice_by_checkout_session(self, session_id: str) -> Optional[Invoice]:
    pass

  @abstractmethod
  def get_order_by_checkout_session(self, session_id: str) -> Optional[Order]:
    pass

  @abstractmethod
  def get_order_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
    pass

  @abstractmethod
  def get_order_by_invoice(self, invoice_id: str) -> Optional[Order]:
    pass

  @abstractmethod
  def get_subscription_by_provider_id(
    self, provider_subscription_id: str
  ) -> Optional[Subscription]:
    pass

  @abstractmethod
  def subscription_event_exists(
    self, subscription_id: str, event_type: str, source_event_id: Optional[str]
  ) -> bool:
    pass

  @abstractmethod
  def get_company(self, company_id: str) -> Optional[Company]:
    pass

  @abstractmethod
  def get_contact(self, contact_id: str) -> Optional[Contact]:
    pass

  @abstractmethod
  def get_primary_contact(self, company_id: str) -> Optional[Contact]:
    pass

  @abstractmethod
  def get_sales_rep(self, rep_id: str) -> Optional[SalesRep]:
    pass

  @abstractmethod
  def get_quote(self, quote_id: str) -> Optional[Quote]:
    pass

  @abstractmethod
  def get_active_distributor(self, customer_id: str) -> Optional[DistributorCustomer]:
    pass

  @abstractmethod
  def get_product_types(self, product_codes: Iterable[str]) -> Dict[str, str]:
    pass

  @abstractmethod
  def commission_exists(self, invoice_id: str) -> bool:
    pass

  @abstractmethod
  def engagement_event_exists(
    self, source: str, source_event_id: str, event_name: str
  ) -> bool:
    pass


class SqlAlchemyBillingRepository(BillingRepository):
  """BillingRepository over a SQLAlchemy session.

  Side effects use SAVEPOINTs (session.begin_nested), so one failing
  notification or analytics insert cannot undo the others.
  """

  def __init__(self, session: Session):
    self.session = session

  def add(self, record: Any) -> None:
    self.session.add(record)

  def flush(self) -> None:
    self.session.flush()

  def commit(self) -> None:
    self.session.commit()

  def rollback(self) -> None:
    self.session.rollback()

  def insert_if_absent(self, record: Any) -> bool:
    try:
      with self.session.begin_nested():
        self.session.add(record)
    except IntegrityError:
      logger.info(f"{type(record).__name__} already exists, skipping insert")
      return False
    return True

  @contextmanager
  def side_effect(
    self, name: str, event_id: Optional[str] = None, critical: bool = False
  ) -> Iterator[None]:
    try:
      with self.session.begin_nested():
        yield
    except Exception as e:
      metadata = {"side_effect": name, "event_id": event_id}
      if critical:
        log_financial_alert(
          logger,
          f"Side effect {name} failed for event {event_id}: {e}",
          action=name,
          error_category="side_effect",
          metadata=metadata,
          exc_info=True,
        )
      else:
        log_error(
          logger,
          e,
          component="reconciliation",
          action=name,
          error_category="side_effect",
          metadata=metadata,
        )

  def commit_side_effects(self, event_id: Optional[str] = None) -> bool:
    try:
      self.session.commit()
    except SQLAlchemyError as e:
      self.session.rollback()
      log_error(
        logger,
        e,
        component="reconciliation",
        action="commit_side_effects",
        error_category="side_effect",
        metadata={"event_id": event_id},
      )
      return False
    return True

  def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
    return Invoice.get_by_id(invoice_id, self.session)

  def get_invoice_by_provider_id(self, provider_invoice_id: str) -> Optional[Invoice]:
    return Invoice.get_by_stripe_invoice_id(provider_invoice_id, self.session)

  def get_invoice_by_payment_intent(self, payment_intent_id: str) -> Optional[Invoice]:
    return Invoice.get_by_payment_intent_id(payment_intent_id, self.session)

  def get_invoice_by_checkout_session(self, session_id: str) -> Optional[Invoice]:
    return Invoice.get_by_checkout_session_id(session_id, self.session)

  def get_order_by_checkout_session(self, session_id: str) -> Optional[Order]:
    return Order.get_by_checkout_session_id(session_id, self.session)

  def get_order_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
    return Order.get_by_payment_intent_id(payment_intent_id, self.session)

  def get_order_by_invoice(self, invoice_id: str) -> Optional[Order]:
    return self.session.query(Order).filter(Order.invoice_id == invoice_id).first()

  def get_subscription_by_provider_id(
    self, provider_subscription_id: str
  ) -> Optional[Subscription]:
    return Subscription.get_by_stripe_subscription_id(provider_subscription_id, self.session)

  def subscription_event_exists(
    self, subscription_id: str, event_type: str, source_event_id: Optional[str]
  ) -> bool:
    return SubscriptionEvent.exists(
      subscription_id, event_type, source_event_id, self.session
    )

  def get_company(self, company_id: str) -> Optional[Company]:
    return Company.get_by_id(company_id, self.session)

  def get_contact(self, contact_id: str) -> Optional[Contact]:
    return Contact.get_by_id(contact_id, self.session)

  def get_primary_contact(self, company_id: str) -> Optional[Contact]:
    return Contact.get_primary_for_company(company_id, self.session)

  def get_sales_rep(self, rep_id: str) -> Optional[SalesRep]:
    return SalesRep.get_by_id(rep_id, self.session)

  def get_quote(self, quote_id: str) -> Optional[Quote]:
    return Quote.get_by_id(quote_id, self.session)

  def get_active_distributor(self, customer_id: str) -> Optional[DistributorCustomer]:
    return DistributorCustomer.get_active_for_customer(customer_id, self.session)

  def get_product_types(self, product_codes: Iterable[str]) -> Dict[str, str]:
    return Product.get_types_by_code(list(product_codes), self.session)

  def commission_exists(self, invoice_id: str) -> bool:
    return CommissionRecord.get_by_invoice_id(invoice_id, self.session) is not None

  def engagement_event_exists(
    self, source: str, source_event_id: str, event_name: str
  ) -> bool:
    return EngagementEvent.exists(source, source_event_id, event_name, self.session)
