"""
Outbound notifications and portal cache refresh.

Both are fire-and-forget from the reconciler's point of view: it calls them
inside a side-effect block and only logs when they fail.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ...config import env
from ...logger import get_logger
from ...utils.money import from_minor_units

logger = get_logger(__name__)


def format_money(amount_cents: Optional[int], currency: str = "gbp") -> str:
  amount = from_minor_units(amount_cents)
  if currency.lower() == "gbp":
    return f"£{amount:,.2f}"
  return f"{amount:,.2f} {currency.upper()}"


class NotificationSink(ABC):
  """Where customer, sales rep and operator notifications go."""

  @abstractmethod
  def send_order_confirmation(
    self,
    to_email: str,
    recipient_name: Optional[str],
    reference: str,
    total_cents: int,
    currency: str,
    items: List[Dict[str, Any]],
  ) -> bool:
    pass

  @abstractmethod
  def send_trial_confirmation(
    self,
    to_email: str,
    recipient_name: Optional[str],
    machine_name: Optional[str],
    monthly_price_cents: int,
    trial_end: Optional[str],
  ) -> bool:
    pass

  @abstractmethod
  def notify_sales_rep_invoice_paid(
    self,
    to_email: str,
    rep_name: Optional[str],
    company_name: Optional[str],
    invoice_id: str,
    invoice_number: Optional[str],
    total_cents: int,
    currency: str,
  ) -> bool:
    pass

  @abstractmethod
  def send_invoice_email(
    self,
    to_email: str,
    recipient_name: Optional[str],
    invoice_number: Optional[str],
    total_cents: int,
    currency: str,
    invoice_url: Optional[str],
  ) -> bool:
    pass

  @abstractmethod
  def alert_operators(
    self, subject: str, message: str, details: Optional[Dict[str, Any]] = None
  ) -> bool:
    pass


class SESNotificationSink(NotificationSink):
  """Sends notifications as plain-text email through Amazon SES."""

  def __init__(self, email_service=None, ops_email: Optional[str] = None):
    if email_service is None:
      from ..aws.ses import SESEmailService

      email_service = SESEmailService()
    self.email_service = email_service
    self.ops_email = ops_email if ops_email is not None else env.OPS_ALERT_EMAIL

  def send_order_confirmation(
    self, to_email, recipient_name, reference, total_cents, currency, items
  ) -> bool:
    items_text = "\n".join(
      f"  {item.get('quantity', 1)} x {item.get('description') or item.get('product_code')}"
      for item in items
    )
    return self.email_service.send_email(
      "order_confirmation",
      to_email,
      {
        "recipient_name": recipient_name,
        "reference": reference,
        "total": format_money(total_cents, currency),
        "items_text": items_text,
      },
    )

  def send_trial_confirmation(
    self, to_email, recipient_name, machine_name, monthly_price_cents, trial_end
  ) -> bool:
    return self.email_service.send_email(
      "trial_confirmation",
      to_email,
      {
        "recipient_name": recipient_name,
        "machine_name": machine_name or "machine",
        "monthly_price": format_money(monthly_price_cents),
        "trial_end": trial_end,
      },
    )

  def notify_sales_rep_invoice_paid(
    self, to_email, rep_name, company_name, invoice_id, invoice_number, total_cents, currency
  ) -> bool:
    return self.email_service.send_email(
      "invoice_paid_sales_rep",
      to_email,
      {
        "recipient_name": rep_name,
        "company_name": company_name,
        "invoice_id": invoice_id,
        "invoice_number": invoice_number or invoice_id,
        "total": format_money(total_cents, currency),
      },
    )

  def send_invoice_email(
    self, to_email, recipient_name, invoice_number, total_cents, currency, invoice_url
  ) -> bool:
    return self.email_service.send_email(
      "invoice_issued",
      to_email,
      {
        "recipient_name": recipient_name,
        "invoice_number": invoice_number,
        "total": format_money(total_cents, currency),
        "invoice_url": invoice_url,
      },
    )

  def alert_operators(self, subject, message, details=None) -> bool:
    if not self.ops_email:
      logger.warning(f"OPS_ALERT_EMAIL not configured - operator alert not sent: {subject}")
      return False
    details_text = "\n".join(f"{key}: {value}" for key, value in (details or {}).items())
    return self.email_service.send_email(
      "operator_alert",
      self.ops_email,
      {"subject": subject, "message": message, "details_text": details_text},
    )


class LoggingNotificationSink(NotificationSink):
  """Logs notifications instead of sending them (dev and test)."""

  def send_order_confirmation(
    self, to_email, recipient_name, reference, total_cents, currency, items
  ) -> bool:
    logger.info(f"[notify] order confirmation {reference} to {to_email}")
    return True

  def send_trial_confirmation(
    self, to_email, recipient_name, machine_name, monthly_price_cents, trial_end
  ) -> bool:
    logger.info(f"[notify] trial confirmation for {machine_name} to {to_email}")
    return True

  def notify_sales_rep_invoice_paid(
    self, to_email, rep_name, company_name, invoice_id, invoice_number, total_cents, currency
  ) -> bool:
    logger.info(f"[notify] invoice {invoice_number or invoice_id} paid, rep {to_email}")
    return True

  def send_invoice_email(
    self, to_email, recipient_name, invoice_number, total_cents, currency, invoice_url
  ) -> bool:
    logger.info(f"[notify] invoice {invoice_number} to {to_email}")
    return True

  def alert_operators(self, subject, message, details=None) -> bool:
    logger.warning(
      f"[notify] operator alert: {subject} - {message}",
      extra={"metadata": details or {}},
    )
    return True


def get_notification_sink(backend: Optional[str] = None) -> NotificationSink:
  """Factory for the configured notification backend."""
  backend = (backend or env.NOTIFICATIONS_BACKEND).lower()
  if backend == "ses":
    return SESNotificationSink()
  if backend == "log":
    return LoggingNotificationSink()
  raise ValueError(f"Unknown notifications backend: {backend}")


class PortalCache(ABC):
  """Customer portal cache that must be rebuilt when billing data changes."""

  @abstractmethod
  def refresh(self, company_id: str) -> None:
    pass


class RpcPortalCache(PortalCache):
  """Rebuilds the portal cache with the database's regenerate_portal_cache()."""

  def __init__(self, session: Session):
    self.session = session

  def refresh(self, company_id: str) -> None:
    self.session.execute(
      text("SELECT regenerate_portal_cache(:company_id)"), {"company_id": company_id}
    )
    logger.debug(f"Regenerated portal cache for company {company_id}")
