"""AWS SES adapter for sending transactional emails."""

from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from ...config import env
from ...logger import logger


class SESEmailService:
  """Service for sending transactional emails via Amazon SES."""

  def __init__(self, ses_client: Optional[Any] = None):
    """Initialize SES client."""
    self.ses_client = ses_client or boto3.client("ses", region_name=env.AWS_REGION)
    self.from_address = env.EMAIL_FROM_ADDRESS
    self.from_name = env.EMAIL_FROM_NAME
    self.site_url = env.SITE_URL.rstrip("/")

    if not self.from_address:
      logger.warning("EMAIL_FROM_ADDRESS not configured - emails will not be sent")

  def _get_email_template(
    self, email_type: str, template_data: dict[str, Any]
  ) -> dict[str, str]:
    """Get email subject and plain-text body for an email type."""
    name = template_data.get("recipient_name") or "there"

    templates = {
      "order_confirmation": {
        "subject": f"Order confirmation {template_data.get('reference', '')}".strip(),
        "text": f"""Hi {name},

Thank you for your order. We have received your payment of {template_data.get("total", "")}.

{template_data.get("items_text", "")}

We will be in touch when your order ships.

FinishOps
{self.site_url}""",
      },
      "trial_confirmation": {
        "subject": f"Your {template_data.get('machine_name', 'machine')} trial has started",
        "text": f"""Hi {name},

Your trial of the {template_data.get("machine_name", "machine")} is confirmed.
The trial runs until {template_data.get("trial_end", "the end of the trial period")}, after which
billing starts at {template_data.get("monthly_price", "")} per month.

FinishOps
{self.site_url}""",
      },
      "invoice_paid_sales_rep": {
        "subject": (
          f"Invoice {template_data.get('invoice_number', '')} paid by "
          f"{template_data.get('company_name', 'a customer')}"
        ),
        "text": f"""Hi {name},

{template_data.get("company_name", "A customer")} has paid invoice {template_data.get("invoice_number", "")}
for {template_data.get("total", "")}.

{self.site_url}/admin/invoices/{template_data.get("invoice_id", "")}""",
      },
      "invoice_issued": {
        "subject": f"Invoice {template_data.get('invoice_number', '')} from FinishOps",
        "text": f"""Hi {name},

Please find your invoice {template_data.get("invoice_number", "")} for {template_data.get("total", "")}.
You can view and pay it online:
{template_data.get("invoice_url", "")}

FinishOps""",
      },
      "operator_alert": {
        "subject": f"[FinishOps {env.ENVIRONMENT}] {template_data.get('subject', 'Alert')}",
        "text": f"""{template_data.get("message", "")}

{template_data.get("details_text", "")}""",
      },
    }

    return templates.get(email_type, templates["operator_alert"])

  def send_email(
    self, email_type: str, to_email: str, template_data: dict[str, Any]
  ) -> bool:
    """
    Send an email via Amazon SES.

    Args:
        email_type: Type of email (order_confirmation, invoice_issued, ...)
        to_email: Recipient email address
        template_data: Data for the email template

    Returns:
        True if email was sent successfully, False otherwise
    """
    if not self.from_address:
      logger.warning(
        f"Cannot send {email_type} email - EMAIL_FROM_ADDRESS not configured"
      )
      return False

    template = self._get_email_template(email_type, template_data)
    message = {
      "Subject": {"Data": template["subject"], "Charset": "UTF-8"},
      "Body": {"Text": {"Data": template["text"], "Charset": "UTF-8"}},
    }

    try:
      response = self.ses_client.send_email(
        Source=f"{self.from_name} <{self.from_address}>",
        Destination={"ToAddresses": [to_email]},
        Message=message,
        Tags=[
          {"Name": "EmailType", "Value": email_type},
          {"Name": "Environment", "Value": env.ENVIRONMENT},
        ],
      )
    except ClientError as e:
      error_code = e.response["Error"]["Code"]
      error_message = e.response["Error"]["Message"]

      if error_code == "MessageRejected":
        logger.error(f"SES rejected email to {to_email}: {error_message}")
      elif error_code == "MailFromDomainNotVerified":
        logger.error(f"SES sender domain not verified: {self.from_address}")
      else:
        logger.error(
          f"AWS SES error sending {email_type} email to {to_email}: {error_code} - {error_message}"
        )
      return False

    logger.info(
      f"Sent {email_type} email to {to_email}. MessageId: {response['MessageId']}"
    )
    return True
