"""Webhook API models."""

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
  """Acknowledgement returned to the payment provider."""

  status: str = Field(..., description="'success' once the event is accepted")
  message: str = Field(..., description="What happened to the event")
  event_id: str | None = Field(None, description="Provider event ID")
  result: str | None = Field(
    None, description="Reconciliation outcome (processed, skipped, ignored, failed)"
  )
