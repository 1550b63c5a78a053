"""Shared FastAPI dependencies."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..config import env
from ..database import get_db_session
from ..operations.billing import (
  NotificationSink,
  PortalCache,
  RpcPortalCache,
  get_notification_sink,
)
from ..operations.pricing import LadderCache, PricingEngine


def get_ladder_cache(request: Request) -> LadderCache:
  """The process-wide ladder cache built by create_app()."""
  return request.app.state.ladder_cache


def get_pricing_engine(cache: LadderCache = Depends(get_ladder_cache)) -> PricingEngine:
  return PricingEngine(cache)


def get_notifier() -> NotificationSink:
  return get_notification_sink(env.NOTIFICATIONS_BACKEND)


def get_portal_cache(db: Session = Depends(get_db_session)) -> PortalCache:
  return RpcPortalCache(db)
