"""
API v1 routers.
"""

from .invoices import router as invoices_router
from .pricing import router as pricing_router
from .webhooks import router as webhooks_router

__all__ = [
  "invoices_router",
  "pricing_router",
  "webhooks_router",
]
