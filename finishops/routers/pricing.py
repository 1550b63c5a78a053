"""Cart pricing and category ladder endpoints."""

from fastapi import APIRouter, Depends

from ..logger import get_logger
from ..models.api.pricing import (
  CategoryPricingResponse,
  PriceCartRequest,
  PriceCartResponse,
  RefreshPricingResponse,
)
from ..operations.pricing import (
  LadderCache,
  PricingEngine,
  get_category_pricing_info,
)
from .dependencies import get_ladder_cache, get_pricing_engine

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/pricing", tags=["Pricing"])


@router.post(
  "/quote",
  response_model=PriceCartResponse,
  summary="Price Cart",
  description="""Price a cart against the current tier ladders.

Standard items share one unit price chosen by their combined quantity.
Premium items get a percentage discount chosen by their own quantity.

Quantities above the per-SKU maximum are reported in `validation_errors`
but the cart is still priced.""",
  operation_id="priceCart",
)
async def price_cart(
  request: PriceCartRequest,
  engine: PricingEngine = Depends(get_pricing_engine),
):
  result = engine.price([item.to_cart_item() for item in request.items])
  return PriceCartResponse(**result.to_dict())


@router.get(
  "/categories/{category}",
  response_model=CategoryPricingResponse,
  summary="Category Pricing",
  description="Pricing tier, per-SKU maximum and ladder rows for a catalogue category.",
  operation_id="getCategoryPricing",
)
async def get_category_pricing(
  category: str,
  cache: LadderCache = Depends(get_ladder_cache),
):
  return CategoryPricingResponse(**get_category_pricing_info(category, cache.get()))


@router.post(
  "/refresh",
  response_model=RefreshPricingResponse,
  summary="Refresh Pricing Ladders",
  description="Reload the tier ladders from their source now, ignoring the cache TTL.",
  operation_id="refreshPricing",
)
async def refresh_pricing(cache: LadderCache = Depends(get_ladder_cache)):
  config = cache.force_refresh()
  logger.info(f"Pricing ladders refreshed on request from {config.source}")
  return RefreshPricingResponse(
    source=config.source,
    loaded_at=config.loaded_at.isoformat(),
    standard_tiers=len(config.standard.tiers),
    premium_tiers=len(config.premium.tiers),
  )
