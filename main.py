"""FinishOps Service API main application module."""

from datetime import datetime, timezone
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from finishops.config import env
from finishops.config.logging import get_logger
from finishops.exceptions import (
  CartValidationError,
  FinishOpsError,
  InvoiceStateError,
  PaymentProviderError,
  PricingConfigurationError,
  RecordNotFoundError,
  SubscriptionPriceError,
)
from finishops.operations.pricing import LadderCache, get_ladder_source
from finishops.routers import invoices_router, pricing_router, webhooks_router

logger = get_logger("finishops.api")

ERROR_STATUS_CODES = (
  (PricingConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
  (CartValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
  (InvoiceStateError, status.HTTP_409_CONFLICT),
  (SubscriptionPriceError, status.HTTP_409_CONFLICT),
  (PaymentProviderError, status.HTTP_502_BAD_GATEWAY),
  (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
)


def status_code_for(exc: FinishOpsError) -> int:
  for error_type, status_code in ERROR_STATUS_CODES:
    if isinstance(exc, error_type):
      return status_code
  return status.HTTP_400_BAD_REQUEST


def create_app(ladder_cache: LadderCache | None = None) -> FastAPI:
  """
  Create the FastAPI app and include the routers.

  Args:
      ladder_cache: Pricing ladder cache to share across requests; built from
          the configured ladder source when omitted.

  Returns:
      FastAPI: The configured FastAPI application.
  """
  app = FastAPI(
    title="FinishOps API",
    version=pkg_version("finishops-service"),
    description="Pricing, invoicing and Stripe reconciliation for FinishOps.",
    openapi_url="/openapi.json",
  )

  app.state.current_time = datetime.now(timezone.utc)
  app.state.ladder_cache = ladder_cache or LadderCache(
    get_ladder_source(env.PRICING_SOURCE),
    ttl_seconds=env.PRICING_CACHE_TTL_SECONDS,
  )

  @app.on_event("startup")
  async def startup_event():
    """Validate configuration on startup."""
    logger.info("Starting FinishOps API...")

    errors = env.validate()
    if errors:
      logger.error(f"Configuration validation failed: {errors}")
      if env.is_production():
        raise RuntimeError(f"Invalid configuration: {errors}")
      logger.warning("Continuing with invalid configuration (development mode)")

    logger.info("FinishOps API startup complete")

  app.add_middleware(
    CORSMiddleware,
    allow_origins=env.CORS_ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Accept", "Content-Type", "Authorization"],
    max_age=3600,
  )

  @app.exception_handler(FinishOpsError)
  async def finishops_exception_handler(
    request: Request, exc: FinishOpsError
  ) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
      f"{exc.error_code} on {request.url.path}: {exc.message}",
      extra={"error_code": exc.error_code, "status_code": status_code},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())

  @app.exception_handler(Exception)
  async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler returning a generic error.

    Internal exception details are logged server-side only.
    """
    logger.error(f"Unhandled exception on {request.url.path}", exc_info=True)
    return JSONResponse(
      status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
      content={"detail": "Internal server error"},
    )

  @app.get("/health", tags=["Status"], operation_id="healthCheck")
  async def health():
    return {
      "status": "healthy",
      "environment": env.ENVIRONMENT,
      "pricing_source": app.state.ladder_cache.source.name,
      "pricing_loaded": app.state.ladder_cache.is_loaded,
      "started_at": app.state.current_time.isoformat(),
    }

  app.include_router(pricing_router)
  app.include_router(invoices_router)
  app.include_router(webhooks_router)

  return app


app = create_app()
