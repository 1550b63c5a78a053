"""
Centralized configuration package for FinishOps Service.

Environment-driven settings live in `env`; static pricing tables and
catalogue category lists live in `pricing`.
"""

from .env import EnvConfig, env
from .pricing import PricingTierName, ProductType

__all__ = [
  "EnvConfig",
  "PricingTierName",
  "ProductType",
  "env",
]
