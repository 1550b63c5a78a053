"""
Static constants configuration.

Operational constants (timeouts, pool sizes, cache lifetimes) that do not
change between environments.
"""

# Database pool defaults
DEFAULT_POOL_SIZE = 10
DEFAULT_MAX_OVERFLOW = 20
DEFAULT_POOL_TIMEOUT = 30
DEFAULT_POOL_RECYCLE = 3600

# Cache TTL Values (seconds)
CACHE_TTL_SHORT = 300  # 5 minutes

# Webhook audit source
WEBHOOK_SOURCE_STRIPE = "stripe"

# Outbox job types
ACCOUNTING_SYNC_JOB = "accounting_sync_order"
