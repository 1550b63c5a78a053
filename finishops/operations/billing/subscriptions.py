"""Rules for machine subscriptions outside webhook handling."""

from decimal import Decimal
from typing import Any, Dict, Optional

from ...config import env
from ...exceptions import SubscriptionPriceError
from ...models.billing import Subscription
from ...utils.money import to_minor_units

TRIAL_SUBSCRIPTION_TYPE = "trial_subscription"


def build_trial_metadata(
  company_id: str,
  contact_id: Optional[str],
  machine_slug: Optional[str],
  machine_name: Optional[str],
  monthly_price: Decimal,
  source: str = "website",
) -> Dict[str, Any]:
  """Metadata for a trial checkout session and the subscription it creates.

  The webhook reads these keys back: `type`/`machine_slug` mark a trial and
  `monthly_price_gbp` is the price the ratchet starts from.
  """
  price = f"{Decimal(str(monthly_price)):.2f}"
  return {
    "trial_period_days": env.TRIAL_PERIOD_DAYS,
    "session_metadata": {
      "company_id": company_id,
      "contact_id": contact_id or "",
      "machine_slug": machine_slug or "",
      "offer_price": price,
      "type": TRIAL_SUBSCRIPTION_TYPE,
    },
    "subscription_metadata": {
      "company_id": company_id,
      "contact_id": contact_id or "",
      "machine_slug": machine_slug or "",
      "machine_name": machine_name or "",
      "monthly_price_gbp": price,
      "type": TRIAL_SUBSCRIPTION_TYPE,
      "source": source,
    },
  }


def validate_upgrade(subscription: Subscription, new_monthly_price: Decimal) -> int:
  """Check a requested price change and return the new price in pence.

  Raises:
      SubscriptionPriceError: if the price would fall below the current
          price or the ratchet high-water mark
  """
  new_cents = to_minor_units(new_monthly_price)
  floor = max(subscription.monthly_price_cents or 0, subscription.ratchet_max_cents or 0)
  if new_cents < floor:
    raise SubscriptionPriceError(subscription.id, floor, new_cents)
  return new_cents
