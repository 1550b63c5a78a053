"""
Ladder cache.

The one piece of shared mutable state in the service. An instance is built
at startup and passed to whatever prices carts; nothing reaches it through a
module global.
"""

import time
from typing import Callable, Optional

from ...logger import get_logger
from .ladder import LadderConfiguration
from .sources import LadderSource

logger = get_logger("finishops.pricing.cache")


class LadderCache:
  """TTL cache over a LadderSource.

  get() serves the cached configuration while it is younger than the TTL.
  Once expired it reloads, and if that reload fails the error propagates:
  an expired configuration is never served. Refreshes replace the cached
  reference in one assignment, so concurrent readers see either the old or
  the new snapshot and no lock is taken.
  """

  def __init__(
    self,
    source: LadderSource,
    ttl_seconds: float = 300,
    clock: Callable[[], float] = time.monotonic,
  ):
    self.source = source
    self.ttl_seconds = ttl_seconds
    self._clock = clock
    self._entry: Optional[tuple[LadderConfiguration, float]] = None

  def get(self) -> LadderConfiguration:
    entry = self._entry
    if entry is not None:
      config, loaded_at = entry
      if self._clock() - loaded_at < self.ttl_seconds:
        return config
      logger.debug(f"Pricing ladders from {self.source.name} expired, reloading")
    return self.force_refresh()

  def force_refresh(self) -> LadderConfiguration:
    """Reload from the source now, regardless of age."""
    # Drop the entry first so a failed reload cannot leave stale tiers behind
    self._entry = None
    config = self.source.load()
    self._entry = (config, self._clock())
    logger.info(f"Pricing ladders refreshed from {self.source.name}")
    return config

  def invalidate(self) -> None:
    self._entry = None

  @property
  def is_loaded(self) -> bool:
    return self._entry is not None
