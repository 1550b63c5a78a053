"""Tests for the TTL ladder cache."""

from unittest.mock import Mock

import pytest

from finishops.exceptions import PricingConfigurationError
from finishops.operations.pricing import LadderCache, StaticLadderSource


class FakeClock:
  def __init__(self):
    self.now = 1000.0

  def __call__(self):
    return self.now


@pytest.fixture
def clock():
  return FakeClock()


@pytest.fixture
def source():
  real = StaticLadderSource(max_qty_standard=15, max_qty_premium=10)
  wrapped = Mock(wraps=real)
  wrapped.name = "static"
  return wrapped


@pytest.mark.unit
class TestLadderCache:
  def test_loads_lazily(self, source, clock):
    cache = LadderCache(source, ttl_seconds=60, clock=clock)

    assert not cache.is_loaded
    cache.get()
    assert cache.is_loaded
    source.load.assert_called_once()

  def test_serves_cached_within_ttl(self, source, clock):
    cache = LadderCache(source, ttl_seconds=60, clock=clock)

    first = cache.get()
    clock.now += 59
    assert cache.get() is first
    assert source.load.call_count == 1

  def test_reloads_after_ttl(self, source, clock):
    cache = LadderCache(source, ttl_seconds=60, clock=clock)

    cache.get()
    clock.now += 60
    cache.get()
    assert source.load.call_count == 2

  def test_force_refresh_ignores_age(self, source, clock):
    cache = LadderCache(source, ttl_seconds=60, clock=clock)

    cache.get()
    cache.force_refresh()
    assert source.load.call_count == 2

  def test_invalidate(self, source, clock):
    cache = LadderCache(source, ttl_seconds=60, clock=clock)

    cache.get()
    cache.invalidate()
    assert not cache.is_loaded
    cache.get()
    assert source.load.call_count == 2

  def test_failed_reload_never_serves_expired_tiers(self, source, clock):
    cache = LadderCache(source, ttl_seconds=60, clock=clock)
    cache.get()

    clock.now += 61
    source.load.side_effect = PricingConfigurationError("static", "boom")
    with pytest.raises(PricingConfigurationError):
      cache.get()
    assert not cache.is_loaded

    # Recovery on the next successful load
    source.load.side_effect = None
    assert cache.get().source == "static"
