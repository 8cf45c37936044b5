import random

import pytest

from perpsim.services.signal_engine import (
    HISTORY_LENGTH,
    MAX_CONFIDENCE,
    SchedulerState,
    generate_signal,
    market_stats,
)


class FixedRandom(random.Random):
    """Random whose uniform() always returns the lower bound"""

    def uniform(self, a, b):
        return a


def test_history_is_bounded_and_reset_when_stale():
    state = SchedulerState()
    for i in range(15):
        prices = state.observe("bitcoin", 100.0 + i, now=1000.0 + i)
    assert len(prices) == HISTORY_LENGTH
    assert prices[-1] == 114.0

    prices = state.observe("bitcoin", 200.0, now=1014.0 + 61)
    assert prices == [200.0]


def test_attempt_counter():
    state = SchedulerState()
    assert state.attempts(1) == 0
    state.increment_attempts(1)
    state.increment_attempts(1)
    assert state.attempts(1) == 2
    state.reset_attempts(1)
    assert state.attempts(1) == 0


def test_market_stats():
    stats = market_stats([100.0, 101.0, 102.0, 103.0, 104.0], 104.0)
    assert stats.trend == 1
    assert stats.momentum == pytest.approx((104 - 102) / 102)
    assert stats.volatility > 0

    assert market_stats([100.0, 99.0], 99.0).momentum == 0.0


def test_needs_five_points_unless_forced():
    assert generate_signal("bitcoin", 100.0, [100.0] * 4, "trend", rng=FixedRandom()) is None
    forced = generate_signal("bitcoin", 100.0, [100.0], "trend", force=True, rng=FixedRandom())
    assert forced is not None
    assert forced.side == "long"


def test_trend_follows_rising_prices():
    prices = [100.0, 100.5, 101.0, 101.5, 102.0]
    signal = generate_signal(
        "bitcoin", 102.0, prices, "trend", use_ema_filter=False, use_rsi_filter=False, rng=FixedRandom()
    )
    assert signal.side == "long"
    assert signal.strategy == "trend"
    assert signal.confidence <= MAX_CONFIDENCE


def test_mean_reversion_fades_large_moves():
    prices = [100.0, 100.0, 100.0, 100.0, 110.0]
    signal = generate_signal(
        "bitcoin", 110.0, prices, "mean_reversion", use_ema_filter=False, use_rsi_filter=False, rng=FixedRandom()
    )
    assert signal.side == "short"


def test_breakout_needs_volatility():
    quiet = [100.0, 100.01, 100.02, 100.03, 100.04]
    assert generate_signal("bitcoin", 100.04, quiet, "breakout", rng=FixedRandom()) is None

    loud = [100.0, 95.0, 97.0, 99.0, 103.0]
    signal = generate_signal(
        "bitcoin", 103.0, loud, "breakout", use_ema_filter=False, use_rsi_filter=False, rng=FixedRandom()
    )
    assert signal.side == "long"


def test_volatility_filter_suppresses_flat_markets():
    flat = [100.0] * 5
    assert generate_signal("bitcoin", 100.0, flat, "trend", use_volatility_filter=True) is None


def test_forced_weak_signal_uses_momentum_sign():
    falling_mean = [101.0, 101.0, 101.0, 101.0, 100.0]
    signal = generate_signal(
        "bitcoin", 100.0, falling_mean, "breakout", force=True, rng=FixedRandom()
    )
    assert signal.side == "short"
    # clamped to 0.5 before the 0.1 boost
    assert signal.strength == pytest.approx(0.6)


def test_filters_only_weaken():
    prices = [100.0, 100.5, 101.0, 101.5, 102.0]
    plain = generate_signal(
        "bitcoin", 102.0, prices, "trend", use_ema_filter=False, use_rsi_filter=False, rng=FixedRandom()
    )
    filtered = generate_signal("bitcoin", 102.0, prices, "trend", rng=FixedRandom())
    assert filtered.strength <= plain.strength
