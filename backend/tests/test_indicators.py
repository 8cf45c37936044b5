import random

from perpsim.services.signals.indicators import (
    calculate_indicators,
    compute_rsi,
    exponential_moving_average,
)


def _candles(closes):
    return [{"t": i * 60000, "o": c, "h": c, "l": c, "c": c, "v": 1.0} for i, c in enumerate(closes)]


def test_fewer_than_50_candles_gives_nulls():
    result = calculate_indicators(_candles([100.0 + i for i in range(49)]))
    assert result == {"ema20": None, "ema50": None, "rsi14": None}


def test_indicators_stay_in_range():
    rng = random.Random(7)
    closes = [100.0]
    for _ in range(119):
        closes.append(closes[-1] * (1 + rng.uniform(-0.03, 0.03)))

    result = calculate_indicators(_candles(closes))

    for key in ("ema20", "ema50"):
        assert min(closes) <= result[key] <= max(closes)
    assert 0 <= result["rsi14"] <= 100


def test_rsi_all_gains_is_100():
    assert compute_rsi([float(i) for i in range(1, 30)]) == 100.0


def test_rsi_needs_period_plus_one_values():
    assert compute_rsi([1.0] * 14) is None


def test_ema_of_flat_series_is_the_price():
    assert exponential_moving_average([5.0] * 30, 20) == 5.0
    assert exponential_moving_average([5.0] * 10, 20) is None
