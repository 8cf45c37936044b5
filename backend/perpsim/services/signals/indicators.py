from typing import Dict, List, Optional

MIN_CANDLES_FOR_INDICATORS = 50


def compute_rsi(closes: List[float], period: int = 14) -> Optional[float]:
    """Compute RSI using classic gain/loss method over the last `period` diffs"""
    if len(closes) < period + 1:
        return None

    deltas = [closes[i] - closes[i-1] for i in range(1, len(closes))]

    # Separate gains and losses
    gains = [delta if delta > 0 else 0 for delta in deltas]
    losses = [-delta if delta < 0 else 0 for delta in deltas]

    avg_gain = sum(gains[-period:]) / period
    avg_loss = sum(losses[-period:]) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def exponential_moving_average(values: List[float], period: int) -> Optional[float]:
    """Compute EMA seeded from the SMA of the first `period` values"""
    if len(values) < period:
        return None

    multiplier = 2 / (period + 1)
    ema = sum(values[:period]) / period

    for value in values[period:]:
        ema = (value - ema) * multiplier + ema

    return ema


def calculate_indicators(candles: List[Dict]) -> Dict[str, Optional[float]]:
    """EMA20, EMA50 and RSI14 from candle closes.

    All values are None with fewer than 50 candles.
    """
    if len(candles) < MIN_CANDLES_FOR_INDICATORS:
        return {"ema20": None, "ema50": None, "rsi14": None}

    closes = [float(c["c"]) for c in candles]
    return {
        "ema20": exponential_moving_average(closes, 20),
        "ema50": exponential_moving_average(closes, 50),
        "rsi14": compute_rsi(closes, 14),
    }
