"""
Momentum signal generation for the automation agent.

Works on a short rolling price buffer per instrument (last 10 observations,
restarted when the newest observation is more than 60s old).
"""
from __future__ import annotations

import logging
import math
import random
import threading
from dataclasses import dataclass, field
from time import time
from typing import Dict, List, Optional, Sequence

from perpsim.models.agent_config import AgentStrategyEnum
from perpsim.models.position import PositionSideEnum

logger = logging.getLogger(__name__)

HISTORY_LENGTH = 10
HISTORY_STALE_SECONDS = 60.0
MIN_HISTORY_POINTS = 5

MIN_SIGNAL_STRENGTH = 0.5
MAX_CONFIDENCE = 0.95
FORCED_FLOOR = 0.3
FORCED_STRENGTH = 0.5


@dataclass
class PriceHistory:
    prices: List[float] = field(default_factory=list)
    last_update: float = 0.0


@dataclass
class Signal:
    token_id: str
    side: str
    strength: float
    confidence: float
    strategy: str


@dataclass
class MarketStats:
    momentum: float = 0.0
    volatility: float = 0.0
    trend: int = 0
    mean: Optional[float] = None


class SchedulerState:
    """In-memory state owned by the agent runner.

    Price buffers are keyed by instrument and overwritten once stale, and
    attempt counters are keyed by user; both have bounded key sets so no
    separate eviction is needed.
    """

    def __init__(self):
        self._history: Dict[str, PriceHistory] = {}
        self._attempts: Dict[int, int] = {}
        self._lock = threading.Lock()

    def observe(self, token_id: str, price: float, now: Optional[float] = None) -> List[float]:
        """Record a price and return the current buffer (oldest first)"""
        now = time() if now is None else now
        with self._lock:
            history = self._history.get(token_id)
            if history is None or now - history.last_update > HISTORY_STALE_SECONDS:
                history = PriceHistory(prices=[price], last_update=now)
            else:
                history = PriceHistory(prices=(history.prices + [price])[-HISTORY_LENGTH:], last_update=now)
            self._history[token_id] = history
            return list(history.prices)

    def history(self, token_id: str) -> List[float]:
        with self._lock:
            history = self._history.get(token_id)
            return list(history.prices) if history else []

    def attempts(self, user_id: int) -> int:
        with self._lock:
            return self._attempts.get(user_id, 0)

    def increment_attempts(self, user_id: int) -> int:
        with self._lock:
            self._attempts[user_id] = self._attempts.get(user_id, 0) + 1
            return self._attempts[user_id]

    def reset_attempts(self, user_id: int) -> None:
        with self._lock:
            self._attempts[user_id] = 0


def market_stats(prices: Sequence[float], current_price: float) -> MarketStats:
    """Momentum vs. buffer mean, relative stddev, and direction of the last three prices"""
    if len(prices) < 3:
        return MarketStats()

    mean = sum(prices) / len(prices)
    variance = sum((p - mean) ** 2 for p in prices) / len(prices)
    trend = 0
    a, b, c = prices[-3:]
    if c > b > a:
        trend = 1
    elif c < b < a:
        trend = -1
    return MarketStats(
        momentum=(current_price - mean) / mean,
        volatility=math.sqrt(variance) / mean,
        trend=trend,
        mean=mean,
    )


def _strategy_signal(strategy: str, stats: MarketStats):
    long_, short = PositionSideEnum.LONG.value, PositionSideEnum.SHORT.value
    momentum, trend = stats.momentum, stats.trend

    if strategy == AgentStrategyEnum.TREND.value:
        if trend == 1 and momentum > 0:
            return 0.7 + momentum * 10, long_
        if trend == -1 and momentum < 0:
            return 0.7 + abs(momentum) * 10, short
        if momentum > 0.002:
            return 0.5 + momentum * 5, long_
        if momentum < -0.002:
            return 0.5 + abs(momentum) * 5, short
    elif strategy == AgentStrategyEnum.MEAN_REVERSION.value:
        if momentum > 0.01:
            return 0.6 + momentum * 5, short
        if momentum < -0.01:
            return 0.6 + abs(momentum) * 5, long_
    elif strategy == AgentStrategyEnum.BREAKOUT.value:
        if stats.volatility > 0.005:
            if trend == 1:
                return 0.8, long_
            if trend == -1:
                return 0.8, short
    return 0.0, long_


def generate_signal(
    token_id: str,
    current_price: float,
    prices: Sequence[float],
    strategy: str,
    use_ema_filter: bool = True,
    use_rsi_filter: bool = True,
    use_volatility_filter: bool = False,
    force: bool = False,
    rng: Optional[random.Random] = None,
) -> Optional[Signal]:
    """Evaluate one strategy against the price buffer.

    `prices` must already include current_price. Returns None when there is no
    tradeable signal; a forced evaluation always returns one.
    """
    rng = rng or random
    if len(prices) < MIN_HISTORY_POINTS and not force:
        return None

    stats = market_stats(prices, current_price)

    if use_volatility_filter and stats.volatility < 0.001 and not force:
        return None

    strength, side = _strategy_signal(strategy, stats)

    # Filters only ever weaken a signal
    if use_ema_filter and len(prices) >= MIN_HISTORY_POINTS:
        mean = sum(prices) / len(prices)
        if side == PositionSideEnum.LONG.value and current_price < mean:
            strength *= 0.7
        elif side == PositionSideEnum.SHORT.value and current_price > mean:
            strength *= 0.7

    if use_rsi_filter:
        if stats.momentum > 0.03 and side == PositionSideEnum.LONG.value:
            strength *= 0.5
        elif stats.momentum < -0.03 and side == PositionSideEnum.SHORT.value:
            strength *= 0.5

    if force and strength < FORCED_FLOOR:
        strength = FORCED_STRENGTH
        side = PositionSideEnum.LONG.value if stats.momentum >= 0 else PositionSideEnum.SHORT.value

    strength += rng.uniform(0.1, 0.4)

    if strength < MIN_SIGNAL_STRENGTH and not force:
        return None

    return Signal(
        token_id=token_id,
        side=side,
        strength=strength,
        confidence=min(strength, MAX_CONFIDENCE),
        strategy=strategy,
    )
