from dataclasses import dataclass
from typing import Dict, List, Optional, Iterable
from abc import ABC, abstractmethod


@dataclass
class Ticker:
    price: float
    change_24h: float = 0.0  # percent


@dataclass(frozen=True)
class TimeframeSpec:
    interval: str  # Binance kline interval
    days: int  # CoinGecko OHLC lookback
    limit: int  # number of candles requested


TIMEFRAMES: Dict[str, TimeframeSpec] = {
    "1m": TimeframeSpec("1m", 1, 500),
    "5m": TimeframeSpec("5m", 1, 300),
    "15m": TimeframeSpec("15m", 3, 200),
    "1h": TimeframeSpec("1h", 14, 200),
    "4h": TimeframeSpec("4h", 30, 150),
    "1d": TimeframeSpec("1d", 180, 150),
    "1w": TimeframeSpec("1w", 730, 100),
    "1M": TimeframeSpec("1M", 1095, 60),
}
DEFAULT_TIMEFRAME = "1h"


def normalize_timeframe(timeframe: Optional[str]) -> str:
    """Unknown timeframes fall back to 1h"""
    return timeframe if timeframe in TIMEFRAMES else DEFAULT_TIMEFRAME


class MarketDataAdapter(ABC):
    """One external price/candle provider. Implementations never raise to callers."""

    name = "unknown"

    @abstractmethod
    def get_ticker(self, token_id: str) -> Optional[Ticker]:
        """Get current price and 24h change for a token, or None"""
        pass

    @abstractmethod
    def get_tickers(self, token_ids: Iterable[str]) -> Dict[str, Ticker]:
        """Get tickers for several tokens; missing tokens are absent from the result"""
        pass

    @abstractmethod
    def get_candles(self, token_id: str, timeframe: str = DEFAULT_TIMEFRAME) -> List[Dict]:
        """Get OHLC candles (oldest first) as dicts keyed t/o/h/l/c/v"""
        pass

    def supports(self, token_id: str) -> bool:
        return True
