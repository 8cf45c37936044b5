import logging
import threading
from time import time
from typing import Dict, List, Optional, Iterable, Tuple

from sqlalchemy.orm import Session

from perpsim.core.config import settings
from perpsim.database import SessionLocal
from perpsim.models.token import Token
from perpsim.services.brokers.base import MarketDataAdapter, Ticker, normalize_timeframe
from perpsim.services.brokers.binance import BinanceAdapter
from perpsim.services.brokers.coingecko import CoinGeckoAdapter
from perpsim.services.signals.indicators import calculate_indicators

logger = logging.getLogger(__name__)


class MarketDataManager:
    """Tiered price lookup: primary exchange, secondary aggregator, last persisted price.

    Live tiers are cached in memory for a short TTL. A token with no price from any
    tier is absent from results; callers skip it rather than treating it as zero.
    """

    def __init__(self, primary: Optional[MarketDataAdapter] = None, secondary: Optional[MarketDataAdapter] = None):
        self.primary = primary or BinanceAdapter()
        self.secondary = secondary or CoinGeckoAdapter()

        # Simple in-memory caches: key -> (value, timestamp)
        self.price_cache: Dict[str, Tuple[Ticker, float]] = {}
        self.batch_cache: Dict[str, Tuple[Ticker, float]] = {}
        self.candle_cache: Dict[str, Tuple[List[Dict], float]] = {}
        self._lock = threading.Lock()

        self.PRICE_TTL = settings.PRICE_TTL_SECONDS
        self.BATCH_TTL = settings.BATCH_PRICE_TTL_SECONDS
        self.CANDLE_TTL = settings.CANDLE_TTL_SECONDS

    def clear_cache(self) -> None:
        with self._lock:
            self.price_cache.clear()
            self.batch_cache.clear()
            self.candle_cache.clear()

    def _cached(self, cache: Dict, key: str, ttl: float):
        with self._lock:
            entry = cache.get(key)
        if entry and time() - entry[1] < ttl:
            return entry[0]
        return None

    def _store(self, cache: Dict, key: str, value) -> None:
        with self._lock:
            cache[key] = (value, time())

    def seed_batch_cache(self, tickers: Dict[str, Ticker]) -> None:
        """Prime the batch cache with prices fetched elsewhere (token list refresh)"""
        now = time()
        with self._lock:
            for token_id, ticker in tickers.items():
                if ticker.price > 0:
                    self.batch_cache[token_id] = (ticker, now)

    def _persisted_tickers(self, token_ids: List[str], db: Optional[Session]) -> Dict[str, Ticker]:
        if not token_ids:
            return {}
        own_session = db is None
        session = db or SessionLocal()
        try:
            rows = session.query(Token).filter(Token.id.in_(token_ids)).all()
            return {
                row.id: Ticker(price=float(row.current_price), change_24h=float(row.price_change_24h or 0))
                for row in rows
                if row.current_price is not None and float(row.current_price) > 0
            }
        except Exception as e:
            logger.warning(f"Persisted price lookup failed for {token_ids}: {e}")
            return {}
        finally:
            if own_session:
                session.close()

    def get_price(self, token_id: str, db: Optional[Session] = None) -> Optional[Ticker]:
        """Get price for one token with caching and tiered fallback"""
        cached = self._cached(self.price_cache, token_id, self.PRICE_TTL)
        if cached:
            return cached

        for adapter in (self.primary, self.secondary):
            if not adapter.supports(token_id):
                continue
            ticker = adapter.get_ticker(token_id)
            if ticker and ticker.price > 0:
                self._store(self.price_cache, token_id, ticker)
                return ticker
            logger.debug(f"{adapter.name} had no price for {token_id}, trying next tier")

        persisted = self._persisted_tickers([token_id], db).get(token_id)
        if persisted is None:
            logger.warning(f"No price available for {token_id} from any source")
        return persisted

    def get_batch_prices(self, token_ids: Iterable[str], db: Optional[Session] = None) -> Dict[str, Ticker]:
        """Get prices for several tokens at once; same fallback chain as get_price"""
        wanted = list(dict.fromkeys(token_ids))
        result: Dict[str, Ticker] = {}
        missing: List[str] = []
        for token_id in wanted:
            cached = self._cached(self.batch_cache, token_id, self.BATCH_TTL) or self._cached(
                self.price_cache, token_id, self.PRICE_TTL
            )
            if cached:
                result[token_id] = cached
            else:
                missing.append(token_id)

        for adapter in (self.primary, self.secondary):
            if not missing:
                break
            supported = [t for t in missing if adapter.supports(t)]
            if not supported:
                continue
            fetched = adapter.get_tickers(supported)
            for token_id, ticker in fetched.items():
                if ticker.price > 0:
                    result[token_id] = ticker
                    self._store(self.batch_cache, token_id, ticker)
            missing = [t for t in missing if t not in result]

        if missing:
            result.update(self._persisted_tickers(missing, db))
        return result

    def get_candles(self, token_id: str, timeframe: str = "1h") -> List[Dict]:
        """Get OHLC candles with caching; primary exchange first, aggregator OHLC as fallback"""
        timeframe = normalize_timeframe(timeframe)
        cache_key = f"{token_id}:{timeframe}"
        cached = self._cached(self.candle_cache, cache_key, self.CANDLE_TTL)
        if cached is not None:
            return cached

        candles: List[Dict] = []
        for adapter in (self.primary, self.secondary):
            if not adapter.supports(token_id):
                continue
            candles = adapter.get_candles(token_id, timeframe)
            if candles:
                break

        if candles:
            self._store(self.candle_cache, cache_key, candles)
        return candles

    @staticmethod
    def get_indicators(candles: List[Dict]) -> Dict[str, Optional[float]]:
        return calculate_indicators(candles)


# Singleton instance
market_data_manager = MarketDataManager()
