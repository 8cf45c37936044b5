import json
import logging
from typing import Dict, List, Optional, Iterable

import requests

from perpsim.core.config import settings
from perpsim.services.brokers.base import MarketDataAdapter, Ticker, TIMEFRAMES, normalize_timeframe
from perpsim.utils.egress_guard import EgressGuardError
from perpsim.utils.http_client import http_get

logger = logging.getLogger(__name__)

# CoinGecko id -> Binance USDT pair
BINANCE_SYMBOL_MAP: Dict[str, str] = {
    "bitcoin": "BTCUSDT",
    "ethereum": "ETHUSDT",
    "solana": "SOLUSDT",
    "binancecoin": "BNBUSDT",
    "cardano": "ADAUSDT",
    "ripple": "XRPUSDT",
    "dogecoin": "DOGEUSDT",
    "polkadot": "DOTUSDT",
    "avalanche-2": "AVAXUSDT",
    "shiba-inu": "SHIBUSDT",
    "litecoin": "LTCUSDT",
    "chainlink": "LINKUSDT",
    "uniswap": "UNIUSDT",
    "stellar": "XLMUSDT",
    "cosmos": "ATOMUSDT",
    "ethereum-classic": "ETCUSDT",
    "internet-computer": "ICPUSDT",
    "filecoin": "FILUSDT",
    "hedera-hashgraph": "HBARUSDT",
    "the-sandbox": "SANDUSDT",
    "axie-infinity": "AXSUSDT",
    "decentraland": "MANAUSDT",
    "tezos": "XTZUSDT",
    "aave": "AAVEUSDT",
    "the-graph": "GRTUSDT",
    "maker": "MKRUSDT",
    "curve-dao-token": "CRVUSDT",
    "1inch": "1INCHUSDT",
    "render-token": "RENDERUSDT",
    "pepe": "PEPEUSDT",
    "bonk": "BONKUSDT",
    "jupiter-exchange-solana": "JUPUSDT",
    "raydium": "RAYUSDT",
    "sui": "SUIUSDT",
    "tron": "TRXUSDT",
    "aptos": "APTUSDT",
    "near": "NEARUSDT",
    "optimism": "OPUSDT",
    "arbitrum": "ARBUSDT",
    "injective-protocol": "INJUSDT",
    "sei-network": "SEIUSDT",
    "celestia": "TIAUSDT",
    "the-open-network": "TONUSDT",
    "pyth-network": "PYTHUSDT",
    "immutable-x": "IMXUSDT",
    "vechain": "VETUSDT",
    "theta-token": "THETAUSDT",
    "algorand": "ALGOUSDT",
    "gala": "GALAUSDT",
}


class BinanceAdapter(MarketDataAdapter):
    """Primary tier: Binance spot market data for mapped tokens."""

    name = "binance"

    def __init__(self, base_url: Optional[str] = None):
        self.BASE_URL = base_url or settings.BINANCE_BASE_URL

    def supports(self, token_id: str) -> bool:
        return token_id in BINANCE_SYMBOL_MAP

    def _get(self, path: str, params: Dict) -> Optional[object]:
        try:
            response = http_get(
                f"{self.BASE_URL}{path}",
                params=params,
                calling_module="brokers.binance",
            )
            if response.status_code != 200:
                logger.warning(f"Binance {path} returned HTTP {response.status_code}: {response.text[:200]}")
                return None
            return response.json()
        except (requests.RequestException, EgressGuardError, ValueError) as e:
            logger.warning(f"Binance {path} request failed: {e}")
            return None

    @staticmethod
    def _to_ticker(data: Dict) -> Optional[Ticker]:
        try:
            price = float(data["lastPrice"])
            change = float(data.get("priceChangePercent") or 0)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning(f"Skipping malformed Binance ticker: {data!r:.200}")
            return None
        if price <= 0:
            return None
        return Ticker(price=price, change_24h=change)

    def get_ticker(self, token_id: str) -> Optional[Ticker]:
        """Get 24h ticker from Binance"""
        symbol = BINANCE_SYMBOL_MAP.get(token_id)
        if not symbol:
            return None
        data = self._get("/ticker/24hr", {"symbol": symbol})
        if not isinstance(data, dict):
            return None
        return self._to_ticker(data)

    def get_tickers(self, token_ids: Iterable[str]) -> Dict[str, Ticker]:
        """Get 24h tickers for all mapped tokens in one request"""
        by_symbol = {BINANCE_SYMBOL_MAP[t]: t for t in token_ids if t in BINANCE_SYMBOL_MAP}
        if not by_symbol:
            return {}
        data = self._get(
            "/ticker/24hr",
            {"symbols": json.dumps(sorted(by_symbol), separators=(",", ":"))},
        )
        if not isinstance(data, list):
            return {}
        result: Dict[str, Ticker] = {}
        for row in data:
            if not isinstance(row, dict):
                continue
            token_id = by_symbol.get(row.get("symbol"))
            ticker = self._to_ticker(row) if token_id else None
            if ticker:
                result[token_id] = ticker
        return result

    def get_candles(self, token_id: str, timeframe: str = "1h") -> List[Dict]:
        """Get klines from Binance"""
        symbol = BINANCE_SYMBOL_MAP.get(token_id)
        if not symbol:
            return []
        spec = TIMEFRAMES[normalize_timeframe(timeframe)]
        klines = self._get("/klines", {"symbol": symbol, "interval": spec.interval, "limit": spec.limit})
        if not isinstance(klines, list):
            return []

        # Convert Binance klines format to our format
        result = []
        for kline in klines:
            try:
                result.append({
                    "t": int(kline[0]),  # open time, ms
                    "o": float(kline[1]),
                    "h": float(kline[2]),
                    "l": float(kline[3]),
                    "c": float(kline[4]),
                    "v": float(kline[5]),
                })
            except (TypeError, ValueError, IndexError, KeyError) as e:
                logger.warning(f"Skipping malformed Binance kline for {symbol}: {e}")
        return result
