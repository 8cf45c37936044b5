import logging
from typing import Dict, List, Optional, Iterable

import requests

from perpsim.core.config import settings
from perpsim.services.brokers.base import MarketDataAdapter, Ticker, TIMEFRAMES, normalize_timeframe
from perpsim.utils.egress_guard import EgressGuardError
from perpsim.utils.http_client import http_get

logger = logging.getLogger(__name__)


class CoinGeckoAdapter(MarketDataAdapter):
    """Secondary tier: CoinGecko aggregator, addressed by CoinGecko id."""

    name = "coingecko"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.BASE_URL = base_url or settings.COINGECKO_BASE_URL
        self.api_key = api_key if api_key is not None else settings.COINGECKO_API_KEY

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            return {}
        return {"x-cg-demo-api-key": self.api_key}

    def _get(self, path: str, params: Dict) -> Optional[object]:
        try:
            response = http_get(
                f"{self.BASE_URL}{path}",
                params=params,
                headers=self._headers(),
                calling_module="brokers.coingecko",
            )
            if response.status_code != 200:
                logger.warning(f"CoinGecko {path} returned HTTP {response.status_code}")
                return None
            return response.json()
        except (requests.RequestException, EgressGuardError, ValueError) as e:
            logger.warning(f"CoinGecko {path} request failed: {e}")
            return None

    def get_ticker(self, token_id: str) -> Optional[Ticker]:
        return self.get_tickers([token_id]).get(token_id)

    def get_tickers(self, token_ids: Iterable[str]) -> Dict[str, Ticker]:
        """Get prices from /simple/price"""
        ids = sorted(set(token_ids))
        if not ids:
            return {}
        data = self._get(
            "/simple/price",
            {"ids": ",".join(ids), "vs_currencies": "usd", "include_24hr_change": "true"},
        )
        if not isinstance(data, dict):
            return {}
        result: Dict[str, Ticker] = {}
        for token_id, row in data.items():
            try:
                price = float(row["usd"])
                change = float(row.get("usd_24h_change") or 0)
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning(f"Skipping malformed CoinGecko price for {token_id}: {row!r:.200}")
                continue
            if price > 0:
                result[token_id] = Ticker(price=price, change_24h=change)
        return result

    def get_candles(self, token_id: str, timeframe: str = "1h") -> List[Dict]:
        """Get OHLC from /coins/{id}/ohlc (no volume available)"""
        spec = TIMEFRAMES[normalize_timeframe(timeframe)]
        data = self._get(f"/coins/{token_id}/ohlc", {"vs_currency": "usd", "days": spec.days})
        if not isinstance(data, list):
            return []
        candles = []
        for row in data:
            try:
                candles.append(
                    {"t": int(row[0]), "o": float(row[1]), "h": float(row[2]), "l": float(row[3]), "c": float(row[4]), "v": 0.0}
                )
            except (TypeError, ValueError, IndexError, KeyError) as e:
                logger.warning(f"Skipping malformed CoinGecko OHLC row for {token_id}: {e}")
        return candles[-spec.limit:]

    def get_top_markets(self, per_page: int = 50) -> Optional[List[Dict]]:
        """Top coins by market cap from /coins/markets, or None if the call failed"""
        data = self._get(
            "/coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": per_page,
                "page": 1,
                "sparkline": "false",
            },
        )
        if not isinstance(data, list):
            return None
        return data
