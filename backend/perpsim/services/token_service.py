"""Top-token list refresh from CoinGecko into the tokens table."""
import logging
from time import time
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from perpsim.core.config import settings
from perpsim.database import atomic
from perpsim.models.token import Token
from perpsim.services import ledger
from perpsim.services.brokers.base import Ticker
from perpsim.services.market_data_manager import MarketDataManager, market_data_manager

logger = logging.getLogger(__name__)

# Pinned pairs sort to the top of the list
PINNED_SYMBOLS = {"sol", "jup", "bonk", "btc", "eth", "ray"}

# Only volatile assets are tradable
STABLECOIN_IDS = {
    "tether",
    "usd-coin",
    "binance-usd",
    "dai",
    "trueusd",
    "paxos-standard",
    "gemini-dollar",
    "frax",
    "usdd",
    "first-digital-usd",
    "paypal-usd",
    "binance-peg-bsc-usd",
    "stasis-eurs",
    "euro-coin",
    "tether-eurt",
    "bridged-usdc-polygon-pos-bridge",
    "multi-collateral-dai",
    "celo-dollar",
    "fei-usd",
    "terrausd",
    "magic-internet-money",
    "liquity-usd",
    "alchemix-usd",
    "nusd",
    "origin-dollar",
    "husd",
    "susd",
    "flexusd",
    "vai",
    "ethena-usde",
    "usds",
}

_last_refresh: Optional[float] = None


def _market_row(coin: Dict) -> Dict:
    symbol = (coin.get("symbol") or "").lower()
    return {
        "id": coin["id"],
        "symbol": symbol,
        "name": coin.get("name") or coin["id"],
        "image": coin.get("image"),
        "current_price": float(coin.get("current_price") or 0),
        "price_change_24h": float(coin.get("price_change_percentage_24h") or 0),
        "volume_24h": float(coin.get("total_volume") or 0),
        "market_cap": float(coin.get("market_cap") or 0),
        "is_pinned": symbol in PINNED_SYMBOLS,
    }


def refresh_token_list(db: Session, manager: Optional[MarketDataManager] = None, force: bool = False) -> List[Token]:
    """Refresh tokens from the top markets at most once per TOKEN_LIST_TTL.

    Falls back to the persisted list when the provider is unavailable.
    """
    global _last_refresh
    manager = manager or market_data_manager
    fresh = _last_refresh is not None and time() - _last_refresh < settings.TOKEN_LIST_TTL_SECONDS
    if fresh and not force:
        return ledger.list_tokens(db)

    markets = manager.secondary.get_top_markets() if hasattr(manager.secondary, "get_top_markets") else None
    if not markets:
        logger.warning("Token list refresh failed; serving persisted tokens")
        return ledger.list_tokens(db)

    rows = []
    for coin in markets:
        if not isinstance(coin, dict) or not coin.get("id") or coin["id"] in STABLECOIN_IDS:
            continue
        try:
            rows.append(_market_row(coin))
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed market row {coin.get('id')}: {e}")
    with atomic(db):
        ledger.upsert_tokens(db, rows)
    manager.seed_batch_cache(
        {row["id"]: Ticker(price=row["current_price"], change_24h=row["price_change_24h"]) for row in rows}
    )
    _last_refresh = time()
    logger.info(f"Refreshed {len(rows)} tokens from market list")
    return ledger.list_tokens(db)
