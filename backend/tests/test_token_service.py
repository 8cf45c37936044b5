from unittest.mock import MagicMock

import pytest

from perpsim.services import ledger, token_service
from perpsim.services.market_data_manager import MarketDataManager


MARKETS = [
    {"id": "bitcoin", "symbol": "BTC", "name": "Bitcoin", "current_price": 50000, "market_cap": 1e12,
     "price_change_percentage_24h": 2.5, "total_volume": 3e10},
    {"id": "usd-coin", "symbol": "usdc", "name": "USDC", "current_price": 1, "market_cap": 5e10},
    {"id": "sui", "symbol": "sui", "name": "Sui", "current_price": 2.5, "market_cap": 1e10},
    {"id": "ripple", "symbol": "xrp", "name": "XRP", "current_price": 0.6, "market_cap": 3e10},
]


@pytest.fixture(autouse=True)
def reset_refresh(monkeypatch):
    monkeypatch.setattr(token_service, "_last_refresh", None)


@pytest.fixture
def manager():
    secondary = MagicMock()
    secondary.get_top_markets.return_value = MARKETS
    return MarketDataManager(primary=MagicMock(), secondary=secondary)


def test_refresh_skips_stablecoins_and_pins_majors(db_session, manager):
    tokens = token_service.refresh_token_list(db_session, manager=manager)

    assert [t.id for t in tokens] == ["bitcoin", "ripple", "sui"]
    bitcoin = tokens[0]
    assert bitcoin.symbol == "btc"
    assert bitcoin.is_pinned is True
    assert float(bitcoin.price_change_24h) == pytest.approx(2.5)
    assert ledger.get_token(db_session, "usd-coin") is None


def test_refresh_seeds_the_batch_price_cache(db_session, manager):
    token_service.refresh_token_list(db_session, manager=manager)

    ticker, _ = manager.batch_cache["sui"]
    assert ticker.price == pytest.approx(2.5)


def test_refresh_is_throttled(db_session, manager):
    token_service.refresh_token_list(db_session, manager=manager)
    token_service.refresh_token_list(db_session, manager=manager)
    assert manager.secondary.get_top_markets.call_count == 1

    token_service.refresh_token_list(db_session, manager=manager, force=True)
    assert manager.secondary.get_top_markets.call_count == 2


def test_provider_outage_serves_persisted_tokens(db_session, manager):
    token_service.refresh_token_list(db_session, manager=manager)
    manager.secondary.get_top_markets.return_value = None

    tokens = token_service.refresh_token_list(db_session, manager=manager, force=True)

    assert {t.id for t in tokens} == {"bitcoin", "ripple", "sui"}


def test_refresh_updates_existing_rows(db_session, manager):
    token_service.refresh_token_list(db_session, manager=manager)
    manager.secondary.get_top_markets.return_value = [
        {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 52000, "market_cap": 1e12}
    ]

    token_service.refresh_token_list(db_session, manager=manager, force=True)

    assert float(ledger.get_token(db_session, "bitcoin").current_price) == pytest.approx(52000)
    assert ledger.get_token(db_session, "sui") is not None


def test_malformed_market_rows_are_skipped(db_session, manager):
    manager.secondary.get_top_markets.return_value = MARKETS + [
        {"id": "broken", "symbol": "brk", "name": "Broken", "current_price": "n/a"},
        "not-a-row",
    ]

    tokens = token_service.refresh_token_list(db_session, manager=manager)

    assert [t.id for t in tokens] == ["bitcoin", "ripple", "sui"]
