"""
Tiered price/candle lookup with mocked providers. No network access.
"""
from unittest.mock import MagicMock, patch

import pytest

from perpsim.database import atomic
from perpsim.services import ledger
from perpsim.services.brokers.base import MarketDataAdapter, Ticker, normalize_timeframe
from perpsim.services.brokers.binance import BinanceAdapter
from perpsim.services.brokers.coingecko import CoinGeckoAdapter
from perpsim.services.market_data_manager import MarketDataManager


def _adapter(name, ticker=None, tickers=None, candles=None, supports=True):
    adapter = MagicMock(spec=MarketDataAdapter)
    adapter.name = name
    adapter.supports.return_value = supports
    adapter.get_ticker.return_value = ticker
    adapter.get_tickers.return_value = tickers or {}
    adapter.get_candles.return_value = candles or []
    return adapter


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = ""
    return response


def test_primary_price_is_cached(db_session):
    primary = _adapter("primary", ticker=Ticker(price=101.0, change_24h=2.0))
    secondary = _adapter("secondary")
    manager = MarketDataManager(primary, secondary)

    assert manager.get_price("bitcoin", db=db_session).price == 101.0
    assert manager.get_price("bitcoin", db=db_session).price == 101.0

    primary.get_ticker.assert_called_once_with("bitcoin")
    secondary.get_ticker.assert_not_called()


def test_secondary_used_when_primary_has_no_price(db_session):
    primary = _adapter("primary", ticker=None)
    secondary = _adapter("secondary", ticker=Ticker(price=7.5))
    manager = MarketDataManager(primary, secondary)

    assert manager.get_price("sui", db=db_session).price == 7.5


def test_unsupported_primary_is_skipped(db_session):
    primary = _adapter("primary", supports=False)
    secondary = _adapter("secondary", ticker=Ticker(price=3.0))
    manager = MarketDataManager(primary, secondary)

    assert manager.get_price("mantle", db=db_session).price == 3.0
    primary.get_ticker.assert_not_called()


def test_persisted_price_is_last_resort(db_session):
    with atomic(db_session):
        ledger.upsert_tokens(
            db_session,
            [
                {"id": "mantle", "symbol": "mnt", "name": "Mantle", "current_price": 0.8},
                {"id": "dead", "symbol": "dead", "name": "Dead", "current_price": 0},
            ],
        )
    manager = MarketDataManager(_adapter("primary"), _adapter("secondary"))

    assert manager.get_price("mantle", db=db_session).price == pytest.approx(0.8)
    # non-positive persisted prices are treated as missing
    assert manager.get_price("dead", db=db_session) is None
    assert manager.get_price("unknown", db=db_session) is None


def test_batch_prices_fill_gaps_tier_by_tier(db_session):
    primary = _adapter("primary", tickers={"bitcoin": Ticker(price=50000.0)})
    secondary = _adapter("secondary", tickers={"sui": Ticker(price=2.0)})
    manager = MarketDataManager(primary, secondary)

    result = manager.get_batch_prices(["bitcoin", "sui", "nothing"], db=db_session)

    assert {k: v.price for k, v in result.items()} == {"bitcoin": 50000.0, "sui": 2.0}
    secondary.get_tickers.assert_called_once_with(["sui", "nothing"])


def test_seeded_batch_cache_avoids_provider_calls(db_session):
    primary = _adapter("primary")
    manager = MarketDataManager(primary, _adapter("secondary"))
    manager.seed_batch_cache({"bitcoin": Ticker(price=49000.0), "zero": Ticker(price=0.0)})

    result = manager.get_batch_prices(["bitcoin"], db=db_session)

    assert result["bitcoin"].price == 49000.0
    primary.get_tickers.assert_not_called()


def test_candles_fall_back_to_secondary_and_cache(db_session):
    candles = [{"t": 1, "o": 1.0, "h": 1.0, "l": 1.0, "c": 1.0, "v": 0.0}]
    primary = _adapter("primary", candles=[])
    secondary = _adapter("secondary", candles=candles)
    manager = MarketDataManager(primary, secondary)

    assert manager.get_candles("bitcoin", "4h") == candles
    assert manager.get_candles("bitcoin", "4h") == candles
    secondary.get_candles.assert_called_once_with("bitcoin", "4h")


def test_unknown_timeframe_defaults_to_1h():
    assert normalize_timeframe("3d") == "1h"
    assert normalize_timeframe(None) == "1h"
    assert normalize_timeframe("1M") == "1M"


@patch("perpsim.services.brokers.binance.http_get")
def test_binance_ticker_and_klines(mock_get):
    adapter = BinanceAdapter()
    mock_get.return_value = _response(payload={"symbol": "BTCUSDT", "lastPrice": "50123.5", "priceChangePercent": "-1.5"})

    ticker = adapter.get_ticker("bitcoin")
    assert ticker == Ticker(price=50123.5, change_24h=-1.5)
    assert mock_get.call_args.kwargs["params"] == {"symbol": "BTCUSDT"}

    mock_get.return_value = _response(payload=[[1700000000000, "1", "2", "0.5", "1.5", "10", 0]])
    candles = adapter.get_candles("bitcoin", "15m")
    assert candles == [{"t": 1700000000000, "o": 1.0, "h": 2.0, "l": 0.5, "c": 1.5, "v": 10.0}]
    assert mock_get.call_args.kwargs["params"] == {"symbol": "BTCUSDT", "interval": "15m", "limit": 200}


@patch("perpsim.services.brokers.binance.http_get")
def test_binance_errors_return_empty(mock_get):
    adapter = BinanceAdapter()
    mock_get.return_value = _response(status_code=451)
    assert adapter.get_ticker("bitcoin") is None
    assert adapter.get_tickers(["bitcoin"]) == {}
    assert adapter.get_ticker("mantle") is None
    assert adapter.supports("mantle") is False


@patch("perpsim.services.brokers.coingecko.http_get")
def test_coingecko_simple_price_and_ohlc(mock_get):
    adapter = CoinGeckoAdapter(api_key="")
    mock_get.return_value = _response(
        payload={"sui": {"usd": 2.5, "usd_24h_change": 4.2}, "dead": {"usd": 0}}
    )
    tickers = adapter.get_tickers(["sui", "dead"])
    assert tickers == {"sui": Ticker(price=2.5, change_24h=4.2)}

    mock_get.return_value = _response(payload=[[i, 1, 2, 0.5, 1.5] for i in range(80)])
    candles = adapter.get_candles("sui", "1M")
    assert len(candles) == 60
    assert candles[-1]["t"] == 79
    assert all(c["v"] == 0.0 for c in candles)


@patch("perpsim.services.brokers.binance.http_get")
def test_binance_skips_malformed_rows(mock_get):
    adapter = BinanceAdapter()
    mock_get.return_value = _response(
        payload=[
            [1, None, "2", "0.5", "1.5", "10"],
            [2, "1", "2"],
            [3, "1", "2", "0.5", "1.5", "10", 0],
        ]
    )
    assert [c["t"] for c in adapter.get_candles("bitcoin", "1h")] == [3]

    mock_get.return_value = _response(
        payload=[
            {"symbol": "BTCUSDT", "lastPrice": "n/a"},
            {"symbol": "ETHUSDT", "lastPrice": "3000", "priceChangePercent": None},
            "garbage",
        ]
    )
    assert adapter.get_tickers(["bitcoin", "ethereum"]) == {"ethereum": Ticker(price=3000.0)}


@patch("perpsim.services.brokers.coingecko.http_get")
def test_coingecko_skips_malformed_rows(mock_get):
    adapter = CoinGeckoAdapter(api_key="")
    mock_get.return_value = _response(
        payload={"bitcoin": {"usd": "n/a"}, "ripple": None, "sui": {"usd": 2.5, "usd_24h_change": "bad"}, "eth": {"usd": 3000}}
    )
    assert adapter.get_tickers(["bitcoin", "ripple", "sui", "eth"]) == {"eth": Ticker(price=3000.0)}

    mock_get.return_value = _response(payload=[[1, None, 2, 0.5, 1.5], "x", [3, 1, 2, 0.5, 1.5]])
    assert [c["t"] for c in adapter.get_candles("sui", "1h")] == [3]


def test_malformed_primary_payload_falls_through_to_secondary(db_session):
    primary = BinanceAdapter()
    secondary = _adapter("coingecko", tickers={"bitcoin": Ticker(price=50100.0)})
    manager = MarketDataManager(primary=primary, secondary=secondary)

    with patch("perpsim.services.brokers.binance.http_get") as mock_get:
        mock_get.return_value = _response(payload=[{"symbol": "BTCUSDT", "lastPrice": None}])
        prices = manager.get_batch_prices(["bitcoin"], db=db_session)

    assert prices["bitcoin"].price == pytest.approx(50100.0)
