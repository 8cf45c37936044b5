import pytest

from perpsim.services import margin_math


@pytest.mark.parametrize("leverage", [1, 2, 5, 10, 25, 50, 100])
@pytest.mark.parametrize("entry", [0.00001234, 1.0, 98765.4321])
def test_liquidation_price_sits_on_the_adverse_side(entry, leverage):
    long_liq = margin_math.liquidation_price(entry, "long", leverage)
    short_liq = margin_math.liquidation_price(entry, "short", leverage)

    assert long_liq < entry < short_liq
    assert (entry - long_liq) / entry == pytest.approx(0.9 / leverage)
    assert (short_liq - entry) / entry == pytest.approx(0.9 / leverage)


def test_quantity_and_fee():
    assert margin_math.position_quantity(1000, 5, 50000) == pytest.approx(0.1)
    assert margin_math.trading_fee(1000) == pytest.approx(1.0)


def test_weighted_entry_is_quantity_weighted():
    entry = margin_math.weighted_entry(50000, 0.1, 60000, 0.3)
    assert entry == pytest.approx((50000 * 0.1 + 60000 * 0.3) / 0.4)


def test_directional_pnl_by_side():
    assert margin_math.directional_pnl("long", 100, 110, 2) == pytest.approx(20)
    assert margin_math.directional_pnl("short", 100, 110, 2) == pytest.approx(-20)


def test_effective_leverage_and_margin_floor():
    # 0.1 BTC at 50k with 1000 margin is 5x
    assert margin_math.effective_leverage(0.1, 50000, 1000) == pytest.approx(5)
    # Floor is 1% of notional (100x)
    assert margin_math.min_margin(0.1, 50000) == pytest.approx(50)


def test_roe_pct_handles_zero_margin():
    assert margin_math.roe_pct(50, 1000) == pytest.approx(5)
    assert margin_math.roe_pct(50, 0) == 0.0


def test_trade_sides():
    assert margin_math.opening_trade_side("long") == "buy"
    assert margin_math.opening_trade_side("short") == "sell"
    assert margin_math.closing_trade_side("long") == "sell"
    assert margin_math.closing_trade_side("short") == "buy"
