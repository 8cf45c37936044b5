"""
Pure pricing and margin math for perpetual positions.

Quantities are leveraged size in base units: quantity = margin * leverage / entry.
"""
from perpsim.models.position import PositionSideEnum

FEE_RATE = 0.001  # 0.1% of margin, charged on open, aggregation and close
LIQUIDATION_BUFFER = 0.9  # liquidate at 90% of margin lost
MAX_EFFECTIVE_LEVERAGE = 100  # margin may never fall below notional / 100


def trading_fee(margin: float) -> float:
    return margin * FEE_RATE


def position_quantity(margin: float, leverage: float, price: float) -> float:
    return margin * leverage / price


def liquidation_price(entry_price: float, side: str, leverage: float) -> float:
    """Price at which LIQUIDATION_BUFFER of the margin is gone"""
    if side == PositionSideEnum.LONG.value:
        return entry_price * (1 - LIQUIDATION_BUFFER / leverage)
    return entry_price * (1 + LIQUIDATION_BUFFER / leverage)


def effective_leverage(quantity: float, entry_price: float, margin: float) -> float:
    return (quantity * entry_price) / margin


def directional_pnl(side: str, entry_price: float, exit_price: float, quantity: float) -> float:
    if side == PositionSideEnum.LONG.value:
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


def roe_pct(pnl: float, margin: float) -> float:
    return (pnl / margin) * 100 if margin > 0 else 0.0


def min_margin(quantity: float, entry_price: float) -> float:
    return (quantity * entry_price) / MAX_EFFECTIVE_LEVERAGE


def weighted_entry(old_entry: float, old_qty: float, new_price: float, new_qty: float) -> float:
    return ((old_entry * old_qty) + (new_price * new_qty)) / (old_qty + new_qty)


def closing_trade_side(position_side: str) -> str:
    return "sell" if position_side == PositionSideEnum.LONG.value else "buy"


def opening_trade_side(position_side: str) -> str:
    return "buy" if position_side == PositionSideEnum.LONG.value else "sell"
