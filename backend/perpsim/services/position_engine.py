"""
Position engine: open/aggregate, close, margin adjustment and TP/SL updates.

Shared by the HTTP routes and the automation scheduler. Each public operation
holds the user's lock and runs as one ledger transaction; closes settle through
the ledger's compare-and-swap so a position is credited at most once.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from perpsim.core.exceptions import (
    InsufficientBalanceError,
    InvalidRequestError,
    MarginFloorError,
    PositionClosedError,
    PositionNotFoundError,
    PriceUnavailableError,
)
from perpsim.database import atomic
from perpsim.models.agent_event import AgentEventType, AUTOMATION_AGENT_ID
from perpsim.models.position import Position, PositionSideEnum, PositionStatusEnum
from perpsim.services import event_log, ledger
from perpsim.services import margin_math
from perpsim.services.event_log import display_symbol, format_pnl
from perpsim.services.market_data_manager import market_data_manager

logger = logging.getLogger(__name__)

MIN_LEVERAGE = 1
MAX_LEVERAGE = margin_math.MAX_EFFECTIVE_LEVERAGE

_user_locks: Dict[int, threading.RLock] = {}
_user_locks_guard = threading.Lock()


@contextmanager
def user_lock(user_id: int):
    """Serialize engine mutations for one user within this process."""
    with _user_locks_guard:
        lock = _user_locks.setdefault(user_id, threading.RLock())
    with lock:
        yield


@dataclass
class OpenPositionRequest:
    token_id: str
    side: str
    margin: float
    leverage: int
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    is_agent_trade: bool = False


@dataclass
class OpenResult:
    position: Position
    price: float
    quantity: float
    fee: float
    aggregated: bool


@dataclass
class CloseResult:
    position_id: int
    token_id: str
    side: str
    exit_price: float
    margin: float
    pnl: float  # realized, fee already deducted
    fee: float
    reason: str


@dataclass
class ExitTrigger:
    event_type: AgentEventType

    @property
    def is_liquidation(self) -> bool:
        return self.event_type == AgentEventType.LIQUIDATED


def _validate_open(request: OpenPositionRequest) -> None:
    if not request.token_id:
        raise InvalidRequestError("Missing required fields")
    if request.side not in (PositionSideEnum.LONG.value, PositionSideEnum.SHORT.value):
        raise InvalidRequestError("side must be 'long' or 'short'")
    if request.margin is None or request.margin <= 0:
        raise InvalidRequestError("margin must be positive")
    if request.leverage is None or int(request.leverage) != request.leverage:
        raise InvalidRequestError("leverage must be an integer")
    if not MIN_LEVERAGE <= request.leverage <= MAX_LEVERAGE:
        raise InvalidRequestError(f"leverage must be between {MIN_LEVERAGE} and {MAX_LEVERAGE}")
    for label, value in (("takeProfit", request.take_profit), ("stopLoss", request.stop_loss)):
        if value is not None and value <= 0:
            raise InvalidRequestError(f"{label} must be positive")


def _resolve_price(db: Session, token_id: str, prices=None) -> float:
    ticker = (prices or market_data_manager).get_price(token_id, db=db)
    if ticker is None or ticker.price <= 0:
        raise PriceUnavailableError()
    return ticker.price


def _owned_open_position(db: Session, user_id: int, position_id: int, closed_message: str) -> Position:
    position = ledger.get_position(db, position_id)
    if position is None or position.user_id != user_id:
        raise PositionNotFoundError()
    if position.status != PositionStatusEnum.OPEN.value:
        raise PositionClosedError(closed_message)
    return position


def open_position(
    db: Session,
    user_id: int,
    request: OpenPositionRequest,
    prices=None,
    price: Optional[float] = None,
) -> OpenResult:
    """Open a position or aggregate into the open same-side position.

    `price` skips the market lookup when the caller already priced the instrument.
    """
    _validate_open(request)
    side = request.side
    symbol = display_symbol(request.token_id)

    with user_lock(user_id), atomic(db):
        balance = ledger.get_balance(db, user_id)
        if request.margin > float(balance.amount):
            raise InsufficientBalanceError()

        current_price = price if price is not None else _resolve_price(db, request.token_id, prices)
        quantity = margin_math.position_quantity(request.margin, request.leverage, current_price)
        fee = margin_math.trading_fee(request.margin)
        agent_id = AUTOMATION_AGENT_ID if request.is_agent_trade else None

        existing = ledger.get_open_position(db, user_id, request.token_id, side)
        if existing is not None:
            old_qty = float(existing.quantity)
            total_qty = old_qty + quantity
            total_margin = float(existing.margin) + request.margin
            avg_entry = margin_math.weighted_entry(float(existing.entry_price), old_qty, current_price, quantity)
            leverage = margin_math.effective_leverage(total_qty, avg_entry, total_margin)
            position = ledger.update_position(
                db,
                existing,
                ledger.PositionChanges(
                    entry_price=avg_entry,
                    quantity=total_qty,
                    margin=total_margin,
                    liquidation_price=margin_math.liquidation_price(avg_entry, side, leverage),
                    take_profit=request.take_profit if request.take_profit is not None else existing.take_profit,
                    stop_loss=request.stop_loss if request.stop_loss is not None else existing.stop_loss,
                ),
            )
            message = f"added to {side} position on {symbol} - new avg entry: ${avg_entry:.2f}"
            event_type = AgentEventType.POSITION_ADDED
        else:
            position = ledger.create_position(
                db,
                user_id=user_id,
                token_id=request.token_id,
                side=side,
                entry_price=current_price,
                quantity=quantity,
                leverage=int(request.leverage),
                margin=request.margin,
                liquidation_price=margin_math.liquidation_price(current_price, side, request.leverage),
                take_profit=request.take_profit,
                stop_loss=request.stop_loss,
                is_agent_trade=request.is_agent_trade,
            )
            if request.is_agent_trade:
                message = (
                    f"opened {side} {symbol} @ ${current_price:.2f} | margin: ${request.margin:.2f} | "
                    f"{request.leverage}x leverage | tp: ${request.take_profit or 0:.2f} | sl: ${request.stop_loss or 0:.2f}"
                )
            else:
                message = f"opened {side} position on {symbol} with {request.leverage}x leverage"
            event_type = AgentEventType.POSITION_OPENED

        ledger.adjust_balance(db, user_id, -(request.margin + fee))
        ledger.append_trade(
            db,
            user_id=user_id,
            position_id=position.id,
            token_id=request.token_id,
            side=margin_math.opening_trade_side(side),
            price=current_price,
            quantity=quantity,
            fee=fee,
            is_agent_trade=request.is_agent_trade,
        )
        event_log.append_event(db, user_id, event_type, message, symbol=request.token_id, agent_id=agent_id)
        db.refresh(position)

    logger.info(
        f"Opened position user={user_id} token={request.token_id} side={side} margin={request.margin} "
        f"leverage={request.leverage} price={current_price} aggregated={existing is not None}"
    )
    return OpenResult(position=position, price=current_price, quantity=quantity, fee=fee, aggregated=existing is not None)


def _settle(
    db: Session,
    position: Position,
    exit_price: float,
    event_type: AgentEventType,
    agent_id: Optional[str] = None,
    message_prefix: str = "closed",
) -> Optional[CloseResult]:
    """Close one open position at exit_price and credit margin + pnl.

    Runs inside the caller's transaction. Returns None when the position was
    already closed by someone else.
    """
    position_id = position.id
    user_id = position.user_id
    token_id = position.token_id
    is_agent_trade = bool(position.is_agent_trade)
    side = position.side
    margin = float(position.margin)
    quantity = float(position.quantity)
    entry = float(position.entry_price)

    if event_type == AgentEventType.LIQUIDATED:
        pnl = -margin
    else:
        pnl = margin_math.directional_pnl(side, entry, exit_price, quantity)
    fee = margin_math.trading_fee(margin)
    pnl -= fee

    if not ledger.close_position(db, position_id, pnl):
        return None

    ledger.adjust_balance(db, user_id, margin + pnl)
    ledger.append_trade(
        db,
        user_id=user_id,
        position_id=position_id,
        token_id=token_id,
        side=margin_math.closing_trade_side(side),
        price=exit_price,
        quantity=quantity,
        fee=fee,
        realized_pnl=pnl,
        is_agent_trade=is_agent_trade,
    )

    symbol = display_symbol(token_id)
    if event_type == AgentEventType.TP_HIT:
        message = f"take profit hit on {symbol} {side} - closed with {format_pnl(pnl)}"
    elif event_type == AgentEventType.SL_HIT:
        message = f"stop loss hit on {symbol} {side} - closed with {format_pnl(pnl)}"
    elif event_type == AgentEventType.LIQUIDATED:
        message = f"{symbol} {side} position liquidated - {format_pnl(pnl)}"
    else:
        message = f"{message_prefix} {side} position on {symbol} with {format_pnl(pnl)} pnl"
    event_log.append_event(db, user_id, event_type, message, symbol=token_id, agent_id=agent_id)

    logger.info(
        f"Closed position id={position_id} user={user_id} token={token_id} side={side} "
        f"exit={exit_price} pnl={pnl:.4f} reason={event_type.value}"
    )
    return CloseResult(
        position_id=position_id,
        token_id=token_id,
        side=side,
        exit_price=exit_price,
        margin=margin,
        pnl=pnl,
        fee=fee,
        reason=event_type.value,
    )


def close_position(db: Session, user_id: int, position_id: int, prices=None) -> CloseResult:
    """Close one of the user's positions at the current market price."""
    with user_lock(user_id), atomic(db):
        position = _owned_open_position(db, user_id, position_id, "Position already closed")
        exit_price = _resolve_price(db, position.token_id, prices)
        result = _settle(db, position, exit_price, AgentEventType.POSITION_CLOSED)
        if result is None:
            raise PositionClosedError()
    return result


def close_all_positions(db: Session, user_id: int, agent_only: bool = False, prices=None) -> List[CloseResult]:
    """Close every open position (or only agent ones). Positions without a price are skipped."""
    source = prices or market_data_manager
    positions = ledger.get_positions(
        db, user_id, status=PositionStatusEnum.OPEN.value, agent_only=True if agent_only else None
    )
    if not positions:
        return []
    tickers = source.get_batch_prices([p.token_id for p in positions], db=db)

    results: List[CloseResult] = []
    for position_id, token_id in [(p.id, p.token_id) for p in positions]:
        ticker = tickers.get(token_id)
        if ticker is None or ticker.price <= 0:
            logger.warning(f"Skipping close of position {position_id}: no price for {token_id}")
            continue
        with user_lock(user_id), atomic(db):
            position = ledger.get_position(db, position_id)
            if position is None or position.status != PositionStatusEnum.OPEN.value:
                continue
            if agent_only:
                result = _settle(
                    db, position, ticker.price, AgentEventType.POSITION_CLOSED,
                    agent_id=AUTOMATION_AGENT_ID, message_prefix="manually closed",
                )
            else:
                result = _settle(db, position, ticker.price, AgentEventType.POSITION_CLOSED)
        if result is not None:
            results.append(result)
    return results


def evaluate_exit(position: Position, price: float) -> Optional[ExitTrigger]:
    """Liquidation, then take-profit, then stop-loss; first hit wins."""
    is_long = position.side == PositionSideEnum.LONG.value
    liquidation = float(position.liquidation_price)
    if (is_long and price <= liquidation) or (not is_long and price >= liquidation):
        return ExitTrigger(AgentEventType.LIQUIDATED)

    if position.take_profit is not None:
        tp = float(position.take_profit)
        if (is_long and price >= tp) or (not is_long and price <= tp):
            return ExitTrigger(AgentEventType.TP_HIT)

    if position.stop_loss is not None:
        sl = float(position.stop_loss)
        if (is_long and price <= sl) or (not is_long and price >= sl):
            return ExitTrigger(AgentEventType.SL_HIT)
    return None


def settle_exit(db: Session, user_id: int, position_id: int, price: float) -> Optional[CloseResult]:
    """Close a position if it still hits an exit at `price`.

    The exit is re-evaluated on the row read under the user lock, so a margin
    move or TP/SL edit since the caller's check is honoured. No-op if the
    position is no longer open or no longer triggers.
    """
    with user_lock(user_id), atomic(db):
        position = ledger.get_position(db, position_id)
        if position is None or position.status != PositionStatusEnum.OPEN.value:
            return None
        trigger = evaluate_exit(position, price)
        if trigger is None:
            return None
        return _settle(db, position, price, trigger.event_type, agent_id=AUTOMATION_AGENT_ID)


def add_margin(db: Session, user_id: int, position_id: int, amount: float) -> Position:
    if amount is None or amount <= 0:
        raise InvalidRequestError("Invalid amount")

    with user_lock(user_id), atomic(db):
        position = _owned_open_position(db, user_id, position_id, "Cannot add margin to closed position")
        balance = ledger.get_balance(db, user_id)
        if amount > float(balance.amount):
            raise InsufficientBalanceError()

        new_margin = float(position.margin) + amount
        leverage = margin_math.effective_leverage(float(position.quantity), float(position.entry_price), new_margin)
        ledger.update_position(
            db,
            position,
            ledger.PositionChanges(
                margin=new_margin,
                liquidation_price=margin_math.liquidation_price(float(position.entry_price), position.side, leverage),
            ),
        )
        ledger.adjust_balance(db, user_id, -amount)
        event_log.append_event(
            db,
            user_id,
            AgentEventType.MARGIN_ADDED,
            f"added ${amount:.2f} margin to {position.side} position on {display_symbol(position.token_id)}",
            symbol=position.token_id,
        )
        db.refresh(position)
    return position


def remove_margin(db: Session, user_id: int, position_id: int, amount: float) -> Position:
    if amount is None or amount <= 0:
        raise InvalidRequestError("Invalid amount")

    with user_lock(user_id), atomic(db):
        position = _owned_open_position(db, user_id, position_id, "Cannot remove margin from closed position")
        quantity = float(position.quantity)
        entry = float(position.entry_price)
        new_margin = float(position.margin) - amount
        if new_margin < margin_math.min_margin(quantity, entry):
            raise MarginFloorError()

        leverage = margin_math.effective_leverage(quantity, entry, new_margin)
        ledger.update_position(
            db,
            position,
            ledger.PositionChanges(
                margin=new_margin,
                liquidation_price=margin_math.liquidation_price(entry, position.side, leverage),
            ),
        )
        ledger.adjust_balance(db, user_id, amount)
        event_log.append_event(
            db,
            user_id,
            AgentEventType.MARGIN_REMOVED,
            f"removed ${amount:.2f} margin from {position.side} position on {display_symbol(position.token_id)}",
            symbol=position.token_id,
        )
        db.refresh(position)
    return position


def update_orders(db: Session, user_id: int, position_id: int, changes: ledger.PositionChanges) -> Position:
    """Set or clear take-profit / stop-loss / limit-close on an open position."""
    allowed = {"take_profit", "stop_loss", "limit_close_price"}
    requested = changes.as_dict()
    if set(requested) - allowed:
        raise InvalidRequestError("Only takeProfit, stopLoss and limitClosePrice can be updated")
    for label, value in requested.items():
        if value is not None and value <= 0:
            raise InvalidRequestError(f"{label} must be positive")

    with user_lock(user_id), atomic(db):
        position = _owned_open_position(db, user_id, position_id, "Cannot update closed position")
        ledger.update_position(db, position, changes)
        db.refresh(position)
    return position


def unrealized_pnl(position: Position, price: Optional[float]) -> float:
    if not price:
        return 0.0
    return margin_math.directional_pnl(position.side, float(position.entry_price), price, float(position.quantity))
