import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from perpsim.api.errors import trading_errors
from perpsim.database import get_db
from perpsim.deps.auth import AuthenticatedUser, get_current_user
from perpsim.models.position import Position, PositionStatusEnum
from perpsim.schemas.position import (
    CloseAllOut,
    CloseOut,
    MarginAdjust,
    OpenPositionRequest,
    PositionOut,
    PositionUpdate,
    TradeOut,
)
from perpsim.services import ledger, position_engine
from perpsim.services.market_data_manager import market_data_manager

logger = logging.getLogger(__name__)
router = APIRouter()


def render_positions(db: Session, positions: List[Position]) -> List[PositionOut]:
    """Attach token metadata, and live price/PnL/ROE to open positions"""
    tokens = ledger.get_tokens(db, {p.token_id for p in positions})
    open_ids = {p.token_id for p in positions if p.status == PositionStatusEnum.OPEN.value}
    tickers = market_data_manager.get_batch_prices(open_ids, db=db) if open_ids else {}
    views = []
    for position in positions:
        ticker = tickers.get(position.token_id) if position.status == PositionStatusEnum.OPEN.value else None
        views.append(PositionOut.build(position, ticker.price if ticker else None, tokens.get(position.token_id)))
    return views


def close_out(result: position_engine.CloseResult) -> CloseOut:
    return CloseOut(position_id=result.position_id, exit_price=result.exit_price, pnl=result.pnl, fee=result.fee)


def close_all_out(results: List[position_engine.CloseResult]) -> CloseAllOut:
    return CloseAllOut(
        closed_count=len(results),
        total_pnl=sum(r.pnl for r in results),
        closed=[close_out(r) for r in results],
    )


@router.post("/positions", response_model=PositionOut)
def open_position(
    request: OpenPositionRequest,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Open a position, or add to the open one on the same token and side"""
    with trading_errors("open position"):
        result = position_engine.open_position(db, current_user.id, request.to_engine(), prices=market_data_manager)
        return PositionOut.build(result.position, result.price, ledger.get_token(db, request.token_id))


@router.get("/positions", response_model=List[PositionOut])
def list_positions(
    status: Optional[PositionStatusEnum] = Query(None),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("fetch positions"):
        positions = ledger.get_positions(db, current_user.id, status=status.value if status else None)
        return render_positions(db, positions)


# Declared before the /positions/{position_id} routes
@router.post("/positions/close-all", response_model=CloseAllOut)
def close_all_positions(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("close positions"):
        results = position_engine.close_all_positions(db, current_user.id, prices=market_data_manager)
        logger.info(f"Closed {len(results)} positions for user={current_user.id}")
        return close_all_out(results)


@router.patch("/positions/{position_id}", response_model=PositionOut)
def update_position(
    position_id: int,
    update: PositionUpdate,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Set or clear take-profit, stop-loss and limit-close levels"""
    with trading_errors("update position"):
        position = position_engine.update_orders(db, current_user.id, position_id, update.to_changes())
        return PositionOut.build(position, token=ledger.get_token(db, position.token_id))


@router.post("/positions/{position_id}/close", response_model=CloseOut)
def close_position(
    position_id: int,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("close position"):
        result = position_engine.close_position(db, current_user.id, position_id, prices=market_data_manager)
        return close_out(result)


@router.post("/positions/{position_id}/add-margin", response_model=PositionOut)
def add_margin(
    position_id: int,
    body: MarginAdjust,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("add margin"):
        position = position_engine.add_margin(db, current_user.id, position_id, body.amount)
        return PositionOut.build(position, token=ledger.get_token(db, position.token_id))


@router.post("/positions/{position_id}/remove-margin", response_model=PositionOut)
def remove_margin(
    position_id: int,
    body: MarginAdjust,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("remove margin"):
        position = position_engine.remove_margin(db, current_user.id, position_id, body.amount)
        return PositionOut.build(position, token=ledger.get_token(db, position.token_id))


@router.get("/trades", response_model=List[TradeOut])
def list_trades(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Fills, newest first"""
    with trading_errors("fetch trades"):
        return [TradeOut.build(t) for t in ledger.list_trades(db, current_user.id, limit=limit)]
