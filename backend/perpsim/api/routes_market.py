from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from perpsim.api.errors import trading_errors
from perpsim.database import get_db
from perpsim.deps.auth import AuthenticatedUser, get_current_user
from perpsim.models.position import PositionStatusEnum
from perpsim.schemas.market import TokenOut, TradeViewOut
from perpsim.schemas.position import PositionOut
from perpsim.services import ledger
from perpsim.services.brokers.base import normalize_timeframe
from perpsim.services.market_data_manager import market_data_manager
from perpsim.services.token_service import refresh_token_list
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/tokens", response_model=List[TokenOut])
def list_tokens(db: Session = Depends(get_db)):
    """Tradable instruments with their latest prices (public)"""
    with trading_errors("fetch tokens"):
        tokens = refresh_token_list(db, manager=market_data_manager)
        return [TokenOut.model_validate(token) for token in tokens]


@router.get("/trade/{symbol}", response_model=TradeViewOut)
def trade_view(
    symbol: str,
    timeframe: Optional[str] = Query("1h"),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Price, candles, indicators and the caller's open positions for one instrument"""
    tf = normalize_timeframe(timeframe)
    with trading_errors("load trade data"):
        token = ledger.get_token(db, symbol)
        ticker = market_data_manager.get_price(symbol, db=db)
        if token is None and ticker is None:
            raise HTTPException(status_code=404, detail="Token not found")

        price = ticker.price if ticker else float(token.current_price or 0)
        if token is not None:
            token_out = TokenOut.model_validate(token)
            if ticker:
                token_out.current_price = ticker.price
                token_out.price_change_24h = ticker.change_24h
        else:
            token_out = TokenOut(
                id=symbol,
                symbol=symbol,
                name=symbol,
                current_price=price,
                price_change_24h=ticker.change_24h,
                volume_24h=0.0,
            )

        candles = market_data_manager.get_candles(symbol, tf)
        positions = [
            p
            for p in ledger.get_positions(db, current_user.id, status=PositionStatusEnum.OPEN.value)
            if p.token_id == symbol
        ]
        balance = ledger.get_balance(db, current_user.id)
        db.commit()

        return TradeViewOut(
            token=token_out,
            timeframe=tf,
            candles=candles,
            indicators=market_data_manager.get_indicators(candles),
            positions=[PositionOut.build(p, price, token) for p in positions],
            balance=float(balance.amount),
        )
