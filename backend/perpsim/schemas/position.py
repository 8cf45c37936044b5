from datetime import datetime
from typing import List, Optional

from pydantic import Field

from perpsim.models.position import Position, PositionSideEnum
from perpsim.models.token import Token
from perpsim.models.trade import Trade
from perpsim.schemas.common import CamelModel, money_str
from perpsim.services import ledger, margin_math
from perpsim.services import position_engine


class OpenPositionRequest(CamelModel):
    token_id: str
    side: PositionSideEnum
    margin: float
    leverage: int
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None

    def to_engine(self) -> position_engine.OpenPositionRequest:
        return position_engine.OpenPositionRequest(
            token_id=self.token_id,
            side=self.side.value,
            margin=self.margin,
            leverage=self.leverage,
            take_profit=self.take_profit,
            stop_loss=self.stop_loss,
        )


class PositionUpdate(CamelModel):
    """Explicit null clears a level; omitted fields are left alone"""
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    limit_close_price: Optional[float] = None

    def to_changes(self) -> ledger.PositionChanges:
        return ledger.PositionChanges(**{name: getattr(self, name) for name in self.model_fields_set})


class MarginAdjust(CamelModel):
    amount: float


class PositionOut(CamelModel):
    id: int
    user_id: int
    token_id: str
    side: str
    entry_price: str
    quantity: str
    leverage: int
    margin: str
    liquidation_price: str
    take_profit: Optional[str] = None
    stop_loss: Optional[str] = None
    limit_close_price: Optional[str] = None
    unrealized_pnl: str
    realized_pnl: Optional[str] = None
    is_agent_trade: bool
    status: str
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    current_price: Optional[str] = None
    roe: Optional[str] = None
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    token_image: Optional[str] = None

    @classmethod
    def build(cls, position: Position, price: Optional[float] = None, token: Optional[Token] = None) -> "PositionOut":
        """Record view; open positions with a price also get live PnL and ROE"""
        view = cls(
            id=position.id,
            user_id=position.user_id,
            token_id=position.token_id,
            side=position.side,
            entry_price=money_str(position.entry_price),
            quantity=money_str(position.quantity),
            leverage=position.leverage,
            margin=money_str(position.margin),
            liquidation_price=money_str(position.liquidation_price),
            take_profit=money_str(position.take_profit),
            stop_loss=money_str(position.stop_loss),
            limit_close_price=money_str(position.limit_close_price),
            unrealized_pnl=money_str(position.unrealized_pnl or 0),
            realized_pnl=money_str(position.realized_pnl),
            is_agent_trade=bool(position.is_agent_trade),
            status=position.status,
            created_at=position.created_at,
            closed_at=position.closed_at,
            token_name=token.name if token else position.token_id,
            token_symbol=token.symbol if token else position.token_id,
            token_image=token.image if token else None,
        )
        if price:
            pnl = position_engine.unrealized_pnl(position, price)
            view.current_price = money_str(price)
            view.unrealized_pnl = f"{pnl:.2f}"
            view.roe = f"{margin_math.roe_pct(pnl, float(position.margin)):.2f}"
        return view


class TradeOut(CamelModel):
    id: int
    position_id: Optional[int] = None
    token_id: str
    side: str
    type: str
    price: str
    quantity: str
    fee: str
    realized_pnl: Optional[str] = None
    is_agent_trade: bool
    created_at: Optional[datetime] = None

    @classmethod
    def build(cls, trade: Trade) -> "TradeOut":
        return cls(
            id=trade.id,
            position_id=trade.position_id,
            token_id=trade.token_id,
            side=trade.side,
            type=trade.type,
            price=money_str(trade.price),
            quantity=money_str(trade.quantity),
            fee=money_str(trade.fee),
            realized_pnl=money_str(trade.realized_pnl),
            is_agent_trade=bool(trade.is_agent_trade),
            created_at=trade.created_at,
        )


class CloseOut(CamelModel):
    success: bool = True
    position_id: int
    exit_price: float
    pnl: float
    fee: float


class CloseAllOut(CamelModel):
    success: bool = True
    closed_count: int
    total_pnl: float
    closed: List[CloseOut] = Field(default_factory=list)
