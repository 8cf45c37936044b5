from datetime import datetime
from typing import List, Optional

from perpsim.schemas.common import CamelModel
from perpsim.schemas.position import TradeOut


class EquityPoint(CamelModel):
    date: str
    equity: float


class DashboardOut(CamelModel):
    balance: float
    equity: float
    unrealized_pnl: float
    realized_pnl: float
    today_pnl: float
    win_rate: float
    max_drawdown: float
    open_positions: int
    agent_positions: int
    agent_unrealized_pnl: float
    manual_positions: int
    manual_unrealized_pnl: float
    agent_status: str
    can_claim_faucet: bool
    faucet_cooldown: Optional[int] = None
    equity_curve: List[EquityPoint]
    recent_trades: List[TradeOut]


class FaucetStatusOut(CamelModel):
    can_claim: bool
    cooldown_remaining_ms: int
    next_claim_at: Optional[datetime] = None
    last_claim_at: Optional[datetime] = None
    amount: float
    balance: float


class FaucetClaimOut(CamelModel):
    success: bool = True
    amount: float
    new_balance: float
