from perpsim.schemas.account import DashboardOut, EquityPoint, FaucetClaimOut, FaucetStatusOut
from perpsim.schemas.agent import (
    AgentConfigOut,
    AgentConfigUpdate,
    AgentEventOut,
    AgentStatsOut,
    AgentStatusOut,
)
from perpsim.schemas.market import Candle, Indicators, TokenOut, TradeViewOut
from perpsim.schemas.position import (
    CloseAllOut,
    CloseOut,
    MarginAdjust,
    OpenPositionRequest,
    PositionOut,
    PositionUpdate,
    TradeOut,
)

__all__ = [
    "DashboardOut",
    "EquityPoint",
    "FaucetClaimOut",
    "FaucetStatusOut",
    "AgentConfigOut",
    "AgentConfigUpdate",
    "AgentEventOut",
    "AgentStatsOut",
    "AgentStatusOut",
    "Candle",
    "Indicators",
    "TokenOut",
    "TradeViewOut",
    "CloseAllOut",
    "CloseOut",
    "MarginAdjust",
    "OpenPositionRequest",
    "PositionOut",
    "PositionUpdate",
    "TradeOut",
]
