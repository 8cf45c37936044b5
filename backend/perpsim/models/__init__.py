from perpsim.models.user import User
from perpsim.models.token import Token
from perpsim.models.balance import Balance
from perpsim.models.position import Position, PositionSideEnum, PositionStatusEnum
from perpsim.models.trade import Trade
from perpsim.models.agent_config import AgentConfig, AgentStatusEnum, AgentStrategyEnum
from perpsim.models.agent_event import AgentEvent, AgentEventType, AUTOMATION_AGENT_ID
from perpsim.models.pnl_snapshot import PnlSnapshot

__all__ = [
    "User",
    "Token",
    "Balance",
    "Position",
    "PositionSideEnum",
    "PositionStatusEnum",
    "Trade",
    "AgentConfig",
    "AgentStatusEnum",
    "AgentStrategyEnum",
    "AgentEvent",
    "AgentEventType",
    "AUTOMATION_AGENT_ID",
    "PnlSnapshot",
]
