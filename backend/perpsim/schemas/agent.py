from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from perpsim.models.agent_config import AgentStrategyEnum
from perpsim.schemas.common import CamelModel
from perpsim.services.ledger import AgentConfigChanges


class AgentConfigOut(CamelModel):
    id: int
    user_id: int
    allowed_pairs: List[str]
    max_capital: float
    max_leverage: int
    max_loss_per_day: float
    max_open_positions: int
    trade_frequency_minutes: int
    strategies: List[str]
    use_ema_filter: bool
    use_rsi_filter: bool
    use_volatility_filter: bool
    max_margin_per_trade: float
    use_random_margin: bool
    status: str
    last_run_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AgentConfigUpdate(CamelModel):
    allowed_pairs: Optional[List[str]] = None
    max_capital: Optional[float] = Field(None, gt=0)
    max_leverage: Optional[int] = Field(None, ge=1, le=100)
    max_loss_per_day: Optional[float] = Field(None, gt=0)
    max_open_positions: Optional[int] = Field(None, ge=1)
    trade_frequency_minutes: Optional[int] = Field(None, ge=1)
    strategies: Optional[List[AgentStrategyEnum]] = Field(None, min_length=1, max_length=3)
    use_ema_filter: Optional[bool] = None
    use_rsi_filter: Optional[bool] = None
    use_volatility_filter: Optional[bool] = None
    max_margin_per_trade: Optional[float] = Field(None, gt=0)
    use_random_margin: Optional[bool] = None

    @field_validator("strategies")
    @classmethod
    def strategies_unique(cls, value):
        if value is not None and len(set(value)) != len(value):
            raise ValueError("strategies must be unique")
        return value

    @field_validator("allowed_pairs")
    @classmethod
    def pairs_non_empty(cls, value):
        if value is None:
            return value
        pairs = [pair.strip() for pair in value]
        if any(not pair for pair in pairs):
            raise ValueError("allowed pairs must be non-empty strings")
        return pairs

    def to_changes(self) -> AgentConfigChanges:
        """Only fields present in the request with a non-null value are applied"""
        values: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "strategies":
                value = [strategy.value for strategy in value]
            values[name] = value
        return AgentConfigChanges(**values)


class AgentStatsOut(CamelModel):
    total_trades: int
    win_trades: int
    loss_trades: int
    total_profit: float
    accuracy: str
    open_positions: int


class AgentEventOut(CamelModel):
    id: int
    agent_id: Optional[str] = None
    type: str
    symbol: Optional[str] = None
    message: str
    meta_json: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class AgentStatusOut(CamelModel):
    success: bool = True
    status: str
