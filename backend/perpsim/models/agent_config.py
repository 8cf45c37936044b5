"""Database model for per-user automation agent settings"""
import enum
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from perpsim.database import Base
from perpsim.models.columns import money_column


class AgentStatusEnum(str, enum.Enum):
    RUNNING = "running"
    PAUSED = "paused"


class AgentStrategyEnum(str, enum.Enum):
    TREND = "trend"
    MEAN_REVERSION = "mean_reversion"
    BREAKOUT = "breakout"


DEFAULT_ALLOWED_PAIRS = [
    "bitcoin",
    "ethereum",
    "solana",
    "the-open-network",
    "uniswap",
    "mantle",
    "sui",
    "pyth-network",
    "jupiter-exchange-solana",
]


class AgentConfig(Base):
    __tablename__ = "agent_configs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    allowed_pairs = Column(JSON, nullable=False, default=lambda: list(DEFAULT_ALLOWED_PAIRS))
    max_capital = money_column(nullable=False, default=1000.0)
    max_leverage = Column(Integer, nullable=False, default=5)
    max_loss_per_day = money_column(nullable=False, default=100.0)
    max_open_positions = Column(Integer, nullable=False, default=3)
    trade_frequency_minutes = Column(Integer, nullable=False, default=30)
    strategies = Column(JSON, nullable=False, default=lambda: [AgentStrategyEnum.TREND.value])
    use_ema_filter = Column(Boolean, nullable=False, default=True)
    use_rsi_filter = Column(Boolean, nullable=False, default=True)
    use_volatility_filter = Column(Boolean, nullable=False, default=False)
    max_margin_per_trade = money_column(nullable=False, default=300.0)
    use_random_margin = Column(Boolean, nullable=False, default=False)
    status = Column(String(10), nullable=False, default=AgentStatusEnum.PAUSED.value, index=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<AgentConfig(user_id={self.user_id}, status={self.status}, strategies={self.strategies})>"
