"""Database model for leveraged perpetual positions"""
import enum
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, text
from sqlalchemy.sql import func
from perpsim.database import Base
from perpsim.models.columns import money_column


class PositionSideEnum(str, enum.Enum):
    LONG = "long"
    SHORT = "short"


class PositionStatusEnum(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class Position(Base):
    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token_id = Column(String(100), nullable=False, index=True)
    side = Column(String(10), nullable=False)  # "long" or "short"
    entry_price = money_column(nullable=False)  # volume-weighted across aggregated fills
    quantity = money_column(nullable=False)  # leveraged size in base units
    leverage = Column(Integer, nullable=False)  # nominal leverage chosen at open
    margin = money_column(nullable=False)
    liquidation_price = money_column(nullable=False)
    take_profit = money_column(nullable=True)
    stop_loss = money_column(nullable=True)
    limit_close_price = money_column(nullable=True)
    unrealized_pnl = money_column(nullable=False, default=0.0)
    realized_pnl = money_column(nullable=True)
    is_agent_trade = Column(Boolean, nullable=False, default=False)
    status = Column(String(10), nullable=False, default=PositionStatusEnum.OPEN.value, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    closed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_positions_user_status", "user_id", "status"),
        # At most one open position per (user, token, side)
        Index(
            "uq_positions_open_user_token_side",
            "user_id", "token_id", "side",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    def __repr__(self):
        return (
            f"<Position(id={self.id}, user_id={self.user_id}, token_id={self.token_id}, "
            f"side={self.side}, status={self.status}, margin={self.margin})>"
        )
