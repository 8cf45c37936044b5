"""Database model for immutable fills (one per open, aggregation and close)"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from perpsim.database import Base
from perpsim.models.columns import money_column


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    position_id = Column(Integer, ForeignKey("positions.id"), nullable=True, index=True)
    token_id = Column(String(100), nullable=False)
    side = Column(String(10), nullable=False)  # "buy" or "sell"
    type = Column(String(20), nullable=False, default="market")
    price = money_column(nullable=False)
    quantity = money_column(nullable=False)
    fee = money_column(nullable=False, default=0.0)
    realized_pnl = money_column(nullable=True)  # only on closing fills
    is_agent_trade = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return (
            f"<Trade(id={self.id}, position_id={self.position_id}, side={self.side}, "
            f"price={self.price}, quantity={self.quantity})>"
        )
