"""Database model for simulated USDT balances (one row per user)"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey
from sqlalchemy.sql import func
from perpsim.database import Base
from perpsim.models.columns import money_column


class Balance(Base):
    __tablename__ = "balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    amount = money_column(nullable=False, default=0.0)
    last_faucet_claim = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Balance(user_id={self.user_id}, amount={self.amount})>"
