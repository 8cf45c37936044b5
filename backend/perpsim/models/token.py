"""Database model for tradable instruments (upserted from market data, never deleted)"""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from perpsim.database import Base
from perpsim.models.columns import money_column


class Token(Base):
    __tablename__ = "tokens"

    id = Column(String(100), primary_key=True)  # CoinGecko id, e.g. "bitcoin"
    symbol = Column(String(30), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    image = Column(String(500), nullable=True)
    current_price = money_column(nullable=True)
    price_change_24h = money_column(nullable=True)  # percent
    volume_24h = money_column(nullable=True)
    market_cap = money_column(nullable=True)
    is_pinned = Column(Boolean, nullable=False, default=False)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Token(id={self.id}, symbol={self.symbol}, price={self.current_price})>"
