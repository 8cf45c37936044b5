"""Database model for daily equity snapshots"""
from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from perpsim.database import Base
from perpsim.models.columns import money_column


class PnlSnapshot(Base):
    __tablename__ = "pnl_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False)  # calendar day in REPORTING_TIMEZONE
    equity = money_column(nullable=False)
    daily_pnl = money_column(nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "snapshot_date", name="uq_pnl_snapshot_user_day"),
    )

    def __repr__(self):
        return f"<PnlSnapshot(user_id={self.user_id}, date={self.snapshot_date}, equity={self.equity})>"
