"""Database model for the append-only agent event log"""
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from perpsim.database import Base

AUTOMATION_AGENT_ID = "automation"


class AgentEventType(str, enum.Enum):
    SCANNING = "scanning"
    POSITION_OPENED = "position_opened"
    POSITION_ADDED = "position_added"
    POSITION_CLOSED = "position_closed"
    TP_HIT = "tp_hit"
    SL_HIT = "sl_hit"
    LIQUIDATED = "liquidated"
    MARGIN_ADDED = "margin_added"
    MARGIN_REMOVED = "margin_removed"
    FAUCET_CLAIMED = "faucet_claimed"
    AGENT_STARTED = "agent_started"
    AGENT_PAUSED = "agent_paused"


class AgentEvent(Base):
    __tablename__ = "agent_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agent_id = Column(String(50), nullable=True)  # "automation" for scheduler-originated events
    type = Column(String(30), nullable=False, index=True)
    symbol = Column(String(100), nullable=True)
    message = Column(Text, nullable=False)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<AgentEvent(id={self.id}, user_id={self.user_id}, type={self.type})>"
