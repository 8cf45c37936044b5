"""Append-only audit trail of trading and automation actions."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from perpsim.models.agent_event import AgentEvent, AgentEventType, AUTOMATION_AGENT_ID
from perpsim.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Types that always belong to the agent view even without an agent id
AGENT_VIEW_TYPES = {
    AgentEventType.SCANNING.value,
    AgentEventType.TP_HIT.value,
    AgentEventType.SL_HIT.value,
    AgentEventType.LIQUIDATED.value,
}


def format_pnl(pnl: float) -> str:
    """+$12.34 / -$5.00"""
    if pnl >= 0:
        return f"+${pnl:.2f}"
    return f"-${abs(pnl):.2f}"


def display_symbol(token_id: str) -> str:
    return token_id.upper()


def append_event(
    db: Session,
    user_id: int,
    event_type: AgentEventType,
    message: str,
    symbol: Optional[str] = None,
    agent_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> AgentEvent:
    event = AgentEvent(
        user_id=user_id,
        agent_id=agent_id,
        type=event_type.value,
        symbol=symbol,
        message=message,
        meta_json=meta,
        created_at=utcnow(),
    )
    db.add(event)
    db.flush()
    logger.info(f"[EVENT] user={user_id} type={event.type} symbol={symbol} message={message}")
    return event


def list_events(db: Session, user_id: int, limit: int = 20) -> List[AgentEvent]:
    return (
        db.query(AgentEvent)
        .filter(AgentEvent.user_id == user_id)
        .order_by(AgentEvent.created_at.desc(), AgentEvent.id.desc())
        .limit(limit)
        .all()
    )


def list_agent_events(db: Session, user_id: int, limit: int = 20) -> List[AgentEvent]:
    """Newest events that belong to the automation agent's view"""
    return [
        e for e in list_events(db, user_id, limit)
        if e.agent_id == AUTOMATION_AGENT_ID or e.type in AGENT_VIEW_TYPES
    ]
