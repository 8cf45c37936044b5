"""Automation agent settings and run-state toggles."""
import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from perpsim.database import atomic
from perpsim.models.agent_config import AgentConfig, AgentStatusEnum
from perpsim.models.agent_event import AgentEventType, AUTOMATION_AGENT_ID
from perpsim.services import event_log, ledger

logger = logging.getLogger(__name__)


def get_config(db: Session, user_id: int) -> AgentConfig:
    """Config for the user, created with defaults on first read"""
    with atomic(db):
        config = ledger.get_or_create_agent_config(db, user_id)
    return config


def update_config(db: Session, user_id: int, changes: ledger.AgentConfigChanges) -> AgentConfig:
    with atomic(db):
        config = ledger.get_or_create_agent_config(db, user_id)
        ledger.update_agent_config(db, config, changes)
    logger.info(f"Agent config updated user={user_id} fields={sorted(changes.as_dict())}")
    return config


def set_status(db: Session, user_id: int, status: AgentStatusEnum) -> AgentConfig:
    if status == AgentStatusEnum.RUNNING:
        event_type, message = AgentEventType.AGENT_STARTED, "automation agent started"
    else:
        event_type, message = AgentEventType.AGENT_PAUSED, "automation agent paused"

    with atomic(db):
        config = ledger.get_or_create_agent_config(db, user_id)
        ledger.update_agent_config(db, config, ledger.AgentConfigChanges(status=status.value))
        event_log.append_event(db, user_id, event_type, message, agent_id=AUTOMATION_AGENT_ID)
    logger.info(f"Agent {status.value} for user={user_id}")
    return config


def agent_stats(db: Session, user_id: int) -> Dict[str, Any]:
    stats = ledger.get_agent_stats(db, user_id)
    total = stats["total_trades"]
    stats["accuracy"] = f"{(stats['win_trades'] / total * 100) if total else 0:.1f}"
    return stats
