import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from perpsim.api.errors import trading_errors
from perpsim.api.routes_positions import close_all_out, render_positions
from perpsim.database import get_db
from perpsim.deps.auth import AuthenticatedUser, get_current_user
from perpsim.models.agent_config import AgentStatusEnum
from perpsim.models.position import PositionStatusEnum
from perpsim.schemas.agent import (
    AgentConfigOut,
    AgentConfigUpdate,
    AgentEventOut,
    AgentStatsOut,
    AgentStatusOut,
)
from perpsim.schemas.position import CloseAllOut, PositionOut
from perpsim.services import agent_config_service, event_log, ledger, position_engine
from perpsim.services.market_data_manager import market_data_manager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/agent")


@router.get("/config", response_model=AgentConfigOut)
def get_agent_config(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("load agent config"):
        return AgentConfigOut.model_validate(agent_config_service.get_config(db, current_user.id))


@router.patch("/config", response_model=AgentConfigOut)
def update_agent_config(
    update: AgentConfigUpdate,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("update agent config"):
        config = agent_config_service.update_config(db, current_user.id, update.to_changes())
        return AgentConfigOut.model_validate(config)


@router.post("/start", response_model=AgentStatusOut)
def start_agent(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("start agent"):
        config = agent_config_service.set_status(db, current_user.id, AgentStatusEnum.RUNNING)
        return AgentStatusOut(status=config.status)


@router.post("/pause", response_model=AgentStatusOut)
def pause_agent(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("pause agent"):
        config = agent_config_service.set_status(db, current_user.id, AgentStatusEnum.PAUSED)
        return AgentStatusOut(status=config.status)


@router.get("/positions", response_model=List[PositionOut])
def list_agent_positions(
    status: Optional[PositionStatusEnum] = Query(None),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("fetch agent positions"):
        positions = ledger.get_positions(
            db, current_user.id, status=status.value if status else None, agent_only=True
        )
        return render_positions(db, positions)


@router.get("/stats", response_model=AgentStatsOut)
def get_agent_stats(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("load agent stats"):
        return AgentStatsOut(**agent_config_service.agent_stats(db, current_user.id))


@router.get("/events", response_model=List[AgentEventOut])
def list_agent_events(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("fetch agent events"):
        return [AgentEventOut.model_validate(e) for e in event_log.list_agent_events(db, current_user.id, limit)]


@router.post("/close-all", response_model=CloseAllOut)
def close_all_agent_positions(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Close only positions the automation agent opened"""
    with trading_errors("close agent positions"):
        results = position_engine.close_all_positions(
            db, current_user.id, agent_only=True, prices=market_data_manager
        )
        logger.info(f"Closed {len(results)} agent positions for user={current_user.id}")
        return close_all_out(results)
