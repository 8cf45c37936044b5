from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from perpsim.api.errors import trading_errors
from perpsim.database import get_db
from perpsim.deps.auth import AuthenticatedUser, get_current_user
from perpsim.schemas.account import DashboardOut
from perpsim.schemas.position import TradeOut
from perpsim.services.dashboard import build_dashboard
from perpsim.services.market_data_manager import market_data_manager

router = APIRouter()


@router.get("/dashboard", response_model=DashboardOut)
def get_dashboard(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("load dashboard"):
        data = build_dashboard(db, current_user.id, prices=market_data_manager)
        data["recent_trades"] = [TradeOut.build(t) for t in data["recent_trades"]]
        db.commit()
        return DashboardOut(**data)
