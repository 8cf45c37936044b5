import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from perpsim.api.errors import trading_errors
from perpsim.database import get_db
from perpsim.deps.auth import AuthenticatedUser, get_current_user
from perpsim.schemas.account import FaucetClaimOut, FaucetStatusOut
from perpsim.services.faucet import FAUCET_AMOUNT, claim_faucet, faucet_status

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/faucet/status", response_model=FaucetStatusOut)
def get_faucet_status(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    with trading_errors("check faucet status"):
        status = faucet_status(db, current_user.id)
        db.commit()
        return FaucetStatusOut(**status)


@router.post("/faucet/claim", response_model=FaucetClaimOut)
def claim(
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Credit 10,000 simulated USDT once every 24h"""
    with trading_errors("claim faucet"):
        new_balance = claim_faucet(db, current_user.id)
        return FaucetClaimOut(amount=FAUCET_AMOUNT, new_balance=new_balance)
