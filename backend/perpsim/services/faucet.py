"""Simulated USDT faucet with a 24h cooldown per user."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from perpsim.core.exceptions import FaucetCooldownError
from perpsim.database import atomic
from perpsim.models.agent_event import AgentEventType
from perpsim.services import event_log, ledger
from perpsim.utils.timeutils import as_utc, millis, utcnow

logger = logging.getLogger(__name__)

FAUCET_AMOUNT = 10000.0
FAUCET_COOLDOWN = timedelta(hours=24)


def next_claim_at(last_claim: Optional[datetime]) -> Optional[datetime]:
    last_claim = as_utc(last_claim)
    return last_claim + FAUCET_COOLDOWN if last_claim else None


def faucet_status(db: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) or utcnow()
    balance = ledger.get_balance(db, user_id)
    available_at = next_claim_at(balance.last_faucet_claim)
    can_claim = available_at is None or now >= available_at
    return {
        "can_claim": can_claim,
        "cooldown_remaining_ms": 0 if can_claim else millis(available_at - now),
        "next_claim_at": None if can_claim else available_at,
        "last_claim_at": as_utc(balance.last_faucet_claim),
        "amount": FAUCET_AMOUNT,
        "balance": float(balance.amount),
    }


def claim_faucet(db: Session, user_id: int, now: Optional[datetime] = None) -> float:
    """Credit FAUCET_AMOUNT and return the new balance.

    Raises FaucetCooldownError while the previous claim is less than 24h old.
    """
    now = as_utc(now) or utcnow()
    with atomic(db):
        balance = ledger.get_balance(db, user_id)
        available_at = next_claim_at(balance.last_faucet_claim)
        if available_at is not None and now < available_at:
            raise FaucetCooldownError(available_at)

        new_amount = ledger.record_faucet_claim(db, user_id, FAUCET_AMOUNT, now)
        event_log.append_event(
            db,
            user_id,
            AgentEventType.FAUCET_CLAIMED,
            "claimed 10,000 usdt from faucet",
        )
    logger.info(f"Faucet claimed user={user_id} new_balance={new_amount}")
    return new_amount
