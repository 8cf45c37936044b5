"""Account dashboard aggregation: equity, PnL, win rate, drawdown and equity curve."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from perpsim.database import atomic
from perpsim.models.agent_config import AgentStatusEnum
from perpsim.models.pnl_snapshot import PnlSnapshot
from perpsim.models.position import Position, PositionStatusEnum
from perpsim.services import ledger
from perpsim.services.faucet import faucet_status
from perpsim.services.market_data_manager import market_data_manager
from perpsim.services.position_engine import unrealized_pnl
from perpsim.utils.timeutils import as_utc, reporting_day, reporting_day_start, utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_LOOKBACK = 30
RECENT_TRADES = 10


def max_drawdown(equities: List[float]) -> float:
    """Largest peak-to-trough drop as a fraction of the peak, equities in chronological order"""
    worst = 0.0
    peak = None
    for equity in equities:
        if peak is None or equity > peak:
            peak = equity
        if peak and peak > 0:
            worst = max(worst, (peak - equity) / peak)
    return worst


def live_prices(db: Session, positions: List[Position], prices=None) -> Dict[str, float]:
    source = prices or market_data_manager
    tickers = source.get_batch_prices({p.token_id for p in positions}, db=db)
    return {token_id: t.price for token_id, t in tickers.items() if t.price > 0}


def _record_daily_snapshot(db: Session, user_id: int, equity: float, today_pnl: float, now: datetime) -> Optional[PnlSnapshot]:
    try:
        with atomic(db):
            return ledger.create_pnl_snapshot(db, user_id, reporting_day(now), equity, today_pnl)
    except IntegrityError:
        # Concurrent dashboard request already wrote today's row
        logger.info(f"Daily snapshot for user={user_id} already recorded")
        return None


def build_dashboard(db: Session, user_id: int, prices=None, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) or utcnow()
    balance = float(ledger.get_balance(db, user_id).amount)
    open_positions = ledger.get_positions(db, user_id, status=PositionStatusEnum.OPEN.value)
    price_map = live_prices(db, open_positions, prices)

    def pnl_of(positions: List[Position]) -> float:
        return sum(unrealized_pnl(p, price_map.get(p.token_id)) for p in positions)

    agent_positions = [p for p in open_positions if p.is_agent_trade]
    manual_positions = [p for p in open_positions if not p.is_agent_trade]
    unrealized = pnl_of(open_positions)
    equity = balance + unrealized

    trades = ledger.list_trades(db, user_id)
    closing = [t for t in trades if t.realized_pnl is not None]
    day_start = reporting_day_start(now)
    today_pnl = sum(float(t.realized_pnl) for t in closing if as_utc(t.created_at) >= day_start)
    wins = [t for t in closing if float(t.realized_pnl) > 0]

    snapshots = list(reversed(ledger.get_pnl_snapshots(db, user_id, SNAPSHOT_LOOKBACK)))
    if equity > 0 and (not snapshots or snapshots[-1].snapshot_date < reporting_day(now)):
        created = _record_daily_snapshot(db, user_id, equity, today_pnl, now)
        if created is not None:
            snapshots.append(created)
            snapshots = snapshots[-SNAPSHOT_LOOKBACK:]

    config = ledger.get_agent_config(db, user_id)
    faucet = faucet_status(db, user_id, now)

    return {
        "balance": balance,
        "equity": equity,
        "unrealized_pnl": unrealized,
        "realized_pnl": sum(float(t.realized_pnl) for t in closing),
        "today_pnl": today_pnl,
        "win_rate": len(wins) / len(closing) if closing else 0.0,
        "max_drawdown": max_drawdown([float(s.equity) for s in snapshots]),
        "open_positions": len(open_positions),
        "agent_positions": len(agent_positions),
        "agent_unrealized_pnl": pnl_of(agent_positions),
        "manual_positions": len(manual_positions),
        "manual_unrealized_pnl": pnl_of(manual_positions),
        "agent_status": config.status if config else AgentStatusEnum.PAUSED.value,
        "can_claim_faucet": faucet["can_claim"],
        "faucet_cooldown": faucet["cooldown_remaining_ms"] or None,
        "equity_curve": [
            {"date": s.snapshot_date.isoformat(), "equity": float(s.equity)} for s in snapshots
        ],
        "recent_trades": trades[:RECENT_TRADES],
    }
