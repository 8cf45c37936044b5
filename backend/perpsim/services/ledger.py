"""
Ledger & position store.

The only module that writes balances, positions, trades, agent configs and PnL
snapshots. Functions here never commit: callers wrap one logical operation in
`database.atomic(db)` so every balance/position/trade write for one economic
event lands in a single transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from perpsim.models.agent_config import AgentConfig, AgentStatusEnum
from perpsim.models.balance import Balance
from perpsim.models.pnl_snapshot import PnlSnapshot
from perpsim.models.position import Position, PositionStatusEnum
from perpsim.models.token import Token
from perpsim.models.trade import Trade
from perpsim.models.user import User
from perpsim.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self):
        return "UNSET"


UNSET: Any = _Unset()


@dataclass
class _Changes:
    """Explicit partial update: only fields that were given are applied."""

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}


@dataclass
class PositionChanges(_Changes):
    entry_price: Any = UNSET
    quantity: Any = UNSET
    margin: Any = UNSET
    liquidation_price: Any = UNSET
    take_profit: Any = UNSET
    stop_loss: Any = UNSET
    limit_close_price: Any = UNSET
    unrealized_pnl: Any = UNSET


@dataclass
class AgentConfigChanges(_Changes):
    allowed_pairs: Any = UNSET
    max_capital: Any = UNSET
    max_leverage: Any = UNSET
    max_loss_per_day: Any = UNSET
    max_open_positions: Any = UNSET
    trade_frequency_minutes: Any = UNSET
    strategies: Any = UNSET
    use_ema_filter: Any = UNSET
    use_rsi_filter: Any = UNSET
    use_volatility_filter: Any = UNSET
    max_margin_per_trade: Any = UNSET
    use_random_margin: Any = UNSET
    status: Any = UNSET
    last_run_at: Any = UNSET


# --- users -----------------------------------------------------------------

def get_or_create_user(db: Session, external_id: str) -> User:
    user = db.query(User).filter(User.external_id == external_id).first()
    if user:
        return user
    user = User(external_id=external_id, created_at=utcnow())
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # Concurrent first request for the same subject
        db.rollback()
        user = db.query(User).filter(User.external_id == external_id).one()
    return user


# --- balances --------------------------------------------------------------

def get_balance(db: Session, user_id: int) -> Balance:
    """Balance row for the user, created lazily with zero amount."""
    balance = db.query(Balance).filter(Balance.user_id == user_id).first()
    if balance is None:
        balance = Balance(user_id=user_id, amount=0.0)
        db.add(balance)
        db.flush()
    return balance


def adjust_balance(db: Session, user_id: int, delta: float) -> float:
    """Apply delta as a single UPDATE and return the new amount."""
    get_balance(db, user_id)
    db.query(Balance).filter(Balance.user_id == user_id).update(
        {Balance.amount: Balance.amount + delta, Balance.updated_at: utcnow()},
        synchronize_session=False,
    )
    db.expire_all()
    return float(db.query(Balance.amount).filter(Balance.user_id == user_id).scalar())


def record_faucet_claim(db: Session, user_id: int, amount: float, claimed_at: datetime) -> float:
    new_amount = adjust_balance(db, user_id, amount)
    db.query(Balance).filter(Balance.user_id == user_id).update(
        {Balance.last_faucet_claim: claimed_at}, synchronize_session=False
    )
    db.expire_all()
    return new_amount


# --- tokens ----------------------------------------------------------------

def get_token(db: Session, token_id: str) -> Optional[Token]:
    return db.query(Token).filter(Token.id == token_id).first()


def get_tokens(db: Session, token_ids: Iterable[str]) -> Dict[str, Token]:
    ids = list(set(token_ids))
    if not ids:
        return {}
    return {t.id: t for t in db.query(Token).filter(Token.id.in_(ids)).all()}


def list_tokens(db: Session) -> List[Token]:
    return db.query(Token).order_by(Token.is_pinned.desc(), Token.market_cap.desc()).all()


def upsert_tokens(db: Session, rows: List[Dict[str, Any]]) -> int:
    """Insert or update tokens by id. Tokens are never deleted."""
    existing = get_tokens(db, [row["id"] for row in rows])
    now = utcnow()
    for row in rows:
        token = existing.get(row["id"])
        if token is None:
            token = Token(id=row["id"])
            db.add(token)
        for key, value in row.items():
            if key != "id":
                setattr(token, key, value)
        token.last_updated = now
    db.flush()
    return len(rows)


# --- positions -------------------------------------------------------------

def get_positions(
    db: Session,
    user_id: int,
    status: Optional[str] = None,
    agent_only: Optional[bool] = None,
) -> List[Position]:
    query = db.query(Position).filter(Position.user_id == user_id)
    if status:
        query = query.filter(Position.status == status)
    if agent_only is not None:
        query = query.filter(Position.is_agent_trade == agent_only)
    return query.order_by(Position.created_at.desc(), Position.id.desc()).all()


def get_position(db: Session, position_id: int) -> Optional[Position]:
    """Re-reads the row even if the session already holds it; callers decide under a lock."""
    return db.query(Position).filter(Position.id == position_id).populate_existing().first()


def get_open_position(db: Session, user_id: int, token_id: str, side: str) -> Optional[Position]:
    return (
        db.query(Position)
        .filter(
            Position.user_id == user_id,
            Position.token_id == token_id,
            Position.side == side,
            Position.status == PositionStatusEnum.OPEN.value,
        )
        .first()
    )


def count_open_positions(db: Session, user_id: int, agent_only: Optional[bool] = None) -> int:
    query = db.query(func.count(Position.id)).filter(
        Position.user_id == user_id, Position.status == PositionStatusEnum.OPEN.value
    )
    if agent_only is not None:
        query = query.filter(Position.is_agent_trade == agent_only)
    return int(query.scalar() or 0)


def open_margin(db: Session, user_id: int, agent_only: Optional[bool] = None) -> float:
    """Total margin locked in the user's open positions."""
    query = db.query(func.coalesce(func.sum(Position.margin), 0)).filter(
        Position.user_id == user_id, Position.status == PositionStatusEnum.OPEN.value
    )
    if agent_only is not None:
        query = query.filter(Position.is_agent_trade == agent_only)
    return float(query.scalar() or 0)


def create_position(db: Session, **values) -> Position:
    values.setdefault("status", PositionStatusEnum.OPEN.value)
    values.setdefault("unrealized_pnl", 0.0)
    values.setdefault("created_at", utcnow())
    position = Position(**values)
    db.add(position)
    db.flush()
    return position


def update_position(db: Session, position: Position, changes: PositionChanges) -> Position:
    for key, value in changes.as_dict().items():
        setattr(position, key, value)
    db.flush()
    return position


def close_position(db: Session, position_id: int, realized_pnl: float, closed_at: Optional[datetime] = None) -> bool:
    """Compare-and-swap open -> closed.

    Returns True only for the caller that performed the transition. A False
    return means someone else already settled the position and nothing may be
    credited.
    """
    changed = (
        db.query(Position)
        .filter(Position.id == position_id, Position.status == PositionStatusEnum.OPEN.value)
        .update(
            {
                Position.status: PositionStatusEnum.CLOSED.value,
                Position.realized_pnl: realized_pnl,
                Position.unrealized_pnl: 0.0,
                Position.closed_at: closed_at or utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.expire_all()
    if changed != 1:
        logger.warning(f"Position {position_id} was not open at close time (rows={changed}); skipping settlement")
        return False
    return True


# --- trades ----------------------------------------------------------------

def append_trade(db: Session, **values) -> Trade:
    values.setdefault("type", "market")
    values.setdefault("created_at", utcnow())
    trade = Trade(**values)
    db.add(trade)
    db.flush()
    return trade


def list_trades(db: Session, user_id: int, limit: Optional[int] = None) -> List[Trade]:
    query = db.query(Trade).filter(Trade.user_id == user_id).order_by(Trade.created_at.desc(), Trade.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def realized_pnl_since(db: Session, user_id: int, since: datetime, agent_only: Optional[bool] = None) -> float:
    query = db.query(func.coalesce(func.sum(Trade.realized_pnl), 0)).filter(
        Trade.user_id == user_id,
        Trade.realized_pnl.isnot(None),
        Trade.created_at >= since,
    )
    if agent_only is not None:
        query = query.filter(Trade.is_agent_trade == agent_only)
    return float(query.scalar() or 0)


# --- agent configs ---------------------------------------------------------

def get_agent_config(db: Session, user_id: int) -> Optional[AgentConfig]:
    return db.query(AgentConfig).filter(AgentConfig.user_id == user_id).first()


def get_or_create_agent_config(db: Session, user_id: int) -> AgentConfig:
    config = get_agent_config(db, user_id)
    if config is None:
        config = AgentConfig(user_id=user_id)
        db.add(config)
        db.flush()
    return config


def update_agent_config(db: Session, config: AgentConfig, changes: AgentConfigChanges) -> AgentConfig:
    for key, value in changes.as_dict().items():
        setattr(config, key, value)
    config.updated_at = utcnow()
    db.flush()
    return config


def list_running_agent_configs(db: Session) -> List[AgentConfig]:
    return db.query(AgentConfig).filter(AgentConfig.status == AgentStatusEnum.RUNNING.value).all()


def touch_agent_last_run(db: Session, user_id: int, at: Optional[datetime] = None) -> None:
    db.query(AgentConfig).filter(AgentConfig.user_id == user_id).update(
        {AgentConfig.last_run_at: at or utcnow()}, synchronize_session=False
    )


def get_agent_stats(db: Session, user_id: int) -> Dict[str, Any]:
    closed = get_positions(db, user_id, status=PositionStatusEnum.CLOSED.value, agent_only=True)
    wins = [p for p in closed if float(p.realized_pnl or 0) > 0]
    return {
        "total_trades": len(closed),
        "win_trades": len(wins),
        "loss_trades": len(closed) - len(wins),
        "total_profit": sum(float(p.realized_pnl or 0) for p in closed),
        "open_positions": count_open_positions(db, user_id, agent_only=True),
    }


# --- pnl snapshots ---------------------------------------------------------

def get_pnl_snapshots(db: Session, user_id: int, limit: int = 30) -> List[PnlSnapshot]:
    """Most recent snapshots first."""
    return (
        db.query(PnlSnapshot)
        .filter(PnlSnapshot.user_id == user_id)
        .order_by(PnlSnapshot.snapshot_date.desc())
        .limit(limit)
        .all()
    )


def create_pnl_snapshot(db: Session, user_id: int, day: date, equity: float, daily_pnl: float) -> Optional[PnlSnapshot]:
    """Insert the day's snapshot; returns None if one already exists for that day."""
    exists = (
        db.query(PnlSnapshot.id)
        .filter(PnlSnapshot.user_id == user_id, PnlSnapshot.snapshot_date == day)
        .first()
    )
    if exists:
        return None
    snapshot = PnlSnapshot(user_id=user_id, snapshot_date=day, equity=equity, daily_pnl=daily_pnl, created_at=utcnow())
    db.add(snapshot)
    db.flush()
    return snapshot
