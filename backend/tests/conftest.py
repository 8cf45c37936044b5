"""
Shared fixtures: in-memory SQLite ledger and a stub price source.

Environment defaults are set before any perpsim import so the module-level
settings and engine never touch a real database or the network.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("RUN_AGENT_SCHEDULER", "false")

from typing import Dict, Iterable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from perpsim.database import Base, atomic, init_db
from perpsim.services import ledger
from perpsim.services.brokers.base import Ticker


class StubPrices:
    """Price source with fixed prices; unknown tokens have no price"""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or {})
        self.calls = []

    def set(self, token_id: str, price: float) -> None:
        self.prices[token_id] = price

    def get_price(self, token_id: str, db=None) -> Optional[Ticker]:
        self.calls.append(("price", token_id))
        price = self.prices.get(token_id)
        return Ticker(price=price) if price else None

    def get_batch_prices(self, token_ids: Iterable[str], db=None) -> Dict[str, Ticker]:
        token_ids = list(token_ids)
        self.calls.append(("batch", tuple(token_ids)))
        return {t: Ticker(price=self.prices[t]) for t in token_ids if self.prices.get(t)}


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def prices():
    return StubPrices({"bitcoin": 50000.0, "ethereum": 3000.0, "solana": 100.0})


def make_user(db, external_id: str = "user-1", balance: float = 10000.0) -> int:
    with atomic(db):
        user = ledger.get_or_create_user(db, external_id)
        if balance:
            ledger.adjust_balance(db, user.id, balance)
    return user.id


@pytest.fixture
def user_id(db_session):
    return make_user(db_session)
