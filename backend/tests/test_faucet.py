from datetime import datetime, timedelta, timezone

import pytest

from perpsim.core.exceptions import FaucetCooldownError
from perpsim.services import event_log, ledger
from perpsim.services.faucet import FAUCET_AMOUNT, claim_faucet, faucet_status

from conftest import make_user

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fresh_user(db_session):
    return make_user(db_session, "faucet-user", balance=0)


def test_first_claim_creates_balance(db_session, fresh_user):
    status = faucet_status(db_session, fresh_user, T0)
    assert status["can_claim"] is True
    assert status["cooldown_remaining_ms"] == 0

    assert claim_faucet(db_session, fresh_user, T0) == pytest.approx(FAUCET_AMOUNT)
    event = event_log.list_events(db_session, fresh_user)[0]
    assert event.type == "faucet_claimed"
    assert event.message == "claimed 10,000 usdt from faucet"


def test_claim_within_cooldown_is_rejected(db_session, fresh_user):
    claim_faucet(db_session, fresh_user, T0)

    with pytest.raises(FaucetCooldownError) as exc_info:
        claim_faucet(db_session, fresh_user, T0 + timedelta(hours=23))

    assert exc_info.value.available_at == T0 + timedelta(hours=24)
    assert float(ledger.get_balance(db_session, fresh_user).amount) == pytest.approx(FAUCET_AMOUNT)


def test_claim_after_cooldown_adds_exactly_the_faucet_amount(db_session, fresh_user):
    claim_faucet(db_session, fresh_user, T0)
    later = T0 + timedelta(hours=24, seconds=1)

    assert claim_faucet(db_session, fresh_user, later) == pytest.approx(2 * FAUCET_AMOUNT)
    db_session.expire_all()
    balance = ledger.get_balance(db_session, fresh_user)
    assert balance.last_faucet_claim.replace(tzinfo=timezone.utc) == later


def test_status_reports_remaining_cooldown(db_session, fresh_user):
    claim_faucet(db_session, fresh_user, T0)

    status = faucet_status(db_session, fresh_user, T0 + timedelta(hours=23))

    assert status["can_claim"] is False
    assert status["cooldown_remaining_ms"] == 3600 * 1000
    assert status["next_claim_at"] == T0 + timedelta(hours=24)
