"""
HTTP API tests: real routers and auth, in-memory database, patched market data.
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from perpsim.core.config import settings
from perpsim.database import get_db
from perpsim.deps.auth import issue_token
from perpsim.main import app
from perpsim.services import token_service
from perpsim.services.market_data_manager import market_data_manager

from conftest import StubPrices

CANDLES = [{"t": i, "o": 100.0, "h": 101.0, "l": 99.0, "c": 100.0 + i % 3, "v": 5.0} for i in range(60)]


@pytest.fixture
def client(session_factory, prices):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with patch.object(market_data_manager, "get_price", side_effect=prices.get_price), patch.object(
        market_data_manager, "get_batch_prices", side_effect=prices.get_batch_prices
    ), patch.object(market_data_manager, "get_candles", return_value=CANDLES):
        yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {issue_token('alice')}"}


@pytest.fixture
def funded(client, auth):
    assert client.post("/api/faucet/claim", headers=auth).status_code == 200
    return auth


def _open(client, headers, **overrides):
    body = {"tokenId": "bitcoin", "side": "long", "margin": 1000, "leverage": 5}
    body.update(overrides)
    return client.post("/api/positions", json=body, headers=headers)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer alice.forged"}, {"Authorization": "Token x"}])
def test_private_routes_require_a_valid_token(client, headers):
    assert client.get("/api/dashboard", headers=headers).status_code == 401


def test_tokens_are_public(client, monkeypatch):
    monkeypatch.setattr(token_service, "_last_refresh", None)
    markets = [
        {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 50000, "market_cap": 1e12},
        {"id": "tether", "symbol": "usdt", "name": "Tether", "current_price": 1, "market_cap": 1e11},
        {"id": "sui", "symbol": "sui", "name": "Sui", "current_price": 2.5, "market_cap": 1e10},
    ]
    with patch.object(market_data_manager.secondary, "get_top_markets", return_value=markets):
        response = client.get("/api/tokens")

    assert response.status_code == 200
    body = response.json()
    assert [t["id"] for t in body] == ["bitcoin", "sui"]
    assert body[0]["isPinned"] is True
    assert body[0]["currentPrice"] == 50000


def test_faucet_cooldown_is_a_client_error(client, auth):
    status = client.get("/api/faucet/status", headers=auth).json()
    assert status["canClaim"] is True

    first = client.post("/api/faucet/claim", headers=auth)
    assert first.json()["newBalance"] == 10000

    second = client.post("/api/faucet/claim", headers=auth)
    assert second.status_code == 400
    assert second.json()["detail"] == "Faucet cooldown not expired"
    assert client.get("/api/faucet/status", headers=auth).json()["canClaim"] is False


def test_position_lifecycle(client, funded, prices):
    opened = _open(client, funded)
    assert opened.status_code == 200
    position = opened.json()
    assert float(position["quantity"]) == pytest.approx(0.1)
    assert float(position["liquidationPrice"]) == pytest.approx(41000)
    assert isinstance(position["margin"], str)
    assert position["isAgentTrade"] is False
    position_id = position["id"]

    prices.set("bitcoin", 51000.0)
    [listed] = client.get("/api/positions?status=open", headers=funded).json()
    assert listed["unrealizedPnl"] == "100.00"
    assert listed["roe"] == "10.00"
    assert float(listed["currentPrice"]) == pytest.approx(51000)

    patched = client.patch(f"/api/positions/{position_id}", json={"takeProfit": 60000}, headers=funded)
    assert float(patched.json()["takeProfit"]) == pytest.approx(60000)

    added = client.post(f"/api/positions/{position_id}/add-margin", json={"amount": 500}, headers=funded)
    assert float(added.json()["margin"]) == pytest.approx(1500)

    too_much = client.post(f"/api/positions/{position_id}/remove-margin", json={"amount": 1460}, headers=funded)
    assert too_much.status_code == 400

    closed = client.post(f"/api/positions/{position_id}/close", headers=funded)
    assert closed.status_code == 200
    # 0.1 * 1000 gain less 1.5 fee on 1500 margin
    assert closed.json()["pnl"] == pytest.approx(98.5)

    again = client.post(f"/api/positions/{position_id}/close", headers=funded)
    assert again.status_code == 400
    assert again.json()["detail"] == "Position already closed"

    trades = client.get("/api/trades", headers=funded).json()
    assert [t["side"] for t in trades] == ["sell", "buy"]
    assert client.get("/api/positions?status=closed", headers=funded).json()[0]["status"] == "closed"


def test_open_errors(client, funded):
    assert _open(client, funded, margin=20000).json()["detail"] == "Insufficient balance"
    assert _open(client, funded, leverage=500).status_code == 400
    assert _open(client, funded, side="up").status_code == 422

    unavailable = _open(client, funded, tokenId="nothing")
    assert unavailable.status_code == 503
    assert unavailable.json()["detail"] == "Unable to get current price"


def test_unknown_and_foreign_positions_are_not_found(client, funded):
    position_id = _open(client, funded).json()["id"]
    other = {"Authorization": f"Bearer {issue_token('bob')}"}

    assert client.post("/api/positions/9999/close", headers=funded).status_code == 404
    assert client.post(f"/api/positions/{position_id}/close", headers=other).status_code == 404


def test_close_all(client, funded):
    _open(client, funded)
    _open(client, funded, tokenId="ethereum", margin=100)

    response = client.post("/api/positions/close-all", headers=funded)

    assert response.status_code == 200
    assert response.json()["closedCount"] == 2
    assert client.get("/api/positions?status=open", headers=funded).json() == []


def test_dashboard_shape(client, funded):
    _open(client, funded)
    body = client.get("/api/dashboard", headers=funded).json()

    assert body["balance"] == pytest.approx(8999)
    assert body["openPositions"] == 1
    assert body["agentStatus"] == "paused"
    assert body["canClaimFaucet"] is False
    assert body["faucetCooldown"] > 0
    assert len(body["equityCurve"]) == 1
    assert body["recentTrades"][0]["side"] == "buy"


def test_trade_view(client, funded):
    _open(client, funded)
    body = client.get("/api/trade/bitcoin?timeframe=bogus", headers=funded).json()

    assert body["timeframe"] == "1h"
    assert body["token"]["currentPrice"] == 50000
    assert len(body["candles"]) == 60
    assert body["indicators"]["rsi14"] is not None
    assert len(body["positions"]) == 1
    assert body["balance"] == pytest.approx(8999)

    assert client.get("/api/trade/nothing", headers=funded).status_code == 404


def test_agent_config_and_lifecycle(client, funded):
    config = client.get("/api/agent/config", headers=funded).json()
    assert config["status"] == "paused"
    assert config["strategies"] == ["trend"]
    assert config["maxMarginPerTrade"] == 300
    assert "the-open-network" in config["allowedPairs"]

    bad = client.patch("/api/agent/config", json={"strategies": ["grid"]}, headers=funded)
    assert bad.status_code == 422
    dupes = client.patch("/api/agent/config", json={"strategies": ["trend", "trend"]}, headers=funded)
    assert dupes.status_code == 422

    updated = client.patch(
        "/api/agent/config",
        json={"strategies": ["trend", "breakout"], "maxLeverage": 10, "allowedPairs": ["bitcoin"]},
        headers=funded,
    ).json()
    assert updated["strategies"] == ["trend", "breakout"]
    assert updated["maxLeverage"] == 10
    assert updated["maxCapital"] == 1000

    assert client.post("/api/agent/start", headers=funded).json()["status"] == "running"
    assert client.post("/api/agent/pause", headers=funded).json()["status"] == "paused"

    events = client.get("/api/agent/events", headers=funded).json()
    assert [e["type"] for e in events] == ["agent_paused", "agent_started"]
    assert events[1]["message"] == "automation agent started"


def test_agent_views_only_include_agent_positions(client, funded, prices):
    _open(client, funded)

    assert client.get("/api/agent/positions", headers=funded).json() == []
    stats = client.get("/api/agent/stats", headers=funded).json()
    assert stats == {
        "totalTrades": 0,
        "winTrades": 0,
        "lossTrades": 0,
        "totalProfit": 0,
        "accuracy": "0.0",
        "openPositions": 0,
    }
    assert client.post("/api/agent/close-all", headers=funded).json()["closedCount"] == 0
    assert len(client.get("/api/positions?status=open", headers=funded).json()) == 1


def test_routes_are_mounted_under_the_api_prefix():
    paths = {route.path for route in app.routes if route.path.startswith("/api") or route.path == "/health"}

    assert settings.API_PREFIX == "/api"
    assert {"/api/health", "/api/tokens", "/api/positions/close-all", "/api/agent/config"} <= paths
