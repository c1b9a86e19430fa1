from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterator, Tuple

import pytest
from fastapi.testclient import TestClient

from rewardpool.api.app import create_app
from rewardpool.runtime.collaborators import ManualClock
from rewardpool.runtime.executor import PoolExecutor
from rewardpool.runtime.pool_config import pool_config_from_dict


def _as(account: str) -> dict:
    return {"x-rewardpool-account": account}


ADMIN = _as("admin")
ALICE = _as("alice")
BOB = _as("bob")


@pytest.fixture()
def pool(tmp_path: Path) -> Iterator[Tuple[TestClient, PoolExecutor, ManualClock]]:
    cfg = pool_config_from_dict(
        {
            "pool_id": "api-pool",
            "mode": "dev",
            "db_path": str(tmp_path / "pool.db"),
            "admins": ["admin"],
            "rewards_duration": 100,
            "allow_unsigned_requests": True,
            "check_invariants": True,
            "stake_token": "STK",
            "reward_token": "RWD",
        }
    )
    clock = ManualClock(0)
    ex = PoolExecutor(config=cfg, clock=clock)
    app = create_app(boot_runtime=False)
    app.state.executor = ex
    try:
        with TestClient(app) as client:
            yield client, ex, clock
    finally:
        ex.close()


def _credit(client: TestClient, token: str, holder: str, amount: int) -> None:
    r = client.post("/v1/admin/vault/credit", json={"token": token, "holder": holder, "amount": amount}, headers=ADMIN)
    assert r.status_code == 200, r.text


def test_full_reward_cycle_over_http(pool) -> None:
    client, ex, clock = pool
    _credit(client, "STK", "alice", 100)
    _credit(client, "RWD", "POOL", 1000)

    r = client.post("/v1/admin/notify_reward", json={"reward": 1000}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["result"]["reward_rate"] == 10

    r = client.post("/v1/stake", json={"amount": 50}, headers=ALICE)
    assert r.json() == {"ok": True, "account": "alice", "staked": 50, "balance": 50}

    clock.set(50)
    r = client.get("/v1/accounts/alice/earned")
    assert r.json()["earned"] == 500

    r = client.get("/v1/pool")
    pj = r.json()["pool"]
    assert pj["total_staked"] == 50
    assert pj["reward_rate"] == 10
    assert pj["period_finish"] == 100

    r = client.get("/v1/accounts/alice")
    acct = r.json()["account"]
    assert acct["balance"] == 50
    assert acct["earned"] == 500
    assert acct["wallet"] == {"stake": 50, "reward": 0}

    clock.set(100)
    r = client.post("/v1/exit", headers=ALICE)
    assert r.json() == {"ok": True, "account": "alice", "withdrawn": 50, "reward": 1000}

    r = client.get("/v1/events")
    assert [e["event"] for e in r.json()["events"]] == ["RewardAdded", "Staked", "Withdrawn", "RewardPaid"]


def test_withdraw_and_claim_routes(pool) -> None:
    client, ex, clock = pool
    _credit(client, "STK", "alice", 100)
    _credit(client, "RWD", "POOL", 1000)
    client.post("/v1/admin/notify_reward", json={"reward": 1000}, headers=ADMIN)
    client.post("/v1/stake", json={"amount": 100}, headers=ALICE)

    clock.set(10)
    r = client.post("/v1/withdraw", json={"amount": 40}, headers=ALICE)
    assert r.json()["balance"] == 60

    r = client.post("/v1/claim", json={}, headers=ALICE)
    assert r.json()["reward"] == 100
    assert ex.vault.balance_of("RWD", "alice") == 100


@pytest.mark.parametrize(
    "path,body,headers,status,code",
    [
        ("/v1/admin/notify_reward", {"reward": 1}, BOB, 403, "unauthorized"),
        ("/v1/withdraw", {"amount": 10}, ALICE, 400, "insufficient_balance"),
        ("/v1/stake", {"amount": 0}, ALICE, 400, "invalid_argument"),
        ("/v1/stake", {"amount": "10"}, ALICE, 400, "invalid_argument"),
        ("/v1/stake", {"amount": 10, "extra": 1}, ALICE, 400, "invalid_argument"),
        ("/v1/stake", {"amount": 10**6}, ALICE, 402, "transfer_failed"),
        ("/v1/admin/notify_reward", {"reward": 10**9}, ADMIN, 400, "insolvent_rate"),
        ("/v1/exit", {}, ALICE, 400, "invalid_argument"),
        ("/v1/stake", {"amount": 10}, {}, 403, "caller_missing"),
    ],
)
def test_error_mapping(pool, path, body, headers, status, code) -> None:
    client, _, _ = pool
    r = client.post(path, json=body, headers=headers)
    assert r.status_code == status, r.text
    j = r.json()
    assert j["ok"] is False
    assert j["error"]["code"] == code
    assert isinstance(j["error"]["details"], dict)


def test_pause_and_duration_conflicts(pool) -> None:
    client, ex, clock = pool
    _credit(client, "STK", "alice", 10)
    _credit(client, "RWD", "POOL", 100)

    r = client.post("/v1/admin/pause", json={"paused": True}, headers=ADMIN)
    assert r.json() == {"ok": True, "paused": True, "changed": True}
    r = client.post("/v1/stake", json={"amount": 1}, headers=ALICE)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "paused"
    client.post("/v1/admin/pause", json={"paused": False}, headers=ADMIN)

    client.post("/v1/admin/notify_reward", json={"reward": 100}, headers=ADMIN)
    r = client.post("/v1/admin/rewards_duration", json={"duration": 10}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "period_not_finished"

    clock.set(101)
    r = client.post("/v1/admin/rewards_duration", json={"duration": 10}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["result"]["rewards_duration"] == 10


def test_recover_route(pool) -> None:
    client, ex, _ = pool
    _credit(client, "JUNK", "POOL", 7)
    r = client.post("/v1/admin/recover", json={"token": "JUNK", "amount": 7}, headers=ADMIN)
    assert r.json() == {"ok": True, "token": "JUNK", "amount": 7}
    assert ex.vault.balance_of("JUNK", "admin") == 7

    r = client.post("/v1/admin/recover", json={"token": "STK", "amount": 1}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "cannot_recover_stake_token"


def test_vault_credit_requires_admin(pool) -> None:
    client, _, _ = pool
    r = client.post("/v1/admin/vault/credit", json={"token": "STK", "holder": "bob", "amount": 5}, headers=BOB)
    assert r.status_code == 403


def test_metrics_route(pool, monkeypatch: pytest.MonkeyPatch) -> None:
    client, _, _ = pool
    assert client.get("/v1/metrics").status_code == 404

    monkeypatch.setenv("REWARDPOOL_METRICS_ENABLED", "1")
    _credit(client, "STK", "alice", 5)
    client.post("/v1/stake", json={"amount": 5}, headers=ALICE)
    r = client.get("/v1/metrics")
    assert r.status_code == 200
    assert 'rewardpool_ops_total{op="stake"} 1' in r.text
    assert "rewardpool_pool_total_staked 5" in r.text
    assert "rewardpool_pool_paused 0" in r.text
    assert 'rewardpool_http_requests_total{method="POST",status="2xx"} 2' in r.text


def test_health_reports_pool(pool) -> None:
    client, _, _ = pool
    j = client.get("/v1/health").json()
    assert j["ok"] is True
    assert j["pool_id"] == "api-pool"
    assert j["paused"] is False
    assert j["total_staked"] == 0


def test_writes_run_off_the_event_loop(pool) -> None:
    client, ex, clock = pool
    _credit(client, "STK", "alice", 10)

    loops = []

    def _on_event(evt) -> None:
        try:
            loops.append(asyncio.get_running_loop())
        except RuntimeError:
            loops.append(None)

    ex.event_bus.subscribe(_on_event)
    r = client.post("/v1/stake", json={"amount": 5}, headers=ALICE)
    assert r.status_code == 200, r.text
    assert loops == [None]
