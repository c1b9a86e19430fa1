from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from rewardpool.api.app import create_app
from rewardpool.crypto.sig import (
    canonical_request_message,
    sign_ed25519,
    sign_request,
    verify_ed25519_signature,
    verify_request,
)
from rewardpool.runtime.collaborators import ManualClock
from rewardpool.runtime.executor import PoolExecutor
from rewardpool.runtime.pool_config import pool_config_from_dict
from rewardpool.testing.sigtools import deterministic_ed25519_keypair, signed_headers

ALICE_PK, _ = deterministic_ed25519_keypair(label="alice")
ADMIN_PK, _ = deterministic_ed25519_keypair(label="admin")


@pytest.fixture()
def client(tmp_path: Path):
    cfg = pool_config_from_dict(
        {
            "pool_id": "signed-pool",
            "mode": "prod",
            "db_path": str(tmp_path / "pool.db"),
            "admins": [ADMIN_PK],
            "rewards_duration": 100,
            "stake_token": "STK",
            "reward_token": "RWD",
        }
    )
    ex = PoolExecutor(config=cfg, clock=ManualClock(0))
    ex.vault.credit("STK", ALICE_PK, 100)
    app = create_app(boot_runtime=False)
    app.state.executor = ex
    try:
        with TestClient(app) as c:
            yield c
    finally:
        ex.close()


def test_canonical_message_is_order_independent() -> None:
    a = canonical_request_message(method="post", path="/v1/stake", account="x", nonce=1, body={"b": 1, "a": 2})
    b = canonical_request_message(method="POST", path="/v1/stake", account="x", nonce=1, body={"a": 2, "b": 1})
    assert a == b
    assert canonical_request_message(method="POST", path="/v1/claim", account="x", nonce=1) != a


def test_signature_verification() -> None:
    pk, seed = deterministic_ed25519_keypair(label="k")
    msg = b"hello"
    sig = sign_ed25519(message=msg, privkey=seed)
    assert verify_ed25519_signature(message=msg, sig=sig, pubkey=pk)
    assert not verify_ed25519_signature(message=b"hellO", sig=sig, pubkey=pk)
    assert not verify_ed25519_signature(message=msg, sig="zz", pubkey=pk)


def test_sign_request_round_trip() -> None:
    pk, seed = deterministic_ed25519_keypair(label="client")
    signed = sign_request(privkey=seed, method="post", path="/v1/claim", nonce=3, body={})
    assert signed["account"] == pk
    assert signed["nonce"] == 3
    kw = dict(method="POST", path="/v1/claim", account=pk, nonce=3, body={})
    assert verify_request(sig=signed["sig"], **kw)
    assert not verify_request(sig=signed["sig"], **{**kw, "nonce": 4})
    assert not verify_request(sig=signed["sig"], **{**kw, "account": "not-a-key"})


def test_signed_stake_is_accepted_once(client: TestClient) -> None:
    body = {"amount": 30}
    h = signed_headers(label="alice", method="POST", path="/v1/stake", nonce=1, body=body)

    r = client.post("/v1/stake", json=body, headers=h)
    assert r.status_code == 200, r.text
    assert r.json()["account"] == ALICE_PK
    assert r.json()["balance"] == 30

    # Replay of the same signed request.
    r = client.post("/v1/stake", json=body, headers=h)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "nonce_replay"

    h2 = signed_headers(label="alice", method="POST", path="/v1/stake", nonce=2, body=body)
    assert client.post("/v1/stake", json=body, headers=h2).status_code == 200


def test_tampered_body_fails_verification(client: TestClient) -> None:
    h = signed_headers(label="alice", method="POST", path="/v1/stake", nonce=1, body={"amount": 10})
    r = client.post("/v1/stake", json={"amount": 90}, headers=h)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "bad_signature"


def test_signature_is_bound_to_path(client: TestClient) -> None:
    h = signed_headers(label="alice", method="POST", path="/v1/claim", nonce=1, body={"amount": 10})
    r = client.post("/v1/stake", json={"amount": 10}, headers=h)
    assert r.json()["error"]["code"] == "bad_signature"


def test_someone_elses_key_cannot_act_for_account(client: TestClient) -> None:
    h = signed_headers(label="mallory", method="POST", path="/v1/stake", nonce=1, body={"amount": 10})
    h["x-rewardpool-account"] = ALICE_PK
    r = client.post("/v1/stake", json={"amount": 10}, headers=h)
    assert r.json()["error"]["code"] == "bad_signature"


def test_unsigned_or_non_key_accounts_are_refused(client: TestClient) -> None:
    r = client.post("/v1/stake", json={"amount": 1}, headers={"x-rewardpool-account": "alice"})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "bad_account"

    r = client.post("/v1/stake", json={"amount": 1}, headers={"x-rewardpool-account": ALICE_PK})
    assert r.json()["error"]["code"] == "bad_nonce"


def test_signed_admin_and_prod_vault_credit(client: TestClient) -> None:
    body = {"paused": True}
    h = signed_headers(label="admin", method="POST", path="/v1/admin/pause", nonce=1, body=body)
    r = client.post("/v1/admin/pause", json=body, headers=h)
    assert r.status_code == 200
    assert r.json()["changed"] is True

    body = {"paused": False}
    h = signed_headers(label="alice", method="POST", path="/v1/admin/pause", nonce=1, body=body)
    r = client.post("/v1/admin/pause", json=body, headers=h)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "unauthorized"

    r = client.post("/v1/admin/vault/credit", json={"token": "STK", "holder": "x", "amount": 1})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "disabled_in_prod"
