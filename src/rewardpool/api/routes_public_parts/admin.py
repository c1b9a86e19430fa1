from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from rewardpool.api.errors import ApiError
from rewardpool.api.routes_public_parts.common import _executor, _signed_request
from rewardpool.api.schemas import (
    NotifyRewardRequest,
    PauseRequest,
    RecoverRequest,
    RewardsDurationRequest,
    VaultCreditRequest,
)

router = APIRouter()

Json = Dict[str, Any]


@router.post("/admin/notify_reward")
async def notify_reward(request: Request) -> Json:
    ex = _executor(request)
    caller, req = await _signed_request(request, NotifyRewardRequest)
    meta = await run_in_threadpool(
        ex.notify_reward_amount, caller, req.reward, pull_from_caller=req.pull_from_caller
    )
    return {"ok": True, "result": meta}


@router.post("/admin/rewards_duration")
async def rewards_duration(request: Request) -> Json:
    ex = _executor(request)
    caller, req = await _signed_request(request, RewardsDurationRequest)
    meta = await run_in_threadpool(ex.set_rewards_duration, caller, req.duration)
    return {"ok": True, "result": meta}


@router.post("/admin/pause")
async def pause(request: Request) -> Json:
    ex = _executor(request)
    caller, req = await _signed_request(request, PauseRequest)
    changed = await run_in_threadpool(ex.set_paused, caller, req.paused)
    return {"ok": True, "paused": bool(req.paused), "changed": bool(changed)}


@router.post("/admin/recover")
async def recover(request: Request) -> Json:
    ex = _executor(request)
    caller, req = await _signed_request(request, RecoverRequest)
    amount = await run_in_threadpool(ex.recover_token, caller, req.token, req.amount)
    return {"ok": True, "token": req.token, "amount": int(amount)}


@router.post("/admin/vault/credit")
async def vault_credit(request: Request) -> Json:
    """Mint into custody for local pools. Refused in prod."""
    ex = _executor(request)
    mode = str(getattr(getattr(ex, "config", None), "mode", "prod") or "prod").strip().lower()
    if mode == "prod":
        raise ApiError.forbidden("disabled_in_prod", "vault credit is not available in prod mode", {})
    caller, req = await _signed_request(request, VaultCreditRequest)
    if not ex.admins.is_admin(caller):
        raise ApiError.forbidden("unauthorized", "admin_only", {"caller": caller})
    balance = await run_in_threadpool(ex.credit_vault, req.token, req.holder, req.amount)
    return {"ok": True, "token": req.token, "holder": req.holder, "balance": int(balance)}
