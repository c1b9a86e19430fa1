from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from rewardpool.api.routes_public_parts.common import _executor, _signed_request
from rewardpool.api.schemas import AmountRequest, EmptyRequest

router = APIRouter()

Json = Dict[str, Any]


@router.post("/stake")
async def stake(request: Request) -> Json:
    ex = _executor(request)
    caller, req = await _signed_request(request, AmountRequest)
    staked = await run_in_threadpool(ex.stake, caller, req.amount)
    return {"ok": True, "account": caller, "staked": int(staked), "balance": int(ex.engine.balance_of(caller))}


@router.post("/withdraw")
async def withdraw(request: Request) -> Json:
    ex = _executor(request)
    caller, req = await _signed_request(request, AmountRequest)
    withdrawn = await run_in_threadpool(ex.withdraw, caller, req.amount)
    return {"ok": True, "account": caller, "withdrawn": int(withdrawn), "balance": int(ex.engine.balance_of(caller))}


@router.post("/claim")
async def claim(request: Request) -> Json:
    ex = _executor(request)
    caller, _ = await _signed_request(request, EmptyRequest)
    reward = await run_in_threadpool(ex.claim, caller)
    return {"ok": True, "account": caller, "reward": int(reward)}


@router.post("/exit")
async def exit_pool(request: Request) -> Json:
    """Withdraw the full balance and claim the reward in one operation."""
    ex = _executor(request)
    caller, _ = await _signed_request(request, EmptyRequest)
    out = await run_in_threadpool(ex.exit, caller)
    return {"ok": True, "account": caller, "withdrawn": int(out["withdrawn"]), "reward": int(out["reward"])}
