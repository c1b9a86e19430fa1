from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from rewardpool.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


@router.get("/accounts/{account}")
def account(account: str, request: Request) -> Json:
    ex = _executor(request)
    return {"ok": True, "account": ex.account_json(account)}


@router.get("/accounts/{account}/earned")
def account_earned(account: str, request: Request) -> Json:
    ex = _executor(request)
    return {"ok": True, "account": account, "earned": int(ex.engine.earned(account))}
