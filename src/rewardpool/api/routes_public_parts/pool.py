from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from rewardpool.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


@router.get("/pool")
def pool(request: Request) -> Json:
    ex = _executor(request)
    return {"ok": True, "pool": ex.pool_json()}


@router.get("/events")
def events(request: Request, limit: int = 100, after_seq: int = 0) -> Json:
    """Committed pool events in journal order. Page with `after_seq`."""
    ex = _executor(request)
    items = ex.events(limit=limit, after_seq=after_seq)
    return {"ok": True, "events": items, "next_after_seq": items[-1]["seq"] if items else int(after_seq)}
