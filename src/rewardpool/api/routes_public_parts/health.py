from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """Liveness plus a few pool facts. Never fails because the executor is missing."""
    ex = getattr(request.app.state, "executor", None)
    out: Dict[str, Any] = {
        "ok": True,
        "service": "rewardpool",
        "version": "v1",
        "ts_ms": _now_ms(),
        "pool_id": None,
        "paused": None,
        "total_staked": None,
    }
    engine = getattr(ex, "engine", None)
    if engine is not None:
        out["pool_id"] = str(getattr(ex, "pool_id", "") or "") or None
        out["paused"] = bool(engine.is_paused())
        out["total_staked"] = int(engine.total_staked())
    return out
