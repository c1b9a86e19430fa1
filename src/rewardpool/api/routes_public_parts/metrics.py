from __future__ import annotations

from fastapi import APIRouter, Request, Response

from rewardpool.runtime.metrics import format_prometheus, metrics_enabled, observe_pool, set_gauge


router = APIRouter()


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus text. 404 unless REWARDPOOL_METRICS_ENABLED=1.

    Pool gauges are re-read from the executor on every scrape so an idle
    pool still reports its current schedule.
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")

    ex = getattr(request.app.state, "executor", None)
    if ex is not None:
        observe_pool(ex.view().pool_json())
        set_gauge("pool_paused", 1 if ex.engine.is_paused() else 0)
        set_gauge("pool_available_reward_funding", ex.engine.available_reward_funding())
    return Response(content=format_prometheus(), media_type="text/plain; version=0.0.4")
