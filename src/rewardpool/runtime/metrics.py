from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict, Tuple


Json = Dict[str, Any]

# (metric name, sorted label pairs) -> value
SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]

_lock = threading.Lock()
_counters: Dict[SeriesKey, int] = {}
_gauges: Dict[SeriesKey, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("REWARDPOOL_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _key(name: str, labels: Dict[str, Any]) -> SeriesKey | None:
    n = str(name or "").strip()
    if not n:
        return None
    return n, tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _render(key: SeriesKey) -> str:
    name, labels = key
    if not labels:
        return name
    inner = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{inner}}}"


def inc_counter(name: str, value: int = 1, **labels: Any) -> None:
    k = _key(name, labels)
    if k is None:
        return
    with _lock:
        _counters[k] = int(_counters.get(k, 0)) + int(value)


def set_gauge(name: str, value: int, **labels: Any) -> None:
    k = _key(name, labels)
    if k is None:
        return
    with _lock:
        _gauges[k] = int(value)


# ----------------------------
# Pool series
# ----------------------------


def record_op(op: str) -> None:
    inc_counter("ops_total", op=op)


def record_rejection(op: str, code: str) -> None:
    inc_counter("ops_rejected_total", op=op, code=code)


def observe_pool(pool: Json) -> None:
    """Mirror the headline pool fields as gauges."""
    for field in ("total_staked", "reward_rate", "period_finish", "rewards_duration"):
        if field in pool:
            set_gauge(f"pool_{field}", int(pool[field]))


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def snapshot() -> Json:
    """Counters and gauges keyed by their rendered series name."""
    now_ms = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now_ms,
            "uptime_ms": now_ms - int(_started_ms),
            "counters": {_render(k): int(v) for k, v in _counters.items()},
            "gauges": {_render(k): int(v) for k, v in _gauges.items()},
        }


def format_prometheus(prefix: str = "rewardpool_") -> str:
    """Prometheus text exposition (integer series only)."""
    pre = str(prefix or "").strip() or "rewardpool_"
    with _lock:
        counters = sorted(_counters.items())
        gauges = sorted(_gauges.items())

    lines = [
        f"# TYPE {pre}uptime_ms gauge",
        f"{pre}uptime_ms {int(time.time() * 1000) - int(_started_ms)}",
    ]
    for kind, series in (("counter", counters), ("gauge", gauges)):
        typed: set[str] = set()
        for key, value in series:
            if key[0] not in typed:
                typed.add(key[0])
                lines.append(f"# TYPE {pre}{key[0]} {kind}")
            lines.append(f"{pre}{_render(key)} {int(value)}")
    return "\n".join(lines) + "\n"
