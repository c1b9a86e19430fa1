from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict


Json = Dict[str, Any]

# Largest integer a JSON consumer can hold exactly as a double.
_JSON_SAFE_INT = 2**53

_HANDLER_NAME = "rewardpool-jsonl"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _safe(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value) if abs(value) >= _JSON_SAFE_INT else value
    if isinstance(value, dict):
        return {str(k): _safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_safe(v) for v in value]
    return value


def configure_structured_logging() -> None:
    """Route log records to stdout as bare JSONL lines.

    Level from REWARDPOOL_LOG_LEVEL (default INFO). Idempotent: a second call
    only updates the level.
    """
    level_name = (os.environ.get("REWARDPOOL_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers:
        if h.get_name() == _HANDLER_NAME:
            h.setLevel(level)
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit one pool event as a JSON object on a single line.

    Integers past 2**53 (reward-per-unit values) are written as strings.
    """
    if not logger.isEnabledFor(logging.INFO):
        return
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(_safe(fields))
    try:
        line = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        line = " ".join([f"event={event}"] + [f"{k}={fields[k]!r}" for k in sorted(fields)])
    logger.info(line)
