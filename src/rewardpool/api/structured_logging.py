# src/rewardpool/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from rewardpool.api.security import ACCOUNT_HEADER
from rewardpool.runtime.metrics import inc_counter
from rewardpool.runtime.pool_logging import log_event

Json = Dict[str, Any]

REQUEST_ID_HEADER = "x-request-id"


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _status_class(status: int) -> str:
    return f"{int(status) // 100}xx"


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One `http_request` log line and one counter bump per request.

    REWARDPOOL_LOG_REQUESTS=0 turns the log line off (counters stay on).
    REWARDPOOL_LOG_REQUEST_HEADERS=1 adds user-agent and content-type.
    The caller account header is always logged since it names who acted.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._enabled = _flag("REWARDPOOL_LOG_REQUESTS", True)
        self._log_headers = _flag("REWARDPOOL_LOG_REQUEST_HEADERS", False)
        self._logger = logging.getLogger("rewardpool.http")

    def _fields(self, request: Request) -> Json:
        out: Json = {
            "method": request.method,
            "path": str(request.url.path or ""),
            "account": request.headers.get(ACCOUNT_HEADER) or None,
            "client": str(request.client.host) if request.client else "",
        }
        if self._log_headers:
            out["headers"] = {
                k: request.headers[k] for k in ("user-agent", "content-type") if k in request.headers
            }
        return out

    async def dispatch(self, request: Request, call_next):
        started = time.monotonic()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
            return response
        finally:
            inc_counter("http_requests_total", method=request.method, status=_status_class(status))
            if self._enabled:
                log_event(
                    self._logger,
                    "http_request",
                    request_id=request_id,
                    status=status,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    **self._fields(request),
                )
