from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewardpool.api.errors import ApiError, apply_error_to_api
from rewardpool.api.routes_public import public_router
from rewardpool.api.security import RateLimitMiddleware, RequestSizeLimitMiddleware
from rewardpool.api.structured_logging import RequestLogMiddleware
from rewardpool.runtime.errors import ApplyError
from rewardpool.runtime.executor import build_executor as _build_executor
from rewardpool.runtime.pool_config import PoolConfig, load_pool_config
from rewardpool.runtime.pool_logging import configure_structured_logging, log_event

logger = logging.getLogger("rewardpool.api")


def build_executor(cfg: Optional[PoolConfig] = None):
    """Build a PoolExecutor for API runtime.

    Tests monkeypatch `rewardpool.api.app.build_executor` to avoid opening a database.
    """
    return _build_executor(cfg)


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins.

    Policy:
      - If REWARDPOOL_CORS_ORIGINS is unset/empty -> CORS disabled
      - Wildcard "*" is rejected in REWARDPOOL_MODE=prod
    """
    raw = os.environ.get("REWARDPOOL_CORS_ORIGINS", "").strip()
    mode = os.environ.get("REWARDPOOL_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in REWARDPOOL_CORS_ORIGINS."
            )
        return ["*"]

    return origins


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=int(exc.status_code), content=exc.to_json())


async def _apply_error_handler(request: Request, exc: ApplyError) -> JSONResponse:
    err = apply_error_to_api(exc)
    return JSONResponse(status_code=int(err.status_code), content=err.to_json())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    err = ApiError.bad_request("invalid_argument", "request does not match schema", {"errors": str(exc)})
    return JSONResponse(status_code=400, content=err.to_json())


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load pool config + attach executor
      - False: keep lightweight for unit tests / import-time validation
    """
    configure_structured_logging()
    cfg = load_pool_config() if boot_runtime else None
    mode = cfg.mode if cfg is not None else os.environ.get("REWARDPOOL_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        ex = getattr(app.state, "executor", None)
        close = getattr(ex, "close", None)
        if callable(close):
            close()
            log_event(logger, "executor_closed")

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="RewardPool API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="RewardPool API", lifespan=_lifespan)

    app.state.executor = build_executor(cfg) if cfg is not None else None

    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(ApplyError, _apply_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # --- Middleware (last added runs first) ---
    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "X-RewardPool-Account", "X-RewardPool-Nonce", "X-RewardPool-Sig"],
        )

    app.include_router(public_router)

    return app
