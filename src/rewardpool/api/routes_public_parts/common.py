from __future__ import annotations

import json
from typing import Any, Dict, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from rewardpool.api.errors import ApiError
from rewardpool.api.security import require_caller

Json = Dict[str, Any]

M = TypeVar("M", bound=BaseModel)


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


async def _json_body(request: Request) -> Json:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise ApiError.bad_request("bad_request", "Body must be valid JSON", {})
    if not isinstance(body, dict):
        raise ApiError.bad_request("bad_request", "Body must be a JSON object", {})
    return body


def _parse(model: Type[M], body: Json) -> M:
    try:
        return model.model_validate(body)
    except ValidationError as ve:
        raise ApiError.bad_request(
            "invalid_argument",
            "request body does not match schema",
            {"errors": ve.errors(include_url=False, include_context=False)},
        )


async def _signed_request(request: Request, model: Type[M]) -> tuple[str, M]:
    """Read the JSON body, authenticate the caller over it, then validate it."""
    body = await _json_body(request)
    caller = require_caller(request, body)
    return caller, _parse(model, body)
