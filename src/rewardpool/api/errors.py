from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from rewardpool.runtime.errors import ApplyError

Json = Dict[str, Any]


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def too_many(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(429, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_json(self) -> Json:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}


# Engine error code -> HTTP status.
_APPLY_STATUS: Dict[str, int] = {
    "unauthorized": 403,
    "paused": 409,
    "period_not_finished": 409,
    "reentrant_call": 409,
    "invalid_argument": 400,
    "insufficient_balance": 400,
    "insolvent_rate": 400,
    "transfer_failed": 402,
}


def status_for_apply_error(err: ApplyError) -> int:
    return int(_APPLY_STATUS.get(str(err.code), 500))


def apply_error_to_api(err: ApplyError) -> ApiError:
    details = err.details if isinstance(err.details, dict) else ({"details": err.details} if err.details is not None else {})
    return ApiError(status_for_apply_error(err), str(err.code), str(err.reason), dict(details))
