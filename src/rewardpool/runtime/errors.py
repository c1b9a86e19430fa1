from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ApplyError(Exception):
    """Canonical error type for pool operation failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


@dataclass
class InvalidArgument(ApplyError):
    code: str = "invalid_argument"
    reason: str = "invalid_amount"
    details: Any | None = None


@dataclass
class InsufficientBalance(ApplyError):
    code: str = "insufficient_balance"
    reason: str = "withdraw_exceeds_balance"
    details: Any | None = None


@dataclass
class PeriodNotFinished(ApplyError):
    code: str = "period_not_finished"
    reason: str = "previous_rewards_period_must_be_complete"
    details: Any | None = None


@dataclass
class InsolventRate(ApplyError):
    code: str = "insolvent_rate"
    reason: str = "provided_reward_too_high"
    details: Any | None = None


@dataclass
class Unauthorized(ApplyError):
    code: str = "unauthorized"
    reason: str = "admin_only"
    details: Any | None = None


@dataclass
class Paused(ApplyError):
    code: str = "paused"
    reason: str = "pool_paused"
    details: Any | None = None


@dataclass
class ReentrantCall(ApplyError):
    code: str = "reentrant_call"
    reason: str = "operation_in_flight"
    details: Any | None = None


@dataclass
class TransferFailed(ApplyError):
    code: str = "transfer_failed"
    reason: str = "transfer_rejected"
    details: Any | None = None


@dataclass
class ClockRegression(ApplyError):
    code: str = "clock_regression"
    reason: str = "timestamp_went_backwards"
    details: Any | None = None


@dataclass
class AccumulatorRegression(ApplyError):
    code: str = "accumulator_regression"
    reason: str = "reward_per_unit_decreased"
    details: Any | None = None


@dataclass
class InvariantViolation(ApplyError):
    code: str = "invariant_violation"
    reason: str = "pool_state_inconsistent"
    details: Any | None = None


__all__ = [
    "ApplyError",
    "AccumulatorRegression",
    "ClockRegression",
    "InsolventRate",
    "InsufficientBalance",
    "InvalidArgument",
    "InvariantViolation",
    "Paused",
    "PeriodNotFinished",
    "ReentrantCall",
    "TransferFailed",
    "Unauthorized",
]
