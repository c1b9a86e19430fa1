from __future__ import annotations

"""Pydantic request schemas for the pool API.

Amounts are StrictInt: token quantities never arrive as strings or floats,
and booleans are not numbers. Positivity is checked by the engine so the
error shape matches every other rejected operation.
"""

from pydantic import BaseModel, Field, StrictBool, StrictInt


class _Strict(BaseModel):
    model_config = {"extra": "forbid"}


class AmountRequest(_Strict):
    amount: StrictInt = Field(..., description="Token amount in base units")


class EmptyRequest(_Strict):
    pass


class NotifyRewardRequest(_Strict):
    reward: StrictInt = Field(..., description="Reward to distribute over the next period")
    pull_from_caller: StrictBool = Field(default=False, description="Transfer the reward in from the caller")


class RewardsDurationRequest(_Strict):
    duration: StrictInt = Field(..., description="Period length in seconds")


class PauseRequest(_Strict):
    paused: StrictBool


class RecoverRequest(_Strict):
    token: str = Field(..., min_length=1)
    amount: StrictInt


class VaultCreditRequest(_Strict):
    token: str = Field(..., min_length=1)
    holder: str = Field(..., min_length=1)
    amount: StrictInt = Field(..., gt=0)
