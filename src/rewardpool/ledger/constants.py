# src/rewardpool/ledger/constants.py
from __future__ import annotations

"""Reward pool numeric constants.

- Accumulator precision: 18 decimal fixed point
- Default reward period: 7 days, expressed in clock units (seconds)
- Administrator-only operations checkpoint the zero account
"""

# Fixed-point scale for reward_per_unit_stored (1.0 == 10**18)
SCALE_DECIMALS: int = 18
SCALE: int = 10**SCALE_DECIMALS

# Reward period length used when a pool is created without an explicit duration
DEFAULT_REWARDS_DURATION: int = 7 * 24 * 60 * 60

# Sentinel account id: checkpoint() only refreshes the global accumulator
NO_ACCOUNT: str = ""

# Canonical custody holder for pool funds in the transfer collaborator
POOL_ACCOUNT_ID: str = "POOL"
