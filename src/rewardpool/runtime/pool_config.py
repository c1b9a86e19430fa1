# src/rewardpool/runtime/pool_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from rewardpool.crypto.sig import is_pubkey_hex
from rewardpool.ledger.constants import DEFAULT_REWARDS_DURATION, POOL_ACCOUNT_ID

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _as_admins(v: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if v is None:
        return tuple(default)
    if isinstance(v, str):
        items = v.split(",")
    elif isinstance(v, (list, tuple)):
        items = [str(x) for x in v]
    else:
        return tuple(default)
    return tuple(s.strip() for s in items if str(s).strip())


@dataclass(frozen=True)
class PoolConfig:
    pool_id: str
    mode: str  # "dev" | "testnet" | "prod"

    db_path: str
    pool_account: str

    stake_token: str
    reward_token: str
    admins: Tuple[str, ...]
    rewards_duration: int

    api_host: str
    api_port: int

    allow_unsigned_requests: bool
    check_invariants: bool

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_pool_config(cfg: PoolConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.pool_id, str) or not cfg.pool_id.strip():
        raise ValueError("pool_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    for name, v in (
        ("db_path", cfg.db_path),
        ("pool_account", cfg.pool_account),
        ("stake_token", cfg.stake_token),
        ("reward_token", cfg.reward_token),
    ):
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    if int(cfg.rewards_duration) <= 0:
        raise ValueError(f"rewards_duration must be > 0; got: {cfg.rewards_duration}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if cfg.pool_account in cfg.admins:
        raise ValueError("pool_account must not be an admin")

    if mode == "prod":
        if cfg.allow_unsigned_requests:
            raise ValueError("allow_unsigned_requests is not permitted in prod mode")
        bad = [a for a in cfg.admins if not is_pubkey_hex(a)]
        if bad:
            raise ValueError(f"prod admins must be ed25519 pubkeys (64 hex chars); got: {bad!r}")


def default_pool_config() -> PoolConfig:
    return PoolConfig(
        pool_id="rewardpool-dev",
        # Without an explicit config file we never drop into a permissive posture.
        mode="prod",
        db_path="./data/rewardpool.db",
        pool_account=POOL_ACCOUNT_ID,
        stake_token="STAKE",
        reward_token="REWARD",
        admins=(),
        rewards_duration=DEFAULT_REWARDS_DURATION,
        api_host="0.0.0.0",
        api_port=8000,
        allow_unsigned_requests=False,
        check_invariants=False,
        log_level="INFO",
    )


def _read_raw(p: Path) -> Any:
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text)
    return json.loads(text)


def pool_config_from_dict(raw: Json) -> PoolConfig:
    d = default_pool_config()
    return PoolConfig(
        pool_id=_as_str(raw.get("pool_id"), d.pool_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        pool_account=_as_str(raw.get("pool_account"), d.pool_account),
        stake_token=_as_str(raw.get("stake_token"), d.stake_token),
        reward_token=_as_str(raw.get("reward_token"), d.reward_token),
        admins=_as_admins(raw.get("admins"), d.admins),
        rewards_duration=_as_int(raw.get("rewards_duration"), d.rewards_duration),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        allow_unsigned_requests=_as_bool(raw.get("allow_unsigned_requests"), d.allow_unsigned_requests),
        check_invariants=_as_bool(raw.get("check_invariants"), d.check_invariants),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )


def read_pool_config_file(path: str) -> PoolConfig:
    raw = _read_raw(Path(path))
    if not isinstance(raw, dict):
        raise ValueError("pool config must be a JSON/YAML object")
    return pool_config_from_dict(raw)


def _apply_env_overrides(cfg: PoolConfig) -> PoolConfig:
    mode = os.environ.get("REWARDPOOL_MODE")
    if mode and mode.strip():
        cfg = replace(cfg, mode=mode.strip().lower())
    db_path = os.environ.get("REWARDPOOL_DB_PATH")
    if db_path and db_path.strip():
        cfg = replace(cfg, db_path=db_path.strip())
    admins = os.environ.get("REWARDPOOL_ADMINS")
    if admins is not None and admins.strip():
        cfg = replace(cfg, admins=_as_admins(admins, cfg.admins))
    unsigned = os.environ.get("REWARDPOOL_ALLOW_UNSIGNED_REQUESTS")
    if unsigned is not None and unsigned.strip():
        cfg = replace(cfg, allow_unsigned_requests=_as_bool(unsigned, cfg.allow_unsigned_requests))
    return cfg


def load_pool_config(*, config_path: Optional[str] = None) -> PoolConfig:
    p = config_path or os.environ.get("REWARDPOOL_CONFIG_PATH")
    cfg = read_pool_config_file(p) if p else default_pool_config()
    cfg = _apply_env_overrides(cfg)
    validate_pool_config(cfg)
    return cfg


def apply_pool_config_to_env(cfg: PoolConfig) -> None:
    validate_pool_config(cfg)
    os.environ["REWARDPOOL_POOL_ID"] = cfg.pool_id
    # Exposed so the SQLite layer picks its durability default.
    os.environ["REWARDPOOL_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["REWARDPOOL_DB_PATH"] = cfg.db_path
    os.environ["REWARDPOOL_LOG_LEVEL"] = cfg.log_level
    os.environ["REWARDPOOL_ALLOW_UNSIGNED_REQUESTS"] = "1" if cfg.allow_unsigned_requests else "0"
