from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "rewardpool" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Process metrics and operator env must not leak between tests.
    from rewardpool.runtime import metrics

    metrics.reset()
    for name in (
        "REWARDPOOL_CONFIG_PATH",
        "REWARDPOOL_MODE",
        "REWARDPOOL_DB_PATH",
        "REWARDPOOL_ADMINS",
        "REWARDPOOL_ALLOW_UNSIGNED_REQUESTS",
        "REWARDPOOL_METRICS_ENABLED",
        "REWARDPOOL_CORS_ORIGINS",
        "REWARDPOOL_TRUST_PROXY_HEADERS",
        "REWARDPOOL_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
