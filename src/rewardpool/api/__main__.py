# src/rewardpool/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from rewardpool.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so REWARDPOOL_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from rewardpool.api.app import create_app
    from rewardpool.runtime.pool_config import apply_pool_config_to_env, load_pool_config

    cfg = load_pool_config()
    apply_pool_config_to_env(cfg)

    host = os.getenv("REWARDPOOL_API_HOST", cfg.api_host)
    port = int(os.getenv("REWARDPOOL_API_PORT", str(cfg.api_port)))

    uvicorn.run(create_app(), host=host, port=port, log_level=cfg.log_level.strip().lower())


if __name__ == "__main__":
    main()
