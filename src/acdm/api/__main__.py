# src/acdm/api/__main__.py
from __future__ import annotations

import uvicorn

from acdm.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so ACDM_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from acdm.api.app import create_app
    from acdm.api.structured_logging import configure_structured_logging
    from acdm.runtime.chain_config import apply_chain_config_to_env, load_chain_config

    cfg = load_chain_config()
    apply_chain_config_to_env(cfg)
    configure_structured_logging()

    uvicorn.run(create_app(), host=cfg.api_host, port=int(cfg.api_port), log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
