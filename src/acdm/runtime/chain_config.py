# src/acdm/runtime/chain_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

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


@dataclass(frozen=True)
class ChainConfig:
    chain_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file path for the ledger snapshot and receipts.
    db_path: str
    # Optional YAML/JSON deployment file applied to a fresh ledger.
    genesis_path: str

    api_host: str
    api_port: int

    require_signatures: bool

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_chain_config(cfg: ChainConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if cfg.genesis_path and not Path(cfg.genesis_path).is_file():
        raise ValueError(f"genesis_path does not exist or is not a file: {cfg.genesis_path!r}")

    # Unsigned transactions are a dev/test convenience only.
    if mode == "prod" and not cfg.require_signatures:
        raise ValueError("require_signatures must be true in prod mode")


def default_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id="acdm-dev",
        # Without an explicit config file the node runs with production posture.
        mode="prod",
        db_path="./data/acdm.db",
        genesis_path="",
        api_host="0.0.0.0",
        api_port=8000,
        require_signatures=True,
        log_level="INFO",
    )


def read_chain_config_file(path: str) -> ChainConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("chain config must be a JSON object")

    d = default_chain_config()

    cfg = ChainConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        mode=_as_str(raw.get("mode"), d.mode),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        genesis_path=str(raw.get("genesis_path") or d.genesis_path),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        require_signatures=_as_bool(raw.get("require_signatures"), d.require_signatures),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )

    validate_chain_config(cfg)
    return cfg


def chain_config_from_env(base: Optional[ChainConfig] = None) -> ChainConfig:
    """Overlay ACDM_* environment variables on `base` (defaults if None)."""
    d = base or default_chain_config()
    env = os.environ
    cfg = ChainConfig(
        chain_id=_as_str(env.get("ACDM_CHAIN_ID"), d.chain_id),
        mode=_as_str(env.get("ACDM_MODE"), d.mode).strip().lower(),
        db_path=_as_str(env.get("ACDM_DB_PATH"), d.db_path),
        genesis_path=str(env.get("ACDM_GENESIS_PATH") or d.genesis_path),
        api_host=_as_str(env.get("ACDM_API_HOST"), d.api_host),
        api_port=_as_int(env.get("ACDM_API_PORT"), d.api_port),
        require_signatures=_as_bool(env.get("ACDM_REQUIRE_SIGNATURES"), d.require_signatures),
        log_level=_as_str(env.get("ACDM_LOG_LEVEL"), d.log_level),
    )
    validate_chain_config(cfg)
    return cfg


def load_chain_config(*, config_path: Optional[str] = None) -> ChainConfig:
    p = config_path or os.environ.get("ACDM_CHAIN_CONFIG_PATH")
    if p:
        return chain_config_from_env(read_chain_config_file(p))
    return chain_config_from_env()


def apply_chain_config_to_env(cfg: ChainConfig) -> None:
    validate_chain_config(cfg)
    os.environ["ACDM_CHAIN_ID"] = cfg.chain_id
    os.environ["ACDM_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["ACDM_DB_PATH"] = cfg.db_path
    os.environ["ACDM_GENESIS_PATH"] = cfg.genesis_path
    os.environ["ACDM_REQUIRE_SIGNATURES"] = "1" if cfg.require_signatures else "0"
    os.environ["ACDM_LOG_LEVEL"] = cfg.log_level
