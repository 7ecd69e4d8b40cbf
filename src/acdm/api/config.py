import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


@dataclass(frozen=True)
class ApiConfig:
    mode: str  # "dev" | "testnet" | "prod"
    events_page_limit: int
    receipts_page_limit: int


def load_api_config() -> ApiConfig:
    mode = os.getenv("ACDM_MODE", "prod").strip().lower()
    return ApiConfig(
        mode=mode,
        events_page_limit=max(1, _env_int("ACDM_API_EVENTS_LIMIT", 200)),
        receipts_page_limit=max(1, _env_int("ACDM_API_RECEIPTS_LIMIT", 50)),
    )
