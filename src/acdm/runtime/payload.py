from __future__ import annotations

from typing import Any, Dict

from acdm.ledger.state import norm_addr
from acdm.runtime.errors import ApplyError

Json = Dict[str, Any]


def as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) else ""


def as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return bool(v)
    return str(v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def req_addr(payload: Json, key: str) -> str:
    a = norm_addr(payload.get(key))
    if not a:
        raise ApplyError("invalid_payload", f"missing_{key}", {"missing": key})
    return a


def req_uint(payload: Json, key: str) -> int:
    """Required non-negative integer field (bools and floats rejected)."""
    v = payload.get(key)
    if v is None:
        raise ApplyError("invalid_payload", f"missing_{key}", {"missing": key})
    if isinstance(v, bool) or isinstance(v, float):
        raise ApplyError("invalid_payload", f"bad_{key}", {key: v})
    try:
        n = int(str(v).strip())
    except ValueError:
        raise ApplyError("invalid_payload", f"bad_{key}", {key: v}) from None
    if n < 0:
        raise ApplyError("invalid_payload", f"negative_{key}", {key: n})
    return n


def opt_uint(payload: Json, key: str, default: int = 0) -> int:
    if payload.get(key) is None:
        return int(default)
    return req_uint(payload, key)
