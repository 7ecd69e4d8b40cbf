from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _snapshot

router = APIRouter()

Json = Dict[str, Any]


@router.get("/health")
def health(request: Request) -> Json:
    """Liveness check. Cheap: reads only chain id, height and ledger time."""
    st = _snapshot(request)
    return {
        "ok": True,
        "chain_id": str(st.get("chain_id") or ""),
        "height": int(st.get("height") or 0),
        "time": int(st.get("time") or 0),
    }
