from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _snapshot

router = APIRouter()

Json = Dict[str, Any]


@router.get("/status")
def status(request: Request) -> Json:
    """
    Public ledger status summary.

    Mounted under /v1 by routes_public.py, so the full path is:
      GET /v1/status
    """
    st = _snapshot(request)
    params = st.get("params") if isinstance(st.get("params"), dict) else {}
    contracts = st.get("contracts") if isinstance(st.get("contracts"), dict) else {}

    kinds: Dict[str, int] = {}
    for rec in contracts.values():
        k = str(rec.get("kind") or "")
        kinds[k] = kinds.get(k, 0) + 1

    return {
        "ok": True,
        "chain_id": str(st.get("chain_id") or ""),
        "height": int(st.get("height") or 0),
        "time": int(st.get("time") or 0),
        "accounts": len(st.get("accounts") or {}),
        "contracts": kinds,
        "event_seq": int(st.get("event_seq") or 0),
        "require_signatures": bool(params.get("require_signatures", True)),
        "deployment": dict(params.get("deployment") or {}),
    }
