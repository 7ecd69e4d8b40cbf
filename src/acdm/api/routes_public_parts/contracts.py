from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from acdm.api.errors import ApiError
from acdm.api.routes_public_parts.common import _snapshot, _view
from acdm.ledger.state import norm_addr

router = APIRouter()

Json = Dict[str, Any]


class ViewRequest(BaseModel):
    to: str = Field(..., min_length=1)
    tx_type: str = Field(..., min_length=1)
    payload: Optional[Dict[str, Any]] = None


@router.get("/contracts/{address}")
def get_contract(request: Request, address: str) -> Json:
    st = _snapshot(request)
    a = norm_addr(address)
    rec = (st.get("contracts") or {}).get(a)
    if not isinstance(rec, dict):
        raise ApiError.not_found("contract_not_found", "No contract at address", {"address": a})
    return {"ok": True, "kind": str(rec.get("kind") or ""), "contract": rec}


@router.post("/view")
def call_view(request: Request, body: ViewRequest) -> Json:
    """Generic read-only contract call, e.g. TOKEN_BALANCE_OF or ROUTER_GET_AMOUNTS_OUT."""
    out = _view(request, to=body.to, tx_type=body.tx_type, payload=body.payload)
    return {"ok": True, "result": out}
