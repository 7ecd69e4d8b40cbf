from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _view

router = APIRouter()

Json = Dict[str, Any]


@router.get("/staking/{address}/stakes/{account}")
def staking_stake(request: Request, address: str, account: str) -> Json:
    out = _view(request, to=address, tx_type="STAKING_STAKE_RECORD", payload={"account": account})
    total = _view(request, to=address, tx_type="STAKING_TOTAL_STAKE")
    return {"ok": True, "stake": out, "total_stake": total["total_stake"]}
