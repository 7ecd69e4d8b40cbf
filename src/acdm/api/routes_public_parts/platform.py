from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _view

router = APIRouter()

Json = Dict[str, Any]


@router.get("/platform/{address}/round")
def platform_round(request: Request, address: str) -> Json:
    out = _view(request, to=address, tx_type="PLATFORM_ROUND")
    return {"ok": True, **out}


@router.get("/platform/{address}/orders/{order_id}")
def platform_order(request: Request, address: str, order_id: int) -> Json:
    out = _view(request, to=address, tx_type="PLATFORM_ORDER", payload={"order_id": order_id})
    return {"ok": True, **out}


@router.get("/platform/{address}/referrals/{account}")
def platform_referral(request: Request, address: str, account: str) -> Json:
    out = _view(request, to=address, tx_type="PLATFORM_REFERRAL", payload={"account": account})
    return {"ok": True, "referral": out}
