from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _view

router = APIRouter()

Json = Dict[str, Any]


@router.get("/dao/{address}/proposals/{proposal_id}")
def dao_proposal(request: Request, address: str, proposal_id: int) -> Json:
    out = _view(request, to=address, tx_type="DAO_PROPOSAL", payload={"proposal_id": proposal_id})
    return {"ok": True, **out}


@router.get("/dao/{address}/participants/{account}")
def dao_participant(request: Request, address: str, account: str) -> Json:
    out = _view(request, to=address, tx_type="DAO_IS_PARTICIPANT", payload={"account": account})
    return {"ok": True, **out}
