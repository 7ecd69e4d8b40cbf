from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


@router.get("/accounts/{address}")
def get_account(request: Request, address: str) -> Json:
    """Nonce, public key and native balance of an account.

    Unknown addresses are not an error: clients use this to fetch the next
    nonce, and a contract or an unfunded address simply reports registered=false.
    """
    ex = _executor(request)
    return {"ok": True, "account": ex.account(address)}
