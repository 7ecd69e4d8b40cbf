from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.errors import ApiError
from acdm.api.routes_public_parts.common import _executor, _int_param
from acdm.api.schemas import TxSubmitRequest

router = APIRouter()

Json = Dict[str, Any]


@router.post("/tx/submit")
def tx_submit(request: Request, body: TxSubmitRequest) -> Json:
    """Submit a signed tx envelope and apply it synchronously.

    Returns the receipt on success. Admission rejections and contract reverts
    both answer 400; a reverted tx still consumed its nonce, and its receipt is
    returned under error.details.receipt.
    """
    ex = _executor(request)
    env = body.model_dump()

    out = ex.submit_tx(env)
    if not isinstance(out, dict):
        raise ApiError.internal("submit_failed", "executor returned no receipt", {})

    if "height" not in out:
        # Rejected before apply: nothing was recorded.
        raise ApiError.bad_request(
            str(out.get("error") or "tx_rejected"),
            str(out.get("reason") or "tx rejected"),
            {"details": out.get("details")},
        )

    if not out.get("ok"):
        err = out.get("error") or {}
        raise ApiError.bad_request(
            str(err.get("code") or "tx_reverted"),
            str(err.get("reason") or "tx reverted"),
            {"receipt": out},
        )

    return {"ok": True, "receipt": out}


@router.get("/tx/receipts")
def tx_receipts(request: Request) -> Json:
    """Most recent receipts, newest first. Optional ?signer= filter."""
    ex = _executor(request)
    cap = int(request.app.state.cfg.receipts_page_limit)
    limit = max(1, min(cap, _int_param(request.query_params.get("limit"), cap)))
    signer = str(request.query_params.get("signer") or "").strip() or None
    return {"ok": True, "receipts": ex.receipts(limit=limit, signer=signer)}
