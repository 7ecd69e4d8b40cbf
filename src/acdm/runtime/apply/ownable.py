# src/acdm/runtime/apply/ownable.py
from __future__ import annotations

from typing import Any, Dict

from acdm.ledger.state import emit_event, is_zero_address, norm_addr
from acdm.runtime.errors import ApplyError
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def require_owner(rec: Json, env: TxEnvelope) -> None:
    if norm_addr(env.signer) != norm_addr(rec.get("owner")):
        raise ApplyError(
            "not_owner",
            "Ownable: caller is not the owner",
            {"caller": norm_addr(env.signer), "contract": rec.get("address")},
        )


def transfer_ownership(state: Json, rec: Json, env: TxEnvelope) -> Json:
    """Shared handler body for every *_TRANSFER_OWNERSHIP tx."""
    require_owner(rec, env)
    new_owner = norm_addr((env.payload or {}).get("new_owner"))
    if is_zero_address(new_owner):
        raise ApplyError("zero_address", "Ownable: new owner is the zero address", {"new_owner": new_owner})

    previous = norm_addr(rec.get("owner"))
    rec["owner"] = new_owner
    emit_event(state, rec["address"], "OwnershipTransferred", previous_owner=previous, new_owner=new_owner)
    return {"applied": env.tx_type, "owner": new_owner}
