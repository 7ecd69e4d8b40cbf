# src/acdm/runtime/calls.py
"""Contract-to-contract calls.

A contract never reaches into another contract's record. It goes through
``call`` (state-changing, the caller becomes the callee's ``signer``) or
``view`` (read-only). Both dispatch through the same router as external
transactions, so authorization checks in the callee apply unchanged.

Failures raised by a callee propagate and abort the whole outer transaction.
``try_call`` is the only containment point: it restores the pre-call state
and reports the failure instead of raising.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Dict, Optional, Tuple

from acdm.ledger.state import norm_addr, transfer_native
from acdm.runtime.errors import ApplyError
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _internal_env(*, sender: str, to: str, tx_type: str, payload: Optional[Json], value: int) -> TxEnvelope:
    return TxEnvelope(
        tx_type=str(tx_type).strip().upper(),
        signer=norm_addr(sender),
        nonce=0,
        payload=dict(payload or {}),
        to=norm_addr(to),
        value=int(value),
        internal=True,
    )


def call(
    state: Json,
    *,
    sender: str,
    to: str,
    tx_type: str,
    payload: Optional[Json] = None,
    value: int = 0,
) -> Json:
    """Invoke `tx_type` on contract `to` with `sender` as the caller.

    `value` wei is moved from `sender` to `to` before the callee runs.
    """
    # Local import: the dispatcher imports every contract module, which import this one.
    from acdm.runtime.domain_dispatch import apply_tx

    env = _internal_env(sender=sender, to=to, tx_type=tx_type, payload=payload, value=value)
    if env.value:
        transfer_native(state, env.signer, env.to, env.value)
    return apply_tx(state, env)


def view(state: Json, *, to: str, tx_type: str, payload: Optional[Json] = None, caller: str = "") -> Json:
    """Read-only query against contract `to`."""
    from acdm.runtime.domain_dispatch import apply_view

    env = _internal_env(sender=caller, to=to, tx_type=tx_type, payload=payload, value=0)
    return apply_view(state, env)


def try_call(
    state: Json,
    *,
    sender: str,
    to: str,
    tx_type: str,
    payload: Optional[Json] = None,
    value: int = 0,
) -> Tuple[bool, Any]:
    """Run `call` in a contained sub-transaction.

    Returns (True, result) on success. On ApplyError the state is restored in
    place to its pre-call contents and (False, error) is returned.

    Records fetched from `state` before a failed call are stale afterwards and
    must be looked up again.
    """
    snapshot = copy.deepcopy(state)
    try:
        return True, call(state, sender=sender, to=to, tx_type=tx_type, payload=payload, value=value)
    except ApplyError as e:
        state.clear()
        state.update(snapshot)
        return False, e


# ----------------------------
# Encoded calls
# ----------------------------


def encode_call(tx_type: str, payload: Optional[Json] = None) -> str:
    """Encode a method invocation as opaque hex bytes (canonical JSON)."""
    obj = {"tx_type": str(tx_type).strip().upper(), "payload": dict(payload or {})}
    raw = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return raw.hex()


def decode_call(data: Any) -> Tuple[str, Json]:
    """Inverse of encode_call. Raises ApplyError for anything that is not a call."""
    s = str(data or "").strip()
    if s.startswith("0x"):
        s = s[2:]
    if not s:
        raise ApplyError("bad_call_data", "empty_call_data", {})
    try:
        obj = json.loads(bytes.fromhex(s).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise ApplyError("bad_call_data", "undecodable_call_data", {"error": str(e)}) from e
    if not isinstance(obj, dict):
        raise ApplyError("bad_call_data", "call_data_not_object", {})
    tx_type = str(obj.get("tx_type") or "").strip().upper()
    payload = obj.get("payload")
    if not tx_type or not isinstance(payload, dict):
        raise ApplyError("bad_call_data", "call_data_missing_fields", {})
    return tx_type, payload


__all__ = ["call", "view", "try_call", "encode_call", "decode_call"]
