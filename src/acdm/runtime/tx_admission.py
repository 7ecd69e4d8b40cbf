from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple

from acdm.crypto.sig import canonical_tx_message, verify_ed25519_signature
from acdm.ledger.state import LedgerView, norm_addr
from acdm.runtime.domain_dispatch import PAYABLE_TX_TYPES
from acdm.runtime.tx_admission_types import TxEnvelope, TxVerdict

Json = Dict[str, Any]


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return int(default)
    try:
        return int(str(v).strip())
    except ValueError:
        return int(default)


def _json_size_bytes(obj: Any) -> int:
    """Compute JSON byte size. If not serializable, return -1 (unknown)."""
    try:
        return len(json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True).encode("utf-8"))
    except (TypeError, ValueError):
        return -1


def _validate_payload_limits(payload: Any) -> Optional[TxVerdict]:
    """Generic payload validation (shape + size caps)."""
    if payload is None:
        return TxVerdict.reject("invalid_payload", "payload_required", {"expected": "object"})
    if not isinstance(payload, dict):
        return TxVerdict.reject("invalid_payload", "payload_must_be_object", {"type": str(type(payload))})

    max_payload_bytes = _env_int("ACDM_MAX_TX_PAYLOAD_BYTES", 16 * 1024)
    max_payload_keys = _env_int("ACDM_MAX_TX_PAYLOAD_KEYS", 64)
    max_string_bytes = _env_int("ACDM_MAX_TX_STRING_BYTES", 8 * 1024)
    max_list_len = _env_int("ACDM_MAX_TX_LIST_LEN", 256)
    max_depth = _env_int("ACDM_MAX_TX_NESTING", 6)

    payload_bytes = _json_size_bytes(payload)
    if payload_bytes >= 0 and payload_bytes > int(max_payload_bytes):
        return TxVerdict.reject(
            "payload_too_large",
            "payload_exceeds_size_limit",
            {"bytes": int(payload_bytes), "max_bytes": int(max_payload_bytes)},
        )

    def walk(v: Any, depth: int) -> Optional[Tuple[str, Dict[str, Any]]]:
        if depth > int(max_depth):
            return "payload_too_deep", {"max_depth": int(max_depth)}

        if v is None or isinstance(v, (bool, int)):
            return None

        # Amounts are integers; floats would silently lose precision.
        if isinstance(v, float):
            return "float_not_allowed", {}

        if isinstance(v, str):
            b = len(v.encode("utf-8", errors="ignore"))
            if b > int(max_string_bytes):
                return "string_too_large", {"bytes": int(b), "max_bytes": int(max_string_bytes)}
            return None

        if isinstance(v, list):
            if len(v) > int(max_list_len):
                return "list_too_long", {"len": len(v), "max_len": int(max_list_len)}
            for it in v:
                err = walk(it, depth + 1)
                if err:
                    return err
            return None

        if isinstance(v, dict):
            if len(v) > int(max_payload_keys):
                return "object_too_many_keys", {"keys": len(v), "max_keys": int(max_payload_keys)}
            for kk, vv in v.items():
                if not isinstance(kk, str):
                    return "invalid_key_type", {"key_type": str(type(kk))}
                err = walk(vv, depth + 1)
                if err:
                    return err
            return None

        return "invalid_value_type", {"type": str(type(v))}

    err = walk(payload, 0)
    if err:
        reason, details = err
        return TxVerdict.reject("invalid_payload", reason, details)

    return None


def _shape(tx: Any) -> Tuple[Optional[TxEnvelope], Optional[TxVerdict]]:
    if not isinstance(tx, dict):
        return None, TxVerdict.reject("bad_shape", "tx_must_be_object", {"type": str(type(tx))})
    for key in ("nonce", "value"):
        v = tx.get(key, 0)
        if isinstance(v, bool) or not isinstance(v, int):
            return None, TxVerdict.reject("bad_shape", f"{key}_must_be_int", {key: v})
    try:
        env = TxEnvelope.from_json(tx)
    except (TypeError, ValueError) as e:
        return None, TxVerdict.reject("bad_shape", "unparseable_envelope", {"error": str(e)})
    return env, None


def verify_tx_signature(env: TxEnvelope, *, pubkey: str, chain_id: str) -> bool:
    if not env.sig or not pubkey:
        return False
    msg = canonical_tx_message(
        chain_id=chain_id,
        tx_type=env.tx_type,
        signer=env.signer,
        nonce=env.nonce,
        to=env.to,
        value=env.value,
        payload=env.payload,
    )
    return verify_ed25519_signature(message=msg, sig=env.sig, pubkey=pubkey)


def admit_tx(tx: Any, ledger: LedgerView, *, chain_id: str) -> TxVerdict:
    """Stateless and ledger-view checks run before a transaction is applied."""

    max_tx_bytes = _env_int("ACDM_MAX_TX_ENVELOPE_BYTES", 32 * 1024)
    env_size = _json_size_bytes(tx)
    if env_size >= 0 and env_size > int(max_tx_bytes):
        return TxVerdict.reject(
            "tx_too_large",
            "tx_envelope_exceeds_size_limit",
            {"bytes": int(env_size), "max_bytes": int(max_tx_bytes)},
        )

    env, rej = _shape(tx)
    if rej is not None:
        return rej
    assert env is not None

    if not env.tx_type.strip():
        return TxVerdict.reject("bad_shape", "missing_tx_type", None)
    if not env.signer.strip():
        return TxVerdict.reject("bad_shape", "missing_signer", None)
    if not env.to.strip():
        return TxVerdict.reject("bad_shape", "missing_to", None)
    if int(env.nonce) < 0:
        return TxVerdict.reject("bad_shape", "nonce_must_be_nonnegative", {"nonce": int(env.nonce)})
    if int(env.value) < 0:
        return TxVerdict.reject("bad_shape", "value_must_be_nonnegative", {"value": int(env.value)})

    # Internal envelopes are built by contracts only.
    if env.internal:
        return TxVerdict.reject("forbidden", "internal_flag_not_allowed", {"signer": env.signer})

    if int(env.value) > 0 and env.tx_type.strip().upper() not in PAYABLE_TX_TYPES:
        return TxVerdict.reject("not_payable", "non_payable_tx_with_value", {"tx_type": env.tx_type})

    payload_verdict = _validate_payload_limits(env.payload)
    if payload_verdict is not None:
        return payload_verdict

    signer = norm_addr(env.signer)
    acct = ledger.get_account(signer)
    if not acct:
        return TxVerdict.reject("unknown_signer", "signer_not_found", {"signer": signer})

    expected = ledger.get_nonce(signer) + 1
    if int(env.nonce) != expected:
        return TxVerdict.reject("bad_nonce", "nonce_must_be_next", {"expected": expected, "got": env.nonce})

    if bool(ledger.get_param("require_signatures", True)):
        if not verify_tx_signature(env, pubkey=ledger.get_pubkey(signer), chain_id=chain_id):
            return TxVerdict.reject(
                "bad_sig",
                "signature_verification_failed",
                {"signer": signer, "tx_type": env.tx_type},
            )

    return TxVerdict.admit()


__all__ = ["TxEnvelope", "TxVerdict", "admit_tx", "verify_tx_signature"]
