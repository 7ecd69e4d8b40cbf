from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TxVerdict:
    ok: bool
    code: str
    reason: str
    details: Optional[Dict[str, Any]] = None

    @staticmethod
    def admit() -> "TxVerdict":
        return TxVerdict(True, "ok", "admitted", None)

    @staticmethod
    def reject(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "TxVerdict":
        return TxVerdict(False, code, reason, details)


@dataclass(frozen=True)
class TxEnvelope:
    """A call against one contract.

    ``to`` is the target contract address and ``value`` the amount of native
    wei attached to the call. Envelopes built by contracts for internal calls
    carry the calling contract as ``signer`` and ``internal=True``; those are
    never signed and never admitted from outside.
    """

    tx_type: str
    signer: str
    nonce: int
    payload: Dict[str, Any]
    to: str = ""
    value: int = 0
    sig: str = ""
    internal: bool = False

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return TxEnvelope(
            tx_type=str(j.get("tx_type", "")),
            signer=str(j.get("signer", "")),
            nonce=int(j.get("nonce", 0)),
            payload=dict(j.get("payload", {}) or {}),
            to=str(j.get("to", "") or ""),
            value=int(j.get("value", 0) or 0),
            sig=str(j.get("sig", "") or ""),
            internal=bool(j.get("internal", False)),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": self.payload,
            "to": self.to,
            "value": self.value,
            "sig": self.sig,
            "internal": self.internal,
        }
