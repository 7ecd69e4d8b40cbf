from __future__ import annotations

import copy
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from acdm.ledger.constants import ZERO_ADDRESS
from acdm.runtime.errors import ApplyError

Json = Dict[str, Any]


def norm_addr(v: Any) -> str:
    return str(v or "").strip().lower()


def is_zero_address(v: Any) -> bool:
    a = norm_addr(v)
    return a in {"", ZERO_ADDRESS}


def address_from_pubkey(pubkey_hex: str) -> str:
    """Account address for an ed25519 public key: 0x + last 20 bytes of sha256."""
    raw = bytes.fromhex(str(pubkey_hex).strip())
    return "0x" + hashlib.sha256(raw).hexdigest()[-40:]


def _contract_address(deployer: str, seq: int) -> str:
    h = hashlib.sha256(f"{norm_addr(deployer)}:{int(seq)}".encode("utf-8")).hexdigest()
    return "0x" + h[-40:]


# ----------------------------
# Clock
# ----------------------------


def now(state: Json) -> int:
    """Timestamp (seconds) of the transaction currently being applied."""
    return int(state.get("time") or 0)


# ----------------------------
# Native balances (wei)
# ----------------------------


def native_balance(state: Json, addr: str) -> int:
    balances = state.get("balances")
    if not isinstance(balances, dict):
        return 0
    return int(balances.get(norm_addr(addr), 0) or 0)


def credit_native(state: Json, addr: str, amount: int) -> None:
    amount = int(amount)
    if amount < 0:
        raise ApplyError("invalid_amount", "negative_amount", {"amount": amount})
    if amount == 0:
        return
    balances = state.setdefault("balances", {})
    a = norm_addr(addr)
    balances[a] = int(balances.get(a, 0) or 0) + amount


def transfer_native(state: Json, src: str, dst: str, amount: int) -> None:
    """Move wei between two addresses. Fails without side effects on shortfall."""
    amount = int(amount)
    if amount < 0:
        raise ApplyError("invalid_amount", "negative_amount", {"amount": amount})
    if amount == 0:
        return
    have = native_balance(state, src)
    if have < amount:
        raise ApplyError(
            "insufficient_funds",
            "Insufficient balance for transfer",
            {"from": norm_addr(src), "have": have, "need": amount},
        )
    balances = state.setdefault("balances", {})
    balances[norm_addr(src)] = have - amount
    credit_native(state, dst, amount)


# ----------------------------
# Contract registry
# ----------------------------


def is_contract(state: Json, addr: Any) -> bool:
    contracts = state.get("contracts")
    return isinstance(contracts, dict) and norm_addr(addr) in contracts


def contract_at(state: Json, addr: Any, kind: Optional[str] = None) -> Json:
    contracts = state.get("contracts")
    a = norm_addr(addr)
    rec = contracts.get(a) if isinstance(contracts, dict) else None
    if not isinstance(rec, dict):
        raise ApplyError("contract_not_found", "No contract at address", {"address": a})
    if kind is not None and rec.get("kind") != kind:
        raise ApplyError(
            "wrong_contract_kind",
            "Target does not implement this method",
            {"address": a, "expected": kind, "got": rec.get("kind")},
        )
    return rec


def deploy_contract(state: Json, *, deployer: str, kind: str, record: Json) -> str:
    """Register a contract record and return its deterministic address."""
    seq = int(state.get("deploy_seq") or 0) + 1
    state["deploy_seq"] = seq
    addr = _contract_address(deployer, seq)
    rec = dict(record)
    rec["kind"] = str(kind)
    rec["address"] = addr
    rec["deployer"] = norm_addr(deployer)
    state.setdefault("contracts", {})[addr] = rec
    return addr


# ----------------------------
# Event log
# ----------------------------


def emit_event(state: Json, contract: str, name: str, **args: Any) -> Json:
    """Append an event to the pending buffer of the current transaction.

    ``state["events"]`` only holds what has been emitted since the last
    ``drain_events``; the executor moves it into the event store on commit.
    ``event_seq`` keeps counting across drains.
    """
    seq = int(state.get("event_seq") or 0) + 1
    state["event_seq"] = seq
    ev = {
        "seq": seq,
        "height": int(state.get("height") or 0),
        "time": now(state),
        "contract": norm_addr(contract),
        "event": str(name),
        "args": args,
    }
    state.setdefault("events", []).append(ev)
    return ev


def drain_events(state: Json) -> List[Json]:
    evs = list(state.get("events") or [])
    state["events"] = []
    return evs


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by admission and the API.
    """

    accounts: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    height: int = 0
    time: int = 0

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        return cls(
            accounts=copy.deepcopy(state.get("accounts", {})),
            params=copy.deepcopy(state.get("params", {})) if isinstance(state.get("params"), dict) else {},
            height=int(state.get("height", 0) or 0),
            time=int(state.get("time", 0) or 0),
        )

    def get_account(self, account_id: str) -> Dict[str, Any]:
        acct = self.accounts.get(norm_addr(account_id))
        return acct if isinstance(acct, dict) else {}

    def get_nonce(self, account_id: str) -> int:
        acct = self.get_account(account_id)
        try:
            return int(acct.get("nonce", 0))
        except Exception:
            return 0

    def get_pubkey(self, account_id: str) -> str:
        return str(self.get_account(account_id).get("pubkey") or "").strip()

    def get_param(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)
