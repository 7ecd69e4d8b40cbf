from __future__ import annotations

import copy
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from acdm.ledger.state import LedgerView, drain_events, norm_addr, transfer_native
from acdm.runtime.chain_config import ChainConfig, load_chain_config
from acdm.runtime.deploy import bootstrap_ledger
from acdm.runtime.domain_dispatch import apply_tx, apply_view
from acdm.runtime.errors import ApplyError
from acdm.runtime.genesis_config import load_genesis
from acdm.runtime.runtime_logging import log_event
from acdm.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from acdm.runtime.state_invariants import ensure_state
from acdm.runtime.tx_admission import admit_tx
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Clock = Callable[[], int]

log = logging.getLogger("acdm.executor")


def _ensure_parent(path: str) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)


def _wall_clock() -> int:
    return int(time.time())


class ExecutorError(RuntimeError):
    pass


class AcdmExecutor:
    """Serialized transaction executor over a SQLite-persisted ledger.

    Every submitted transaction is admitted against a read-only view of the
    current ledger, then applied to a deep copy. A failed apply leaves the
    ledger untouched apart from the signer nonce and the height, so a
    rejected transaction still consumes its nonce. Every outcome is stored
    as a receipt together with the resulting snapshot; the events a
    transaction emitted go to the receipt and the event table, never into
    the snapshot.
    """

    def __init__(
        self,
        *,
        db_path: str,
        chain_id: str,
        clock: Optional[Clock] = None,
        require_signatures: bool = True,
    ) -> None:
        self.chain_id = str(chain_id)
        self.db_path = str(db_path)
        self._clock: Clock = clock or _wall_clock
        self._lock = threading.RLock()
        _ensure_parent(self.db_path)

        self._db = SqliteDB(path=self.db_path)
        self._ledger_store = SqliteLedgerStore(db=self._db)

        if self._ledger_store.exists():
            self.state = self._ledger_store.read()
        else:
            self.state = self._initial_state(require_signatures=require_signatures)
            self._ledger_store.write(self.state)
        ensure_state(self.state)

        st_chain_id = str(self.state.get("chain_id") or "").strip()
        if st_chain_id and st_chain_id != self.chain_id:
            raise ExecutorError(
                f"chain_id mismatch: db={st_chain_id!r} executor={self.chain_id!r}. Refuse to start."
            )

    def _initial_state(self, *, require_signatures: bool) -> Json:
        st: Json = {
            "chain_id": self.chain_id,
            "height": 0,
            "time": self._clock(),
            "params": {"require_signatures": bool(require_signatures)},
        }
        return ensure_state(st)

    # ----------------------------
    # Bootstrap
    # ----------------------------

    def bootstrap(self, genesis_path: str) -> bool:
        """Apply a genesis/deployment file to a fresh ledger and persist it."""
        cfg = load_genesis(genesis_path)
        if cfg.chain_id and cfg.chain_id != self.chain_id:
            raise ExecutorError(f"genesis chain_id {cfg.chain_id!r} does not match {self.chain_id!r}")
        with self._lock:
            working = copy.deepcopy(self.state)
            changed = bootstrap_ledger(working, cfg)
            if changed:
                emitted = drain_events(working)
                self._ledger_store.write(working, emitted)
                self.state = working
                log_event(log, "ledger_bootstrapped", height=self.state["height"], genesis=genesis_path)
        return changed

    # ----------------------------
    # Public accessors
    # ----------------------------

    def read_state(self) -> Json:
        return self.state

    def snapshot(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def view(self, *, to: str, tx_type: str, payload: Optional[Json] = None) -> Json:
        with self._lock:
            env = TxEnvelope(tx_type=str(tx_type).strip().upper(), signer="", nonce=0, payload=dict(payload or {}), to=to)
            # Views are read-only but run on a copy so a faulty one cannot corrupt the ledger.
            return apply_view(copy.deepcopy(self.state), env)

    def events(
        self,
        since_seq: int = 0,
        limit: int = 200,
        *,
        contract: Optional[str] = None,
        name: Optional[str] = None,
    ) -> List[Json]:
        return self._ledger_store.events(
            since_seq=since_seq,
            limit=limit,
            contract=norm_addr(contract) if contract else None,
            name=name or None,
        )

    def receipts(self, limit: int = 50, signer: Optional[str] = None) -> List[Json]:
        return self._ledger_store.receipts(limit=limit, signer=norm_addr(signer) if signer else None)

    def account(self, address: str) -> Json:
        a = norm_addr(address)
        with self._lock:
            acct = self.state.get("accounts", {}).get(a)
            return {
                "address": a,
                "registered": isinstance(acct, dict),
                "nonce": int(acct.get("nonce", 0)) if isinstance(acct, dict) else 0,
                "pubkey": str(acct.get("pubkey") or "") if isinstance(acct, dict) else "",
                "balance": int(self.state.get("balances", {}).get(a, 0) or 0),
            }

    # ----------------------------
    # Tx submission
    # ----------------------------

    def submit_tx(self, env: Json) -> Json:
        if not isinstance(env, dict):
            return {"ok": False, "error": "bad_env", "reason": "not_object", "details": None}

        with self._lock:
            verdict = admit_tx(env, LedgerView.from_ledger(self.state), chain_id=self.chain_id)
            if not verdict.ok:
                log_event(log, "tx_rejected", stage="admission", code=verdict.code, reason=verdict.reason)
                return {"ok": False, "error": verdict.code, "reason": verdict.reason, "details": verdict.details}

            tx = TxEnvelope.from_json(env)
            signer = norm_addr(tx.signer)
            tx = TxEnvelope(
                tx_type=tx.tx_type.strip().upper(),
                signer=signer,
                nonce=tx.nonce,
                payload=tx.payload,
                to=norm_addr(tx.to),
                value=tx.value,
                sig=tx.sig,
            )

            height = int(self.state.get("height", 0)) + 1
            ts = max(int(self.state.get("time", 0)), int(self._clock()))

            working: Json = copy.deepcopy(self.state)
            self._advance(working, signer=signer, height=height, ts=ts)
            try:
                if tx.value:
                    transfer_native(working, signer, tx.to, tx.value)
                result = apply_tx(working, tx)
                ok = True
                error: Optional[ApplyError] = None
            except ApplyError as e:
                # Nothing but the nonce and the height survive a failed apply.
                working = copy.deepcopy(self.state)
                self._advance(working, signer=signer, height=height, ts=ts)
                result, ok, error = None, False, e

            emitted = drain_events(working)

            receipt: Json = {
                "height": height,
                "time": ts,
                "signer": signer,
                "nonce": tx.nonce,
                "tx_type": tx.tx_type,
                "to": tx.to,
                "value": tx.value,
                "ok": ok,
                "result": result,
                "error": error.to_json() if error is not None else None,
                "events": emitted,
            }

            self._ledger_store.commit(working, receipt, emitted)
            self.state = working

        if ok:
            log_event(log, "tx_applied", height=height, signer=signer, tx_type=tx.tx_type, to=tx.to)
        else:
            assert error is not None
            log_event(
                log,
                "tx_rejected",
                stage="apply",
                height=height,
                signer=signer,
                tx_type=tx.tx_type,
                code=error.code,
                reason=error.reason,
            )
        return receipt

    @staticmethod
    def _advance(st: Json, *, signer: str, height: int, ts: int) -> None:
        st["height"] = height
        st["time"] = ts
        acct = st["accounts"][signer]
        acct["nonce"] = int(acct.get("nonce", 0)) + 1

    @classmethod
    def from_config(cls, cfg: Optional[ChainConfig] = None) -> "AcdmExecutor":
        c = cfg or load_chain_config()
        ex = cls(db_path=c.db_path, chain_id=c.chain_id, require_signatures=c.require_signatures)
        if c.genesis_path:
            ex.bootstrap(c.genesis_path)
        return ex
