# src/acdm/runtime/sqlite_db.py
from __future__ import annotations

import os
import json
import sqlite3
import time
import random
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Snapshots must round-trip exactly, so unknown types are an error rather
    than being coerced with default=str.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the ACDM ledger.

    Design goals:
      - single durable DB file for the ledger snapshot, receipts and events
      - cross-process safe (SQLite locks)
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time; BEGIN IMMEDIATE can transiently
    fail with "database is locked", so write_tx() retries with backoff.
    """

    SCHEMA_VERSION = 2

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with ACDM_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("ACDM_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("ACDM_SQLITE_SYNCHRONOUS") or default).strip().upper()

        allowed = {"OFF", "NORMAL", "FULL", "EXTRA"}
        if raw not in allowed:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("ACDM_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        # Fail closed if WAL cannot be enabled unless explicitly allowed.
        allow_non_wal = (os.environ.get("ACDM_SQLITE_ALLOW_NON_WAL") or "").strip() in {"1", "true", "TRUE"}
        try:
            row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
            mode = ""
            if row is not None:
                mode = str(row[0]).strip().lower()
            if mode and mode != "wal" and not allow_non_wal:
                raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")
        except Exception:
            if not allow_non_wal:
                raise

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        wal_ckpt = max(1, _env_int("ACDM_SQLITE_WAL_AUTOCHECKPOINT", 1000))
        con.execute(f"PRAGMA wal_autocheckpoint={wal_ckpt};")

        busy_ms = max(0, _env_int("ACDM_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  height INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                  height INTEGER PRIMARY KEY,
                  signer TEXT NOT NULL,
                  tx_type TEXT NOT NULL,
                  ok INTEGER NOT NULL,
                  receipt_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_receipts_signer ON receipts(signer);")

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                  seq INTEGER PRIMARY KEY,
                  height INTEGER NOT NULL,
                  contract TEXT NOT NULL,
                  event TEXT NOT NULL,
                  event_json TEXT NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_contract ON events(contract, seq);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_event ON events(event, seq);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg) or ("locked" in msg and "database" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise if the lock cannot be acquired within the deadline
        """
        deadline_ms = max(250, _env_int("ACDM_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("ACDM_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("ACDM_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        def _backoff(attempt: int) -> None:
            sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
            time.sleep(sleep_s * (0.5 + random.random()))

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    _backoff(attempt)
                    attempt += 1

            try:
                yield con

                c_attempt = 0
                while True:
                    try:
                        con.execute("COMMIT;")
                        break
                    except sqlite3.OperationalError as e:
                        if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                            raise
                        _backoff(c_attempt)
                        c_attempt += 1
            except Exception:
                con.execute("ROLLBACK;")
                raise


def _write_snapshot(con: sqlite3.Connection, st: Json) -> None:
    con.execute(
        """
        INSERT INTO ledger_state(id, height, state_json, updated_ts_ms)
        VALUES(1, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          height=excluded.height,
          state_json=excluded.state_json,
          updated_ts_ms=excluded.updated_ts_ms;
        """,
        (int(st.get("height", 0)), _canon_json(st), _now_ms()),
    )


def _insert_events(con: sqlite3.Connection, events: Iterable[Json]) -> None:
    con.executemany(
        "INSERT INTO events(seq, height, contract, event, event_json) VALUES(?, ?, ?, ?, ?);",
        [
            (
                int(e["seq"]),
                int(e.get("height") or 0),
                str(e.get("contract") or ""),
                str(e.get("event") or ""),
                _canon_json(e),
            )
            for e in events
        ],
    )


class SqliteLedgerStore:
    """Ledger snapshot, receipt log and event log persisted in SQLite.

    This provides:
      - read(): load latest ledger snapshot
      - write(st, events): overwrite the snapshot atomically
      - commit(st, receipt, events): snapshot, receipt and events in one write transaction
      - receipts(limit): most recent receipts, newest first
      - events(since_seq): events after a sequence number, oldest first

    The snapshot never carries emitted events; they live only in the events
    table (and in the receipt of the transaction that emitted them).
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return st

    def write(self, st: Json, events: Sequence[Json] = ()) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        with self._db.write_tx() as con:
            _write_snapshot(con, st)
            _insert_events(con, events)

    def commit(self, st: Json, receipt: Json, events: Sequence[Json] = ()) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        with self._db.write_tx() as con:
            _write_snapshot(con, st)
            con.execute(
                """
                INSERT INTO receipts(height, signer, tx_type, ok, receipt_json, created_ts_ms)
                VALUES(?, ?, ?, ?, ?, ?);
                """,
                (
                    int(receipt["height"]),
                    str(receipt.get("signer") or ""),
                    str(receipt.get("tx_type") or ""),
                    1 if receipt.get("ok") else 0,
                    _canon_json(receipt),
                    _now_ms(),
                ),
            )
            _insert_events(con, events)

    def receipts(self, *, limit: int = 50, signer: Optional[str] = None) -> List[Json]:
        limit = max(1, min(int(limit), 1000))
        with self._db.connection() as con:
            if signer:
                rows = con.execute(
                    "SELECT receipt_json FROM receipts WHERE signer=? ORDER BY height DESC LIMIT ?;",
                    (str(signer), limit),
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT receipt_json FROM receipts ORDER BY height DESC LIMIT ?;", (limit,)
                ).fetchall()
        return [json.loads(str(r["receipt_json"])) for r in rows]

    def events(
        self,
        *,
        since_seq: int = 0,
        limit: int = 200,
        contract: Optional[str] = None,
        name: Optional[str] = None,
    ) -> List[Json]:
        limit = max(1, min(int(limit), 1000))
        where = ["seq > ?"]
        args: List[Any] = [int(since_seq)]
        if contract:
            where.append("contract = ?")
            args.append(str(contract))
        if name:
            where.append("event = ?")
            args.append(str(name))
        args.append(limit)
        with self._db.connection() as con:
            rows = con.execute(
                f"SELECT event_json FROM events WHERE {' AND '.join(where)} ORDER BY seq ASC LIMIT ?;",
                tuple(args),
            ).fetchall()
        return [json.loads(str(r["event_json"])) for r in rows]
