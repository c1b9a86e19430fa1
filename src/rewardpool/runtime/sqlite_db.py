# src/rewardpool/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

Json = Dict[str, Any]

SCHEMA_VERSION = 1

_DDL: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS meta (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL
    );
    """,
    # Single-row pool snapshot.
    """
    CREATE TABLE IF NOT EXISTS pool_state (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      pool_id TEXT NOT NULL,
      state_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    # Single-row custody snapshot: [{token, holder, amount}, ...]
    """
    CREATE TABLE IF NOT EXISTS vault_state (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      balances_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
      seq INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      event_json TEXT NOT NULL,
      created_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_name ON events(name);",
    """
    CREATE TABLE IF NOT EXISTS request_nonces (
      account TEXT PRIMARY KEY,
      last_nonce INTEGER NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
)

_UPSERT_META = "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    # No default=str: a non-JSON value in pool state must fail, not be written lossy.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    raw = str(os.environ.get(name, "")).strip()
    try:
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def _is_locked_error(e: Exception) -> bool:
    msg = str(e).lower()
    return "database is locked" in msg or "database is busy" in msg


class SqliteDB:
    """One SQLite file per pool: snapshot, custody, event journal and nonces.

    Every call opens its own connection, so nothing is shared between threads.
    SQLite admits a single writer; write_tx() retries BEGIN IMMEDIATE and
    COMMIT with jittered exponential backoff until
    REWARDPOOL_SQLITE_WRITE_DEADLINE_MS runs out.
    """

    SCHEMA_VERSION = SCHEMA_VERSION

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """FULL in prod, NORMAL elsewhere; REWARDPOOL_SQLITE_SYNCHRONOUS overrides."""
        mode = (os.environ.get("REWARDPOOL_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("REWARDPOOL_SQLITE_SYNCHRONOUS") or default).strip().upper()
        return raw if raw in {"OFF", "NORMAL", "FULL", "EXTRA"} else default

    def _pragmas(self, connect_timeout_ms: int) -> List[str]:
        busy_ms = max(0, _env_int("REWARDPOOL_SQLITE_BUSY_TIMEOUT_MS", connect_timeout_ms))
        return [
            f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};",
            "PRAGMA foreign_keys=ON;",
            "PRAGMA temp_store=MEMORY;",
            f"PRAGMA wal_autocheckpoint={max(1, _env_int('REWARDPOOL_SQLITE_WAL_AUTOCHECKPOINT', 1000))};",
            f"PRAGMA busy_timeout={busy_ms};",
        ]

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        timeout_ms = _env_int("REWARDPOOL_SQLITE_CONNECT_TIMEOUT_MS", 30_000)

        # isolation_level=None: BEGIN/COMMIT are issued explicitly by write_tx().
        con = sqlite3.connect(self.path, timeout=timeout_ms / 1000.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        journal = str(row[0]).strip().lower() if row is not None else ""
        allow_non_wal = (os.environ.get("REWARDPOOL_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        if journal and journal != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{journal}', expected 'wal'")

        for stmt in self._pragmas(timeout_ms):
            con.execute(stmt)
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            for ddl in _DDL:
                con.execute(ddl)

            row = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()
            if row is None:
                con.execute(_UPSERT_META, ("schema_version", str(self.SCHEMA_VERSION)))
                return
            have = str(row["value"]).strip()
            if not have.isdigit() or int(have) != self.SCHEMA_VERSION:
                raise RuntimeError(
                    f"sqlite schema_version mismatch: have={have} want={self.SCHEMA_VERSION}. "
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
    def _execute_with_retry(con: sqlite3.Connection, sql: str, deadline_ms: int) -> None:
        base_s = max(0.001, _env_int("REWARDPOOL_SQLITE_WRITE_BACKOFF_BASE_MS", 5) / 1000.0)
        cap_s = max(base_s, _env_int("REWARDPOOL_SQLITE_WRITE_BACKOFF_MAX_MS", 250) / 1000.0)
        attempt = 0
        while True:
            try:
                con.execute(sql)
                return
            except sqlite3.OperationalError as e:
                if not _is_locked_error(e) or _now_ms() >= deadline_ms:
                    raise
            time.sleep(min(cap_s, base_s * 2.0 ** min(attempt, 8)) * (0.5 + random.random()))
            attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolled back if the body raises."""
        deadline_ms = _now_ms() + max(250, _env_int("REWARDPOOL_SQLITE_WRITE_DEADLINE_MS", 30_000))
        with self.connection() as con:
            self._execute_with_retry(con, "BEGIN IMMEDIATE;", deadline_ms)
            try:
                yield con
                self._execute_with_retry(con, "COMMIT;", deadline_ms)
            except BaseException:
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise


class SqlitePoolStore:
    """Pool snapshot store persisted in SQLite.

    The authoritative pool state is a single row; the custody balances are a
    second single row. commit() replaces both and appends the operation's
    events inside one write transaction, so a crash never leaves the pool and
    the vault disagreeing.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM pool_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM pool_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite pool_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("pool_state is not a JSON object")
            return st

    def read_vault(self) -> List[Json]:
        with self._db.connection() as con:
            row = con.execute("SELECT balances_json FROM vault_state WHERE id=1;").fetchone()
            if row is None:
                return []
            rows = json.loads(str(row["balances_json"]))
            if not isinstance(rows, list):
                raise ValueError("vault_state is not a JSON array")
            return rows

    def read_flag(self, key: str, default: str = "") -> str:
        with self._db.connection() as con:
            row = con.execute("SELECT value FROM meta WHERE key=?;", (f"flag:{key}",)).fetchone()
            return str(row["value"]) if row is not None else str(default)

    @staticmethod
    def _write_state(con: sqlite3.Connection, st: Json, now: int) -> None:
        if not isinstance(st, dict):
            raise ValueError("pool write expects dict")
        con.execute(
            """
            INSERT INTO pool_state(id, pool_id, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              pool_id=excluded.pool_id,
              state_json=excluded.state_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (str(st.get("pool_id") or ""), _canon_json(st), now),
        )

    def commit(
        self,
        st: Json,
        vault_rows: Optional[List[Json]] = None,
        events: Iterable[Json] = (),
        *,
        flags: Optional[Dict[str, str]] = None,
    ) -> None:
        now = _now_ms()
        with self._db.write_tx() as con:
            self._write_state(con, st, now)
            for key, value in (flags or {}).items():
                con.execute(_UPSERT_META, (f"flag:{key}", str(value)))
            if vault_rows is not None:
                con.execute(
                    """
                    INSERT INTO vault_state(id, balances_json, updated_ts_ms)
                    VALUES(1, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      balances_json=excluded.balances_json,
                      updated_ts_ms=excluded.updated_ts_ms;
                    """,
                    (_canon_json(list(vault_rows)), now),
                )
            for evt in events:
                con.execute(
                    "INSERT INTO events(name, event_json, created_ts_ms) VALUES(?, ?, ?);",
                    (str(evt.get("event") or ""), _canon_json(evt), now),
                )

    def events(self, *, limit: int = 100, after_seq: int = 0) -> List[Json]:
        lim = max(1, min(int(limit), 1000))
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT seq, event_json FROM events WHERE seq > ? ORDER BY seq ASC LIMIT ?;",
                (int(after_seq), lim),
            ).fetchall()
        out: List[Json] = []
        for r in rows:
            evt = json.loads(str(r["event_json"]))
            evt["seq"] = int(r["seq"])
            out.append(evt)
        return out

    def consume_nonce(self, account: str, nonce: int) -> bool:
        """Record `nonce` for `account` if it is strictly greater than the last one seen."""
        acct = str(account or "").strip()
        n = int(nonce)
        if not acct or n <= 0:
            return False
        with self._db.write_tx() as con:
            row = con.execute("SELECT last_nonce FROM request_nonces WHERE account=?;", (acct,)).fetchone()
            if row is not None and int(row["last_nonce"]) >= n:
                return False
            con.execute(
                """
                INSERT INTO request_nonces(account, last_nonce, updated_ts_ms)
                VALUES(?, ?, ?)
                ON CONFLICT(account) DO UPDATE SET
                  last_nonce=excluded.last_nonce,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (acct, n, _now_ms()),
            )
        return True
