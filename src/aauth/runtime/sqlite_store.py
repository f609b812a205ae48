# src/aauth/runtime/sqlite_store.py
from __future__ import annotations

import os
import random
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from aauth.ledger.record_store import DEFAULT_MAX_RECORD_BYTES, RecordStore, RentPolicy
from aauth.runtime.errors import NotFoundError, ResourceError


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for durable record storage.

    - one DB file holding records + payer balances
    - connections are never shared across threads
    - BEGIN IMMEDIATE with bounded retry for writer contention
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """prod -> FULL, dev/testnet -> NORMAL; override with AAUTH_SQLITE_SYNCHRONOUS."""
        mode = (os.environ.get("AAUTH_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("AAUTH_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        connect_timeout_s = float(_env_int("AAUTH_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # BEGIN/COMMIT are issued explicitly
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("AAUTH_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
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
                CREATE TABLE IF NOT EXISTS records (
                  seed BLOB PRIMARY KEY,
                  data BLOB NOT NULL,
                  deposit INTEGER NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS balances (
                  owner TEXT PRIMARY KEY,
                  amount INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
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
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; retries BEGIN IMMEDIATE with jittered backoff until a deadline."""
        deadline_ts = _now_ms() + max(250, _env_int("AAUTH_SQLITE_WRITE_DEADLINE_MS", 30_000))
        base_sleep = max(0.001, float(_env_int("AAUTH_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("AAUTH_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                con.execute("ROLLBACK;")
                raise


class SqliteRecordStore(RecordStore):
    """RecordStore persisted in SQLite.

    Outside transaction() each operation is its own write transaction; inside
    it every operation on this thread shares one BEGIN IMMEDIATE connection.
    """

    def __init__(
        self,
        *,
        db: SqliteDB,
        rent: RentPolicy | None = None,
        max_record_bytes: int = DEFAULT_MAX_RECORD_BYTES,
    ) -> None:
        super().__init__(rent=rent, max_record_bytes=max_record_bytes)
        self._db = db
        self._db.init_schema()
        self._local = threading.local()

    def _active(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "con", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._active() is not None:
            yield
            return
        with self._db.write_tx() as con:
            self._local.con = con
            try:
                yield
            finally:
                self._local.con = None

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        con = self._active()
        if con is not None:
            yield con
            return
        with self._db.connection() as con:
            yield con

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        con = self._active()
        if con is not None:
            yield con
            return
        with self._db.write_tx() as con:
            yield con

    @staticmethod
    def _row(con: sqlite3.Connection, seed: bytes) -> sqlite3.Row:
        row = con.execute("SELECT data, deposit FROM records WHERE seed=?;", (bytes(seed),)).fetchone()
        if row is None:
            raise NotFoundError("record_not_found", "no record at seed", {"seed": bytes(seed).hex()})
        return row

    @staticmethod
    def _balance(con: sqlite3.Connection, owner: str) -> int:
        row = con.execute("SELECT amount FROM balances WHERE owner=?;", (owner,)).fetchone()
        return 0 if row is None else int(row["amount"])

    @staticmethod
    def _set_balance(con: sqlite3.Connection, owner: str, amount: int) -> None:
        con.execute(
            "INSERT INTO balances(owner, amount) VALUES(?, ?) ON CONFLICT(owner) DO UPDATE SET amount=excluded.amount;",
            (owner, int(amount)),
        )

    def exists(self, seed: bytes) -> bool:
        with self._reading() as con:
            return con.execute("SELECT 1 FROM records WHERE seed=?;", (bytes(seed),)).fetchone() is not None

    def read(self, seed: bytes) -> bytes:
        with self._reading() as con:
            return bytes(self._row(con, seed)["data"])

    def size(self, seed: bytes) -> int:
        return len(self.read(seed))

    def create(self, seed: bytes, data: bytes, *, payer: str) -> None:
        seed = bytes(seed)
        self._check_size(seed, len(data))
        deposit = self.rent.minimum_balance(len(data))
        with self._writing() as con:
            if con.execute("SELECT 1 FROM records WHERE seed=?;", (seed,)).fetchone() is not None:
                raise ResourceError("record_exists", "record already exists", {"seed": seed.hex()})
            bal = self._balance(con, payer)
            if bal < deposit:
                raise ResourceError("insufficient_funds", "payer cannot cover deposit", {"payer": payer, "need": deposit})
            self._set_balance(con, payer, bal - deposit)
            con.execute(
                "INSERT INTO records(seed, data, deposit, updated_ts_ms) VALUES(?, ?, ?, ?);",
                (seed, bytes(data), deposit, _now_ms()),
            )

    def write(self, seed: bytes, data: bytes) -> None:
        with self._writing() as con:
            cur = bytes(self._row(con, seed)["data"])
            if len(data) > len(cur):
                raise ResourceError(
                    "record_too_small",
                    "data does not fit allocated record",
                    {"seed": bytes(seed).hex(), "size": len(cur), "need": len(data)},
                )
            padded = bytes(data) + bytes(len(cur) - len(data))
            con.execute("UPDATE records SET data=?, updated_ts_ms=? WHERE seed=?;", (padded, _now_ms(), bytes(seed)))

    def resize(self, seed: bytes, new_size: int, *, payer: str) -> None:
        self._check_size(bytes(seed), new_size)
        new_deposit = self.rent.minimum_balance(new_size)
        with self._writing() as con:
            row = self._row(con, seed)
            cur = bytes(row["data"])
            delta = new_deposit - int(row["deposit"])
            bal = self._balance(con, payer)
            if delta > 0 and bal < delta:
                raise ResourceError("insufficient_funds", "payer cannot cover resize", {"payer": payer, "need": delta})
            self._set_balance(con, payer, bal - delta)
            data = cur + bytes(new_size - len(cur)) if new_size >= len(cur) else cur[:new_size]
            con.execute(
                "UPDATE records SET data=?, deposit=?, updated_ts_ms=? WHERE seed=?;",
                (data, new_deposit, _now_ms(), bytes(seed)),
            )

    def close(self, seed: bytes, *, beneficiary: str) -> int:
        with self._writing() as con:
            deposit = int(self._row(con, seed)["deposit"])
            con.execute("DELETE FROM records WHERE seed=?;", (bytes(seed),))
            self._set_balance(con, beneficiary, self._balance(con, beneficiary) + deposit)
            return deposit

    def balance(self, owner: str) -> int:
        with self._reading() as con:
            return self._balance(con, owner)

    def fund(self, owner: str, amount: int) -> None:
        if int(amount) < 0:
            raise ValueError("amount must be >= 0")
        with self._writing() as con:
            self._set_balance(con, owner, self._balance(con, owner) + int(amount))
