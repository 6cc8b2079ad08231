from __future__ import annotations

import json
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence
from urllib.parse import urlparse

from undercovered.schema import get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


# Quoted literals are matched first so '?' inside them survives the rewrite.
_QMARK_RE = re.compile(r"""('(?:[^']|'')*'|"(?:[^"]|"")*"|\?)""")

_SCHEMA_LOCK_KEY = 2147483646


def _detect_dialect(dsn: str) -> str:
    """Return 'postgres', 'memory' or 'sqlite'."""
    scheme = urlparse((dsn or "").strip()).scheme.lower()
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    if scheme == "memory":
        return "memory"
    return "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Rewrite sqlite `?` placeholders as psycopg2 `%s`."""
    return _QMARK_RE.sub(lambda m: "%s" if m.group(0) == "?" else m.group(0), sql)


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        return max(0, int(self._cur.rowcount or 0))

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cur, name)


class PGConnection:
    """Makes a psycopg2 connection answer the subset of the sqlite3 API the app uses."""

    dialect = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        return PGCursor(self._conn.cursor()).execute(sql, params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


class MemoryDatabase:
    """Process-lifetime in-memory store for local development and demos.

    One shared SQLite ":memory:" connection; every `connect()` holds the lock for the
    whole unit of work, so callers are serialized. Not durable.
    """

    def __init__(self, name: str):
        self.name = name
        self.lock = threading.RLock()
        self.conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON;")

    def close(self) -> None:
        with self.lock:
            self.conn.close()


_memory_lock = threading.Lock()
_memory_databases: Dict[str, MemoryDatabase] = {}


def _memory_name(dsn: str) -> str:
    parsed = urlparse(dsn.strip())
    return (parsed.netloc + parsed.path).strip("/") or "default"


def get_memory_database(dsn: str) -> MemoryDatabase:
    name = _memory_name(dsn)
    with _memory_lock:
        db = _memory_databases.get(name)
        if db is None:
            db = MemoryDatabase(name)
            _memory_databases[name] = db
        return db


def drop_memory_database(dsn: str) -> None:
    name = _memory_name(dsn)
    with _memory_lock:
        db = _memory_databases.pop(name, None)
    if db is not None:
        db.close()


@contextmanager
def _unit_of_work(conn: Any) -> Iterator[Any]:
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _open_postgres(dsn: str) -> PGConnection:
    try:
        import psycopg2
        import psycopg2.extras
    except ImportError as e:
        raise RuntimeError("DB_DSN points at Postgres but psycopg2 is not installed (pip install psycopg2-binary)") from e
    return PGConnection(psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor))


def _open_sqlite(dsn: str) -> sqlite3.Connection:
    if dsn.lower().startswith("sqlite:///"):
        dsn = dsn[len("sqlite:///") :]
    Path(dsn).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(dsn, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000", "foreign_keys = ON"):
        conn.execute(f"PRAGMA {pragma};")
    return conn


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """Open a unit of work against SQLite, Postgres or the in-memory store.

    Commits on success, rolls back on error.

    - `postgres://...`: psycopg2 with RealDictCursor, so rows index by column name.
    - `memory://name`: shared in-process SQLite database, serialized by a lock.
    - anything else: a SQLite file path (WAL journal).
    """
    dsn = (db_dsn or "").strip()
    dialect = _detect_dialect(dsn)

    if dialect == "memory":
        mem = get_memory_database(dsn)
        with mem.lock, _unit_of_work(mem.conn) as conn:
            yield conn
        return

    conn = _open_postgres(dsn) if dialect == "postgres" else _open_sqlite(dsn)
    try:
        with _unit_of_work(conn):
            yield conn
    finally:
        conn.close()


def init_db(db_dsn: str) -> None:
    """Create every table and index if missing. Safe to call on each startup."""
    dialect = _detect_dialect(db_dsn)
    _debug(f"Initializing DB ({dialect}) at {db_dsn}")
    ddl = get_schema_sql(dialect)
    with connect(db_dsn) as conn:
        if dialect != "postgres":
            conn.executescript(ddl)
            return

        # One process at a time runs the DDL.
        conn.execute("SELECT pg_advisory_lock(?);", (_SCHEMA_LOCK_KEY,))
        try:
            for stmt in (s.strip() for s in ddl.split(";")):
                if stmt:
                    conn.execute(stmt)
        finally:
            conn.execute("SELECT pg_advisory_unlock(?);", (_SCHEMA_LOCK_KEY,))


def insert_returning_id(conn: Any, sql: str, params: Sequence[Any], id_column: str) -> int:
    """Run an INSERT and return the generated primary key (SQLite 3.35+ and Postgres)."""
    rows = conn.execute(f"{sql.rstrip().rstrip(';')} RETURNING {id_column}", tuple(params)).fetchall()
    if not rows:
        raise RuntimeError(f"insert_returned_no_row:{id_column}")
    return int(rows[0][id_column])


def load_json(raw: Optional[str], default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)
