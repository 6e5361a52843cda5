import os
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor
from psycopg2 import errors as pg_errors
from contextlib import contextmanager


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

# Columns each collection may read or write. Table and column names are only
# ever taken from here, never from request input.
TABLES: Dict[str, Sequence[str]] = {
    "players": (
        "id",
        "name",
        "category_id",
        "title_id",
        "rating",
        "photo_url",
        "birth_date",
        "cbx_id",
        "fide_id",
        "email",
    ),
    "categories": ("id", "name"),
    "titles": ("id", "name"),
    "stages": ("id", "name", "url"),
    "scores": ("id", "player_id", "stage_id", "points", "rank"),
}

_ORDER_BY = {
    "players": "name, id",
    "categories": "name, id",
    "titles": "name, id",
    # Stage columns in the standings follow creation order
    "stages": "created_at, id",
    "scores": "created_at, id",
}


def _columns(table: str) -> Sequence[str]:
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except Exception:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled by default; can be disabled by DB_KEEPALIVES=0
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {}
    ct_env = _env_int("DB_CONNECT_TIMEOUT")
    kwargs["connect_timeout"] = ct_env if ct_env is not None else 10

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    idle = _env_int("DB_KEEPALIVES_IDLE")
    if idle is not None:
        kwargs["keepalives_idle"] = idle
    interval = _env_int("DB_KEEPALIVES_INTERVAL")
    if interval is not None:
        kwargs["keepalives_interval"] = interval
    count = _env_int("DB_KEEPALIVES_COUNT")
    if count is not None:
        kwargs["keepalives_count"] = count
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Initialize a global connection pool using DATABASE_URL.

    Safe to call multiple times; subsequent calls are ignored once a pool exists.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _release(conn) -> None:
    # status 0 = idle, 1 = active, 2 = intrans, 3 = inerror
    if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
        if getattr(conn, "status", 0) in (1, 2, 3):
            try:
                conn.rollback()
            except Exception:
                pass


@contextmanager
def _get_conn():
    """Yield a database connection from the pool if available, else direct.

    A pooled connection is pinged first; a stale one is discarded and the
    checkout retried once. The connection is rolled back on error and always
    returned to the pool (or closed).
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            try:
                yield conn
            except Exception:
                try:
                    conn.rollback()
                except Exception:
                    pass
                raise
        finally:
            try:
                conn.close()
            except Exception:
                pass
        return

    retried = False
    while True:
        conn = _POOL.getconn()
        healthy = True
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
            if not getattr(conn, "autocommit", False):
                conn.rollback()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            healthy = False

        if healthy:
            break
        try:
            _POOL.putconn(conn, close=True)
        except Exception:
            pass
        if retried:
            raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
        retried = True

    try:
        try:
            yield conn
        except Exception:
            try:
                conn.rollback()
            except Exception:
                pass
            raise
    finally:
        try:
            _release(conn)
        finally:
            _POOL.putconn(conn)


def list_rows(table: str) -> List[Dict[str, Any]]:
    """Return every row of ``table`` as a dict, in the collection's natural order.

    A missing table reads as empty so a fresh database still renders.
    """
    cols = _columns(table)
    sql = f"SELECT {', '.join(cols)} FROM {table} ORDER BY {_ORDER_BY[table]}"
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        try:
            cur.execute(sql)
        except Exception as e:
            if isinstance(e, getattr(pg_errors, "UndefinedTable", tuple())):
                return []
            raise
        return [dict(r) for r in cur.fetchall()]


def insert_row(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    cols = [c for c in _columns(table) if c in row]
    placeholders = ", ".join(["%s"] * len(cols))
    sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})"
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(sql, [row[c] for c in cols])
        conn.commit()
    return {c: row[c] for c in cols}


def update_row(table: str, row_id: str, fields: Dict[str, Any]) -> int:
    """Update columns of one row; returns the number of rows affected."""
    cols = [c for c in _columns(table) if c in fields and c != "id"]
    if not cols:
        return 0
    assignments = ", ".join(f"{c} = %s" for c in cols)
    sql = f"UPDATE {table} SET {assignments} WHERE id = %s"
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(sql, [fields[c] for c in cols] + [row_id])
        affected = cur.rowcount
        conn.commit()
    return affected


def delete_rows(table: str, column: str, value: Any) -> int:
    """Delete rows where ``column`` equals ``value``; returns the count."""
    if column not in _columns(table):
        raise ValueError(f"Unknown column {column} for table {table}")
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(f"DELETE FROM {table} WHERE {column} = %s", (value,))
        affected = cur.rowcount
        conn.commit()
    return affected


def get_settings() -> Dict[str, Any]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        try:
            cur.execute("SELECT key, value FROM settings ORDER BY key")
        except Exception as e:
            if isinstance(e, getattr(pg_errors, "UndefinedTable", tuple())):
                return {}
            raise
        return {r["key"]: r["value"] for r in cur.fetchall()}


def set_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Upsert the given key/value pairs; keys not mentioned are left alone."""
    with _get_conn() as conn, conn.cursor() as cur:
        for key, value in settings.items():
            cur.execute(
                """
                INSERT INTO settings (key, value) VALUES (%s, %s)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
                """,
                (key, value),
            )
        conn.commit()
    return settings


def create_tables(conn) -> None:
    """Create the schema if it does not exist yet."""
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id VARCHAR(64) PRIMARY KEY,
                name VARCHAR(100) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS titles (
                id VARCHAR(64) PRIMARY KEY,
                name VARCHAR(20) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS players (
                id VARCHAR(64) PRIMARY KEY,
                name VARCHAR(200) NOT NULL,
                category_id VARCHAR(64),
                title_id VARCHAR(64),
                rating INTEGER,
                photo_url TEXT,
                birth_date DATE,
                cbx_id VARCHAR(32),
                fide_id VARCHAR(32),
                email VARCHAR(200),
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS stages (
                id VARCHAR(64) PRIMARY KEY,
                name VARCHAR(200) NOT NULL,
                url TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS scores (
                id VARCHAR(64) PRIMARY KEY,
                player_id VARCHAR(64) NOT NULL,
                stage_id VARCHAR(64) NOT NULL,
                points NUMERIC(8, 2) NOT NULL DEFAULT 0,
                rank INTEGER,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_scores_player_id ON scores(player_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_scores_stage_id ON scores(stage_id)")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key VARCHAR(64) PRIMARY KEY,
                value TEXT
            )
        """)
        conn.commit()
