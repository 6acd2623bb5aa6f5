"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- init_pool() / close_pool(): Optional thread-safe connection pool
- txn(): Context manager for short, safe transactions
- claim_store_ownership(): Single-owner guard for the bookings store
"""

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor
from psycopg2.pool import ThreadedConnectionPool

_pool: ThreadedConnectionPool | None = None


def _dsn() -> str:
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return dsn


def get_conn() -> PgConnection:
    """Get a new database connection from DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    return psycopg2.connect(_dsn())


def init_pool(minconn: int = 1, maxconn: int = 10) -> ThreadedConnectionPool:
    """Create the process-wide pool used by txn() when no conn is given.

    Request threads and the hold expirer share it, so maxconn should cover
    the API threadpool plus one.
    """
    global _pool
    if _pool is None:
        _pool = ThreadedConnectionPool(minconn, maxconn, _dsn())
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, borrows from the pool (or opens a one-off connection
    when no pool was initialized). Commits on successful exit, rolls back
    on exception.

    Example:
        with txn() as cur:
            cur.execute("UPDATE bookings SET status = %s WHERE id = %s", (s, i))
    """
    pooled = conn is None and _pool is not None
    owns_conn = conn is None and not pooled
    if pooled:
        conn = _pool.getconn()
    elif owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if pooled:
            _pool.putconn(conn)
        elif owns_conn:
            conn.close()


# Session advisory lock key for the bookings store owner
STORE_OWNER_LOCK_KEY = 0x686F73746C79

_owner_conn: PgConnection | None = None


def claim_store_ownership(key: int = STORE_OWNER_LOCK_KEY) -> PgConnection:
    """Take the session advisory lock that makes this process the store owner.

    The interval store lives in process memory, so only one process may
    serve a database. The lock is held on a dedicated connection until
    release_store_ownership() closes it (or the process dies).

    Raises:
        RuntimeError: Another process already owns the bookings store.
    """
    global _owner_conn
    if _owner_conn is not None:
        return _owner_conn

    conn = get_conn()
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT pg_try_advisory_lock(%s)", (key,))
            (acquired,) = cur.fetchone()
    except Exception:
        conn.close()
        raise
    if not acquired:
        conn.close()
        raise RuntimeError(
            "Another process already serves this bookings database; "
            "run a single hostly process per database"
        )
    _owner_conn = conn
    return conn


def release_store_ownership() -> None:
    global _owner_conn
    if _owner_conn is not None:
        _owner_conn.close()
        _owner_conn = None
