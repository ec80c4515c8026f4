"""Database access layer using psycopg2.

Provides:
- get_conn(): Connection from DATABASE_URL (+ DB_PASSWORD fallback)
- txn(): Context manager for short, safe transactions
- for_update(): SELECT ... FOR UPDATE helper (conversation row locks)
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

APPLICATION_NAME = "instaflow"
DEFAULT_CONNECT_TIMEOUT = 5


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def _connect_options() -> dict[str, Any]:
    options: dict[str, Any] = {
        "application_name": os.environ.get("DB_APPLICATION_NAME", APPLICATION_NAME),
        "connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)),
    }
    statement_timeout = os.environ.get("DB_STATEMENT_TIMEOUT_MS", "").strip()
    if statement_timeout:
        options["options"] = f"-c statement_timeout={int(statement_timeout)}"
    return options


def get_conn() -> PgConnection:
    """Open a connection from DATABASE_URL.

    DB_PASSWORD is passed separately when the DSN carries no password
    (secret-manager injected credentials).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    options = _connect_options()
    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password and not _dsn_has_password(dsn):
        options["password"] = db_password
    return psycopg2.connect(dsn, **options)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Yield a cursor inside one transaction.

    Commits when the block exits normally and rolls back on any exception.
    A connection opened here (conn=None) is also closed here. Every Store
    session and queue operation maps to exactly one txn().
    """
    connection = conn if conn is not None else get_conn()
    try:
        with connection.cursor() as cur:
            yield cur
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        if conn is None:
            connection.close()


_LOCK_CLAUSES = {
    "wait": "FOR UPDATE",
    "nowait": "FOR UPDATE NOWAIT",
    "skip_locked": "FOR UPDATE SKIP LOCKED",
}


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    mode: str = "wait",
) -> tuple[Any, ...] | None:
    """Run `query` with a row lock clause and fetch one row.

    The lock lasts until the enclosing txn() ends.

    Raises:
        ValueError: If `mode` is not wait, nowait or skip_locked.
    """
    clause = _LOCK_CLAUSES.get(mode)
    if clause is None:
        raise ValueError(f"Unknown lock mode: {mode}")
    cur.execute(f"{query.rstrip().rstrip(';')} {clause}", params)
    return cur.fetchone()
