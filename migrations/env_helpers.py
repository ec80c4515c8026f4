"""Database URL resolution for Alembic.

Kept apart from env.py so it can be imported without an alembic context.
DATABASE_URL may be a URL (postgres://, postgresql://, postgresql+psycopg2://)
or a libpq key=value DSN, the form the application's psycopg2 pool uses.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlsplit, urlunsplit

DRIVER_SCHEME = "postgresql+psycopg2"

# key=value, key='quoted \' value'
_DSN_TOKEN = re.compile(r"\s*(\w+)\s*=\s*(?:'((?:\\.|[^'\\])*)'|(\S*))")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Split a libpq DSN into its keywords (quotes and escapes resolved)."""
    tokens: dict[str, str] = {}
    for match in _DSN_TOKEN.finditer(dsn):
        key, quoted, bare = match.groups()
        if quoted is not None:
            tokens[key] = re.sub(r"\\(.)", r"\1", quoted)
        else:
            tokens[key] = bare
    return tokens


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory (Cloud SQL) and goes
    in the query string. DB_PASSWORD fills in a missing password.
    """
    tokens = parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = quote_plus(tokens.get("user", ""))
    if password:
        credentials += ":" + quote_plus(password)
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{DRIVER_SCHEME}://{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{DRIVER_SCHEME}://{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"


def _normalize_url(url: str) -> str:
    scheme, netloc, path, query, fragment = urlsplit(url)
    if scheme in ("postgres", "postgresql"):
        scheme = DRIVER_SCHEME

    db_password = os.environ.get("DB_PASSWORD", "")
    parsed = urlsplit(url)
    if db_password and parsed.username and not parsed.password:
        host = parsed.hostname or ""
        if parsed.port:
            host += f":{parsed.port}"
        netloc = f"{quote_plus(parsed.username)}:{quote_plus(db_password)}@{host}"

    return urlunsplit((scheme, netloc, path, query, fragment))


def get_database_url() -> str:
    """SQLAlchemy URL for migrations, from DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" in url:
        return _normalize_url(url)
    return libpq_dsn_to_url(url)
